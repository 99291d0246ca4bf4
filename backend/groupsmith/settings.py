"""Application settings for the grouping service.

Engine tuning knobs (weights, annealing and genetic budgets, seeds) stay in
``services.grouping.config`` as ``GROUPING_*`` variables; this module holds
what the web application itself needs.
"""
from functools import lru_cache
import os
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Core
    app_name: str = "Groupsmith"
    environment: str = Field("development", alias="ENVIRONMENT")
    debug: bool = False

    # URLs / CORS
    allowed_origins: str = Field("*", alias="ALLOWED_ORIGINS")
    cors_allow_credentials: bool = Field(True, alias="CORS_ALLOW_CREDENTIALS")

    # Grouping requests
    max_roster_size: int = Field(2000, alias="GROUPING_MAX_ROSTER_SIZE")
    # seconds each strategy may run inside a synchronous request; None disables the limit
    request_strategy_timeout: Optional[float] = Field(30.0, alias="GROUPING_REQUEST_TIMEOUT")
    # roster members without a preference record count as having none
    fill_missing_preferences: bool = Field(True, alias="GROUPING_FILL_MISSING_PREFERENCES")

    @property
    def origins(self) -> List[str]:
        raw = (self.allowed_origins or "").strip()
        if not raw:
            return []
        return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    s = Settings()  # type: ignore[call-arg]

    env = (s.environment or os.getenv('ENVIRONMENT', '')).lower()
    if env in ('production', 'prod'):
        # Do not allow wildcard CORS in production
        if not s.origins or s.origins == ['*']:
            raise RuntimeError('ALLOWED_ORIGINS must be set to specific origins in production (no "*")')

    return s


__all__ = ["Settings", "get_settings"]
