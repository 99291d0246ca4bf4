from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .services.grouping.models import GroupShell, Person, StrategyConfig


class JobStatus(str, Enum):
    queued = 'queued'
    running = 'running'
    cancelling = 'cancelling'
    completed = 'completed'
    failed = 'failed'
    cancelled = 'cancelled'


class StrategyInfo(BaseModel):
    id: str
    label: str
    description: str
    is_slow: bool = False


class GroupingRequest(BaseModel):
    roster: List[Person]
    # list of records or a mapping keyed by person id
    preferences: Union[List[Dict[str, Any]], Dict[str, Dict[str, Any]]] = Field(default_factory=list)
    groups: Optional[List[GroupShell]] = None
    strategies: Optional[List[str]] = None
    configs: Optional[Dict[str, StrategyConfig]] = None
    rank: bool = False
    fill_missing: Optional[bool] = None
    # only used when ``groups`` is omitted
    target_group_count: Optional[int] = Field(None, ge=1)
    min_group_size: Optional[int] = Field(None, ge=1)
    max_group_size: Optional[int] = Field(None, ge=1)

    @field_validator('strategies')
    @classmethod
    def _strip_strategies(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return [v.strip().lower() for v in value if v and v.strip()]


class JobRequest(GroupingRequest):
    timeout: Optional[float] = Field(None, gt=0)


class InsightsRequest(BaseModel):
    roster: Optional[List[Person]] = None
    preferences: Union[List[Dict[str, Any]], Dict[str, Dict[str, Any]]] = Field(default_factory=list)


class JobOut(BaseModel):
    id: str
    status: JobStatus
    progress: float = 0.0
    message: Optional[str] = None
    strategies: List[str] = Field(default_factory=list)
    rank: bool = False
    requested_by: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    updated_at: Optional[str] = None
