from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

# load the local .env so defaults mirror backend/groupsmith/.env
_ENV_PATH = Path(__file__).resolve().parents[2] / '.env'
if _ENV_PATH.exists():
    load_dotenv(dotenv_path=_ENV_PATH, override=False)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return float(default)


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return int(default)


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in _TRUE_VALUES


def _env_key(strategy_id: str) -> str:
    return strategy_id.replace('-', '_').upper()


# preference weight, balance weight per strategy
_WEIGHT_DEFAULTS: Dict[str, tuple] = {
    'balanced': ("1", "1"),
    'preference-first': ("4", "1"),
    'round-robin': ("1", "1"),
    'random': ("1", "1"),
    'simulated-annealing': ("2", "1"),
    'genetic': ("2", "1"),
}


@lru_cache(maxsize=None)
def weight_defaults(strategy_id: str = 'balanced') -> Dict[str, float]:
    """Return default scoring weights for a strategy, sourced from the environment."""
    pref_default, balance_default = _WEIGHT_DEFAULTS.get(strategy_id, ("1", "1"))
    key = _env_key(strategy_id)
    return {
        'preference': _float_env(f"GROUPING_W_PREF_{key}", pref_default),
        'balance': _float_env(f"GROUPING_W_BALANCE_{key}", balance_default),
        'avoid_penalty': _float_env("GROUPING_W_AVOID", "1"),
    }


@lru_cache(maxsize=1)
def mutual_bonus() -> float:
    """Extra edge weight when a like is reciprocated in the friend graph."""
    return max(0.0, _float_env("GROUPING_MUTUAL_BONUS", "1"))


@lru_cache(maxsize=1)
def balanced_swap_budget() -> int:
    """Random swaps tried after balanced placement; 0 turns the pass off."""
    return max(0, _int_env("GROUPING_BALANCED_SWAP_BUDGET", "300"))


@lru_cache(maxsize=1)
def annealing_defaults() -> Dict[str, float]:
    return {
        'max_iterations': max(1, _int_env("GROUPING_SA_ITERATIONS", "2000")),
        'initial_temperature': max(1e-6, _float_env("GROUPING_SA_TEMPERATURE", "1.0")),
        'cooling_rate': min(0.999999, max(0.5, _float_env("GROUPING_SA_COOLING", "0.995"))),
        'min_temperature': max(1e-6, _float_env("GROUPING_SA_MIN_TEMPERATURE", "0.01")),
        'early_stop_after': max(1, _int_env("GROUPING_SA_EARLY_STOP", "400")),
        'swap_probability': min(1.0, max(0.0, _float_env("GROUPING_SA_SWAP_PROBABILITY", "0.5"))),
    }


@lru_cache(maxsize=1)
def genetic_defaults() -> Dict[str, float]:
    return {
        'population_size': max(2, _int_env("GROUPING_GA_POPULATION", "16")),
        'generations': max(1, _int_env("GROUPING_GA_GENERATIONS", "40")),
        'mutation_rate': min(1.0, max(0.0, _float_env("GROUPING_GA_MUTATION_RATE", "0.15"))),
        'elite_count': max(1, _int_env("GROUPING_GA_ELITES", "2")),
        'plateau_generations': max(1, _int_env("GROUPING_GA_PLATEAU", "10")),
    }


@lru_cache(maxsize=1)
def genetic_selection() -> str:
    raw = (os.getenv("GROUPING_GA_SELECTION") or 'rank').strip().lower()
    return raw if raw in {'rank', 'roulette'} else 'rank'


@lru_cache(maxsize=1)
def initial_strategy() -> str:
    """Strategy whose output seeds annealing and the genetic population."""
    return (os.getenv("GROUPING_INITIAL_STRATEGY") or 'balanced').strip().lower()


@lru_cache(maxsize=1)
def parallel_strategies() -> bool:
    """Whether the orchestrator runs strategies concurrently (default: enabled)."""
    return _bool_env("GROUPING_PARALLEL", True)


@lru_cache(maxsize=1)
def default_group_sizes() -> Dict[str, int]:
    min_size = max(1, _int_env("GROUPING_MIN_GROUP_SIZE", "4"))
    max_size = max(min_size, _int_env("GROUPING_MAX_GROUP_SIZE", "6"))
    return {'min': min_size, 'max': max_size}


@lru_cache(maxsize=1)
def default_strategies() -> List[str]:
    raw = os.getenv("GROUPING_DEFAULT_STRATEGIES")
    if not raw:
        return []
    return [s.strip().lower() for s in raw.split(",") if s.strip()]


@lru_cache(maxsize=1)
def job_retention() -> int:
    """Finished background jobs kept in memory; older ones are dropped first."""
    return max(1, _int_env("GROUPING_JOB_RETENTION", "100"))


def algorithm_seed(name: str, default: int) -> int:
    env_name = f"GROUPING_SEED_{_env_key(name)}"
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default
