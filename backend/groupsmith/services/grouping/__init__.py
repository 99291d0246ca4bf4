from __future__ import annotations

from .algorithms import algo_balanced, algo_preference_first, algo_random, algo_round_robin
from .candidates import (
    CancelSignal,
    batch_payload,
    build_problem,
    candidate_payload,
    generate_candidates,
    rank_candidates,
    run_strategy,
)
from .catalog import ALGORITHMS, STRATEGY_CATALOG, CatalogEntry, get_strategy, resolve_strategy_ids
from .config import annealing_defaults, genetic_defaults, weight_defaults
from .data import RosterSource, StaticRosterSource, load_problem
from .errors import (
    CapacityError,
    CapacityExceededError,
    GroupingError,
    InputError,
    InsufficientCapacityError,
    StrategyCancelledError,
    StrategyFailure,
    UnknownStrategyError,
)
from .insights import PreferenceInsights, compute_preference_insights
from .jobs import (
    cancel_grouping_job,
    enqueue_grouping_job,
    get_grouping_job,
    list_grouping_jobs,
)
from .metrics import compute_metrics
from .models import (
    Candidate,
    CandidateBatch,
    GroupingProblem,
    GroupShell,
    Person,
    Preference,
    ScoringWeights,
    StrategyConfig,
    StrategyOutcome,
)
from .optimizer import algo_genetic, algo_simulated_annealing
from .partition import Partition
from .preferences import normalize_preferences
from .scoring import Scorer
from .shells import generate_default_shells
from .validation import validate_assignment, validate_inputs

__all__ = [
    'ALGORITHMS',
    'STRATEGY_CATALOG',
    'CatalogEntry',
    'algo_balanced',
    'algo_preference_first',
    'algo_random',
    'algo_round_robin',
    'algo_simulated_annealing',
    'algo_genetic',
    'get_strategy',
    'resolve_strategy_ids',
    'generate_candidates',
    'run_strategy',
    'rank_candidates',
    'build_problem',
    'candidate_payload',
    'batch_payload',
    'CancelSignal',
    'annealing_defaults',
    'genetic_defaults',
    'weight_defaults',
    'RosterSource',
    'StaticRosterSource',
    'load_problem',
    'GroupingError',
    'InputError',
    'CapacityError',
    'CapacityExceededError',
    'InsufficientCapacityError',
    'StrategyFailure',
    'StrategyCancelledError',
    'UnknownStrategyError',
    'PreferenceInsights',
    'compute_preference_insights',
    'enqueue_grouping_job',
    'get_grouping_job',
    'list_grouping_jobs',
    'cancel_grouping_job',
    'compute_metrics',
    'Candidate',
    'CandidateBatch',
    'GroupingProblem',
    'GroupShell',
    'Person',
    'Preference',
    'ScoringWeights',
    'StrategyConfig',
    'StrategyOutcome',
    'Partition',
    'normalize_preferences',
    'Scorer',
    'generate_default_shells',
    'validate_assignment',
    'validate_inputs',
]
