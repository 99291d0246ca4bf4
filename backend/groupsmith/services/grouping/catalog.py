from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .algorithms import algo_balanced, algo_preference_first, algo_random, algo_round_robin
from .config import default_strategies
from .errors import UnknownStrategyError
from .models import GenerationResult
from .optimizer import algo_genetic, algo_simulated_annealing

StrategyFn = Callable[..., GenerationResult]


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    label: str
    description: str
    is_slow: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'description': self.description,
            'is_slow': self.is_slow,
        }


STRATEGY_CATALOG = (
    CatalogEntry('balanced', 'Balanced', 'Keeps mutual friends together while growing groups evenly.'),
    CatalogEntry('preference-first', 'Preference first', 'Gives each person their best available choice in roster order.'),
    CatalogEntry('round-robin', 'Round robin', 'Deals people out in roster order.'),
    CatalogEntry('random', 'Random', 'Shuffles the roster and deals people out.'),
    CatalogEntry('simulated-annealing', 'Simulated annealing', 'Improves a starting grouping with swaps and moves.', True),
    CatalogEntry('genetic', 'Genetic', 'Evolves a population of groupings.', True),
)

ALGORITHMS: Dict[str, StrategyFn] = {
    'balanced': algo_balanced,
    'preference-first': algo_preference_first,
    'round-robin': algo_round_robin,
    'random': algo_random,
    'simulated-annealing': algo_simulated_annealing,
    'genetic': algo_genetic,
}

_ENTRIES = {entry.id: entry for entry in STRATEGY_CATALOG}
_ORDER = {entry.id: idx for idx, entry in enumerate(STRATEGY_CATALOG)}


def catalog_entry(strategy_id: str) -> CatalogEntry:
    try:
        return _ENTRIES[strategy_id]
    except KeyError:
        raise UnknownStrategyError(f'unknown strategy {strategy_id!r}', ids=[strategy_id]) from None


def get_strategy(strategy_id: str) -> StrategyFn:
    catalog_entry(strategy_id)
    return ALGORITHMS[strategy_id]


def default_strategy_ids() -> List[str]:
    """Configured default strategies, or every non-slow strategy."""
    configured = default_strategies()
    if configured:
        return resolve_strategy_ids(configured)
    return [entry.id for entry in STRATEGY_CATALOG if not entry.is_slow]


def resolve_strategy_ids(requested: Optional[Iterable[str]]) -> List[str]:
    """
    Normalize a strategy selection into catalog order.

    ``None`` or an empty selection means the defaults; ``'all'`` selects the
    whole catalog. Unknown ids raise ``UnknownStrategyError`` listing all of them.
    """
    if requested is None:
        return default_strategy_ids()
    wanted = [str(name).strip().lower() for name in requested if str(name).strip()]
    if not wanted:
        return default_strategy_ids()
    if 'all' in wanted:
        return [entry.id for entry in STRATEGY_CATALOG]
    unknown = [name for name in wanted if name not in _ENTRIES]
    if unknown:
        raise UnknownStrategyError(f"unknown strategies: {', '.join(unknown)}", ids=unknown)
    return sorted(dict.fromkeys(wanted), key=_ORDER.__getitem__)
