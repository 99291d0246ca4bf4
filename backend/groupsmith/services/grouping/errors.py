"""Error taxonomy for the grouping engine.

Batch-level errors (``InputError`` and ``InsufficientCapacityError``) are raised
before any strategy runs. ``StrategyFailure`` and ``StrategyCancelledError`` are
scoped to one strategy and are reported per strategy by the orchestrator.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class GroupingError(Exception):
    """Base class for every error raised by the grouping engine."""

    kind = 'grouping_error'

    def __init__(self, message: str, *, ids: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.ids: List[str] = [str(value) for value in (ids or [])]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'message': self.message,
            'ids': list(self.ids),
        }


class InputError(GroupingError):
    kind = 'input_error'


class EmptyRosterError(InputError):
    kind = 'empty_roster'


class NoGroupShellsError(InputError):
    kind = 'no_group_shells'


class DuplicatePersonError(InputError):
    kind = 'duplicate_person'


class DuplicateGroupError(InputError):
    kind = 'duplicate_group'


class MalformedPreferenceError(InputError):
    kind = 'malformed_preference'


class MissingPreferenceError(InputError):
    kind = 'missing_preference'


class UnknownStrategyError(InputError):
    kind = 'unknown_strategy'


class CapacityError(GroupingError):
    kind = 'capacity_error'


class InsufficientCapacityError(CapacityError):
    kind = 'insufficient_capacity'

    def __init__(self, roster_size: int, total_capacity: int) -> None:
        super().__init__(
            f'total group capacity {total_capacity} is smaller than roster size {roster_size}'
        )
        self.roster_size = roster_size
        self.total_capacity = total_capacity


class CapacityExceededError(CapacityError):
    """A placement would push a group past its capacity (internal invariant)."""

    kind = 'capacity_exceeded'


class PartitionStateError(GroupingError):
    """Illegal use of a partition: double placement, unknown ids, stale moves."""

    kind = 'partition_state'


class StrategyFailure(GroupingError):
    kind = 'strategy_failure'


class StrategyCancelledError(GroupingError):
    kind = 'cancelled'

    def __init__(self, strategy_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f'strategy {strategy_id} was cancelled')
        self.strategy_id = strategy_id


__all__ = [
    'GroupingError',
    'InputError',
    'EmptyRosterError',
    'NoGroupShellsError',
    'DuplicatePersonError',
    'DuplicateGroupError',
    'MalformedPreferenceError',
    'MissingPreferenceError',
    'UnknownStrategyError',
    'CapacityError',
    'InsufficientCapacityError',
    'CapacityExceededError',
    'PartitionStateError',
    'StrategyFailure',
    'StrategyCancelledError',
]
