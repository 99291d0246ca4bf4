"""Mutable "who is in which group" state used while a strategy runs.

Groups live in fixed buckets addressed by integer index (shell order). Each
bucket is an insertion-ordered dict used as an ordered set, so membership
tests, placements, removals and swaps are O(1) and iteration order is stable
across processes. A Partition belongs to exactly one strategy run.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import CapacityExceededError, PartitionStateError
from .models import GroupShell


class Partition:
    __slots__ = ('_shells', '_group_ids', '_index', '_capacities', '_buckets', '_location', '_people')

    def __init__(self, shells: Sequence[GroupShell], person_ids: Iterable[str]) -> None:
        self._shells: Tuple[GroupShell, ...] = tuple(shells)
        self._group_ids: List[str] = [shell.id for shell in self._shells]
        self._index: Dict[str, int] = {gid: idx for idx, gid in enumerate(self._group_ids)}
        if len(self._index) != len(self._group_ids):
            raise PartitionStateError('group shell ids must be unique')
        self._capacities: List[Optional[int]] = [shell.capacity for shell in self._shells]
        self._buckets: List[Dict[str, None]] = [{} for _ in self._shells]
        self._location: Dict[str, int] = {}
        self._people: List[str] = list(person_ids)

    # ------------------------------------------------------------------ lookups

    @property
    def shells(self) -> Tuple[GroupShell, ...]:
        return self._shells

    @property
    def group_ids(self) -> List[str]:
        return list(self._group_ids)

    @property
    def person_ids(self) -> List[str]:
        return list(self._people)

    @property
    def group_count(self) -> int:
        return len(self._group_ids)

    def group_index(self, group_id: str) -> int:
        try:
            return self._index[group_id]
        except KeyError:
            raise PartitionStateError(f'unknown group {group_id}', ids=[group_id]) from None

    def capacity_of(self, group_id: str) -> Optional[int]:
        return self._capacities[self.group_index(group_id)]

    def size_of(self, group_id: str) -> int:
        return len(self._buckets[self.group_index(group_id)])

    def sizes(self) -> List[int]:
        return [len(bucket) for bucket in self._buckets]

    def remaining(self, group_id: str) -> Optional[int]:
        """Free seats in a group, or None when the group is unbounded."""
        idx = self.group_index(group_id)
        capacity = self._capacities[idx]
        if capacity is None:
            return None
        return capacity - len(self._buckets[idx])

    def has_room(self, group_id: str, count: int = 1) -> bool:
        left = self.remaining(group_id)
        return left is None or left >= count

    def members(self, group_id: str) -> List[str]:
        return list(self._buckets[self.group_index(group_id)])

    def member_view(self, group_id: str) -> Dict[str, None]:
        """Live read-only view of a bucket; callers must not mutate it."""
        return self._buckets[self.group_index(group_id)]

    def group_of(self, person_id: str) -> Optional[str]:
        idx = self._location.get(person_id)
        return None if idx is None else self._group_ids[idx]

    def is_placed(self, person_id: str) -> bool:
        return person_id in self._location

    def unplaced(self) -> List[str]:
        return [pid for pid in self._people if pid not in self._location]

    def placed_count(self) -> int:
        return len(self._location)

    def is_complete(self) -> bool:
        """True iff every roster person sits in exactly one group."""
        if len(self._location) != len(self._people):
            return False
        return all(pid in self._location for pid in self._people)

    # ---------------------------------------------------------------- mutation

    def place(self, person_id: str, group_id: str) -> None:
        idx = self.group_index(group_id)
        if person_id in self._location:
            raise PartitionStateError(
                f'{person_id} is already placed in {self._group_ids[self._location[person_id]]}',
                ids=[person_id],
            )
        capacity = self._capacities[idx]
        if capacity is not None and len(self._buckets[idx]) >= capacity:
            raise CapacityExceededError(f'group {group_id} is full ({capacity})', ids=[group_id, person_id])
        self._buckets[idx][person_id] = None
        self._location[person_id] = idx

    def remove(self, person_id: str) -> str:
        idx = self._location.pop(person_id, None)
        if idx is None:
            raise PartitionStateError(f'{person_id} is not placed', ids=[person_id])
        del self._buckets[idx][person_id]
        return self._group_ids[idx]

    def move_between_groups(self, person_id: str, from_group_id: str, to_group_id: str) -> None:
        """Move one person; capacity is checked before anything changes."""
        src = self.group_index(from_group_id)
        dst = self.group_index(to_group_id)
        if self._location.get(person_id) != src:
            raise PartitionStateError(f'{person_id} is not in {from_group_id}', ids=[person_id, from_group_id])
        if src == dst:
            return
        capacity = self._capacities[dst]
        if capacity is not None and len(self._buckets[dst]) >= capacity:
            raise CapacityExceededError(f'group {to_group_id} is full ({capacity})', ids=[to_group_id, person_id])
        del self._buckets[src][person_id]
        self._buckets[dst][person_id] = None
        self._location[person_id] = dst

    def swap(self, person_a: str, person_b: str) -> None:
        """Exchange the groups of two placed people (sizes are unchanged)."""
        idx_a = self._location.get(person_a)
        idx_b = self._location.get(person_b)
        if idx_a is None or idx_b is None:
            missing = [pid for pid, idx in ((person_a, idx_a), (person_b, idx_b)) if idx is None]
            raise PartitionStateError('cannot swap unplaced people', ids=missing)
        if idx_a == idx_b:
            return
        del self._buckets[idx_a][person_a]
        del self._buckets[idx_b][person_b]
        self._buckets[idx_a][person_b] = None
        self._buckets[idx_b][person_a] = None
        self._location[person_a] = idx_b
        self._location[person_b] = idx_a

    # ---------------------------------------------------------------- snapshots

    def copy(self) -> 'Partition':
        clone = Partition.__new__(Partition)
        clone._shells = self._shells
        clone._group_ids = self._group_ids
        clone._index = self._index
        clone._capacities = self._capacities
        clone._buckets = [dict(bucket) for bucket in self._buckets]
        clone._location = dict(self._location)
        clone._people = self._people
        return clone

    def snapshot(self) -> Dict[str, Tuple[str, ...]]:
        return {gid: tuple(self._buckets[idx]) for idx, gid in enumerate(self._group_ids)}

    def canonical_key(self) -> Tuple[Tuple[str, ...], ...]:
        """Total order over partitions of the same shells, used to break score ties."""
        return tuple(tuple(sorted(bucket)) for bucket in self._buckets)

    def __repr__(self) -> str:
        sizes = ', '.join(f'{gid}={len(b)}' for gid, b in zip(self._group_ids, self._buckets))
        return f'Partition({sizes})'


def ideal_sizes(person_count: int, capacities: Sequence[Optional[int]]) -> List[int]:
    """
    Most even group sizes reachable for ``person_count`` people under the capacities.

    Water-fills one person at a time into the smallest group that still has room,
    so sizes differ by at most one except where a capacity caps a group.
    """
    sizes = [0] * len(capacities)
    if not capacities:
        return sizes
    for _ in range(max(0, person_count)):
        best: Optional[int] = None
        for idx, cap in enumerate(capacities):
            if cap is not None and sizes[idx] >= cap:
                continue
            if best is None or sizes[idx] < sizes[best]:
                best = idx
        if best is None:
            break
        sizes[best] += 1
    return sizes
