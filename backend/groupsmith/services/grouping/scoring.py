from __future__ import annotations

from typing import Container, Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

from .models import GroupingProblem, GroupShell, Preference, ScoreBreakdown, ScoringWeights
from .partition import Partition, ideal_sizes

# scores closer than this are treated as equal and fall through to the canonical tie-break
SCORE_EPSILON = 1e-9


def rank_credit(rank: int) -> float:
    """Credit for being placed with a rank-``rank`` choice: 1, 1/2, 1/3, ..."""
    return 1.0 / rank if rank >= 1 else 0.0


class Scorer:
    """
    Preference, balance and composite scores for partitions of one problem.

    Preference lists are indexed once up front so that scoring a single person
    only touches their own likes/avoids. Local search uses ``group_score`` to
    re-score just the groups touched by a move.
    """

    def __init__(
        self,
        preferences: Mapping[str, Preference],
        shells: Sequence[GroupShell],
        person_count: int,
        weights: Optional[ScoringWeights] = None,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self._like_people: Dict[str, Tuple[str, ...]] = {}
        self._like_groups: Dict[str, Dict[str, int]] = {}
        self._avoid_people: Dict[str, FrozenSet[str]] = {}
        self._avoid_groups: Dict[str, FrozenSet[str]] = {}
        for person_id, pref in preferences.items():
            self._like_people[person_id] = tuple(pref.like_people)
            self._like_groups[person_id] = {gid: idx + 1 for idx, gid in enumerate(pref.like_groups)}
            self._avoid_people[person_id] = frozenset(pref.avoid_people)
            self._avoid_groups[person_id] = frozenset(pref.avoid_groups)
        self._targets = ideal_sizes(person_count, [shell.capacity for shell in shells])

    @classmethod
    def for_problem(cls, problem: GroupingProblem, weights: Optional[ScoringWeights] = None) -> 'Scorer':
        return cls(problem.preferences, problem.shells, len(problem.roster), weights)

    @property
    def target_sizes(self) -> Sequence[int]:
        return tuple(self._targets)

    def best_rank(self, person_id: str, group_id: str, members: Container[str]) -> Optional[int]:
        """Best rank achieved via the group itself or a liked person in it, if any."""
        best = self._like_groups.get(person_id, {}).get(group_id)
        for idx, other in enumerate(self._like_people.get(person_id, ())):
            if best is not None and idx + 1 >= best:
                break
            if other in members:
                best = idx + 1
                break
        return best

    def avoid_hits(self, person_id: str, group_id: str, members: Container[str]) -> int:
        hits = sum(1 for other in self._avoid_people.get(person_id, ()) if other in members)
        if group_id in self._avoid_groups.get(person_id, ()):
            hits += 1
        return hits

    def person_score(self, person_id: str, group_id: str, members: Container[str]) -> float:
        rank = self.best_rank(person_id, group_id, members)
        credit = rank_credit(rank) if rank is not None else 0.0
        hits = self.avoid_hits(person_id, group_id, members)
        return credit - self.weights.avoid_penalty * hits

    def group_score(self, partition: Partition, group_id: str) -> float:
        members = partition.member_view(group_id)
        return sum(self.person_score(pid, group_id, members) for pid in members)

    def preference_score(self, partition: Partition) -> float:
        return sum(self.group_score(partition, gid) for gid in partition.group_ids)

    def balance_score(self, partition: Partition) -> float:
        return self.balance_for_sizes(partition.sizes())

    def balance_for_sizes(self, sizes: Sequence[int]) -> float:
        if not sizes:
            return 0.0
        deviation = sum((size - target) ** 2 for size, target in zip(sizes, self._targets))
        return -deviation / len(sizes)

    def combine(self, preference: float, balance: float) -> float:
        return self.weights.preference * preference + self.weights.balance * balance

    def composite(self, partition: Partition) -> float:
        return self.combine(self.preference_score(partition), self.balance_score(partition))

    def score(self, partition: Partition) -> ScoreBreakdown:
        preference = self.preference_score(partition)
        balance = self.balance_score(partition)
        return ScoreBreakdown(
            preference=round(preference, 9),
            balance=round(balance, 9),
            composite=round(self.combine(preference, balance), 9),
        )


def ranking_key(composite: float, partition: Partition) -> tuple:
    """Sort key putting the best partition first; ties fall back to the canonical order."""
    return (-round(composite, 9), partition.canonical_key())


def is_better(score_a: float, partition_a: Partition, score_b: float, partition_b: Partition) -> bool:
    if score_a > score_b + SCORE_EPSILON:
        return True
    if score_b > score_a + SCORE_EPSILON:
        return False
    return partition_a.canonical_key() < partition_b.canonical_key()
