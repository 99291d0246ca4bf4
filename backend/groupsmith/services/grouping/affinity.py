"""Request-scoped friend graph used by the balanced strategy.

Every "like" between two roster members adds ``1/rank`` to the undirected edge
between them; a reciprocated like adds ``mutual_bonus`` on top. Mutual edges
define the friend clusters the balanced strategy tries to keep together.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence

from .models import Preference
from .scoring import rank_credit


class AffinityGraph:
    def __init__(self, person_ids: Sequence[str]) -> None:
        self.order: Dict[str, int] = {pid: idx for idx, pid in enumerate(person_ids)}
        self._weights: Dict[str, Dict[str, float]] = {pid: {} for pid in person_ids}
        self._mutual: Dict[str, Dict[str, None]] = {pid: {} for pid in person_ids}

    def add(self, a: str, b: str, weight: float) -> None:
        if a == b or a not in self._weights or b not in self._weights:
            return
        self._weights[a][b] = self._weights[a].get(b, 0.0) + weight
        self._weights[b][a] = self._weights[b].get(a, 0.0) + weight

    def mark_mutual(self, a: str, b: str) -> None:
        self._mutual[a][b] = None
        self._mutual[b][a] = None

    def weight(self, a: str, b: str) -> float:
        return self._weights.get(a, {}).get(b, 0.0)

    def neighbors(self, person_id: str) -> Dict[str, float]:
        return self._weights.get(person_id, {})

    def mutual_neighbors(self, person_id: str) -> List[str]:
        return sorted(self._mutual.get(person_id, {}), key=self.order.__getitem__)

    def degree(self, person_id: str) -> float:
        return sum(self._weights.get(person_id, {}).values())

    def affinity_to(self, person_id: str, members: Iterable[str]) -> float:
        edges = self._weights.get(person_id, {})
        return sum(edges.get(other, 0.0) for other in members)

    def internal_weight(self, members: Sequence[str]) -> float:
        total = 0.0
        for idx, a in enumerate(members):
            for b in members[idx + 1:]:
                total += self.weight(a, b)
        return total


def build_affinity_graph(
    person_ids: Sequence[str],
    preferences: Mapping[str, Preference],
    *,
    mutual_bonus: float = 1.0,
) -> AffinityGraph:
    graph = AffinityGraph(person_ids)
    for person_id in person_ids:
        pref = preferences.get(person_id)
        if pref is None:
            continue
        for idx, other in enumerate(pref.like_people):
            if other not in graph.order:
                continue
            graph.add(person_id, other, rank_credit(idx + 1))
            other_pref = preferences.get(other)
            # count each reciprocated pair once, from its earlier roster member
            if (
                other_pref is not None
                and person_id in other_pref.like_people
                and graph.order[person_id] < graph.order[other]
            ):
                graph.add(person_id, other, mutual_bonus)
                graph.mark_mutual(person_id, other)
    return graph


def mutual_clusters(graph: AffinityGraph) -> List[List[str]]:
    """Connected components of mutual edges with at least two members, biggest first."""
    seen: Dict[str, None] = {}
    clusters: List[List[str]] = []
    for start in graph.order:
        if start in seen or not graph.mutual_neighbors(start):
            continue
        component: List[str] = []
        stack = [start]
        seen[start] = None
        while stack:
            current = stack.pop()
            component.append(current)
            for nxt in graph.mutual_neighbors(current):
                if nxt not in seen:
                    seen[nxt] = None
                    stack.append(nxt)
        component.sort(key=graph.order.__getitem__)
        clusters.append(component)
    clusters.sort(key=lambda members: (-len(members), -graph.internal_weight(members), graph.order[members[0]]))
    return clusters


def heaviest_connected_subset(graph: AffinityGraph, members: Sequence[str], limit: int) -> List[str]:
    """
    Greedy highest-weight connected subset of ``members`` with at most ``limit`` people.

    Starts from the member with the strongest ties inside the cluster and keeps
    adding the neighbour most attached to the people already chosen.
    """
    if limit <= 0 or not members:
        return []
    pool = list(members)
    if limit >= len(pool):
        return pool

    def _rank(pid: str) -> int:
        return graph.order.get(pid, len(graph.order))

    start = max(pool, key=lambda pid: (graph.affinity_to(pid, pool), -_rank(pid)))
    chosen = [start]
    while len(chosen) < limit:
        frontier = [pid for pid in pool if pid not in chosen and any(graph.weight(pid, c) > 0 for c in chosen)]
        if not frontier:
            break
        nxt = max(frontier, key=lambda pid: (graph.affinity_to(pid, chosen), -_rank(pid)))
        chosen.append(nxt)
    return chosen
