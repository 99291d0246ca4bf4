from __future__ import annotations

import logging
import random
import threading
from typing import Iterable, List, Optional, Sequence, Set

from .affinity import AffinityGraph, build_affinity_graph, heaviest_connected_subset, mutual_clusters
from .config import algorithm_seed, balanced_swap_budget, mutual_bonus, weight_defaults
from .errors import StrategyFailure
from .models import ClusterOverflow, GenerationResult, GroupingProblem, ScoringWeights, StrategyConfig
from .partition import Partition, ideal_sizes
from .scoring import Scorer
from .validation import validate_inputs

logger = logging.getLogger(__name__)


def resolve_weights(strategy_id: str, config: Optional[StrategyConfig]) -> ScoringWeights:
    if config is not None and config.weights is not None:
        return config.weights
    return ScoringWeights(**weight_defaults(strategy_id))


def resolve_rng(name: str, config: Optional[StrategyConfig], rng: Optional[random.Random], default_seed: int):
    """Return (rng, seed). An injected rng wins; otherwise one stream seeded from config or env."""
    if rng is not None:
        return rng, config.seed if config is not None else None
    seed = config.seed if config is not None and config.seed is not None else algorithm_seed(name, default_seed)
    return random.Random(seed), seed


def empty_partition(problem: GroupingProblem) -> Partition:
    return Partition(problem.shells, problem.person_ids)


def fill_cyclic(partition: Partition, order: Iterable[str], start: int = 0) -> int:
    """
    Place people in ``order`` cycling through the groups and skipping full ones.

    Returns the group index the next placement would start from.
    """
    group_ids = partition.group_ids
    count = len(group_ids)
    cursor = start
    for person_id in order:
        for attempt in range(count):
            gid = group_ids[(cursor + attempt) % count]
            if partition.has_room(gid):
                partition.place(person_id, gid)
                cursor = (cursor + attempt + 1) % count
                break
        else:
            raise StrategyFailure('All groups are at capacity', ids=[person_id])
    return cursor


def least_full_group(partition: Partition, candidates: Optional[Sequence[str]] = None, tie_break=None) -> Optional[str]:
    pool = [gid for gid in (candidates if candidates is not None else partition.group_ids) if partition.has_room(gid)]
    if not pool:
        return None
    index = {gid: idx for idx, gid in enumerate(partition.group_ids)}
    return min(pool, key=lambda gid: (partition.size_of(gid), tie_break(gid) if tie_break else 0, index[gid]))


# --------------------------------------------------------------------------- random


def algo_random(
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb=None,
) -> GenerationResult:
    """Shuffle the roster and deal people out round-robin. Preference blind baseline."""
    validate_inputs(problem.roster, problem.shells)
    random_instance, seed = resolve_rng('random', config, rng, 99)
    order = list(problem.person_ids)
    random_instance.shuffle(order)
    partition = empty_partition(problem)
    fill_cyclic(partition, order)
    return GenerationResult(partition=partition, seed=seed)


# ---------------------------------------------------------------------- round robin


def algo_round_robin(
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb=None,
) -> GenerationResult:
    """Deal people out in roster order; sizes differ by at most one unless capped."""
    validate_inputs(problem.roster, problem.shells)
    partition = empty_partition(problem)
    fill_cyclic(partition, problem.person_ids)
    return GenerationResult(partition=partition)


# ------------------------------------------------------------------ preference first


def algo_preference_first(
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb=None,
) -> GenerationResult:
    """
    Give each person, in roster order, their best still-available choice.

    Liked groups are tried by rank first, then the groups of liked people by
    rank. Anyone left over goes to the least-full group with room.
    """
    validate_inputs(problem.roster, problem.shells)
    partition = empty_partition(problem)
    scorer = Scorer.for_problem(problem, resolve_weights('preference-first', config))
    known_groups = set(partition.group_ids)
    honored = 0

    for person_id in problem.person_ids:
        pref = problem.preference_for(person_id)
        target: Optional[str] = None
        for gid in pref.like_groups:
            if gid in known_groups and partition.has_room(gid):
                target = gid
                break
        if target is None:
            for other in pref.like_people:
                gid = partition.group_of(other)
                if gid is not None and gid not in pref.avoid_groups and partition.has_room(gid):
                    target = gid
                    break
        if target is not None:
            honored += 1
        else:
            target = least_full_group(
                partition,
                tie_break=lambda gid, pid=person_id: scorer.avoid_hits(pid, gid, partition.member_view(gid)),
            )
            if target is None:
                raise StrategyFailure('All groups are at capacity', ids=[person_id])
        partition.place(person_id, target)

    logger.debug('grouping.preference_first honored=%d of %d', honored, len(problem.roster))
    return GenerationResult(partition=partition)


# ------------------------------------------------------------------------- balanced


def _room_near_target(partition: Partition, gid: str, target: int, slack: int) -> int:
    """People ``gid`` can still take without passing ``target + slack`` or its capacity."""
    room = target + slack - partition.size_of(gid)
    remaining = partition.remaining(gid)
    return room if remaining is None else min(room, remaining)


def _cluster_group(
    partition: Partition,
    graph: AffinityGraph,
    cluster: Sequence[str],
    targets: Sequence[int],
) -> Optional[str]:
    """
    Group that can take the whole cluster while staying closest to even sizes.

    A cluster may push a group at most one past its balanced size; bigger
    clusters are split instead of piling into one group.
    """
    size = len(cluster)
    index = {gid: idx for idx, gid in enumerate(partition.group_ids)}
    fits = [
        gid for gid in partition.group_ids
        if _room_near_target(partition, gid, targets[index[gid]], 1) >= size
    ]
    if not fits:
        return None

    def affinity(gid: str) -> float:
        members = partition.member_view(gid)
        return sum(graph.affinity_to(pid, members) for pid in cluster)

    under = [gid for gid in fits if partition.size_of(gid) + size <= targets[index[gid]]]
    if under:
        return min(under, key=lambda gid: (-affinity(gid), partition.size_of(gid), index[gid]))
    return min(
        fits,
        key=lambda gid: (partition.size_of(gid) + size - targets[index[gid]], -affinity(gid), index[gid]),
    )


def _split_cluster(
    partition: Partition,
    graph: AffinityGraph,
    cluster: Sequence[str],
    targets: Sequence[int],
) -> ClusterOverflow:
    """Keep the heaviest connected part of a cluster together in the roomiest group."""
    index = {gid: idx for idx, gid in enumerate(partition.group_ids)}
    roomy = [gid for gid in partition.group_ids if partition.has_room(gid)]
    if not roomy:
        raise StrategyFailure('All groups are at capacity', ids=list(cluster))
    best = max(roomy, key=lambda gid: (_room_near_target(partition, gid, targets[index[gid]], 0), -index[gid]))
    # every group already at its target still takes one member
    room = max(1, _room_near_target(partition, best, targets[index[best]], 0))
    together = heaviest_connected_subset(graph, cluster, room)
    for person_id in together:
        partition.place(person_id, best)
    split_out = [pid for pid in cluster if pid not in together]
    return ClusterOverflow(
        members=tuple(cluster),
        group_id=best,
        placed_together=tuple(together),
        split_out=tuple(split_out),
    )


def _members_score(scorer: Scorer, group_id: str, members: Set[str]) -> float:
    return sum(scorer.person_score(pid, group_id, members) for pid in members)


def _refine_with_swaps(
    partition: Partition,
    scorer: Scorer,
    rng: random.Random,
    budget: int,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """
    Try ``budget`` random cross-group swaps and keep those that raise the preference score.

    Swaps never change group sizes, so balance is untouched. Returns the number
    of swaps kept.
    """
    person_ids = [pid for pid in partition.person_ids if partition.is_placed(pid)]
    if len(person_ids) < 2 or partition.group_count < 2:
        return 0
    kept = 0
    for _ in range(budget):
        if cancel_event is not None and cancel_event.is_set():
            break
        a = rng.choice(person_ids)
        b = rng.choice(person_ids)
        group_a = partition.group_of(a)
        group_b = partition.group_of(b)
        if a == b or group_a == group_b:
            continue
        members_a = set(partition.member_view(group_a))
        members_b = set(partition.member_view(group_b))
        before = _members_score(scorer, group_a, members_a) + _members_score(scorer, group_b, members_b)
        after = (
            _members_score(scorer, group_a, (members_a - {a}) | {b})
            + _members_score(scorer, group_b, (members_b - {b}) | {a})
        )
        if after > before + 1e-12:
            partition.swap(a, b)
            kept += 1
    return kept


def algo_balanced(
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb=None,
) -> GenerationResult:
    """
    Keep mutual friends together while growing groups evenly.

    1. Build the friend graph (likes weighted by rank, reciprocated likes boosted).
    2. Place each mutual-friend cluster, biggest first, whole into the group that
       keeps sizes closest to even.
    3. Place everyone else by descending affinity into the group they are most
       attached to among those still under their balanced size, or the least-full
       group when they have no ties.
    4. Spend the swap budget on random cross-group swaps, keeping only those
       that raise the preference score.

    A cluster too big for any group near its balanced size is split; the
    heaviest connected part stays together and the split is reported.
    """
    validate_inputs(problem.roster, problem.shells)
    bonus = config.mutual_bonus if config is not None and config.mutual_bonus is not None else mutual_bonus()
    graph = build_affinity_graph(problem.person_ids, problem.preferences, mutual_bonus=bonus)
    scorer = Scorer.for_problem(problem, resolve_weights('balanced', config))
    partition = empty_partition(problem)
    targets = ideal_sizes(len(problem.roster), [shell.capacity for shell in problem.shells])
    index = {gid: idx for idx, gid in enumerate(partition.group_ids)}
    overflow: List[ClusterOverflow] = []

    for cluster in mutual_clusters(graph):
        gid = _cluster_group(partition, graph, cluster, targets)
        if gid is not None:
            for person_id in cluster:
                partition.place(person_id, gid)
            continue
        report = _split_cluster(partition, graph, cluster, targets)
        overflow.append(report)
        logger.info(
            'grouping.balanced cluster split size=%d kept=%d group=%s',
            len(cluster),
            len(report.placed_together),
            report.group_id,
        )

    remaining = partition.unplaced()
    remaining.sort(key=lambda pid: (-graph.degree(pid), graph.order[pid]))
    for person_id in remaining:
        roomy = [gid for gid in partition.group_ids if partition.has_room(gid)]
        if not roomy:
            raise StrategyFailure('All groups are at capacity', ids=[person_id])
        under = [gid for gid in roomy if partition.size_of(gid) < targets[index[gid]]]
        pool = under or roomy

        def attachment(gid: str, pid: str = person_id) -> float:
            members = partition.member_view(gid)
            return graph.affinity_to(pid, members) - scorer.avoid_hits(pid, gid, members)

        best = max(pool, key=lambda gid: (attachment(gid), -partition.size_of(gid), -index[gid]))
        if attachment(best) <= 0:
            best = least_full_group(
                partition,
                pool,
                tie_break=lambda gid, pid=person_id: scorer.avoid_hits(pid, gid, partition.member_view(gid)),
            )
        partition.place(person_id, best)

    budget = config.swap_budget if config is not None and config.swap_budget is not None else balanced_swap_budget()
    seed = None
    if budget > 0:
        random_instance, seed = resolve_rng('balanced', config, rng, 7)
        kept = _refine_with_swaps(partition, scorer, random_instance, budget, cancel_event)
        logger.debug('grouping.balanced swaps kept=%d of budget=%d', kept, budget)

    return GenerationResult(partition=partition, overflow=overflow, seed=seed)
