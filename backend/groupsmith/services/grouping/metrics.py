from __future__ import annotations

import datetime as dt
import math
from typing import Dict, Iterable, Mapping, Optional, Sequence, Set, Tuple

from .models import Analytics, ClusterOverflow, Preference


def achieved_rank(pref: Preference, group_id: str, members: Set[str]) -> int:
    """
    Rank a person achieved in their group (lower is better).

    The rank is the best of the group's position in ``like_groups`` and the
    position of the first liked person found among the members. When nothing
    matches the rank is one past the longer like list.
    """
    best: Optional[int] = None
    if group_id in pref.like_groups:
        best = pref.like_groups.index(group_id) + 1
    for idx, other in enumerate(pref.like_people):
        if other in members:
            if best is None or idx + 1 < best:
                best = idx + 1
            break
    if best is None:
        best = max(len(pref.like_people), len(pref.like_groups)) + 1
    return best


def compute_metrics(
    assignment: Mapping[str, Sequence[str]],
    preferences: Mapping[str, Preference],
    *,
    overflow: Iterable[ClusterOverflow] = (),
    generated_at: Optional[dt.datetime] = None,
) -> Analytics:
    """
    Compute satisfaction and size analytics for a finished assignment.

    Args:
        assignment: Group id -> member ids.
        preferences: Normalized preferences keyed by person id.
        overflow: Friend clusters the strategy had to split.
        generated_at: Timestamp supplied by the caller's clock.

    Returns:
        Analytics; ``average_preference_rank`` is NaN when nobody listed a like.
    """
    group_sets: Dict[str, Set[str]] = {gid: set(members) for gid, members in assignment.items()}

    with_prefs = 0
    top_choice = 0
    top2 = 0
    total_rank = 0
    avoided_pairs: Set[Tuple[str, str]] = set()

    for group_id, members in assignment.items():
        member_set = group_sets[group_id]
        for person_id in members:
            pref = preferences.get(person_id)
            if pref is None:
                continue
            for other in pref.avoid_people:
                if other in member_set:
                    avoided_pairs.add(tuple(sorted((person_id, other))))  # type: ignore[arg-type]
            if not pref.has_likes:
                continue
            rank = achieved_rank(pref, group_id, member_set)
            with_prefs += 1
            total_rank += rank
            if rank == 1:
                top_choice += 1
            if rank <= 2:
                top2 += 1

    sizes = {gid: len(members) for gid, members in assignment.items()}
    histogram: Dict[int, int] = {}
    for size in sizes.values():
        histogram[size] = histogram.get(size, 0) + 1

    if with_prefs:
        percent_top = top_choice / with_prefs * 100.0
        percent_top2 = top2 / with_prefs * 100.0
        average_rank = total_rank / with_prefs
    else:
        percent_top = 0.0
        percent_top2 = 0.0
        average_rank = math.nan

    return Analytics(
        percent_assigned_top_choice=percent_top,
        percent_assigned_top2=percent_top2,
        average_preference_rank=average_rank,
        people_with_preferences=with_prefs,
        group_sizes=sizes,
        size_histogram=dict(sorted(histogram.items())),
        min_group_size=min(sizes.values()) if sizes else 0,
        max_group_size=max(sizes.values()) if sizes else 0,
        avoided_pairs_together=len(avoided_pairs),
        cluster_overflow=tuple(overflow),
        generated_at=generated_at,
    )
