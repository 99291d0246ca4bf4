from __future__ import annotations

import math
import uuid
from typing import Callable, List, Optional

from .config import default_group_sizes
from .models import GroupShell

# preferred group size when neither the caller nor the bounds say otherwise
IDEAL_GROUP_SIZE = 5


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def generate_default_shells(
    person_count: int,
    *,
    target_group_count: Optional[int] = None,
    min_group_size: Optional[int] = None,
    max_group_size: Optional[int] = None,
    id_generator: Optional[Callable[[], str]] = None,
) -> List[GroupShell]:
    """
    Build evenly sized group shells for a roster when the caller supplied none.

    The group count aims at groups of five (clamped into ``[min, max]``), then
    shrinks while groups would be too small and grows while they would be too
    big. Capacities are dealt out with ceiling division so the first groups
    take the remainder; no capacity goes below the minimum.
    """
    sizes = default_group_sizes()
    min_size = sizes['min'] if min_group_size is None else min_group_size
    max_size = sizes['max'] if max_group_size is None else max_group_size
    min_size = max(1, int(min_size))
    max_size = max(min_size, int(max_size))
    new_id = id_generator or (lambda: uuid.uuid4().hex)

    ideal = min(max(IDEAL_GROUP_SIZE, min_size), max_size)
    count = target_group_count if target_group_count is not None else _round_half_up(person_count / ideal)
    count = max(1, int(count))

    average = person_count / count
    while average < min_size and count > 1:
        count -= 1
        average = person_count / count
    while average > max_size:
        count += 1
        average = person_count / count

    shells: List[GroupShell] = []
    remaining = person_count
    for number in range(1, count + 1):
        groups_left = count - number + 1
        capacity = max(min(math.ceil(remaining / groups_left), max_size), min_size)
        shells.append(GroupShell(id=new_id(), name=f'Group {number}', capacity=capacity))
        remaining -= capacity
    return shells
