from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Sequence

from .errors import (
    DuplicateGroupError,
    DuplicatePersonError,
    EmptyRosterError,
    InputError,
    InsufficientCapacityError,
    NoGroupShellsError,
)
from .models import GroupShell, Person

logger = logging.getLogger(__name__)


def _duplicates(values: Sequence[str]) -> List[str]:
    seen: Dict[str, None] = {}
    dupes: Dict[str, None] = {}
    for value in values:
        if value in seen:
            dupes[value] = None
        seen[value] = None
    return list(dupes)


def validate_inputs(roster: Sequence[Person], shells: Sequence[GroupShell]) -> None:
    """
    Reject requests no strategy could satisfy.

    Raises:
        EmptyRosterError, NoGroupShellsError, DuplicatePersonError,
        DuplicateGroupError, InputError (blank ids), InsufficientCapacityError.
    """
    if not roster:
        raise EmptyRosterError('roster is empty')
    if not shells:
        raise NoGroupShellsError('no group shells were supplied')

    blank_people = [idx for idx, person in enumerate(roster) if not (person.id or '').strip()]
    if blank_people:
        raise InputError(f'{len(blank_people)} roster entries have a blank id')
    blank_groups = [idx for idx, shell in enumerate(shells) if not (shell.id or '').strip()]
    if blank_groups:
        raise InputError(f'{len(blank_groups)} group shells have a blank id')

    dup_people = _duplicates([person.id for person in roster])
    if dup_people:
        raise DuplicatePersonError('roster contains duplicate person ids', ids=dup_people)
    dup_groups = _duplicates([shell.id for shell in shells])
    if dup_groups:
        raise DuplicateGroupError('group shells contain duplicate ids', ids=dup_groups)

    if all(shell.capacity is not None for shell in shells):
        total = sum(int(shell.capacity or 0) for shell in shells)
        if total < len(roster):
            raise InsufficientCapacityError(len(roster), total)


def validate_assignment(
    assignment: Mapping[str, Sequence[str]],
    person_ids: Sequence[str],
    shells: Sequence[GroupShell],
) -> Dict[str, Any]:
    """
    Check a finished assignment against the partition invariants.

    Constraints checked:
    1. Every roster person appears in exactly one group (no duplicates, no omissions)
    2. No group holds more people than its capacity
    3. The group ids are exactly the shell ids
    4. Nobody outside the roster was placed

    Returns:
        {'valid': bool, 'errors': List[str], 'statistics': dict}
    """
    errors: List[str] = []

    shell_ids = [shell.id for shell in shells]
    if list(assignment.keys()) != shell_ids:
        missing = [gid for gid in shell_ids if gid not in assignment]
        extra = [gid for gid in assignment if gid not in shell_ids]
        if missing:
            errors.append(f"Missing groups: {', '.join(missing)}")
        if extra:
            errors.append(f"Unknown groups: {', '.join(extra)}")
        if not missing and not extra:
            errors.append('Groups are not in shell order')

    appearances: Dict[str, int] = {}
    for members in assignment.values():
        for pid in members:
            appearances[pid] = appearances.get(pid, 0) + 1

    for pid, count in appearances.items():
        if count > 1:
            errors.append(f"Person {pid}: appears in {count} groups (expected 1)")

    roster = set(person_ids)
    for pid in person_ids:
        if pid not in appearances:
            errors.append(f"Person {pid}: not assigned to any group")
    for pid in appearances:
        if pid not in roster:
            errors.append(f"Person {pid}: not in the roster")

    over_capacity = 0
    for shell in shells:
        size = len(assignment.get(shell.id, ()))
        if shell.capacity is not None and size > shell.capacity:
            over_capacity += 1
            errors.append(f"Group {shell.id}: {size} members exceed capacity {shell.capacity}")

    statistics = {
        'total_people': len(person_ids),
        'assigned_people': sum(1 for pid in person_ids if pid in appearances),
        'group_count': len(assignment),
        'groups_over_capacity': over_capacity,
    }
    valid = not errors
    if not valid:
        logger.warning('grouping.validation failed errors=%d first=%s', len(errors), errors[0])
    return {
        'valid': valid,
        'errors': errors,
        'statistics': statistics,
    }
