from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from .candidates import build_problem
from .models import GroupingProblem, GroupShell, Person
from .shells import generate_default_shells

logger = logging.getLogger(__name__)


class RosterSource(Protocol):
    """Read-only supplier of the people, preferences and groups of one class."""

    async def load_roster(self) -> List[Person]:
        ...

    async def load_preferences(self) -> List[Dict[str, Any]]:
        ...

    async def load_shells(self) -> List[GroupShell]:
        ...


class StaticRosterSource:
    """RosterSource over data already held in memory (tests, scripts, request bodies)."""

    def __init__(
        self,
        roster: Sequence[Union[Person, Mapping[str, Any]]],
        preferences: Optional[Sequence[Mapping[str, Any]]] = None,
        shells: Optional[Sequence[Union[GroupShell, Mapping[str, Any]]]] = None,
    ) -> None:
        self._roster = [p if isinstance(p, Person) else Person.model_validate(p) for p in roster]
        self._preferences = [dict(record) for record in (preferences or [])]
        self._shells = [s if isinstance(s, GroupShell) else GroupShell.model_validate(s) for s in (shells or [])]

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'StaticRosterSource':
        """Load ``{"roster": [...], "preferences": [...], "groups": [...]}`` from a file."""
        payload = json.loads(Path(path).read_text(encoding='utf-8'))
        return cls(
            payload.get('roster') or payload.get('students') or [],
            payload.get('preferences') or [],
            payload.get('groups') or payload.get('shells') or [],
        )

    async def load_roster(self) -> List[Person]:
        return list(self._roster)

    async def load_preferences(self) -> List[Dict[str, Any]]:
        return [dict(record) for record in self._preferences]

    async def load_shells(self) -> List[GroupShell]:
        return list(self._shells)


async def load_problem(
    source: RosterSource,
    *,
    fill_missing: bool = False,
    id_generator: Optional[Callable[[], str]] = None,
) -> GroupingProblem:
    """Read a source into a validated GroupingProblem; default shells fill in when it has none."""
    roster = await source.load_roster()
    preferences = await source.load_preferences()
    shells = await source.load_shells()
    if not shells and roster:
        shells = generate_default_shells(len(roster), id_generator=id_generator)
        logger.info('grouping.data generated default shells count=%d people=%d', len(shells), len(roster))
    return build_problem(roster, preferences, shells, fill_missing=fill_missing)
