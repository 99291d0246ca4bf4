from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from .errors import MalformedPreferenceError, MissingPreferenceError
from .models import Person, Preference, PreferenceRecord

logger = logging.getLogger(__name__)

RawPreference = Union[PreferenceRecord, Preference, Mapping[str, Any]]


def _clean_ids(values: Iterable[Any], *, exclude: Optional[str] = None) -> List[str]:
    """Trim ids, drop blanks and ``exclude``, keep the first occurrence of each."""
    seen: Dict[str, None] = {}
    for value in values or []:
        if value is None:
            continue
        cleaned = str(value).strip()
        if not cleaned or cleaned == exclude or cleaned in seen:
            continue
        seen[cleaned] = None
    return list(seen)


def _coerce_record(raw: RawPreference) -> PreferenceRecord:
    if isinstance(raw, PreferenceRecord):
        return raw
    if isinstance(raw, Preference):
        return PreferenceRecord(
            student_id=raw.person_id,
            like_student_ids=list(raw.like_people),
            avoid_student_ids=list(raw.avoid_people),
            like_group_ids=list(raw.like_groups),
            avoid_group_ids=list(raw.avoid_groups),
            meta=dict(raw.meta),
        )
    if not isinstance(raw, Mapping):
        raise MalformedPreferenceError(f'preference record must be a mapping, got {type(raw).__name__}')
    try:
        return PreferenceRecord.model_validate(dict(raw))
    except ValidationError as exc:
        sid = raw.get('student_id') or raw.get('studentId') or raw.get('person_id') or raw.get('personId')
        raise MalformedPreferenceError(
            f'invalid preference record: {exc.errors()[0].get("msg", "validation error")}',
            ids=[str(sid)] if sid else None,
        ) from exc


def normalize_record(raw: RawPreference) -> Preference:
    """Normalize a single record. Fails if its person id is blank after trimming."""
    record = _coerce_record(raw)
    person_id = (record.student_id or '').strip()
    if not person_id:
        raise MalformedPreferenceError('preference record has a blank student id')

    avoid_people = _clean_ids(record.avoid_student_ids, exclude=person_id)
    avoid_groups = _clean_ids(record.avoid_group_ids)
    # an id that is both liked and avoided counts as avoided
    like_people = [pid for pid in _clean_ids(record.like_student_ids, exclude=person_id) if pid not in avoid_people]
    like_groups = [gid for gid in _clean_ids(record.like_group_ids) if gid not in avoid_groups]
    return Preference(
        person_id=person_id,
        like_people=tuple(like_people),
        avoid_people=tuple(avoid_people),
        like_groups=tuple(like_groups),
        avoid_groups=tuple(avoid_groups),
        meta=dict(record.meta or {}),
    )


def normalize_preferences(
    records: Union[Iterable[RawPreference], Mapping[str, RawPreference], None],
    roster: Sequence[Person],
    *,
    fill_missing: bool = False,
) -> Dict[str, Preference]:
    """
    Build the person id -> Preference table the strategies consume.

    Args:
        records: Raw preference records, either a list or a mapping keyed by person id.
        roster: The people being grouped; the result has exactly one entry per roster id.
        fill_missing: When true, roster members without a record get an empty
            preference. When false (the engine's contract) a missing record is an error.

    Returns:
        Mapping of person id to normalized Preference, in roster order.
    """
    if records is None:
        items: List[RawPreference] = []
    elif isinstance(records, Mapping):
        items = []
        for key, value in records.items():
            if isinstance(value, Mapping) and not any(
                k in value for k in ('student_id', 'studentId', 'person_id', 'personId')
            ):
                value = {**value, 'student_id': key}
            items.append(value)
    else:
        items = list(records)

    roster_ids = {person.id for person in roster}
    by_person: Dict[str, Preference] = {}
    for raw in items:
        pref = normalize_record(raw)
        if pref.person_id in by_person:
            raise MalformedPreferenceError(
                f'duplicate preference record for {pref.person_id}', ids=[pref.person_id]
            )
        if pref.person_id not in roster_ids:
            logger.debug('grouping.preferences ignoring record for unknown person=%s', pref.person_id)
            continue
        by_person[pref.person_id] = pref

    missing = [person.id for person in roster if person.id not in by_person]
    if missing and not fill_missing:
        raise MissingPreferenceError(
            f'{len(missing)} roster member(s) have no preference record', ids=missing
        )

    table: Dict[str, Preference] = {}
    for person in roster:
        table[person.id] = by_person.get(person.id) or Preference.empty(person.id)
    return table


def mutual_pairs(preferences: Mapping[str, Preference]) -> List[tuple]:
    """Return sorted (a, b) pairs where both people list each other as liked."""
    pairs: Dict[tuple, None] = {}
    for person_id, pref in preferences.items():
        for other in pref.like_people:
            other_pref = preferences.get(other)
            if other_pref is not None and person_id in other_pref.like_people:
                a, b = sorted((person_id, other))
                pairs[(a, b)] = None
    return sorted(pairs)
