"""Data-quality summary of preference records, shown before grouping runs."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel

from .models import Person
from .preferences import mutual_pairs, normalize_record


class PreferenceInsights(BaseModel):
    average_friends: float
    mutual_count: int
    unknown_refs: int
    # fewer than one liked person per record on average
    low_coverage: bool
    no_mutual: bool


def compute_preference_insights(
    records: Iterable[Any],
    roster: Optional[Sequence[Person]] = None,
) -> Optional[PreferenceInsights]:
    """
    Summarize raw preference records.

    Unknown references count liked or avoided person ids missing from the
    roster; without a roster nothing is counted as unknown. Returns None
    when there are no records.
    """
    if isinstance(records, Mapping):
        items = [
            {'student_id': key, **value} if isinstance(value, Mapping) and 'studentId' not in value else value
            for key, value in records.items()
        ]
    else:
        items = list(records or [])
    prefs = [normalize_record(raw) for raw in items]
    if not prefs:
        return None

    total_friends = sum(len(pref.like_people) for pref in prefs)
    average = total_friends / len(prefs)
    pairs = mutual_pairs({pref.person_id: pref for pref in prefs})

    unknown = 0
    if roster is not None:
        known = {person.id for person in roster}
        for pref in prefs:
            unknown += sum(1 for pid in pref.like_people if pid not in known)
            unknown += sum(1 for pid in pref.avoid_people if pid not in known)

    return PreferenceInsights(
        average_friends=round(average, 1),
        mutual_count=len(pairs),
        unknown_refs=unknown,
        low_coverage=average < 1,
        no_mutual=not pairs and len(prefs) > 1,
    )
