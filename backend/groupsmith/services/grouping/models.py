"""Value types shared by the grouping engine.

Inputs (people, group shells, raw preference records) accept both the
snake_case names used in Python and the camelCase keys of the roster payloads
exported by the front end. Everything that leaves a strategy run is frozen.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Person(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    first_name: str = Field('', alias='firstName')
    last_name: str = Field('', alias='lastName')

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.id

    @property
    def sort_key(self) -> Tuple[str, str, str]:
        return (self.last_name.lower(), self.first_name.lower(), self.id)


class GroupShell(BaseModel):
    """A destination group, not yet populated. ``capacity=None`` means unbounded."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ''
    capacity: Optional[int] = Field(None, ge=0)

    @property
    def label(self) -> str:
        return self.name or self.id


class PreferenceRecord(BaseModel):
    """A raw preference record as supplied by the caller."""

    model_config = ConfigDict(extra='ignore')

    student_id: str = Field(validation_alias=AliasChoices('student_id', 'studentId', 'person_id', 'personId'))
    like_student_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices('like_student_ids', 'likeStudentIds'))
    avoid_student_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices('avoid_student_ids', 'avoidStudentIds'))
    like_group_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices('like_group_ids', 'likeGroupIds'))
    avoid_group_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices('avoid_group_ids', 'avoidGroupIds'))
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('like_student_ids', 'avoid_student_ids', 'like_group_ids', 'avoid_group_ids', mode='before')
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    @field_validator('meta', mode='before')
    @classmethod
    def _meta_none_as_empty(cls, value):
        return {} if value is None else value


class Preference(BaseModel):
    """Normalized preferences of one person. Like lists are ranked by position."""

    model_config = ConfigDict(frozen=True)

    person_id: str
    like_people: Tuple[str, ...] = ()
    avoid_people: Tuple[str, ...] = ()
    like_groups: Tuple[str, ...] = ()
    avoid_groups: Tuple[str, ...] = ()
    meta: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def empty(cls, person_id: str) -> 'Preference':
        return cls(person_id=person_id)

    @property
    def has_likes(self) -> bool:
        return bool(self.like_people or self.like_groups)

    @property
    def is_empty(self) -> bool:
        return not (self.like_people or self.avoid_people or self.like_groups or self.avoid_groups)


class GroupingProblem(BaseModel):
    """One request snapshot: roster, normalized preferences and group shells."""

    model_config = ConfigDict(frozen=True)

    roster: Tuple[Person, ...]
    preferences: Dict[str, Preference]
    shells: Tuple[GroupShell, ...]

    @property
    def person_ids(self) -> List[str]:
        return [person.id for person in self.roster]

    @property
    def group_ids(self) -> List[str]:
        return [shell.id for shell in self.shells]

    @property
    def total_capacity(self) -> Optional[int]:
        """Sum of capacities, or None when at least one shell is unbounded."""
        if any(shell.capacity is None for shell in self.shells):
            return None
        return sum(int(shell.capacity or 0) for shell in self.shells)

    def preference_for(self, person_id: str) -> Preference:
        return self.preferences.get(person_id) or Preference.empty(person_id)


class ScoringWeights(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    preference: float = 1.0
    balance: float = 1.0
    avoid_penalty: float = Field(1.0, ge=0.0)


class StrategyConfig(BaseModel):
    """Per-strategy tuning. ``None`` means "use the configured default"."""

    model_config = ConfigDict(frozen=True, extra='forbid')

    seed: Optional[int] = None
    weights: Optional[ScoringWeights] = None
    initial_strategy: Optional[str] = None
    mutual_bonus: Optional[float] = Field(None, ge=0.0)

    # balanced
    swap_budget: Optional[int] = Field(None, ge=0)

    # simulated annealing
    max_iterations: Optional[int] = Field(None, ge=1)
    initial_temperature: Optional[float] = Field(None, gt=0.0)
    cooling_rate: Optional[float] = Field(None, gt=0.0, lt=1.0)
    min_temperature: Optional[float] = Field(None, gt=0.0)
    early_stop_after: Optional[int] = Field(None, ge=1)
    swap_probability: Optional[float] = Field(None, ge=0.0, le=1.0)

    # genetic
    population_size: Optional[int] = Field(None, ge=2)
    generations: Optional[int] = Field(None, ge=1)
    mutation_rate: Optional[float] = Field(None, ge=0.0, le=1.0)
    elite_count: Optional[int] = Field(None, ge=1)
    plateau_generations: Optional[int] = Field(None, ge=1)
    selection: Optional[Literal['rank', 'roulette']] = None


class SearchState(str, Enum):
    initialized = 'initialized'
    iterating = 'iterating'
    converged = 'converged'
    budget_exhausted = 'budget_exhausted'
    frozen = 'frozen'


class ClusterOverflow(BaseModel):
    """A mutual-friend cluster that no group could hold in one piece."""

    model_config = ConfigDict(frozen=True)

    members: Tuple[str, ...]
    group_id: str
    placed_together: Tuple[str, ...]
    split_out: Tuple[str, ...]


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    preference: float
    balance: float
    composite: float


class Analytics(BaseModel):
    model_config = ConfigDict(frozen=True)

    percent_assigned_top_choice: float = 0.0
    percent_assigned_top2: float = 0.0
    # NaN when nobody expressed a preference
    average_preference_rank: float = float('nan')
    people_with_preferences: int = 0
    group_sizes: Dict[str, int] = Field(default_factory=dict)
    size_histogram: Dict[int, int] = Field(default_factory=dict)
    min_group_size: int = 0
    max_group_size: int = 0
    avoided_pairs_together: int = 0
    cluster_overflow: Tuple[ClusterOverflow, ...] = ()
    generated_at: Optional[dt.datetime] = None


class CandidateGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    capacity: Optional[int] = None
    member_ids: Tuple[str, ...] = ()


class Candidate(BaseModel):
    """A complete, scored assignment produced by one strategy run."""

    model_config = ConfigDict(frozen=True)

    id: str
    strategy_id: str
    strategy_label: str
    groups: Tuple[CandidateGroup, ...]
    analytics: Analytics
    score: ScoreBreakdown
    seed: Optional[int] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
    rank: Optional[int] = None
    generated_at: Optional[dt.datetime] = None

    def assignment(self) -> Dict[str, List[str]]:
        return {group.id: list(group.member_ids) for group in self.groups}

    def group_of(self, person_id: str) -> Optional[str]:
        for group in self.groups:
            if person_id in group.member_ids:
                return group.id
        return None


OutcomeStatus = Literal['ok', 'failed', 'cancelled']


class StrategyOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy_id: str
    status: OutcomeStatus
    candidate: Optional[Candidate] = None
    error: Optional[Dict[str, Any]] = None
    duration_ms: int = 0


class CandidateBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidates: Tuple[Candidate, ...] = ()
    outcomes: Tuple[StrategyOutcome, ...] = ()
    ranked: bool = False

    @property
    def failures(self) -> List[StrategyOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == 'failed']

    @property
    def cancelled(self) -> List[StrategyOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == 'cancelled']

    def candidate_for(self, strategy_id: str) -> Optional[Candidate]:
        for candidate in self.candidates:
            if candidate.strategy_id == strategy_id:
                return candidate
        return None


@dataclass
class GenerationResult:
    """What a strategy hands back to the orchestrator before freezing."""

    partition: Any
    state: SearchState = SearchState.frozen
    termination: Optional[SearchState] = None
    seed: Optional[int] = None
    iterations: int = 0
    best_score_history: List[float] = field(default_factory=list)
    overflow: List[ClusterOverflow] = field(default_factory=list)

    def diagnostics(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'state': self.state.value}
        if self.termination is not None:
            out['termination'] = self.termination.value
        if self.iterations:
            out['iterations'] = self.iterations
        if self.best_score_history:
            out['best_score_history'] = list(self.best_score_history)
        return out
