"""
Candidate orchestration: run strategies against one request snapshot and
decorate each finished partition with scores and analytics.

Input problems (empty roster, no shells, bad records, too little capacity)
abort the whole batch before any strategy starts. Anything that goes wrong
inside a strategy is reported on that strategy's outcome only.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
import math
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from .catalog import catalog_entry, get_strategy, resolve_strategy_ids
from .config import parallel_strategies, weight_defaults
from .errors import GroupingError, InputError, StrategyCancelledError, StrategyFailure, UnknownStrategyError
from .metrics import compute_metrics
from .models import (
    Candidate,
    CandidateBatch,
    CandidateGroup,
    GroupingProblem,
    GroupShell,
    Person,
    ScoringWeights,
    StrategyConfig,
    StrategyOutcome,
)
from .preferences import normalize_preferences
from .scoring import Scorer
from .validation import validate_assignment, validate_inputs

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]
IdGenerator = Callable[[], str]
ProgressCallback = Callable[[Dict[str, Any]], None]


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class CancelSignal:
    """Cooperative cancel flag: set per strategy, or inherited from a batch-wide event."""

    def __init__(self, parent: Optional[threading.Event] = None) -> None:
        self._own = threading.Event()
        self._parent = parent

    def set(self) -> None:
        self._own.set()

    def is_set(self) -> bool:
        return self._own.is_set() or (self._parent is not None and self._parent.is_set())


def _coerce(model: type, value: Any, what: str) -> Any:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise InputError(f'invalid {what}: {exc.errors()[0].get("msg", "validation error")}') from exc


def build_problem(
    roster: Sequence[Union[Person, Mapping[str, Any]]],
    preferences: Any,
    shells: Sequence[Union[GroupShell, Mapping[str, Any]]],
    *,
    fill_missing: bool = False,
) -> GroupingProblem:
    """Validate the raw inputs and freeze them into one request snapshot."""
    people = tuple(_coerce(Person, person, 'person') for person in (roster or ()))
    group_shells = tuple(_coerce(GroupShell, shell, 'group shell') for shell in (shells or ()))
    validate_inputs(people, group_shells)
    table = normalize_preferences(preferences, people, fill_missing=fill_missing)
    return GroupingProblem(roster=people, preferences=table, shells=group_shells)


def _resolve_configs(
    configs: Optional[Mapping[str, Union[StrategyConfig, Mapping[str, Any]]]],
) -> Dict[str, StrategyConfig]:
    resolved: Dict[str, StrategyConfig] = {}
    for name, value in (configs or {}).items():
        strategy_id = str(name).strip().lower()
        catalog_entry(strategy_id)
        if value is None:
            continue
        config = _coerce(StrategyConfig, value, f'configuration for {strategy_id}')
        if config.initial_strategy:
            catalog_entry(config.initial_strategy)
        resolved[strategy_id] = config
    return resolved


def default_scorer(problem: GroupingProblem, weights: Optional[ScoringWeights] = None) -> Scorer:
    """Scorer shared by every candidate of a batch so their scores are comparable."""
    return Scorer.for_problem(problem, weights or ScoringWeights(**weight_defaults('balanced')))


def freeze_candidate(
    strategy_id: str,
    problem: GroupingProblem,
    result: Any,
    *,
    scorer: Scorer,
    clock: Clock = _now,
    id_generator: IdGenerator = _new_id,
) -> Candidate:
    """Check a finished partition against the invariants and turn it into a Candidate."""
    partition = result.partition
    assignment = partition.snapshot()
    report = validate_assignment(assignment, problem.person_ids, problem.shells)
    if not report['valid']:
        raise StrategyFailure(
            f"{strategy_id} produced an invalid partition: {report['errors'][0]}",
            ids=[strategy_id],
        )
    generated_at = clock()
    analytics = compute_metrics(
        assignment,
        problem.preferences,
        overflow=result.overflow,
        generated_at=generated_at,
    )
    groups = tuple(
        CandidateGroup(
            id=shell.id,
            name=shell.label,
            capacity=shell.capacity,
            member_ids=tuple(assignment[shell.id]),
        )
        for shell in problem.shells
    )
    return Candidate(
        id=id_generator(),
        strategy_id=strategy_id,
        strategy_label=catalog_entry(strategy_id).label,
        groups=groups,
        analytics=analytics,
        score=scorer.score(partition),
        seed=result.seed,
        diagnostics=result.diagnostics(),
        generated_at=generated_at,
    )


def run_strategy(
    strategy_id: str,
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    cancel_event: Optional[Any] = None,
    scorer: Optional[Scorer] = None,
    clock: Optional[Clock] = None,
    id_generator: Optional[IdGenerator] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> Candidate:
    """Run one strategy synchronously and return its frozen Candidate. Errors propagate."""
    strategy = get_strategy(strategy_id)
    if cancel_event is not None and cancel_event.is_set():
        raise StrategyCancelledError(strategy_id)
    result = strategy(problem, config, cancel_event=cancel_event, progress_cb=progress_cb)
    return freeze_candidate(
        strategy_id,
        problem,
        result,
        scorer=scorer or default_scorer(problem),
        clock=clock or _now,
        id_generator=id_generator or _new_id,
    )


def _run_outcome(
    strategy_id: str,
    problem: GroupingProblem,
    config: Optional[StrategyConfig],
    signal: CancelSignal,
    scorer: Scorer,
    clock: Clock,
    id_generator: IdGenerator,
    progress_cb: Optional[ProgressCallback],
) -> StrategyOutcome:
    started = time.perf_counter()

    def _elapsed() -> int:
        return int((time.perf_counter() - started) * 1000)

    try:
        candidate = run_strategy(
            strategy_id,
            problem,
            config,
            cancel_event=signal,
            scorer=scorer,
            clock=clock,
            id_generator=id_generator,
            progress_cb=progress_cb,
        )
    except StrategyCancelledError as exc:
        logger.info('grouping.candidates cancelled strategy=%s after_ms=%d', strategy_id, _elapsed())
        return StrategyOutcome(strategy_id=strategy_id, status='cancelled', error=exc.to_dict(), duration_ms=_elapsed())
    except GroupingError as exc:
        logger.warning('grouping.candidates strategy=%s failed kind=%s: %s', strategy_id, exc.kind, exc.message)
        return StrategyOutcome(strategy_id=strategy_id, status='failed', error=exc.to_dict(), duration_ms=_elapsed())
    except Exception as exc:
        logger.exception('grouping.candidates strategy=%s crashed', strategy_id)
        error = StrategyFailure(f'{type(exc).__name__}: {exc}', ids=[strategy_id])
        return StrategyOutcome(strategy_id=strategy_id, status='failed', error=error.to_dict(), duration_ms=_elapsed())
    return StrategyOutcome(strategy_id=strategy_id, status='ok', candidate=candidate, duration_ms=_elapsed())


def _canonical_key(candidate: Candidate) -> tuple:
    return tuple(tuple(sorted(group.member_ids)) for group in candidate.groups)


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Best composite score first, ties broken by the canonical partition order; sets ``rank``."""
    ordered = sorted(
        candidates,
        key=lambda candidate: (-round(candidate.score.composite, 9), _canonical_key(candidate)),
    )
    return [candidate.model_copy(update={'rank': idx + 1}) for idx, candidate in enumerate(ordered)]


async def generate_candidates(
    roster: Sequence[Union[Person, Mapping[str, Any]]],
    preferences: Any,
    shells: Sequence[Union[GroupShell, Mapping[str, Any]]],
    strategies: Optional[Iterable[str]] = None,
    configs: Optional[Mapping[str, Union[StrategyConfig, Mapping[str, Any]]]] = None,
    *,
    rank: bool = False,
    parallel: Optional[bool] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
    clock: Optional[Clock] = None,
    id_generator: Optional[IdGenerator] = None,
    fill_missing: bool = False,
    weights: Optional[ScoringWeights] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> CandidateBatch:
    """
    Run the selected strategies and collect one outcome per strategy.

    Args:
        roster: People to group, in roster order.
        preferences: Raw preference records (list or mapping keyed by person id).
        shells: Destination groups, in order.
        strategies: Strategy ids; ``None`` means the non-slow defaults, ``'all'`` everything.
        configs: Optional per-strategy configuration keyed by strategy id.
        rank: Order candidates by composite score instead of catalog order.
        parallel: Run strategies concurrently in worker threads (default from config).
        cancel_event: Batch-wide cooperative cancel signal.
        timeout: Per-strategy time limit in seconds; expiry cancels that strategy.
        clock: Timestamp source for analytics.
        id_generator: Candidate id source.
        fill_missing: Treat roster members without a record as having no preferences.
        weights: Weights for the comparable candidate score.
        progress_cb: Called from worker threads with start/step/done payloads.

    Raises:
        InputError, InsufficientCapacityError: before any strategy runs.
    """
    problem = build_problem(roster, preferences, shells, fill_missing=fill_missing)
    strategy_ids = resolve_strategy_ids(list(strategies) if strategies is not None else None)
    if not strategy_ids:
        raise UnknownStrategyError('no strategies selected')
    resolved_configs = _resolve_configs(configs)
    scorer = default_scorer(problem, weights)
    run_parallel = parallel_strategies() if parallel is None else parallel
    clock = clock or _now
    id_generator = id_generator or _new_id
    total = len(strategy_ids)

    logger.info(
        'grouping.candidates start strategies=%s people=%d groups=%d parallel=%s',
        ','.join(strategy_ids),
        len(problem.roster),
        len(problem.shells),
        run_parallel,
    )

    def _emit(payload: Dict[str, Any]) -> None:
        if progress_cb is None:
            return
        try:
            progress_cb(payload)
        except Exception:
            logger.exception('grouping.candidates progress callback failed')

    async def _run(index: int, strategy_id: str) -> StrategyOutcome:
        signal = CancelSignal(cancel_event)
        _emit({'stage': 'start', 'strategy': strategy_id, 'index': index, 'total': total})

        def _step(payload: Dict[str, Any]) -> None:
            span = max(1, int(payload.get('total') or 1))
            _emit({
                'stage': 'step',
                'strategy': strategy_id,
                'index': index,
                'total': total,
                'ratio': min(1.0, float(payload.get('iteration', 0)) / span),
                'best_score': payload.get('best_score'),
            })

        future = asyncio.ensure_future(asyncio.to_thread(
            _run_outcome,
            strategy_id,
            problem,
            resolved_configs.get(strategy_id),
            signal,
            scorer,
            clock,
            id_generator,
            _step,
        ))
        try:
            if timeout is not None:
                done, _ = await asyncio.wait({future}, timeout=timeout)
                if not done:
                    logger.warning('grouping.candidates timeout strategy=%s after=%.2fs', strategy_id, timeout)
                    signal.set()
            outcome = await future
        except asyncio.CancelledError:
            # the worker thread cannot be interrupted, so ask it to stop
            signal.set()
            raise
        _emit({'stage': 'done', 'strategy': strategy_id, 'index': index, 'total': total, 'status': outcome.status})
        return outcome

    if run_parallel:
        outcomes = list(await asyncio.gather(*(_run(idx + 1, sid) for idx, sid in enumerate(strategy_ids))))
    else:
        outcomes = []
        for idx, sid in enumerate(strategy_ids):
            outcomes.append(await _run(idx + 1, sid))

    candidates = [outcome.candidate for outcome in outcomes if outcome.candidate is not None]
    if rank:
        candidates = rank_candidates(candidates)

    logger.info(
        'grouping.candidates done ok=%d failed=%d cancelled=%d',
        sum(1 for o in outcomes if o.status == 'ok'),
        sum(1 for o in outcomes if o.status == 'failed'),
        sum(1 for o in outcomes if o.status == 'cancelled'),
    )
    return CandidateBatch(candidates=tuple(candidates), outcomes=tuple(outcomes), ranked=rank)


def candidate_payload(candidate: Candidate) -> Dict[str, Any]:
    """JSON friendly view of a candidate; a NaN average rank becomes ``None``."""
    data = candidate.model_dump(mode='json')
    average = candidate.analytics.average_preference_rank
    if math.isnan(average):
        data['analytics']['average_preference_rank'] = None
    return data


def batch_payload(batch: CandidateBatch) -> Dict[str, Any]:
    return {
        'ranked': batch.ranked,
        'candidates': [candidate_payload(candidate) for candidate in batch.candidates],
        'outcomes': [
            {
                'strategy_id': outcome.strategy_id,
                'status': outcome.status,
                'candidate_id': outcome.candidate.id if outcome.candidate is not None else None,
                'error': outcome.error,
                'duration_ms': outcome.duration_ms,
            }
            for outcome in batch.outcomes
        ],
    }
