import asyncio
import datetime as dt
import itertools
import threading

import pytest

from groupsmith.services.grouping import candidates as candidates_mod
from groupsmith.services.grouping.candidates import (
    batch_payload,
    build_problem,
    generate_candidates,
    rank_candidates,
    run_strategy,
)
from groupsmith.services.grouping.catalog import resolve_strategy_ids
from groupsmith.services.grouping.errors import (
    InputError,
    InsufficientCapacityError,
    MissingPreferenceError,
    StrategyCancelledError,
    UnknownStrategyError,
)
from groupsmith.services.grouping.models import StrategyConfig

FIXED_NOW = dt.datetime(2024, 5, 1, 9, 30, tzinfo=dt.timezone.utc)


def _counter_ids():
    counter = itertools.count(1)
    return lambda: f'cand-{next(counter)}'


async def test_default_batch_runs_fast_strategies_in_catalog_order(scenario):
    batch = await generate_candidates(scenario['roster'], scenario['preferences'], scenario['shells'])
    assert [outcome.strategy_id for outcome in batch.outcomes] == [
        'balanced', 'preference-first', 'round-robin', 'random',
    ]
    assert all(outcome.status == 'ok' for outcome in batch.outcomes)
    assert [candidate.strategy_id for candidate in batch.candidates] == [
        outcome.strategy_id for outcome in batch.outcomes
    ]
    for candidate in batch.candidates:
        placed = [pid for group in candidate.groups for pid in group.member_ids]
        assert sorted(placed) == sorted(p['id'] for p in scenario['roster'])
        assert [group.id for group in candidate.groups] == ['g1', 'g2', 'g3']
        assert candidate.rank is None


async def test_balanced_candidate_keeps_friends_together(scenario):
    batch = await generate_candidates(scenario['roster'], scenario['preferences'], scenario['shells'], ['balanced'])
    candidate = batch.candidate_for('balanced')
    assert candidate.group_of('p1') == candidate.group_of('p2')
    assert candidate.group_of('p5') == candidate.group_of('p6') == candidate.group_of('p7')
    assert candidate.analytics.percent_assigned_top_choice > 0
    assert candidate.analytics.avoided_pairs_together == 0


async def test_insufficient_capacity_aborts_before_any_strategy(scenario):
    shells = [{'id': 'g1', 'capacity': 4}, {'id': 'g2', 'capacity': 4}]
    with pytest.raises(InsufficientCapacityError):
        await generate_candidates(scenario['roster'], scenario['preferences'], shells)


async def test_unknown_strategy_aborts_the_batch(scenario):
    with pytest.raises(UnknownStrategyError) as excinfo:
        await generate_candidates(scenario['roster'], scenario['preferences'], scenario['shells'], ['balanced', 'magic'])
    assert excinfo.value.ids == ['magic']


async def test_missing_preferences_abort_unless_filled(scenario):
    partial = scenario['preferences'][:10]
    with pytest.raises(MissingPreferenceError):
        await generate_candidates(scenario['roster'], partial, scenario['shells'], ['round-robin'])
    batch = await generate_candidates(
        scenario['roster'], partial, scenario['shells'], ['round-robin'], fill_missing=True,
    )
    assert batch.outcomes[0].status == 'ok'


async def test_invalid_config_is_an_input_error(scenario):
    with pytest.raises(InputError):
        await generate_candidates(
            scenario['roster'], scenario['preferences'], scenario['shells'],
            ['genetic'], {'genetic': {'population_size': 1}},
        )


async def test_ranked_batch_orders_by_composite_score(scenario):
    batch = await generate_candidates(
        scenario['roster'], scenario['preferences'], scenario['shells'], rank=True,
    )
    scores = [candidate.score.composite for candidate in batch.candidates]
    assert scores == sorted(scores, reverse=True)
    assert [candidate.rank for candidate in batch.candidates] == [1, 2, 3, 4]
    assert batch.ranked


async def test_failure_is_scoped_to_its_strategy(scenario):
    batch = await generate_candidates(
        scenario['roster'],
        scenario['preferences'],
        scenario['shells'],
        ['balanced', 'simulated-annealing', 'round-robin'],
        {'simulated-annealing': {'initial_strategy': 'simulated-annealing', 'max_iterations': 10}},
    )
    statuses = {outcome.strategy_id: outcome.status for outcome in batch.outcomes}
    assert statuses == {'balanced': 'ok', 'simulated-annealing': 'failed', 'round-robin': 'ok'}
    failed = batch.failures[0]
    assert failed.candidate is None
    assert failed.error['kind'] == 'strategy_failure'
    assert len(batch.candidates) == 2


async def test_unknown_initial_strategy_aborts_the_batch(scenario):
    with pytest.raises(UnknownStrategyError) as excinfo:
        await generate_candidates(
            scenario['roster'],
            scenario['preferences'],
            scenario['shells'],
            ['balanced', 'simulated-annealing'],
            {'simulated-annealing': {'initial_strategy': 'nope'}},
        )
    assert excinfo.value.ids == ['nope']


async def test_preset_cancel_event_cancels_every_strategy(scenario):
    event = threading.Event()
    event.set()
    batch = await generate_candidates(
        scenario['roster'], scenario['preferences'], scenario['shells'], cancel_event=event,
    )
    assert batch.candidates == ()
    assert len(batch.cancelled) == 4


async def test_timeout_cancels_only_the_slow_strategy(scenario):
    batch = await generate_candidates(
        scenario['roster'],
        scenario['preferences'],
        scenario['shells'],
        ['balanced', 'simulated-annealing'],
        {'simulated-annealing': {'seed': 1, 'max_iterations': 50_000_000, 'early_stop_after': 50_000_000}},
        timeout=0.3,
    )
    statuses = {outcome.strategy_id: outcome.status for outcome in batch.outcomes}
    assert statuses == {'balanced': 'ok', 'simulated-annealing': 'cancelled'}


async def test_cancelled_batch_task_signals_running_strategies(scenario, monkeypatch):
    signals = []

    class RecordingSignal(candidates_mod.CancelSignal):
        def __init__(self, parent=None):
            super().__init__(parent)
            signals.append(self)

    monkeypatch.setattr(candidates_mod, 'CancelSignal', RecordingSignal)
    task = asyncio.create_task(generate_candidates(
        scenario['roster'],
        scenario['preferences'],
        scenario['shells'],
        ['simulated-annealing'],
        {'simulated-annealing': {'seed': 1, 'max_iterations': 50_000_000, 'early_stop_after': 50_000_000}},
    ))
    while not signals:
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert signals[0].is_set()


async def test_clock_and_id_generator_are_injectable(scenario):
    batch = await generate_candidates(
        scenario['roster'],
        scenario['preferences'],
        scenario['shells'],
        ['balanced', 'round-robin'],
        parallel=False,
        clock=lambda: FIXED_NOW,
        id_generator=_counter_ids(),
    )
    assert [candidate.id for candidate in batch.candidates] == ['cand-1', 'cand-2']
    assert all(candidate.generated_at == FIXED_NOW for candidate in batch.candidates)
    assert batch.candidates[0].analytics.generated_at == FIXED_NOW


async def test_progress_callback_sees_start_and_done(scenario):
    events = []
    await generate_candidates(
        scenario['roster'], scenario['preferences'], scenario['shells'], ['round-robin'],
        progress_cb=events.append,
    )
    stages = [event['stage'] for event in events]
    assert stages[0] == 'start'
    assert stages[-1] == 'done'
    assert events[-1]['status'] == 'ok'


async def test_split_cluster_is_reported_in_analytics():
    roster = [{'id': f'p{i}'} for i in range(1, 7)]
    likes = {'p1': ['p2', 'p3'], 'p2': ['p1', 'p3'], 'p3': ['p1', 'p2']}
    prefs = [{'studentId': p['id'], 'likeStudentIds': likes.get(p['id'], [])} for p in roster]
    shells = [{'id': f'g{i}', 'capacity': 2} for i in range(1, 4)]
    batch = await generate_candidates(roster, prefs, shells, ['balanced'])
    overflow = batch.candidates[0].analytics.cluster_overflow
    assert len(overflow) == 1
    assert overflow[0].split_out == ('p3',)


def test_run_strategy_checks_cancel_before_starting(scenario):
    problem = build_problem(scenario['roster'], scenario['preferences'], scenario['shells'])
    event = threading.Event()
    event.set()
    with pytest.raises(StrategyCancelledError):
        run_strategy('balanced', problem, cancel_event=event)


def test_run_strategy_records_seed_and_diagnostics(scenario):
    problem = build_problem(scenario['roster'], scenario['preferences'], scenario['shells'])
    candidate = run_strategy(
        'simulated-annealing', problem, StrategyConfig(seed=9, max_iterations=30, early_stop_after=1000),
    )
    assert candidate.seed == 9
    assert candidate.diagnostics['termination'] == 'budget_exhausted'
    assert candidate.diagnostics['iterations'] == 30
    assert candidate.strategy_label == 'Simulated annealing'


def test_rank_candidates_breaks_ties_canonically(scenario):
    problem = build_problem(scenario['roster'], scenario['preferences'], scenario['shells'])
    first = run_strategy('round-robin', problem)
    second = run_strategy('round-robin', problem)
    ranked = rank_candidates([second, first])
    assert [candidate.rank for candidate in ranked] == [1, 2]
    assert ranked[0].assignment() == ranked[1].assignment()


def test_resolve_strategy_ids_normalizes_selection():
    assert resolve_strategy_ids([' Random ', 'balanced', 'random']) == ['balanced', 'random']
    assert resolve_strategy_ids(['all'])[-1] == 'genetic'
    assert resolve_strategy_ids([]) == resolve_strategy_ids(None)


async def test_batch_payload_is_json_friendly(scenario):
    prefs = [{'studentId': p['id']} for p in scenario['roster']]
    batch = await generate_candidates(scenario['roster'], prefs, scenario['shells'], ['round-robin'])
    payload = batch_payload(batch)
    candidate = payload['candidates'][0]
    assert candidate['analytics']['average_preference_rank'] is None
    assert payload['outcomes'][0]['candidate_id'] == candidate['id']
    assert payload['ranked'] is False
