"""
Iterative strategies: simulated annealing and a genetic algorithm.

Both start from another strategy's partition (``balanced`` unless configured
otherwise), draw every random decision from one ``random.Random`` stream per
run, and check the cooperative cancel signal between iterations. They move
through INITIALIZED -> ITERATING -> CONVERGED | BUDGET_EXHAUSTED -> FROZEN.
"""
from __future__ import annotations

import logging
import math
import random
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .algorithms import empty_partition, resolve_rng, resolve_weights
from .config import annealing_defaults, genetic_defaults, genetic_selection, initial_strategy
from .errors import StrategyCancelledError, StrategyFailure
from .models import GenerationResult, GroupingProblem, SearchState, StrategyConfig
from .partition import Partition
from .scoring import Scorer, is_better, ranking_key
from .validation import validate_inputs

logger = logging.getLogger(__name__)

IterationCallback = Callable[[Dict[str, Any]], None]

# how often (in iterations) annealing reports progress
_ANNEALING_REPORT_EVERY = 200


def _param(config: Optional[StrategyConfig], name: str, defaults: Dict[str, Any]):
    value = getattr(config, name, None) if config is not None else None
    return defaults[name] if value is None else value


def _check_cancel(strategy_id: str, cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise StrategyCancelledError(strategy_id)


def _initial_partition(
    owner: str,
    problem: GroupingProblem,
    config: Optional[StrategyConfig],
    cancel_event: Optional[threading.Event],
) -> Partition:
    """Run the configured seeding strategy and hand back its partition."""
    from .catalog import get_strategy  # catalog imports this module

    name = (config.initial_strategy if config is not None and config.initial_strategy else initial_strategy())
    if name == owner:
        raise StrategyFailure(f'{owner} cannot be initialized from itself')
    strategy = get_strategy(name)
    # a slow seeding strategy starts from balanced so seeding never recurses
    seed_config = StrategyConfig(
        seed=config.seed if config is not None else None,
        initial_strategy='balanced',
    )
    result = strategy(problem, seed_config, cancel_event=cancel_event)
    return result.partition


def _random_individual(problem: GroupingProblem, rng: random.Random) -> Partition:
    order = list(problem.person_ids)
    rng.shuffle(order)
    partition = empty_partition(problem)
    group_ids = partition.group_ids
    start = rng.randrange(len(group_ids))
    for offset, person_id in enumerate(order):
        for attempt in range(len(group_ids)):
            gid = group_ids[(start + offset + attempt) % len(group_ids)]
            if partition.has_room(gid):
                partition.place(person_id, gid)
                break
        else:
            raise StrategyFailure('All groups are at capacity', ids=[person_id])
    return partition


# ------------------------------------------------------------------ annealing


class _Move:
    __slots__ = ('kind', 'person', 'other', 'source', 'target')

    def __init__(self, kind: str, person: str, other: Optional[str], source: str, target: str) -> None:
        self.kind = kind
        self.person = person
        self.other = other
        self.source = source
        self.target = target

    def apply(self, partition: Partition) -> None:
        if self.kind == 'swap':
            partition.swap(self.person, self.other)
        else:
            partition.move_between_groups(self.person, self.source, self.target)

    def revert(self, partition: Partition) -> None:
        if self.kind == 'swap':
            partition.swap(self.person, self.other)
        else:
            partition.move_between_groups(self.person, self.target, self.source)


def _propose(
    partition: Partition,
    rng: random.Random,
    person_ids: Sequence[str],
    group_ids: Sequence[str],
    swap_probability: float,
    attempts: int = 8,
) -> Optional[_Move]:
    for _ in range(attempts):
        person = rng.choice(person_ids)
        source = partition.group_of(person)
        if rng.random() < swap_probability:
            other = rng.choice(person_ids)
            target = partition.group_of(other)
            if target != source:
                return _Move('swap', person, other, source, target)
        else:
            target = rng.choice(group_ids)
            if target != source and partition.has_room(target):
                return _Move('move', person, None, source, target)
    return None


def algo_simulated_annealing(
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb: Optional[IterationCallback] = None,
) -> GenerationResult:
    """
    Local search over swaps and single-person moves.

    Improving proposals are always accepted; a proposal that lowers the
    composite score by ``d`` is accepted with probability ``exp(-d / T)``.
    The temperature cools geometrically and never drops below the floor.
    Stops after ``max_iterations`` (budget exhausted) or after
    ``early_stop_after`` iterations without a new best (converged).
    """
    strategy_id = 'simulated-annealing'
    validate_inputs(problem.roster, problem.shells)
    defaults = annealing_defaults()
    max_iterations = int(_param(config, 'max_iterations', defaults))
    temperature = float(_param(config, 'initial_temperature', defaults))
    cooling_rate = float(_param(config, 'cooling_rate', defaults))
    min_temperature = float(_param(config, 'min_temperature', defaults))
    early_stop_after = int(_param(config, 'early_stop_after', defaults))
    swap_probability = float(_param(config, 'swap_probability', defaults))

    state = SearchState.initialized
    random_instance, seed = resolve_rng(strategy_id, config, rng, 7)
    scorer = Scorer.for_problem(problem, resolve_weights(strategy_id, config))
    current = _initial_partition(strategy_id, problem, config, cancel_event)
    person_ids = problem.person_ids
    group_ids = current.group_ids
    index = {gid: idx for idx, gid in enumerate(group_ids)}

    group_scores = {gid: scorer.group_score(current, gid) for gid in group_ids}
    preference_total = sum(group_scores.values())
    sizes = current.sizes()
    current_score = scorer.combine(preference_total, scorer.balance_for_sizes(sizes))
    best = current.copy()
    best_score = current_score
    history: List[float] = [round(best_score, 9)]

    logger.info(
        'grouping.annealing start people=%d groups=%d iterations=%d seed=%s',
        len(person_ids),
        len(group_ids),
        max_iterations,
        seed,
    )

    iterations = 0
    since_best = 0
    termination = SearchState.budget_exhausted
    if len(group_ids) < 2 or len(person_ids) < 2:
        # nothing can move
        termination = SearchState.converged
    else:
        state = SearchState.iterating

    while state is SearchState.iterating:
        if iterations >= max_iterations:
            termination = SearchState.budget_exhausted
            break
        if since_best >= early_stop_after:
            termination = SearchState.converged
            break
        _check_cancel(strategy_id, cancel_event)
        iterations += 1

        move = _propose(current, random_instance, person_ids, group_ids, swap_probability)
        if move is None:
            since_best += 1
            temperature = max(min_temperature, temperature * cooling_rate)
            continue

        before = group_scores[move.source] + group_scores[move.target]
        move.apply(current)
        after_source = scorer.group_score(current, move.source)
        after_target = scorer.group_score(current, move.target)
        new_sizes = sizes
        if move.kind == 'move':
            new_sizes = list(sizes)
            new_sizes[index[move.source]] -= 1
            new_sizes[index[move.target]] += 1
        new_preference = preference_total - before + after_source + after_target
        new_score = scorer.combine(new_preference, scorer.balance_for_sizes(new_sizes))
        delta = new_score - current_score

        if delta >= 0 or random_instance.random() < math.exp(delta / temperature):
            group_scores[move.source] = after_source
            group_scores[move.target] = after_target
            preference_total = new_preference
            sizes = new_sizes
            current_score = new_score
            if is_better(current_score, current, best_score, best):
                best = current.copy()
                best_score = current_score
                since_best = 0
                if round(best_score, 9) > history[-1]:
                    history.append(round(best_score, 9))
            else:
                since_best += 1
        else:
            move.revert(current)
            since_best += 1

        temperature = max(min_temperature, temperature * cooling_rate)
        if progress_cb and iterations % _ANNEALING_REPORT_EVERY == 0:
            progress_cb({
                'strategy': strategy_id,
                'iteration': iterations,
                'total': max_iterations,
                'best_score': round(best_score, 9),
            })

    logger.info(
        'grouping.annealing done termination=%s iterations=%d best=%.4f',
        termination.value,
        iterations,
        best_score,
    )
    return GenerationResult(
        partition=best,
        state=SearchState.frozen,
        termination=termination,
        seed=seed,
        iterations=iterations,
        best_score_history=history,
    )


# -------------------------------------------------------------------- genetic


def _select(
    scored: Sequence[Tuple[float, Partition]],
    rng: random.Random,
    selection: str,
) -> Partition:
    """Pick one parent; ``scored`` is sorted best first."""
    if selection == 'roulette':
        worst = scored[-1][0]
        weights = [score - worst + 1e-6 for score, _ in scored]
    else:
        count = len(scored)
        weights = [count - idx for idx in range(count)]
    return rng.choices(scored, weights=weights, k=1)[0][1]


def _crossover(
    problem: GroupingProblem,
    scorer: Scorer,
    first: Partition,
    second: Partition,
    rng: random.Random,
) -> Partition:
    """
    Inherit whole groups from alternating parents, then repair.

    Group ``i`` takes its members from one parent, alternating parent per
    group from a random start. People already placed are skipped, and anyone
    left over is reinserted greedily into the group with room where they
    score best, preferring groups still under their balanced size.
    """
    child = empty_partition(problem)
    parents = (first, second)
    start = rng.randrange(2)
    for idx, gid in enumerate(child.group_ids):
        parent = parents[(start + idx) % 2]
        for person_id in parent.member_view(gid):
            if not child.is_placed(person_id) and child.has_room(gid):
                child.place(person_id, gid)

    targets = scorer.target_sizes
    index = {gid: idx for idx, gid in enumerate(child.group_ids)}
    for person_id in child.unplaced():
        roomy = [gid for gid in child.group_ids if child.has_room(gid)]
        if not roomy:
            raise StrategyFailure('All groups are at capacity', ids=[person_id])
        under = [gid for gid in roomy if child.size_of(gid) < targets[index[gid]]]
        pool = under or roomy
        best = max(
            pool,
            key=lambda gid: (
                scorer.person_score(person_id, gid, child.member_view(gid)),
                -child.size_of(gid),
                -index[gid],
            ),
        )
        child.place(person_id, best)
    return child


def _mutate(partition: Partition, rng: random.Random, person_ids: Sequence[str]) -> None:
    if partition.group_count < 2 or len(person_ids) < 2:
        return
    for _ in range(8):
        a = rng.choice(person_ids)
        b = rng.choice(person_ids)
        if partition.group_of(a) != partition.group_of(b):
            partition.swap(a, b)
            return


def _rank_population(scorer: Scorer, population: Sequence[Partition]) -> List[Tuple[float, Partition]]:
    scored = [(scorer.composite(individual), individual) for individual in population]
    scored.sort(key=lambda item: ranking_key(item[0], item[1]))
    return scored


def algo_genetic(
    problem: GroupingProblem,
    config: Optional[StrategyConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb: Optional[IterationCallback] = None,
) -> GenerationResult:
    """
    Evolve a population of partitions.

    The first individual comes from the initial strategy and the rest are
    random deals. Each generation keeps the elites unchanged, so the best
    score never goes down, and fills the rest with crossed-over, possibly
    mutated children. Stops after ``generations`` (budget exhausted) or after
    ``plateau_generations`` without a new best (converged).
    """
    strategy_id = 'genetic'
    validate_inputs(problem.roster, problem.shells)
    defaults = genetic_defaults()
    population_size = int(_param(config, 'population_size', defaults))
    generations = int(_param(config, 'generations', defaults))
    mutation_rate = float(_param(config, 'mutation_rate', defaults))
    elite_count = min(int(_param(config, 'elite_count', defaults)), population_size - 1)
    plateau_generations = int(_param(config, 'plateau_generations', defaults))
    selection = (config.selection if config is not None and config.selection else genetic_selection())

    random_instance, seed = resolve_rng(strategy_id, config, rng, 11)
    scorer = Scorer.for_problem(problem, resolve_weights(strategy_id, config))
    person_ids = problem.person_ids

    population: List[Partition] = [_initial_partition(strategy_id, problem, config, cancel_event)]
    while len(population) < population_size:
        population.append(_random_individual(problem, random_instance))

    scored = _rank_population(scorer, population)
    best_score, best = scored[0]
    history: List[float] = [round(best_score, 9)]
    logger.info(
        'grouping.genetic start people=%d population=%d generations=%d selection=%s seed=%s',
        len(person_ids),
        population_size,
        generations,
        selection,
        seed,
    )

    generation = 0
    stalled = 0
    termination = SearchState.budget_exhausted
    while generation < generations:
        _check_cancel(strategy_id, cancel_event)
        generation += 1

        offspring: List[Partition] = [individual for _, individual in scored[:elite_count]]
        while len(offspring) < population_size:
            first = _select(scored, random_instance, selection)
            second = _select(scored, random_instance, selection)
            child = _crossover(problem, scorer, first, second, random_instance)
            if random_instance.random() < mutation_rate:
                _mutate(child, random_instance, person_ids)
            offspring.append(child)

        scored = _rank_population(scorer, offspring)
        top_score, top = scored[0]
        if top is not best and is_better(top_score, top, best_score, best):
            best_score, best = top_score, top
            stalled = 0
            if round(best_score, 9) > history[-1]:
                history.append(round(best_score, 9))
        else:
            stalled += 1

        if progress_cb:
            progress_cb({
                'strategy': strategy_id,
                'iteration': generation,
                'total': generations,
                'best_score': round(best_score, 9),
            })
        if stalled >= plateau_generations:
            termination = SearchState.converged
            break

    logger.info(
        'grouping.genetic done termination=%s generations=%d best=%.4f',
        termination.value,
        generation,
        best_score,
    )
    return GenerationResult(
        partition=best.copy(),
        state=SearchState.frozen,
        termination=termination,
        seed=seed,
        iterations=generation,
        best_score_history=history,
    )
