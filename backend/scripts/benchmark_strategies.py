#!/usr/bin/env python3
"""Benchmark grouping strategies on synthetic rosters while sweeping GROUPING_* knobs."""

from __future__ import annotations

import argparse
import itertools
import os
import random
import statistics
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence


@dataclass
class BenchmarkResult:
    env: Dict[str, str]
    strategy: str
    durations: List[float]
    scores: List[float] = field(default_factory=list)
    top_choice: List[float] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.durations)

    @property
    def average(self) -> float:
        return statistics.fmean(self.durations) if self.durations else float("nan")

    @property
    def minimum(self) -> float:
        return min(self.durations) if self.durations else float("nan")

    @property
    def maximum(self) -> float:
        return max(self.durations) if self.durations else float("nan")

    @property
    def average_score(self) -> float:
        return statistics.fmean(self.scores) if self.scores else float("nan")

    @property
    def average_top_choice(self) -> float:
        return statistics.fmean(self.top_choice) if self.top_choice else float("nan")


def _ensure_package_on_path() -> None:
    """Make backend/groupsmith importable when the script runs from a checkout."""
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_ensure_package_on_path()

from groupsmith.services.grouping import config as config_mod  # noqa: E402
from groupsmith.services.grouping.candidates import build_problem, run_strategy  # noqa: E402
from groupsmith.services.grouping.catalog import STRATEGY_CATALOG, resolve_strategy_ids  # noqa: E402
from groupsmith.services.grouping.models import StrategyConfig  # noqa: E402
from groupsmith.services.grouping.shells import generate_default_shells  # noqa: E402


TUNING_KEYS = {
    "GROUPING_SA_ITERATIONS",
    "GROUPING_SA_COOLING",
    "GROUPING_SA_EARLY_STOP",
    "GROUPING_GA_POPULATION",
    "GROUPING_GA_GENERATIONS",
    "GROUPING_GA_MUTATION_RATE",
    "GROUPING_MUTUAL_BONUS",
    "GROUPING_BALANCED_SWAP_BUDGET",
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Measure run time and result quality of grouping strategies on synthetic rosters.",
    )
    parser.add_argument("--people", type=int, default=60, help="Roster size (default: 60).")
    parser.add_argument("--likes", type=int, default=3, help="Friends listed per person (default: 3).")
    parser.add_argument("--avoids", type=int, default=1, help="People avoided per person (default: 1).")
    parser.add_argument(
        "--strategies",
        nargs="+",
        default=[entry.id for entry in STRATEGY_CATALOG],
        help="Strategy ids to benchmark (default: the whole catalog).",
    )
    parser.add_argument("--runs", type=int, default=3, help="Executions per configuration (default: 3).")
    parser.add_argument("--warmup", type=int, default=0, help="Discarded warmup runs per configuration.")
    parser.add_argument("--seed", type=int, default=1, help="Seed for the synthetic roster (default: 1).")
    parser.add_argument(
        "--sweep",
        nargs="*",
        default=[],
        help="Environment sweeps in the form NAME=v1,v2 (multiple allowed).",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print the summary table.")
    return parser.parse_args(argv)


def parse_sweeps(items: Iterable[str]) -> Dict[str, List[str]]:
    sweeps: Dict[str, List[str]] = {}
    for raw in items:
        key, sep, values = raw.partition("=")
        key = key.strip()
        if not key or sep != "=":
            raise ValueError(f"Invalid sweep expression: {raw}")
        value_list = [value.strip() for value in values.split(",") if value.strip()]
        if not value_list:
            raise ValueError(f"Sweep for {key} has no values")
        if key not in TUNING_KEYS:
            raise ValueError(f"Unsupported sweep key: {key}")
        sweeps[key] = value_list
    return sweeps


def iter_env_combinations(sweeps: Dict[str, List[str]]) -> Iterable[Dict[str, str]]:
    if not sweeps:
        yield {}
        return
    keys = sorted(sweeps)
    for combination in itertools.product(*(sweeps[key] for key in keys)):
        yield dict(zip(keys, combination))


def clear_config_caches() -> None:
    for fn in (
        config_mod.weight_defaults,
        config_mod.mutual_bonus,
        config_mod.balanced_swap_budget,
        config_mod.annealing_defaults,
        config_mod.genetic_defaults,
        config_mod.genetic_selection,
        config_mod.initial_strategy,
    ):
        fn.cache_clear()


def synthetic_request(people: int, likes: int, avoids: int, seed: int) -> dict:
    """Roster with clustered friendships: most likes point inside a small circle of friends."""
    rng = random.Random(seed)
    ids = [f"p{idx:03d}" for idx in range(people)]
    roster = [{"id": pid, "firstName": f"First{idx}", "lastName": f"Last{idx}"} for idx, pid in enumerate(ids)]
    circles = [ids[i:i + 4] for i in range(0, len(ids), 4)]
    circle_of = {pid: circle for circle in circles for pid in circle}
    preferences = []
    for pid in ids:
        friends = [other for other in circle_of[pid] if other != pid]
        rng.shuffle(friends)
        while len(friends) < likes:
            other = rng.choice(ids)
            if other != pid and other not in friends:
                friends.append(other)
        liked = friends[:likes]
        enemies = [other for other in rng.sample(ids, min(len(ids), avoids + likes + 1)) if other != pid and other not in liked]
        preferences.append({"studentId": pid, "likeStudentIds": liked, "avoidStudentIds": enemies[:avoids]})
    shells = generate_default_shells(people, id_generator=iter(f"g{n}" for n in itertools.count(1)).__next__)
    return {"roster": roster, "preferences": preferences, "shells": shells}


def measure(request: dict, strategy: str, runs: int, warmup: int) -> BenchmarkResult:
    problem = build_problem(request["roster"], request["preferences"], request["shells"])
    result = BenchmarkResult(env={}, strategy=strategy, durations=[])
    for index in range(max(0, warmup) + max(1, runs)):
        start = time.perf_counter()
        candidate = run_strategy(strategy, problem, StrategyConfig(seed=index))
        duration = time.perf_counter() - start
        if index >= warmup:
            result.durations.append(duration)
            result.scores.append(candidate.score.composite)
            result.top_choice.append(candidate.analytics.percent_assigned_top_choice)
    return result


def benchmark(args: argparse.Namespace, sweeps: Dict[str, List[str]]) -> List[BenchmarkResult]:
    request = synthetic_request(args.people, args.likes, args.avoids, args.seed)
    strategies = resolve_strategy_ids(args.strategies)
    results: List[BenchmarkResult] = []
    for overrides in iter_env_combinations(sweeps):
        previous = {key: os.environ.get(key) for key in overrides}
        os.environ.update(overrides)
        clear_config_caches()
        try:
            if not args.quiet:
                pretty = ", ".join(f"{k}={v}" for k, v in overrides.items()) or "(baseline)"
                print(f"\nConfiguration: {pretty}")
            for strategy in strategies:
                result = measure(request, strategy, args.runs, args.warmup)
                result.env = dict(overrides)
                results.append(result)
                if not args.quiet:
                    print(
                        f"  - {strategy}: avg={result.average:.3f}s score={result.average_score:.3f} "
                        f"top1={result.average_top_choice:.1f}% from {result.count} run(s)",
                    )
        finally:
            for key, value in previous.items():
                if value is None:
                    os.environ.pop(key, None)
                else:
                    os.environ[key] = value
            clear_config_caches()
    return results


def print_summary(results: Sequence[BenchmarkResult]) -> None:
    if not results:
        print("No benchmark data collected.")
        return
    header = f"{'Strategy':<20}  {'Environment':<36}  {'Runs':>4}  {'Min(s)':>8}  {'Avg(s)':>8}  {'Max(s)':>8}  {'Score':>9}  {'Top1%':>6}"
    print("\n" + header)
    print("-" * len(header))
    for item in results:
        env_string = ", ".join(f"{k}={v}" for k, v in sorted(item.env.items())) or "(baseline)"
        print(
            f"{item.strategy:<20}  {env_string:<36}  {item.count:>4}  {item.minimum:>8.3f}  {item.average:>8.3f}  {item.maximum:>8.3f}  "
            f"{item.average_score:>9.3f}  {item.average_top_choice:>6.1f}",
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = parse_args(argv)
        sweeps = parse_sweeps(args.sweep)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    try:
        results = benchmark(args, sweeps)
    except Exception as exc:
        print(f"Benchmark failed: {exc}", file=sys.stderr)
        return 1

    print_summary(results)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
