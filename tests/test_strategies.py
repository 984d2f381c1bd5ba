"""Scenario tests shared by every heuristic strategy, plus VNS / multistart / GA specifics."""

from __future__ import annotations

import random
import time

import pytest

from cspcj.algorithms.base import Budget, RunStatus
from cspcj.algorithms.genetic import order_crossover, swap_mutation
from cspcj.algorithms.multistart import compact
from cspcj.algorithms.vns import descend, first_improvement
from cspcj.config import StrategyConfig
from cspcj.generator import generate_instance
from cspcj.models import ConflictGraphModel, SlotPolicy
from cspcj.neighborhoods.moves import iter_merge_moves
from cspcj.registry import create_strategy
from cspcj.solution import SolutionState

HEURISTICS = ["greedy", "randomized_greedy", "local_search", "vns", "multistart", "genetic"]


def _config(seed: int = 0) -> StrategyConfig:
    return StrategyConfig(
        seed=seed,
        iteration_budget=300,
        max_no_improve=20,
        starts=5,
        population_size=8,
        generations=10,
    )


# random tie-breaking can leave job 2 without an admissible fixed slot
@pytest.mark.parametrize("name", [n for n in HEURISTICS if n != "randomized_greedy"])
def test_two_slot_scenario(name, two_slot_model) -> None:
    result = create_strategy(name, _config()).run(two_slot_model)
    assert result.feasible
    assert result.cost == 2
    assert result.solution.slot_of(1) != result.solution.slot_of(2)
    assert result.strategy == name
    assert result.seed == 0


@pytest.mark.parametrize("name", HEURISTICS)
def test_oversized_scenario(name, oversized_model) -> None:
    result = create_strategy(name, _config()).run(oversized_model)
    assert result.status is RunStatus.INFEASIBLE
    assert result.solution is None
    assert "job 1" in result.message


@pytest.mark.parametrize("name", HEURISTICS)
def test_complete_conflict_graph_scenario(name, k5_model) -> None:
    result = create_strategy(name, _config()).run(k5_model)
    assert result.feasible
    assert result.cost == 5
    state = result.solution
    assert sorted(len(state.members(s)) for s in state.used_slots()) == [1] * 5


@pytest.mark.parametrize("name", ["randomized_greedy", "local_search", "vns", "multistart", "genetic"])
def test_same_seed_same_assignment(name) -> None:
    model = generate_instance(jobs=25, slots=2, capacity=20, conflict_ratio=0.15, seed=13)
    first = create_strategy(name, _config(seed=4)).run(model)
    second = create_strategy(name, _config(seed=4)).run(model)
    assert first.solution.assignment() == second.solution.assignment()
    assert first.status is second.status


@pytest.mark.parametrize("name", ["local_search", "vns", "multistart", "genetic"])
def test_improvers_never_lose_to_greedy(name) -> None:
    model = generate_instance(jobs=35, capacity=20, conflict_ratio=0.1, seed=17)
    greedy = create_strategy("greedy", _config()).run(model)
    result = create_strategy(name, _config()).run(model)
    assert result.feasible
    assert result.cost <= greedy.cost
    assert result.cost >= model.lower_bound()


def test_vns_statuses(two_slot_model) -> None:
    converged = create_strategy("vns", _config()).run(two_slot_model)
    assert converged.status is RunStatus.CONVERGED
    assert converged.iterations == 20
    cfg = StrategyConfig(seed=0, iteration_budget=3, max_no_improve=1000)
    exhausted = create_strategy("vns", cfg).run(two_slot_model)
    assert exhausted.status is RunStatus.BUDGET_EXHAUSTED
    assert exhausted.iterations == 3


def test_neighborhood_scan_stops_when_budget_is_spent() -> None:
    model = ConflictGraphModel.build(
        [(j, 2) for j in range(6)],
        [],
        slot_policy=SlotPolicy(open_new_slots=True, new_slot_capacity=10),
    )
    state = SolutionState.from_assignment(model, {j: j for j in range(6)})
    assert first_improvement(state, iter_merge_moves, Budget(iterations=0)) is None
    assert state.cost() == 6
    assert descend(state, Budget(seconds=0.0)) == 0
    assert first_improvement(state, iter_merge_moves) is not None
    assert state.cost() == 5


def test_vns_respects_wall_clock_budget() -> None:
    model = generate_instance(jobs=600, capacity=20, conflict_ratio=0.02, seed=4)
    cfg = StrategyConfig(seed=0, time_budget=0.5, iteration_budget=None, max_no_improve=10**6)
    t0 = time.perf_counter()
    result = create_strategy("vns", cfg).run(model)
    elapsed = time.perf_counter() - t0
    assert result.status is RunStatus.BUDGET_EXHAUSTED
    assert result.feasible
    # greedy construction runs before the clock is checked
    assert elapsed < 0.5 + 1.5


def test_descend_reaches_packed_local_optimum() -> None:
    model = ConflictGraphModel.build(
        [(j, 2) for j in range(6)],
        [],
        slot_policy=SlotPolicy(open_new_slots=True, new_slot_capacity=10),
    )
    state = SolutionState.from_assignment(model, {j: j for j in range(6)})
    applied = descend(state)
    assert applied > 0
    assert state.is_feasible()
    assert state.cost() == 2


def test_compact_empties_redundant_slots() -> None:
    model = ConflictGraphModel.build(
        [(0, 2), (1, 2), (2, 2), (3, 2)],
        [],
        [(0, 1)],
        slot_policy=SlotPolicy(open_new_slots=True, new_slot_capacity=10),
    )
    state = SolutionState.from_assignment(model, {0: 0, 1: 1, 2: 2, 3: 3})
    assert compact(state) == 2
    assert state.is_feasible()
    assert state.cost() == 2
    assert state.slot_of(0) != state.slot_of(1)


def test_multistart_survives_failing_orders(two_slot_model) -> None:
    # some tie orders put job 3 into the only slot job 2 could use
    result = create_strategy("multistart", _config()).run(two_slot_model)
    assert result.feasible
    assert result.cost == 2
    assert result.iterations == 5


def test_genetic_operators_keep_permutations() -> None:
    rng = random.Random(3)
    first = tuple(range(10))
    second = tuple(reversed(first))
    for _ in range(20):
        child = order_crossover(first, second, rng)
        assert sorted(child) == list(first)
        mutated = swap_mutation(child, rng)
        assert sorted(mutated) == list(first)
        assert sum(a != b for a, b in zip(child, mutated)) == 2
    assert order_crossover((7,), (7,), rng) == (7,)
    assert swap_mutation((), rng) == ()


def test_genetic_reports_generations(two_slot_model) -> None:
    cfg = StrategyConfig(seed=0, population_size=6, generations=4, max_no_improve=100)
    result = create_strategy("genetic", cfg).run(two_slot_model)
    assert result.status is RunStatus.CONVERGED
    assert result.iterations == 4


def test_unseeded_runs_report_a_replayable_seed(oversized_model) -> None:
    failed = create_strategy("greedy", StrategyConfig()).run(oversized_model)
    assert failed.status is RunStatus.INFEASIBLE
    assert isinstance(failed.seed, int)

    model = generate_instance(jobs=25, capacity=20, conflict_ratio=0.2, seed=11)
    strategy = create_strategy("local_search", StrategyConfig(iteration_budget=300))
    first = strategy.run(model)
    assert strategy.config.seed is None
    replay = create_strategy(
        "local_search", StrategyConfig(seed=first.seed, iteration_budget=300)
    ).run(model)
    assert replay.seed == first.seed
    assert replay.solution.assignment() == first.solution.assignment()
