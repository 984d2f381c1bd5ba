"""Tests for execution modes (single run, portfolio), reports and benchmark batches."""

from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from cspcj.algorithms.base import RunStatus, SolveResult
from cspcj.errors import UnknownStrategy
from cspcj.experiments.runner import ExperimentRunner, generate_plan, write_summary_csv
from cspcj.generator import generate_instance
from cspcj.modes.common import run_strategy
from cspcj.modes.portfolio import best_result, run_portfolio
from cspcj.parser import save_instance
from cspcj.report import SolutionReport
from cspcj.solution import SolutionState

OPTIONS = {"iteration_budget": 200, "max_no_improve": 20, "starts": 3}


def test_run_strategy_accepts_mapping_and_seed(two_slot_model) -> None:
    result = run_strategy(two_slot_model, "local_search", OPTIONS, seed=7)
    assert result.seed == 7
    assert result.feasible
    with pytest.raises(UnknownStrategy):
        run_strategy(two_slot_model, "nope")


def test_best_result_prefers_feasible_then_rank(two_slot_model) -> None:
    good = SolutionState.from_assignment(two_slot_model, {0: 0, 1: 1, 2: 0, 3: 1})
    bad = SolutionState.from_assignment(two_slot_model, {0: 0, 1: 0, 2: 1, 3: 1})
    results = [
        SolveResult("b", RunStatus.CONVERGED, good, seed=2),
        SolveResult("z", RunStatus.CONVERGED, bad, seed=1),
        SolveResult("a", RunStatus.INFEASIBLE, None, seed=0),
        SolveResult("a", RunStatus.CONVERGED, good.clone(), seed=3),
    ]
    best = best_result(results)
    assert best.strategy == "a" and best.seed == 3
    assert best_result([]) is None


def test_portfolio_matches_sequential_runs() -> None:
    model = generate_instance(jobs=30, capacity=20, conflict_ratio=0.15, seed=3)
    strategies = ["greedy", "local_search", "vns"]
    best, results = run_portfolio(model, strategies, OPTIONS, seeds=[0, 1], max_workers=4)
    assert [(r.strategy, r.seed) for r in results] == [
        (name, seed) for name in strategies for seed in (0, 1)
    ]
    for result in results:
        alone = run_strategy(model, result.strategy, OPTIONS, seed=result.seed)
        assert alone.solution.assignment() == result.solution.assignment()
    assert best is min(results, key=lambda r: r.rank_key())
    assert all(best.cost <= r.cost for r in results)


def test_portfolio_rejects_bad_input(two_slot_model) -> None:
    with pytest.raises(ValueError):
        run_portfolio(two_slot_model, [])
    with pytest.raises(UnknownStrategy):
        run_portfolio(two_slot_model, ["greedy", "missing"])


def test_portfolio_with_infeasible_instance(oversized_model) -> None:
    best, results = run_portfolio(oversized_model, ["greedy", "multistart"], OPTIONS, seeds=[0])
    assert all(r.status is RunStatus.INFEASIBLE for r in results)
    assert not best.feasible


def test_report_is_json_friendly(two_slot_model, oversized_model, tmp_path: Path) -> None:
    result = run_strategy(two_slot_model, "greedy", seed=0)
    report = SolutionReport.from_result(two_slot_model, result)
    data = report.to_dict()
    assert data["feasible"] is True
    assert data["slots_used"] == 2
    assert set(data["assignment"]) == {"0", "1", "2", "3"}
    assert data["loads"] == {"0": 5, "1": 5}
    assert data["lower_bound"] == 2
    path = tmp_path / "report.json"
    report.save(path)
    assert json.loads(path.read_text(encoding="utf-8")) == json.loads(json.dumps(data))

    failed = SolutionReport.from_result(
        oversized_model, run_strategy(oversized_model, "greedy", seed=0)
    )
    assert failed.to_dict()["status"] == "infeasible"
    assert failed.to_dict()["cost"] is None
    assert "job 1" in failed.message


def test_experiment_batch_and_summary(tmp_path: Path) -> None:
    instance = tmp_path / "inst.json"
    save_instance(generate_instance(jobs=15, capacity=20, conflict_ratio=0.2, seed=9), instance)
    plan = generate_plan([instance], ["greedy", "multistart"], repeats=2, options=OPTIONS)
    assert len(plan) == 4
    assert plan[0].strategy_config().iteration_budget == 200

    runner = ExperimentRunner(tmp_path / "results")
    results = runner.run(plan)
    assert all(r.report.feasible for r in results)
    assert all(r.gap_percent() is not None and r.gap_percent() >= 0 for r in results)
    files = sorted(p.name for p in runner.timestamp_dir.glob("*.json"))
    assert "strategy=greedy_file=inst_seed=0.json" in files
    assert len(files) == 4

    summary = write_summary_csv(runner.timestamp_dir)
    with open(summary, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 4
    assert {row["strategy"] for row in rows} == {"greedy", "multistart"}
    assert all(row["instance"] == "inst" for row in rows)
