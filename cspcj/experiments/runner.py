"""Benchmark runner: strategies x instances x seeds.

Each run is persisted as its own JSON file inside a timestamped batch
directory; :func:`write_summary_csv` aggregates a batch into one CSV with
the gap of every run to the best known bound (oracle bound when an exact
run was part of the batch, otherwise the instance lower bound).
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, Union

from cspcj.config import StrategyConfig
from cspcj.models import ConflictGraphModel
from cspcj.modes.common import run_strategy
from cspcj.parser import load_instance
from cspcj.report import SolutionReport

logger = logging.getLogger("cspcj.experiments")


@dataclass(frozen=True)
class RunConfig:
    """One benchmark run."""

    strategy: str
    instance_file: str
    seed: int
    options: tuple[tuple[str, Any], ...] = ()

    def strategy_config(self) -> StrategyConfig:
        return StrategyConfig.from_mapping({**dict(self.options), "seed": self.seed})


@dataclass
class RunResult:
    config: RunConfig
    report: SolutionReport
    lower_bound: Optional[float] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def gap_percent(self) -> Optional[float]:
        if self.lower_bound is None or self.report.cost is None or not self.report.feasible:
            return None
        try:
            return (self.report.cost - self.lower_bound) / self.lower_bound * 100.0
        except ZeroDivisionError:
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": {**asdict(self.config), "options": dict(self.config.options)},
            "report": self.report.to_dict(),
            "lower_bound": self.lower_bound,
            "gap_percent": self.gap_percent(),
        }


def generate_plan(
    instance_files: Iterable[Union[str, Path]],
    strategies: Sequence[str],
    repeats: int = 1,
    options: Optional[dict[str, Any]] = None,
) -> list[RunConfig]:
    """Full enumeration ``instance x strategy x seed`` (seeds ``0 .. repeats-1``)."""
    opts = tuple(sorted((options or {}).items()))
    return [
        RunConfig(strategy=name, instance_file=str(path), seed=seed, options=opts)
        for path in instance_files
        for name in strategies
        for seed in range(repeats)
    ]


class ExperimentRunner:
    """Executes a plan and stores one JSON file per run.

    Args:
        base_results_dir: Parent directory; every batch gets its own
            timestamped subdirectory, older batches are kept.
    """

    def __init__(self, base_results_dir: Union[str, Path] = "results/experiments") -> None:
        self.base_dir = Path(base_results_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        self.timestamp_dir = self.base_dir / stamp
        self.timestamp_dir.mkdir(parents=True, exist_ok=True)
        self._models: dict[str, ConflictGraphModel] = {}

    def _model(self, instance_file: str) -> ConflictGraphModel:
        if instance_file not in self._models:
            self._models[instance_file] = load_instance(instance_file)
        return self._models[instance_file]

    def run(self, configs: Sequence[RunConfig]) -> list[RunResult]:
        results: list[RunResult] = []
        for idx, cfg in enumerate(configs, start=1):
            logger.info("(%d/%d) Running: %s", idx, len(configs), cfg)
            result = self._run_single(cfg)
            results.append(result)
            self._persist_result(result)
        return results

    def _run_single(self, cfg: RunConfig) -> RunResult:
        model = self._model(cfg.instance_file)
        solve_result = run_strategy(model, cfg.strategy, cfg.strategy_config())
        report = SolutionReport.from_result(model, solve_result)
        bound = solve_result.bound if solve_result.bound is not None else model.lower_bound()
        return RunResult(config=cfg, report=report, lower_bound=bound)

    def _persist_result(self, result: RunResult) -> Path:
        cfg = result.config
        filename = f"strategy={cfg.strategy}_file={Path(cfg.instance_file).stem}_seed={cfg.seed}.json"
        path = self.timestamp_dir / filename
        with open(path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2)
        logger.info("Saved %s", path)
        return path


SUMMARY_COLUMNS = (
    "strategy",
    "instance",
    "seed",
    "status",
    "feasible",
    "cost",
    "slots_used",
    "lower_bound",
    "gap_percent",
    "iterations",
    "elapsed_s",
)


def load_results_dir(timestamp_dir: Union[str, Path]) -> list[dict[str, Any]]:
    rows = []
    for file in sorted(Path(timestamp_dir).glob("*.json")):
        with open(file, "r", encoding="utf-8") as f:
            rows.append(json.load(f))
    return rows


def write_summary_csv(timestamp_dir: Union[str, Path]) -> Path:
    """Write ``summary.csv`` for a batch directory and return its path.

    The best oracle bound seen for an instance within the batch replaces the
    weaker lower bound of every other run on that instance.
    """
    timestamp_dir = Path(timestamp_dir)
    rows = load_results_dir(timestamp_dir)
    best_bound: dict[str, float] = {}
    for r in rows:
        bound = r["report"].get("oracle_bound")
        name = r["config"]["instance_file"]
        if bound is not None:
            best_bound[name] = max(bound, best_bound.get(name, bound))
    out_path = timestamp_dir / "summary.csv"
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(SUMMARY_COLUMNS)
        for r in rows:
            cfg = r["config"]
            rep = r["report"]
            lower = r.get("lower_bound")
            name = cfg["instance_file"]
            if name in best_bound and (lower is None or best_bound[name] > lower):
                lower = best_bound[name]
            gap = None
            if lower and rep.get("feasible") and rep.get("cost") is not None:
                gap = (rep["cost"] - lower) / lower * 100.0
            writer.writerow(
                [
                    cfg["strategy"],
                    Path(name).stem,
                    cfg["seed"],
                    rep["status"],
                    rep["feasible"],
                    rep["cost"],
                    rep["slots_used"],
                    lower,
                    None if gap is None else round(gap, 4),
                    rep["iterations"],
                    rep["elapsed_s"],
                ]
            )
    logger.info("Summary written to %s (%d runs)", out_path, len(rows))
    return out_path
