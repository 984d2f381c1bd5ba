#!/usr/bin/env python3
"""Command-line driver.

Subcommands:
    solve       run one strategy (or a portfolio) on an instance file
    generate    write a seeded random instance
    bench       strategies x instances x seeds, JSON per run + summary CSV
    strategies  list registered strategy names

Options may come from a YAML/JSON file (``--config``); command-line flags
override it. Example ``config.yaml`` ships next to this file.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from cspcj.config import StrategyConfig, load_config
from cspcj.errors import CspcjError
from cspcj.experiments.runner import ExperimentRunner, generate_plan, write_summary_csv
from cspcj.generator import generate_instance
from cspcj.modes.portfolio import run_portfolio
from cspcj.oracle import verify_with_oracle
from cspcj.parser import load_instance, save_instance
from cspcj.registry import available_strategies
from cspcj.report import SolutionReport
from cspcj.visualization import next_unique_path, plot_convergence, plot_slot_loads

logger = logging.getLogger("cspcj.driver")

CONFIG_KEYS = {
    "log_level",
    "strategies",
    "seeds",
    "options",
    "output",
    "charts_dir",
    "verify",
    "workers",
    "bench",
}


def _read_config(path: Optional[str]) -> dict[str, Any]:
    if not path:
        return {}
    cfg = load_config(path)
    unknown = sorted(set(cfg) - CONFIG_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration key(s) in {path}: {unknown}")
    return cfg


def _strategy_options(cfg: dict[str, Any], args: argparse.Namespace) -> StrategyConfig:
    options = dict(cfg.get("options") or {})
    if getattr(args, "time_budget", None) is not None:
        options["time_budget"] = args.time_budget
    if getattr(args, "iterations", None) is not None:
        options["iteration_budget"] = args.iterations
    if getattr(args, "cost", None):
        options["cost"] = args.cost
    return StrategyConfig.from_mapping(options)


def cmd_solve(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    model = load_instance(args.instance)
    options = _strategy_options(cfg, args)
    strategies = args.strategy or cfg.get("strategies") or ["local_search"]
    if args.seed is not None:
        seeds = [args.seed]
    else:
        seeds = cfg.get("seeds") or [options.seed]
    logger.info(
        "Instance %s: %d jobs, %d fixed slots, %d conflicts, lower bound %d",
        model.name,
        model.n_jobs,
        len(model.slots),
        len(model.conflicts),
        model.lower_bound(),
    )
    best, results = run_portfolio(
        model, strategies, options, seeds=seeds, max_workers=cfg.get("workers")
    )
    for result in results:
        logger.info(
            "%-18s seed=%-10s status=%-16s cost=%s",
            result.strategy,
            result.seed,
            result.status.value,
            result.cost,
        )
    assert best is not None
    report = SolutionReport.from_result(model, best)
    payload = report.to_dict()

    if args.verify or cfg.get("verify"):
        if best.solution is None:
            logger.warning("Nothing to verify: best run has no solution")
        else:
            check = verify_with_oracle(model, best.solution, options, time_limit=options.time_budget)
            payload["oracle_check"] = {
                "status": check.status.value,
                "objective": check.objective,
                "bound": check.bound,
                "consistent": check.consistent,
                "gap": check.gap,
            }

    output = args.output or cfg.get("output")
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info("Report saved to %s", output)
    else:
        print(json.dumps(payload, indent=2))

    charts_dir = args.charts_dir or cfg.get("charts_dir")
    if charts_dir and best.solution is not None:
        base = Path(charts_dir)
        plot_slot_loads(best.solution, next_unique_path(base / f"slots_{model.name}.png"))
        plot_convergence(
            {f"{r.strategy}/{r.seed}": r.cost_history for r in results},
            next_unique_path(base / f"convergence_{model.name}.png"),
            lower_bound=model.lower_bound(),
        )
    return 0 if best.feasible else 2


def cmd_generate(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    model = generate_instance(
        jobs=args.jobs,
        slots=args.slots,
        max_demand=args.max_demand,
        capacity=args.capacity,
        conflict_ratio=args.conflict_ratio,
        seed=args.seed,
        open_new_slots=not args.fixed_only,
        max_slots=args.max_slots,
    )
    Path(args.output).parent.mkdir(parents=True, exist_ok=True)
    save_instance(model, args.output)
    logger.info("Generated %s (%d jobs, %d conflicts)", args.output, model.n_jobs, len(model.conflicts))
    return 0


def cmd_bench(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    bench = dict(cfg.get("bench") or {})
    instances = args.instances or bench.get("instances") or []
    if not instances:
        raise ValueError("bench needs at least one instance file")
    strategies = args.strategies or bench.get("strategies") or cfg.get("strategies")
    if not strategies:
        strategies = ["greedy", "local_search"]
    repeats = args.repeats if args.repeats is not None else int(bench.get("repeats", 1))
    options = _strategy_options(cfg, args).to_dict()
    options.pop("seed", None)
    plan = generate_plan(instances, strategies, repeats=repeats, options=options)
    runner = ExperimentRunner(args.results_dir or bench.get("results_dir", "results/experiments"))
    runner.run(plan)
    summary = write_summary_csv(runner.timestamp_dir)
    print(summary)
    return 0


def cmd_strategies(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    for name in available_strategies():
        print(name)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CSPCJ solver")
    parser.add_argument("--config", help="YAML/JSON configuration file")
    parser.add_argument("--log-level", help="Logging level (overrides config log_level)")
    sub = parser.add_subparsers(dest="command", required=True)

    solve = sub.add_parser("solve", help="Solve an instance file")
    solve.add_argument("instance", help="Instance file (.json/.yaml)")
    solve.add_argument("-s", "--strategy", action="append", help="Strategy name (repeatable)")
    solve.add_argument("--seed", type=int, help="Seed (overrides config seeds)")
    solve.add_argument("--time-budget", type=float, help="Wall-clock budget per run [s]")
    solve.add_argument("--iterations", type=int, help="Iteration budget per run")
    solve.add_argument("--cost", help="Cost function name")
    solve.add_argument("-o", "--output", help="Write the report JSON here instead of stdout")
    solve.add_argument("--charts-dir", help="Save slot-load and convergence charts here")
    solve.add_argument("--verify", action="store_true", help="Check the result with the oracle")
    solve.set_defaults(func=cmd_solve)

    gen = sub.add_parser("generate", help="Generate a random instance")
    gen.add_argument("output", help="Target file (.json/.yaml)")
    gen.add_argument("--jobs", type=int, required=True)
    gen.add_argument("--slots", type=int, default=0, help="Fixed slots")
    gen.add_argument("--capacity", type=int, default=20)
    gen.add_argument("--max-demand", type=int, default=10)
    gen.add_argument("--conflict-ratio", type=float, default=0.1)
    gen.add_argument("--max-slots", type=int)
    gen.add_argument("--fixed-only", action="store_true", help="Do not allow opening slots")
    gen.add_argument("--seed", type=int, default=0)
    gen.set_defaults(func=cmd_generate)

    bench = sub.add_parser("bench", help="Run a benchmark batch")
    bench.add_argument("instances", nargs="*", help="Instance files")
    bench.add_argument("--strategies", nargs="+")
    bench.add_argument("--repeats", type=int)
    bench.add_argument("--time-budget", type=float)
    bench.add_argument("--iterations", type=int)
    bench.add_argument("--cost")
    bench.add_argument("--results-dir")
    bench.set_defaults(func=cmd_bench)

    names = sub.add_parser("strategies", help="List registered strategies")
    names.set_defaults(func=cmd_strategies)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = _read_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"error: cannot read configuration: {exc}", file=sys.stderr)
        return 1
    log_level = args.log_level or cfg.get("log_level", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args, cfg)
    except CspcjError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    except (OSError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
