"""Benchmark batches: run plans, per-run JSON and CSV summaries."""

from cspcj.experiments.runner import (
    ExperimentRunner,
    RunConfig,
    RunResult,
    generate_plan,
    write_summary_csv,
)

__all__ = ["ExperimentRunner", "RunConfig", "RunResult", "generate_plan", "write_summary_csv"]
