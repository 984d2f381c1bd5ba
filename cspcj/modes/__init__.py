"""Execution modes: single run and parallel portfolio."""

from cspcj.modes.common import as_config, run_strategy
from cspcj.modes.portfolio import best_result, run_portfolio

__all__ = ["as_config", "best_result", "run_portfolio", "run_strategy"]
