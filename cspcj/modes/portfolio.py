"""Portfolio mode: several strategies / seeds in parallel, best result wins.

Every run owns its Solution State and random generator; only the immutable
model is shared between threads. The reduction is deterministic: the
feasible result with the smallest rank key, ties broken by strategy name
and then seed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Sequence

from cspcj.algorithms.base import SolveResult
from cspcj.errors import UnknownStrategy
from cspcj.models import ConflictGraphModel
from cspcj.modes.common import ConfigLike, as_config, run_strategy
from cspcj.registry import available_strategies

logger = logging.getLogger("cspcj.driver")


def best_result(results: Iterable[SolveResult]) -> Optional[SolveResult]:
    """Smallest ``rank_key`` (feasible results first); None for no results."""
    results = list(results)
    if not results:
        return None
    return min(results, key=lambda r: r.rank_key())


def run_portfolio(
    model: ConflictGraphModel,
    strategies: Sequence[str],
    config: ConfigLike = None,
    seeds: Sequence[Optional[int]] = (None,),
    max_workers: Optional[int] = None,
) -> tuple[Optional[SolveResult], list[SolveResult]]:
    """Run every ``strategy x seed`` pair concurrently.

    Returns:
        ``(best, all_results)`` where ``all_results`` keeps submission order.

    Raises:
        ValueError: If ``strategies`` is empty.
        UnknownStrategy: If a name is not registered (raised before any run).
    """
    if not strategies:
        raise ValueError("portfolio needs at least one strategy")
    cfg = as_config(config)
    seeds = list(seeds) or [cfg.seed]
    jobs = [(name, seed if seed is not None else cfg.seed) for name in strategies for seed in seeds]
    known = available_strategies()
    for name in strategies:
        if name not in known:
            raise UnknownStrategy(name, known)

    workers = max_workers or min(len(jobs), 8)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(run_strategy, model, name, cfg, seed) for name, seed in jobs]
        results = [f.result() for f in futures]

    best = best_result(results)
    if best is not None:
        logger.info(
            "Portfolio best: strategy=%s seed=%s status=%s cost=%s (%d runs)",
            best.strategy,
            best.seed,
            best.status.value,
            best.cost,
            len(results),
        )
    return best, results
