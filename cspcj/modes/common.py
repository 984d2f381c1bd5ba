"""Shared primitives used by execution modes.

``run_strategy`` is the one place that turns a strategy name plus options
into a :class:`~cspcj.algorithms.base.SolveResult`, so every mode (single
run, portfolio, benchmark, CLI) times and logs runs the same way.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from cspcj.algorithms.base import SolveResult
from cspcj.config import StrategyConfig
from cspcj.models import ConflictGraphModel
from cspcj.registry import create_strategy

logger = logging.getLogger("cspcj.driver")

ConfigLike = Union[StrategyConfig, Mapping[str, Any], None]


def as_config(config: ConfigLike) -> StrategyConfig:
    """Accept a ``StrategyConfig``, a plain mapping or None."""
    if isinstance(config, StrategyConfig):
        return config
    return StrategyConfig.from_mapping(config)


def run_strategy(
    model: ConflictGraphModel,
    name: str,
    config: ConfigLike = None,
    seed: Optional[int] = None,
) -> SolveResult:
    """Create strategy ``name`` and run it on ``model``.

    Args:
        model: Shared, immutable instance.
        name: Registered strategy name.
        config: Options (``seed`` overrides ``config.seed`` when given).
        seed: Seed of this run.

    Raises:
        UnknownStrategy: If ``name`` is not registered.
        FeatureUnavailable: If the strategy needs a disabled feature.
    """
    cfg = as_config(config)
    if seed is not None:
        cfg = cfg.replace(seed=seed)
    strategy = create_strategy(name, cfg)
    logger.debug("running %s on %r (seed=%s)", name, model.name, cfg.seed)
    return strategy.run(model)
