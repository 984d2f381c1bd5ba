"""Runtime catalog of solving strategies.

Strategies register a factory under a name with the :func:`register`
decorator when their module is imported; :func:`create_strategy` makes sure
the built-in strategies are imported first. Adding an algorithm therefore
needs no change to a central dispatch table.
"""

from __future__ import annotations

import importlib
import threading
from typing import TYPE_CHECKING, Callable, Optional

from cspcj.config import StrategyConfig
from cspcj.errors import UnknownStrategy

if TYPE_CHECKING:  # pragma: no cover
    from cspcj.algorithms.base import Strategy

StrategyFactory = Callable[[StrategyConfig], "Strategy"]

_BUILTIN_PACKAGE = "cspcj.algorithms"


class StrategyRegistry:
    """Thread-safe mapping ``name -> factory``."""

    def __init__(self) -> None:
        self._factories: dict[str, StrategyFactory] = {}
        self._lock = threading.Lock()

    def register(
        self, name: str, factory: Optional[StrategyFactory] = None, replace: bool = False
    ):
        """Register ``factory`` under ``name``; usable as a decorator.

        Raises:
            ValueError: If ``name`` is taken and ``replace`` is False.
        """

        def _add(fn: StrategyFactory) -> StrategyFactory:
            with self._lock:
                if name in self._factories and not replace and self._factories[name] is not fn:
                    raise ValueError(f"Strategy {name!r} is already registered")
                self._factories[name] = fn
            return fn

        if factory is not None:
            return _add(factory)
        return _add

    def unregister(self, name: str) -> None:
        with self._lock:
            self._factories.pop(name, None)

    def create(self, name: str, config: Optional[StrategyConfig] = None) -> "Strategy":
        """Instantiate the strategy registered under ``name``.

        Raises:
            UnknownStrategy: If nothing is registered under ``name``.
        """
        with self._lock:
            factory = self._factories.get(name)
        if factory is None:
            raise UnknownStrategy(name, self.names())
        return factory(config if config is not None else StrategyConfig())

    def names(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._factories))

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._factories


REGISTRY = StrategyRegistry()
register = REGISTRY.register


def load_builtin_strategies() -> None:
    importlib.import_module(_BUILTIN_PACKAGE)


def create_strategy(name: str, config: Optional[StrategyConfig] = None) -> "Strategy":
    """Create a strategy by name from the process-wide registry."""
    load_builtin_strategies()
    return REGISTRY.create(name, config)


def available_strategies() -> tuple[str, ...]:
    load_builtin_strategies()
    return REGISTRY.names()
