"""
Interfaces Module
=================

Contracts for the collaborators a backtest run consumes:

- DataProvider: supplies historical bars
- StrategyAdapter: turns a bar context into an optional signal

Both may be implemented synchronously or with coroutines; the controller
awaits whatever it is handed before moving to the next event.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from core.types import Bar, PortfolioSnapshot, Position, Signal


# =============================================================================
# DATA PROVIDER INTERFACE
# =============================================================================

@dataclass(slots=True)
class AvailabilityReport:
    """Answer to ``DataProvider.validate_availability``."""
    available: bool
    missing_symbols: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@runtime_checkable
class DataProvider(Protocol):
    """
    Protocol for historical data sources.

    ``get_historical_bars`` returns bars sorted ascending by timestamp within
    each symbol. Either method may return an awaitable.
    """

    def validate_availability(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str,
    ) -> AvailabilityReport | Awaitable[AvailabilityReport]:
        ...

    def get_historical_bars(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str,
        options: dict[str, Any] | None = None,
    ) -> list[Bar] | Awaitable[list[Bar]]:
        ...


# =============================================================================
# STRATEGY INTERFACE
# =============================================================================

@dataclass(frozen=True, slots=True)
class StrategyContext:
    """
    Everything a strategy may look at for one bar.

    ``history`` ends with ``bar`` and never contains a later timestamp.
    """
    bar: Bar
    history: tuple[Bar, ...]
    portfolio: PortfolioSnapshot
    position: Position | None = None
    bar_index: int = 0

    @property
    def symbol(self) -> str:
        return self.bar.symbol

    @property
    def timestamp(self) -> datetime:
        return self.bar.timestamp

    @property
    def closes(self) -> list[float]:
        return [b.close for b in self.history]

    @property
    def has_position(self) -> bool:
        return self.position is not None and self.position.quantity > 0


class StrategyAdapter(ABC):
    """
    Abstract base class for strategies driven by the backtest controller.

    Lifecycle:
        1. initialize: Called once after data is loaded
        2. on_bar: Called for every bar, including warm-up bars
    """

    def __init__(self, name: str = "strategy", parameters: dict[str, Any] | None = None):
        self.name = name
        self.parameters = parameters or {}
        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    def initialize(self) -> None | Awaitable[None]:
        """Prepare state before the first bar."""
        self._is_initialized = True

    @abstractmethod
    def on_bar(self, context: StrategyContext) -> Signal | None | Awaitable[Signal | None]:
        """
        Observe a bar and optionally emit a signal.

        Args:
            context: Current bar, bounded look-back window and portfolio

        Returns:
            Signal, or None to do nothing
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class CallableStrategy(StrategyAdapter):
    """Wrap a plain function (sync or async) as a strategy."""

    def __init__(
        self,
        func: Callable[[StrategyContext], Signal | None | Awaitable[Signal | None]],
        name: str | None = None,
    ):
        super().__init__(name=name or getattr(func, "__name__", "callable"))
        self._func = func

    def on_bar(self, context: StrategyContext) -> Signal | None | Awaitable[Signal | None]:
        return self._func(context)


__all__ = [
    "AvailabilityReport",
    "DataProvider",
    "StrategyContext",
    "StrategyAdapter",
    "CallableStrategy",
]
