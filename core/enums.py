"""
Enumerations
============

Closed vocabularies shared by every layer of the simulator: order sides and
types, signal actions, the run lifecycle, cost model selectors, exit reasons
and bar timeframes.

Usage:
    from core.enums import OrderSide, BacktestState, Timeframe

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum


class OrderSide(str, Enum):
    """Order direction."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    """Order types understood by the execution model."""
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"

    @property
    def requires_price(self) -> bool:
        return self is not OrderType.MARKET


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"
    DAY = "DAY"


class SignalAction(str, Enum):
    """What a strategy asks for on a bar."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class PositionSide(str, Enum):
    """Only long exposure is modeled."""
    LONG = "long"


class BacktestState(str, Enum):
    """
    Run lifecycle.

    idle -> initializing -> running <-> paused -> completed | error | cancelled
    """
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BacktestState.COMPLETED,
            BacktestState.ERROR,
            BacktestState.CANCELLED,
        )

    @property
    def is_active(self) -> bool:
        return self in (BacktestState.RUNNING, BacktestState.PAUSED)


class SlippageModelType(str, Enum):
    """Slippage model selector."""
    FIXED = "fixed"
    LINEAR = "linear"
    SQRT = "sqrt"
    LOGARITHMIC = "logarithmic"


class CommissionStructure(str, Enum):
    """Commission structure selector."""
    FLAT = "flat"
    PERCENTAGE = "percentage"
    TIERED = "tiered"


class ExitReason(str, Enum):
    """Why a trade was closed."""
    SIGNAL = "signal"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    END_OF_BACKTEST = "end_of_backtest"
    MANUAL = "manual"


class LogLevel(str, Enum):
    """Severity of a run log entry."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Timeframe(str, Enum):
    """Bar timeframes with their nominal spacing."""
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def interval(self) -> timedelta:
        """Expected spacing between consecutive bars."""
        return _TIMEFRAME_INTERVALS[self]

    @property
    def periods_per_year(self) -> float:
        """Bars per year, assuming a continuously traded market."""
        return timedelta(days=365).total_seconds() / self.interval.total_seconds()


_TIMEFRAME_INTERVALS: dict[Timeframe, timedelta] = {
    Timeframe.M1: timedelta(minutes=1),
    Timeframe.M5: timedelta(minutes=5),
    Timeframe.M15: timedelta(minutes=15),
    Timeframe.M30: timedelta(minutes=30),
    Timeframe.H1: timedelta(hours=1),
    Timeframe.H4: timedelta(hours=4),
    Timeframe.D1: timedelta(days=1),
}


__all__ = [
    "OrderSide",
    "OrderType",
    "TimeInForce",
    "SignalAction",
    "PositionSide",
    "BacktestState",
    "SlippageModelType",
    "CommissionStructure",
    "ExitReason",
    "LogLevel",
    "Timeframe",
]
