"""
Core Types Module
=================

Core data structures and exceptions for the backtesting core.

Every timestamp carried by these types is simulated market time taken from
the bar stream, never the wall clock. Identifiers are sequential strings
issued by the owning component so that two runs with the same inputs produce
identical records.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from core.enums import (
    ExitReason,
    OrderSide,
    OrderType,
    PositionSide,
    SignalAction,
    TimeInForce,
)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class BacktestCoreError(Exception):
    """Base exception for all simulator errors."""
    pass


class ConfigValidationError(BacktestCoreError):
    """Run configuration is malformed."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []


class DataError(BacktestCoreError):
    """Data-related errors."""
    pass


class DataUnavailableError(DataError):
    """Data provider cannot satisfy the requested symbols or range."""

    def __init__(self, message: str, missing_symbols: list[str] | None = None):
        super().__init__(message)
        self.missing_symbols = missing_symbols or []


class DataValidationError(DataError):
    """A bar violates OHLC invariants."""
    pass


class SignalValidationError(BacktestCoreError):
    """Strategy produced a malformed signal."""
    pass


class ExecutionRejection(BacktestCoreError):
    """Execution model refused an order."""

    def __init__(self, message: str, order_id: str = ""):
        super().__init__(message)
        self.order_id = order_id


class LedgerInvariantError(BacktestCoreError):
    """Ledger was asked to do something that breaks its invariants."""
    pass


class RiskLimitBreach(BacktestCoreError):
    """Pre-trade risk check refused an order."""
    pass


class InvalidStateTransition(BacktestCoreError):
    """Controller was asked to move between incompatible states."""
    pass


class BacktestAborted(BacktestCoreError):
    """
    Run ended in the ``error`` state.

    Attributes:
        result: Partial RunResult assembled from whatever was recorded
        errors: Accumulated run log entries at level error
    """

    def __init__(self, message: str, result: Any = None, errors: list[Any] | None = None):
        super().__init__(message)
        self.result = result
        self.errors = errors or []


class CancellationRequested(Exception):
    """Cooperative cancellation signal. Not an error."""
    pass


# =============================================================================
# MARKET DATA
# =============================================================================

@dataclass(frozen=True, slots=True)
class Bar:
    """Immutable OHLCV bar for one symbol."""
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    timeframe: str = "1d"

    def __post_init__(self) -> None:
        """Validate OHLCV data."""
        for name in ("open", "high", "low", "close"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise DataValidationError(
                    f"{self.symbol} {self.timestamp}: {name} must be positive, got {value}"
                )
        if self.high < self.low:
            raise DataValidationError(
                f"High ({self.high}) cannot be less than low ({self.low})"
            )
        if self.high < self.open or self.high < self.close:
            raise DataValidationError("High must be >= open and close")
        if self.low > self.open or self.low > self.close:
            raise DataValidationError("Low must be <= open and close")
        if self.volume < 0:
            raise DataValidationError("Volume cannot be negative")

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3

    @property
    def bar_range(self) -> float:
        return self.high - self.low

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "timeframe": self.timeframe,
        }


@dataclass(slots=True)
class MarketState:
    """Simulated quote used by the execution model."""
    symbol: str
    bid: float
    ask: float
    last: float
    volume: float
    timestamp: datetime | None = None
    volatility: float | None = None

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2

    @property
    def spread(self) -> float:
        return self.ask - self.bid

    @classmethod
    def from_bar(cls, bar: Bar, spread_pct: float) -> "MarketState":
        """Build a quote around the bar close with the given relative spread."""
        half = bar.close * spread_pct / 2
        return cls(
            symbol=bar.symbol,
            bid=bar.close - half,
            ask=bar.close + half,
            last=bar.close,
            volume=bar.volume,
            timestamp=bar.timestamp,
        )


# =============================================================================
# SIGNAL
# =============================================================================

@dataclass(frozen=True, slots=True)
class Signal:
    """
    Strategy output for one bar.

    ``action`` may arrive as a plain string from an adapter; the controller
    validates it against ``SignalAction`` before acting on it.
    """
    symbol: str
    action: SignalAction | str
    strength: float = 1.0
    confidence: float = 1.0
    quantity: float | None = None
    order_type: OrderType | str = OrderType.MARKET
    limit_price: float | None = None
    stop_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def buy(cls, symbol: str, quantity: float | None = None, **kwargs: Any) -> "Signal":
        return cls(symbol=symbol, action=SignalAction.BUY, quantity=quantity, **kwargs)

    @classmethod
    def sell(cls, symbol: str, quantity: float | None = None, **kwargs: Any) -> "Signal":
        return cls(symbol=symbol, action=SignalAction.SELL, quantity=quantity, **kwargs)

    @classmethod
    def hold(cls, symbol: str) -> "Signal":
        return cls(symbol=symbol, action=SignalAction.HOLD)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "action": getattr(self.action, "value", self.action),
            "strength": self.strength,
            "confidence": self.confidence,
            "quantity": self.quantity,
            "order_type": getattr(self.order_type, "value", self.order_type),
            "limit_price": self.limit_price,
            "stop_price": self.stop_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "metadata": self.metadata,
        }


# =============================================================================
# ORDER INTENTS
# =============================================================================

@dataclass(frozen=True, slots=True)
class OrderIntent:
    """
    Immutable order handed to the execution model.

    Use one of the concrete variants; each fixes its ``order_type``.
    """
    id: str
    symbol: str
    side: OrderSide
    quantity: float
    timestamp: datetime
    time_in_force: TimeInForce = TimeInForce.GTC
    signal_id: str | None = None
    exit_reason: ExitReason | None = None

    @property
    def order_type(self) -> OrderType:
        raise NotImplementedError

    @property
    def reference_price(self) -> float | None:
        """Price the order carries, if any."""
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "quantity": self.quantity,
            "price": self.reference_price,
            "timestamp": self.timestamp.isoformat(),
            "time_in_force": self.time_in_force.value,
            "signal_id": self.signal_id,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }


@dataclass(frozen=True, slots=True)
class MarketOrder(OrderIntent):
    """Executes against the opposite-side quote."""

    @property
    def order_type(self) -> OrderType:
        return OrderType.MARKET


@dataclass(frozen=True, slots=True)
class LimitOrder(OrderIntent):
    """Executes at the limit price or better."""
    limit_price: float = 0.0

    @property
    def order_type(self) -> OrderType:
        return OrderType.LIMIT

    @property
    def reference_price(self) -> float | None:
        return self.limit_price


@dataclass(frozen=True, slots=True)
class StopOrder(OrderIntent):
    """Treated as a market order once triggered."""
    stop_price: float = 0.0

    @property
    def order_type(self) -> OrderType:
        return OrderType.STOP

    @property
    def reference_price(self) -> float | None:
        return self.stop_price


@dataclass(frozen=True, slots=True)
class StopLimitOrder(OrderIntent):
    """Treated as a market order once triggered."""
    stop_price: float = 0.0
    limit_price: float = 0.0

    @property
    def order_type(self) -> OrderType:
        return OrderType.STOP_LIMIT

    @property
    def reference_price(self) -> float | None:
        return self.stop_price


# =============================================================================
# FILL
# =============================================================================

@dataclass(frozen=True, slots=True)
class Fill:
    """
    Outcome of executing one order.

    Exactly one Fill exists per order. A rejected order yields a Fill with
    ``filled_quantity == 0`` and ``rejected=True``.
    """
    order_id: str
    symbol: str
    side: OrderSide
    order_type: OrderType
    requested_quantity: float
    filled_quantity: float
    fill_price: float
    commission: float
    slippage: float
    slippage_cost: float
    latency_ms: float
    timestamp: datetime
    rejected: bool = False
    rejection_reason: str | None = None
    exit_reason: ExitReason | None = None

    @classmethod
    def rejection(cls, intent: OrderIntent, reason: str, timestamp: datetime | None = None) -> "Fill":
        """Zero-quantity fill carrying a rejection reason."""
        order_type = intent.order_type if isinstance(intent.order_type, OrderType) else OrderType.MARKET
        return cls(
            order_id=intent.id,
            symbol=intent.symbol,
            side=intent.side,
            order_type=order_type,
            requested_quantity=intent.quantity,
            filled_quantity=0.0,
            fill_price=0.0,
            commission=0.0,
            slippage=0.0,
            slippage_cost=0.0,
            latency_ms=0.0,
            timestamp=timestamp or intent.timestamp,
            rejected=True,
            rejection_reason=reason,
            exit_reason=intent.exit_reason,
        )

    @property
    def is_filled(self) -> bool:
        return not self.rejected and self.filled_quantity > 0

    @property
    def is_partial(self) -> bool:
        return self.is_filled and self.filled_quantity < self.requested_quantity

    @property
    def remaining_quantity(self) -> float:
        return self.requested_quantity - self.filled_quantity

    @property
    def notional(self) -> float:
        return self.filled_quantity * self.fill_price

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "requested_quantity": self.requested_quantity,
            "filled_quantity": self.filled_quantity,
            "fill_price": self.fill_price,
            "commission": self.commission,
            "slippage": self.slippage,
            "slippage_cost": self.slippage_cost,
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp.isoformat(),
            "rejected": self.rejected,
            "rejection_reason": self.rejection_reason,
            "partial": self.is_partial,
        }


# =============================================================================
# POSITION
# =============================================================================

@dataclass(slots=True)
class Position:
    """
    Open long exposure in one symbol.

    Owned and mutated by exactly one PortfolioLedger.
    """
    symbol: str
    quantity: float
    entry_price: float
    cost_basis: float
    entry_time: datetime
    trade_id: str
    current_price: float = 0.0
    updated_at: datetime | None = None
    entry_commission: float = 0.0
    entry_slippage: float = 0.0
    stop_loss: float | None = None
    take_profit: float | None = None
    highest_price: float = 0.0
    lowest_price: float = 0.0

    @property
    def side(self) -> PositionSide:
        return PositionSide.LONG

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def unrealized_pnl(self) -> float:
        return self.market_value - self.cost_basis

    @property
    def unrealized_pnl_pct(self) -> float:
        if self.cost_basis == 0:
            return 0.0
        return self.unrealized_pnl / self.cost_basis

    @property
    def max_favorable_excursion(self) -> float:
        """Best unrealized gain seen while open, in currency."""
        return max(0.0, (self.highest_price - self.entry_price) * self.quantity)

    @property
    def max_adverse_excursion(self) -> float:
        """Worst unrealized loss seen while open, in currency (positive)."""
        return max(0.0, (self.entry_price - self.lowest_price) * self.quantity)

    def mark(self, price: float, timestamp: datetime, high: float | None = None, low: float | None = None) -> None:
        """Revalue at ``price`` and widen the excursion range."""
        self.current_price = price
        self.updated_at = timestamp
        self.highest_price = max(self.highest_price, high if high is not None else price)
        self.lowest_price = min(self.lowest_price, low if low is not None else price)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "cost_basis": self.cost_basis,
            "current_price": self.current_price,
            "market_value": self.market_value,
            "unrealized_pnl": self.unrealized_pnl,
            "unrealized_pnl_pct": self.unrealized_pnl_pct,
            "entry_time": self.entry_time.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "trade_id": self.trade_id,
        }


# =============================================================================
# TRADE
# =============================================================================

@dataclass(frozen=True, slots=True)
class Trade:
    """Closed (fully or partially) round trip. Immutable once recorded."""
    id: str
    symbol: str
    side: PositionSide
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    quantity: float
    gross_pnl: float
    net_pnl: float
    entry_commission: float = 0.0
    exit_commission: float = 0.0
    entry_slippage: float = 0.0
    exit_slippage: float = 0.0
    exit_reason: ExitReason = ExitReason.SIGNAL
    max_adverse_excursion: float = 0.0
    max_favorable_excursion: float = 0.0
    is_partial: bool = False

    @property
    def holding_period(self) -> timedelta:
        return self.exit_time - self.entry_time

    @property
    def holding_hours(self) -> float:
        return self.holding_period.total_seconds() / 3600.0

    @property
    def cost_basis(self) -> float:
        return self.entry_price * self.quantity

    @property
    def return_pct(self) -> float:
        if self.cost_basis == 0:
            return 0.0
        return self.net_pnl / self.cost_basis

    @property
    def total_commission(self) -> float:
        return self.entry_commission + self.exit_commission

    @property
    def is_winner(self) -> bool:
        return self.net_pnl > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "entry_time": self.entry_time.isoformat(),
            "entry_price": self.entry_price,
            "exit_time": self.exit_time.isoformat(),
            "exit_price": self.exit_price,
            "quantity": self.quantity,
            "gross_pnl": self.gross_pnl,
            "net_pnl": self.net_pnl,
            "return_pct": self.return_pct,
            "entry_commission": self.entry_commission,
            "exit_commission": self.exit_commission,
            "entry_slippage": self.entry_slippage,
            "exit_slippage": self.exit_slippage,
            "holding_hours": self.holding_hours,
            "exit_reason": self.exit_reason.value,
            "max_adverse_excursion": self.max_adverse_excursion,
            "max_favorable_excursion": self.max_favorable_excursion,
            "is_partial": self.is_partial,
        }


# =============================================================================
# PORTFOLIO SNAPSHOT
# =============================================================================

@dataclass(frozen=True, slots=True)
class PortfolioSnapshot:
    """
    Point-in-time view of the ledger.

    ``total_value == cash + sum(position_values.values())`` holds for every
    snapshot the ledger produces.
    """
    timestamp: datetime
    cash: float
    positions_value: float
    total_value: float
    peak_value: float
    current_drawdown: float
    max_drawdown: float
    realized_pnl: float
    unrealized_pnl: float
    total_pnl: float
    total_return_pct: float
    position_values: dict[str, float] = field(default_factory=dict)
    position_quantities: dict[str, float] = field(default_factory=dict)

    @property
    def exposure(self) -> float:
        if self.total_value <= 0:
            return 0.0
        return self.positions_value / self.total_value

    @property
    def open_positions(self) -> int:
        return len(self.position_quantities)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "cash": self.cash,
            "positions_value": self.positions_value,
            "total_value": self.total_value,
            "peak_value": self.peak_value,
            "current_drawdown": self.current_drawdown,
            "max_drawdown": self.max_drawdown,
            "realized_pnl": self.realized_pnl,
            "unrealized_pnl": self.unrealized_pnl,
            "total_pnl": self.total_pnl,
            "total_return_pct": self.total_return_pct,
            "exposure": self.exposure,
            "position_values": dict(self.position_values),
            "position_quantities": dict(self.position_quantities),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Data structures
    "Bar",
    "MarketState",
    "Signal",
    "OrderIntent",
    "MarketOrder",
    "LimitOrder",
    "StopOrder",
    "StopLimitOrder",
    "Fill",
    "Position",
    "Trade",
    "PortfolioSnapshot",
    # Exceptions
    "BacktestCoreError",
    "ConfigValidationError",
    "DataError",
    "DataUnavailableError",
    "DataValidationError",
    "SignalValidationError",
    "ExecutionRejection",
    "LedgerInvariantError",
    "RiskLimitBreach",
    "InvalidStateTransition",
    "BacktestAborted",
    "CancellationRequested",
]
