"""
Events Module
=============

Simulation events exchanged inside a backtest run.

Events carry simulated market time only. Within one timestamp they are
processed in priority order (lower value first) and, for equal priority,
in the order they were queued.

Event Types:
- MarketDataEvent: A bar became visible
- SignalEvent: Strategy produced a signal
- OrderEvent: Order intent was placed or cancelled
- FillEvent: Execution model filled (or rejected) an order
- PositionEvent: Position opened or closed
- RiskEvent: Stop-loss, take-profit or limit breach
- PortfolioUpdateEvent: Snapshot recorded
- LifecycleEvent: Run started, ended or failed

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from core.types import Bar, Fill, OrderIntent, PortfolioSnapshot, Signal, Trade


# =============================================================================
# EVENT TYPES
# =============================================================================

class EventType(str, Enum):
    """Event type enumeration."""
    BACKTEST_START = "backtest_start"
    MARKET_DATA = "market_data"
    SIGNAL_GENERATED = "signal_generated"
    ORDER_PLACED = "order_placed"
    ORDER_FILLED = "order_filled"
    ORDER_CANCELLED = "order_cancelled"
    POSITION_OPENED = "position_opened"
    POSITION_CLOSED = "position_closed"
    STOP_LOSS_HIT = "stop_loss_hit"
    TAKE_PROFIT_HIT = "take_profit_hit"
    RISK_LIMIT_BREACH = "risk_limit_breach"
    PORTFOLIO_UPDATE = "portfolio_update"
    BACKTEST_END = "backtest_end"
    ERROR = "error"

    @property
    def priority(self) -> int:
        return EVENT_PRIORITIES[self]


EVENT_PRIORITIES: dict[EventType, int] = {
    EventType.BACKTEST_START: 0,
    EventType.MARKET_DATA: 1,
    EventType.SIGNAL_GENERATED: 2,
    EventType.ORDER_PLACED: 3,
    EventType.ORDER_FILLED: 4,
    EventType.ORDER_CANCELLED: 5,
    EventType.POSITION_OPENED: 6,
    EventType.POSITION_CLOSED: 7,
    EventType.STOP_LOSS_HIT: 8,
    EventType.TAKE_PROFIT_HIT: 8,
    EventType.RISK_LIMIT_BREACH: 9,
    EventType.PORTFOLIO_UPDATE: 10,
    EventType.BACKTEST_END: 11,
    EventType.ERROR: 99,
}


# =============================================================================
# BASE EVENT
# =============================================================================

@dataclass
class SimEvent:
    """
    Base simulation event.

    Attributes:
        timestamp: Simulated market time
        event_type: Type of event
        symbol: Symbol the event concerns, if any
    """
    timestamp: datetime
    event_type: EventType
    symbol: str | None = None

    @property
    def priority(self) -> int:
        return self.event_type.priority

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "priority": self.priority,
            "symbol": self.symbol,
        }


# =============================================================================
# CONCRETE EVENTS
# =============================================================================

@dataclass
class MarketDataEvent(SimEvent):
    """A bar became visible to the strategy."""
    bar: Bar | None = None

    @classmethod
    def from_bar(cls, bar: Bar) -> "MarketDataEvent":
        return cls(
            timestamp=bar.timestamp,
            event_type=EventType.MARKET_DATA,
            symbol=bar.symbol,
            bar=bar,
        )


@dataclass
class SignalEvent(SimEvent):
    """Strategy produced a non-hold signal."""
    signal: Signal | None = None
    signal_id: str = ""


@dataclass
class OrderEvent(SimEvent):
    """Order placed or cancelled."""
    order: OrderIntent | None = None
    reason: str | None = None


@dataclass
class FillEvent(SimEvent):
    """Order executed, possibly partially, or rejected."""
    fill: Fill | None = None


@dataclass
class PositionEvent(SimEvent):
    """Position opened or closed."""
    quantity: float = 0.0
    price: float = 0.0
    trade: Trade | None = None


@dataclass
class RiskEvent(SimEvent):
    """Risk trigger or limit breach."""
    message: str = ""
    value: float | None = None
    limit: float | None = None


@dataclass
class PortfolioUpdateEvent(SimEvent):
    """Ledger snapshot recorded."""
    snapshot: PortfolioSnapshot | None = None


@dataclass
class LifecycleEvent(SimEvent):
    """Run start, end or error."""
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "EventType",
    "EVENT_PRIORITIES",
    "SimEvent",
    "MarketDataEvent",
    "SignalEvent",
    "OrderEvent",
    "FillEvent",
    "PositionEvent",
    "RiskEvent",
    "PortfolioUpdateEvent",
    "LifecycleEvent",
]
