"""
Core Module
===========

Building blocks shared by every part of the simulator:
- enums.py: Closed vocabularies (sides, order types, states, timeframes)
- types.py: Value types and the exception hierarchy
- events.py: Simulation events and their priority table
- interfaces.py: DataProvider and StrategyAdapter contracts
"""

from core.enums import (
    BacktestState,
    CommissionStructure,
    ExitReason,
    LogLevel,
    OrderSide,
    OrderType,
    PositionSide,
    SignalAction,
    SlippageModelType,
    TimeInForce,
    Timeframe,
)
from core.events import (
    EVENT_PRIORITIES,
    EventType,
    FillEvent,
    LifecycleEvent,
    MarketDataEvent,
    OrderEvent,
    PortfolioUpdateEvent,
    PositionEvent,
    RiskEvent,
    SignalEvent,
    SimEvent,
)
from core.interfaces import (
    AvailabilityReport,
    CallableStrategy,
    DataProvider,
    StrategyAdapter,
    StrategyContext,
)
from core.types import (
    BacktestAborted,
    BacktestCoreError,
    Bar,
    CancellationRequested,
    ConfigValidationError,
    DataError,
    DataUnavailableError,
    DataValidationError,
    ExecutionRejection,
    Fill,
    InvalidStateTransition,
    LedgerInvariantError,
    LimitOrder,
    MarketOrder,
    MarketState,
    OrderIntent,
    PortfolioSnapshot,
    Position,
    RiskLimitBreach,
    Signal,
    SignalValidationError,
    StopLimitOrder,
    StopOrder,
    Trade,
)

__all__ = [
    # Enums
    "BacktestState",
    "CommissionStructure",
    "ExitReason",
    "LogLevel",
    "OrderSide",
    "OrderType",
    "PositionSide",
    "SignalAction",
    "SlippageModelType",
    "TimeInForce",
    "Timeframe",
    # Events
    "EVENT_PRIORITIES",
    "EventType",
    "FillEvent",
    "LifecycleEvent",
    "MarketDataEvent",
    "OrderEvent",
    "PortfolioUpdateEvent",
    "PositionEvent",
    "RiskEvent",
    "SignalEvent",
    "SimEvent",
    # Interfaces
    "AvailabilityReport",
    "CallableStrategy",
    "DataProvider",
    "StrategyAdapter",
    "StrategyContext",
    # Types
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
    "BacktestAborted",
    "BacktestCoreError",
    "CancellationRequested",
    "ConfigValidationError",
    "DataError",
    "DataUnavailableError",
    "DataValidationError",
    "ExecutionRejection",
    "InvalidStateTransition",
    "LedgerInvariantError",
    "RiskLimitBreach",
    "SignalValidationError",
]
