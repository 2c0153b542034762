"""
Backtesting Module
==================

Deterministic event-driven backtesting core.
Replays historical bars through a strategy with realistic execution
modeling, position tracking, and performance analysis.

Components:
- scheduler: Multi-symbol bar merge and same-timestamp event ordering
- engine: Run lifecycle controller
- execution: Slippage, commission, latency and fill models
- portfolio: Cash, positions, trades and snapshots
- risk: Pre-trade checks, drawdown monitoring, protective exits
- metrics: Performance metrics and analytics
- data / validation: In-memory data provider and data quality checks
- reporting: JSON and text reports

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

# =============================================================================
# ENGINE IMPORTS
# =============================================================================

from backtesting.engine import (
    BacktestController,
    ProgressReport,
    RunLogEntry,
    RunResult,
    run_backtest,
    validate_signal,
)
from backtesting.run_config import CommissionTier, MarketConditions, RunConfig
from backtesting.scheduler import EventScheduler, PriorityEventQueue, TimeStep

# =============================================================================
# EXECUTION IMPORTS
# =============================================================================

from backtesting.execution import (
    # Slippage Models
    SlippageModel,
    FixedSlippage,
    LinearSlippage,
    SqrtSlippage,
    LogarithmicSlippage,
    create_slippage_model,
    # Commission Models
    CommissionModel,
    FlatCommission,
    PercentageCommission,
    TieredCommission,
    create_commission_model,
    # Fills
    PartialFillModel,
    ExecutionStats,
    ExecutionModel,
)

# =============================================================================
# PORTFOLIO AND RISK IMPORTS
# =============================================================================

from backtesting.portfolio import LedgerUpdate, PortfolioLedger
from backtesting.risk import RiskAlert, RiskConfig, RiskLevel, RiskManager

# =============================================================================
# METRICS IMPORTS
# =============================================================================

from backtesting.metrics import (
    MonthlyPerformance,
    PerformanceEngine,
    PerformanceMetrics,
    RollingWindow,
    TradeStats,
    calculate_trade_stats,
)

# =============================================================================
# DATA AND REPORTING IMPORTS
# =============================================================================

from backtesting.data import InMemoryDataProvider, bars_from_frame, load_csv, normalize_frame
from backtesting.validation import DataQualityValidator, ValidationResult
from backtesting.reporting import ReportGenerator

# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # === Engine ===
    "BacktestController",
    "ProgressReport",
    "RunLogEntry",
    "RunResult",
    "run_backtest",
    "validate_signal",
    "RunConfig",
    "CommissionTier",
    "MarketConditions",
    "EventScheduler",
    "PriorityEventQueue",
    "TimeStep",

    # === Execution ===
    "SlippageModel",
    "FixedSlippage",
    "LinearSlippage",
    "SqrtSlippage",
    "LogarithmicSlippage",
    "create_slippage_model",
    "CommissionModel",
    "FlatCommission",
    "PercentageCommission",
    "TieredCommission",
    "create_commission_model",
    "PartialFillModel",
    "ExecutionStats",
    "ExecutionModel",

    # === Portfolio and risk ===
    "LedgerUpdate",
    "PortfolioLedger",
    "RiskAlert",
    "RiskConfig",
    "RiskLevel",
    "RiskManager",

    # === Metrics ===
    "MonthlyPerformance",
    "PerformanceEngine",
    "PerformanceMetrics",
    "RollingWindow",
    "TradeStats",
    "calculate_trade_stats",

    # === Data and reporting ===
    "InMemoryDataProvider",
    "bars_from_frame",
    "load_csv",
    "normalize_frame",
    "DataQualityValidator",
    "ValidationResult",
    "ReportGenerator",
]
