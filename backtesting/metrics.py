"""
Backtesting Metrics Module
==========================

Return, risk, drawdown and trade statistics derived from a run's trade list
and snapshot history.

Conventions:
- Returns, drawdowns and rates are fractions (0.05 = 5%)
- Every ratio returns 0.0 when its denominator is zero or its inputs are
  empty; no metric is ever NaN or infinite
- ``PerformanceEngine.compute`` is a pure function of its arguments

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats as scipy_stats

from config.settings import PerformanceSettings, get_settings
from core.types import PortfolioSnapshot, Trade
from utils.logger import get_logger

logger = get_logger(__name__)


def _finite(value: float) -> float:
    """Collapse NaN and infinities to 0.0."""
    value = float(value)
    return value if math.isfinite(value) else 0.0


def _safe_div(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return _finite(numerator / denominator)


# =============================================================================
# PERIOD DETECTION
# =============================================================================

def detect_periods_per_year(
    timestamps: Sequence[datetime],
    days_per_year: float = 365.25,
    default: float = 252.0,
) -> float:
    """
    Estimate observations per year from the median spacing of timestamps.

    Args:
        timestamps: Sorted timestamps
        days_per_year: Calendar days used to annualize
        default: Returned when spacing cannot be measured

    Returns:
        Estimated periods per year
    """
    if len(timestamps) < 2:
        return default

    diffs = [
        (later - earlier).total_seconds()
        for earlier, later in zip(timestamps[:-1], timestamps[1:])
        if later > earlier
    ]
    if not diffs:
        return default

    median_diff_seconds = float(np.median(diffs))
    return days_per_year * 86_400 / median_diff_seconds


# =============================================================================
# RETURN METRICS
# =============================================================================

def calculate_returns(equity_curve: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Simple returns between consecutive equity values.

    Steps from a non-positive value are dropped.
    """
    if len(equity_curve) < 2:
        return np.array([])

    previous = equity_curve[:-1]
    current = equity_curve[1:]
    mask = previous > 0
    return (current[mask] - previous[mask]) / previous[mask]


def annualized_return(
    initial_value: float,
    final_value: float,
    days: float,
    days_per_year: float = 365.25,
) -> float:
    """
    Compound annual growth over ``days`` calendar days.

    Formula:
        (final / initial) ^ (days_per_year / days) - 1
    """
    if initial_value <= 0 or days <= 0:
        return 0.0

    growth = final_value / initial_value
    if growth <= 0:
        return -1.0

    try:
        return _finite(growth ** (days_per_year / days) - 1)
    except OverflowError:
        return 0.0


def period_returns(
    equity_curve: NDArray[np.float64],
    timestamps: Sequence[datetime],
    freq: str = "M",
) -> pd.Series:
    """
    Return per calendar period (``"M"`` months, ``"W"`` weeks).

    Each period's return runs from the last value of the previous period
    (or the first observation) to the last value of the period.
    """
    if len(equity_curve) < 2 or len(equity_curve) != len(timestamps):
        return pd.Series(dtype=float)

    series = pd.Series(np.asarray(equity_curve, dtype=float), index=pd.DatetimeIndex(timestamps))
    period_end = series.groupby(series.index.to_period(freq)).last()
    start_values = period_end.shift(1)
    start_values.iloc[0] = series.iloc[0]
    returns = (period_end - start_values) / start_values
    return returns.replace([np.inf, -np.inf], np.nan).fillna(0.0)


# =============================================================================
# VOLATILITY METRICS
# =============================================================================

def volatility(
    returns: NDArray[np.float64],
    periods_per_year: float,
) -> float:
    """Annualized sample standard deviation of returns."""
    if len(returns) < 2:
        return 0.0
    return _finite(np.std(returns, ddof=1) * np.sqrt(periods_per_year))


def downside_volatility(
    returns: NDArray[np.float64],
    periods_per_year: float,
    threshold: float = 0.0,
) -> float:
    """Annualized standard deviation of the returns below ``threshold``."""
    downside_returns = returns[returns < threshold]
    if len(downside_returns) < 2:
        return 0.0
    return _finite(np.std(downside_returns, ddof=1) * np.sqrt(periods_per_year))


# =============================================================================
# DRAWDOWN METRICS
# =============================================================================

def calculate_drawdown_series(equity_curve: NDArray[np.float64]) -> NDArray[np.float64]:
    """Drawdown from the running peak at each point, as positive fractions."""
    if len(equity_curve) < 1:
        return np.array([])

    running_max = np.maximum.accumulate(equity_curve)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(running_max > 0, (running_max - equity_curve) / running_max, 0.0)
    return drawdowns


def max_drawdown(equity_curve: NDArray[np.float64]) -> float:
    """Maximum drawdown as a positive fraction."""
    if len(equity_curve) < 2:
        return 0.0
    return _finite(np.max(calculate_drawdown_series(equity_curve)))


def max_drawdown_amount(equity_curve: NDArray[np.float64]) -> float:
    """Largest peak-to-trough decline in currency."""
    if len(equity_curve) < 2:
        return 0.0
    running_max = np.maximum.accumulate(equity_curve)
    return _finite(np.max(running_max - equity_curve))


def max_drawdown_duration(
    equity_curve: NDArray[np.float64],
    timestamps: Sequence[datetime],
) -> timedelta:
    """
    Longest drawdown episode.

    An episode starts at the first observation below the running peak and
    ends when the value regains the peak, or at the last observation if it
    never does.
    """
    if len(equity_curve) < 2 or len(equity_curve) != len(timestamps):
        return timedelta(0)

    longest = timedelta(0)
    peak = equity_curve[0]
    episode_start: datetime | None = None

    for value, ts in zip(equity_curve, timestamps):
        if value >= peak:
            if episode_start is not None:
                longest = max(longest, ts - episode_start)
                episode_start = None
            peak = value
        elif episode_start is None:
            episode_start = ts

    if episode_start is not None:
        longest = max(longest, timestamps[-1] - episode_start)

    return longest


# =============================================================================
# VALUE AT RISK METRICS
# =============================================================================

def var_historical(
    returns: NDArray[np.float64],
    confidence: float = 0.95,
) -> float:
    """
    Historical VaR.

    Returns:
        VaR as positive decimal (loss amount)
    """
    if len(returns) < 10:
        return 0.0
    return _finite(-np.percentile(returns, (1 - confidence) * 100))


def cvar(
    returns: NDArray[np.float64],
    confidence: float = 0.95,
) -> float:
    """
    Conditional VaR (Expected Shortfall).

    Returns:
        CVaR as positive decimal
    """
    if len(returns) < 10:
        return 0.0

    var = var_historical(returns, confidence)
    tail_losses = returns[returns <= -var]
    if len(tail_losses) == 0:
        return var
    return _finite(-np.mean(tail_losses))


# =============================================================================
# DISTRIBUTION METRICS
# =============================================================================

def skewness(returns: NDArray[np.float64]) -> float:
    """Skewness of returns."""
    if len(returns) < 3 or np.std(returns) == 0:
        return 0.0
    return _finite(scipy_stats.skew(returns))


def kurtosis(returns: NDArray[np.float64]) -> float:
    """Excess kurtosis of returns."""
    if len(returns) < 4 or np.std(returns) == 0:
        return 0.0
    return _finite(scipy_stats.kurtosis(returns))


# =============================================================================
# TRADE STATISTICS
# =============================================================================

@dataclass
class TradeStats:
    """Statistics calculated from a list of trades."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    gross_profit: float = 0.0
    gross_loss: float = 0.0
    net_profit: float = 0.0
    profit_factor: float = 0.0

    avg_win: float = 0.0
    avg_loss: float = 0.0
    avg_trade: float = 0.0
    expectancy: float = 0.0
    payoff_ratio: float = 0.0
    sqn: float = 0.0

    largest_win: float = 0.0
    largest_loss: float = 0.0

    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    avg_holding_hours: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def calculate_trade_stats(trades: Sequence[Trade]) -> TradeStats:
    """Calculate trade statistics from net P&L."""
    stats = TradeStats()
    if not trades:
        return stats

    pnls = np.array([t.net_pnl for t in trades], dtype=float)
    win_pnls = pnls[pnls > 0]
    loss_pnls = pnls[pnls < 0]

    stats.total_trades = len(trades)
    stats.winning_trades = len(win_pnls)
    stats.losing_trades = len(loss_pnls)
    stats.win_rate = stats.winning_trades / stats.total_trades

    stats.gross_profit = float(win_pnls.sum())
    stats.gross_loss = float(abs(loss_pnls.sum()))
    stats.net_profit = float(pnls.sum())
    stats.profit_factor = _safe_div(stats.gross_profit, stats.gross_loss)

    if len(win_pnls):
        stats.avg_win = float(win_pnls.mean())
        stats.largest_win = float(win_pnls.max())
    if len(loss_pnls):
        stats.avg_loss = float(loss_pnls.mean())
        stats.largest_loss = float(loss_pnls.min())

    stats.avg_trade = float(pnls.mean())
    stats.expectancy = stats.avg_trade
    stats.payoff_ratio = abs(_safe_div(stats.avg_win, stats.avg_loss))

    if len(pnls) >= 2:
        std = float(np.std(pnls, ddof=1))
        stats.sqn = _safe_div(stats.avg_trade, std) * math.sqrt(len(pnls))

    # Consecutive wins/losses
    current_wins = 0
    current_losses = 0
    for pnl in pnls:
        if pnl > 0:
            current_wins += 1
            current_losses = 0
            stats.max_consecutive_wins = max(stats.max_consecutive_wins, current_wins)
        elif pnl < 0:
            current_losses += 1
            current_wins = 0
            stats.max_consecutive_losses = max(stats.max_consecutive_losses, current_losses)
        else:
            current_wins = 0
            current_losses = 0

    stats.avg_holding_hours = float(np.mean([t.holding_hours for t in trades]))
    return stats


def symbol_attribution(trades: Sequence[Trade]) -> dict[str, dict[str, float]]:
    """Per-symbol P&L, trade count, win rate and average trade."""
    grouped: dict[str, list[float]] = {}
    for trade in trades:
        grouped.setdefault(trade.symbol, []).append(trade.net_pnl)

    attribution: dict[str, dict[str, float]] = {}
    for symbol, pnls in grouped.items():
        arr = np.asarray(pnls, dtype=float)
        attribution[symbol] = {
            "total_pnl": float(arr.sum()),
            "trades": float(len(arr)),
            "win_rate": float(np.mean(arr > 0)),
            "avg_trade": float(arr.mean()),
        }
    return attribution


# =============================================================================
# PERFORMANCE METRICS
# =============================================================================

@dataclass
class MonthlyPerformance:
    """One row of the monthly return table."""
    month: str
    return_pct: float
    volatility: float
    sharpe_ratio: float
    max_drawdown: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "return_pct": self.return_pct,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
        }


@dataclass
class RollingWindow:
    """Metrics over one trailing window."""
    start: datetime
    end: datetime
    return_pct: float
    volatility: float
    sharpe_ratio: float
    max_drawdown: float
    win_rate: float
    trades: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "return_pct": self.return_pct,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "win_rate": self.win_rate,
            "trades": self.trades,
        }


@dataclass
class PerformanceMetrics:
    """Flat record of run statistics."""

    # Returns
    initial_capital: float = 0.0
    final_value: float = 0.0
    total_return: float = 0.0
    total_return_pct: float = 0.0
    annualized_return: float = 0.0
    cagr: float = 0.0

    # Risk
    volatility: float = 0.0
    downside_volatility: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_amount: float = 0.0
    max_drawdown_duration_days: float = 0.0
    var_95: float = 0.0
    cvar_95: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0

    # Risk-adjusted
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    recovery_factor: float = 0.0

    # Trades
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    average_trade: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    expectancy: float = 0.0
    payoff_ratio: float = 0.0
    sqn: float = 0.0
    average_holding_hours: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    # Consistency
    winning_months: int = 0
    losing_months: int = 0
    best_month: float = 0.0
    worst_month: float = 0.0
    winning_weeks: int = 0
    losing_weeks: int = 0

    # Execution
    fill_rate: float = 0.0
    average_slippage_bps: float = 0.0
    total_commission: float = 0.0

    # Metadata
    periods_per_year: float = 0.0
    duration_days: float = 0.0

    # Tables
    monthly_returns: list[MonthlyPerformance] = field(default_factory=list)
    symbol_attribution: dict[str, dict[str, float]] = field(default_factory=dict)

    def scalars(self) -> dict[str, float]:
        """Named numeric fields only."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("monthly_returns", "symbol_attribution")
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = self.scalars()
        data["monthly_returns"] = [m.to_dict() for m in self.monthly_returns]
        data["symbol_attribution"] = {k: dict(v) for k, v in self.symbol_attribution.items()}
        return data


class PerformanceEngine:
    """
    Derives PerformanceMetrics from trades and snapshots.

    Holds configuration only; ``compute`` and ``rolling`` keep no state
    between calls.

    Example:
        engine = PerformanceEngine(risk_free_rate=0.02)
        metrics = engine.compute(trades, snapshots, initial_capital=100_000)
    """

    def __init__(
        self,
        risk_free_rate: float | None = None,
        periods_per_year: float | None = None,
        performance_settings: PerformanceSettings | None = None,
        default_periods_per_year: float | None = None,
    ):
        """
        Args:
            risk_free_rate: Annual risk-free rate (default from settings)
            periods_per_year: Snapshot frequency for annualizing volatility;
                detected from snapshot spacing when None
            performance_settings: Override for the global settings section
            default_periods_per_year: Used when spacing cannot be measured,
                typically the bar timeframe's figure (default: trading days)
        """
        self.settings = performance_settings or get_settings().performance
        self.risk_free_rate = (
            self.settings.risk_free_rate if risk_free_rate is None else risk_free_rate
        )
        self.periods_per_year = periods_per_year
        self.default_periods_per_year = default_periods_per_year

    def _periods(self, timestamps: Sequence[datetime]) -> float:
        if self.periods_per_year:
            return self.periods_per_year
        return detect_periods_per_year(
            timestamps,
            days_per_year=self.settings.days_per_year,
            default=float(self.default_periods_per_year or self.settings.trading_days_per_year),
        )

    def compute(
        self,
        trades: Sequence[Trade],
        snapshots: Sequence[PortfolioSnapshot],
        initial_capital: float,
        execution_stats: dict[str, Any] | None = None,
    ) -> PerformanceMetrics:
        """
        Calculate all performance metrics.

        Args:
            trades: Closed trades in recording order
            snapshots: Snapshots in time order
            initial_capital: Starting capital of the run
            execution_stats: Optional ExecutionStats.to_dict() output

        Returns:
            PerformanceMetrics
        """
        metrics = PerformanceMetrics(initial_capital=initial_capital)

        timestamps = [s.timestamp for s in snapshots]
        final_value = float(snapshots[-1].total_value) if snapshots else initial_capital
        periods = self._periods(timestamps)

        # The curve starts from the capital before the first bar's fills
        curve_times = timestamps[:1] + timestamps
        equity = np.array(
            [initial_capital] + [s.total_value for s in snapshots] if snapshots else [],
            dtype=float,
        )
        metrics.periods_per_year = periods
        metrics.final_value = final_value

        # Return metrics
        metrics.total_return = final_value - initial_capital
        metrics.total_return_pct = _safe_div(final_value - initial_capital, initial_capital)
        days = (timestamps[-1] - timestamps[0]).total_seconds() / 86_400 if len(timestamps) >= 2 else 0.0
        metrics.duration_days = days
        metrics.annualized_return = annualized_return(
            initial_capital, final_value, days, self.settings.days_per_year
        )
        metrics.cagr = metrics.annualized_return

        # Risk metrics
        returns = calculate_returns(equity)
        metrics.volatility = volatility(returns, periods)
        metrics.downside_volatility = downside_volatility(returns, periods)
        metrics.max_drawdown = max_drawdown(equity)
        metrics.max_drawdown_amount = max_drawdown_amount(equity)
        metrics.max_drawdown_duration_days = (
            max_drawdown_duration(equity, curve_times).total_seconds() / 86_400
        )
        metrics.var_95 = var_historical(returns, 0.95)
        metrics.cvar_95 = cvar(returns, 0.95)
        metrics.skewness = skewness(returns)
        metrics.kurtosis = kurtosis(returns)

        # Risk-adjusted metrics
        excess = metrics.annualized_return - self.risk_free_rate
        metrics.sharpe_ratio = _safe_div(excess, metrics.volatility)
        metrics.sortino_ratio = _safe_div(excess, metrics.downside_volatility)
        metrics.calmar_ratio = _safe_div(metrics.annualized_return, metrics.max_drawdown)

        # Trade statistics
        trade_stats = calculate_trade_stats(trades)
        metrics.total_trades = trade_stats.total_trades
        metrics.winning_trades = trade_stats.winning_trades
        metrics.losing_trades = trade_stats.losing_trades
        metrics.win_rate = trade_stats.win_rate
        metrics.profit_factor = trade_stats.profit_factor
        metrics.gross_profit = trade_stats.gross_profit
        metrics.gross_loss = trade_stats.gross_loss
        metrics.average_win = trade_stats.avg_win
        metrics.average_loss = trade_stats.avg_loss
        metrics.average_trade = trade_stats.avg_trade
        metrics.largest_win = trade_stats.largest_win
        metrics.largest_loss = trade_stats.largest_loss
        metrics.expectancy = trade_stats.expectancy
        metrics.payoff_ratio = trade_stats.payoff_ratio
        metrics.sqn = trade_stats.sqn
        metrics.average_holding_hours = trade_stats.avg_holding_hours
        metrics.max_consecutive_wins = trade_stats.max_consecutive_wins
        metrics.max_consecutive_losses = trade_stats.max_consecutive_losses
        metrics.recovery_factor = _safe_div(metrics.total_return, metrics.max_drawdown_amount)
        metrics.symbol_attribution = symbol_attribution(trades)

        # Consistency
        monthly = period_returns(equity, curve_times, "M")
        if len(monthly):
            metrics.winning_months = int((monthly > 0).sum())
            metrics.losing_months = int((monthly < 0).sum())
            metrics.best_month = float(monthly.max())
            metrics.worst_month = float(monthly.min())
            metrics.monthly_returns = self._monthly_table(equity, curve_times, monthly, periods)

        weekly = period_returns(equity, curve_times, "W")
        if len(weekly):
            metrics.winning_weeks = int((weekly > 0).sum())
            metrics.losing_weeks = int((weekly < 0).sum())

        # Execution
        if execution_stats:
            metrics.fill_rate = float(execution_stats.get("fill_rate", 0.0))
            metrics.average_slippage_bps = float(execution_stats.get("average_slippage_bps", 0.0))
            metrics.total_commission = float(execution_stats.get("total_commission", 0.0))
        else:
            metrics.total_commission = float(
                sum(t.entry_commission + t.exit_commission for t in trades)
            )

        return metrics

    def _monthly_table(
        self,
        equity: NDArray[np.float64],
        timestamps: Sequence[datetime],
        monthly: pd.Series,
        periods: float,
    ) -> list[MonthlyPerformance]:
        series = pd.Series(equity, index=pd.DatetimeIndex(timestamps))
        rows: list[MonthlyPerformance] = []
        for period, group in series.groupby(series.index.to_period("M")):
            values = group.to_numpy(dtype=float)
            returns = calculate_returns(values)
            vol = volatility(returns, periods)
            mean_return = float(np.mean(returns)) if len(returns) else 0.0
            rows.append(
                MonthlyPerformance(
                    month=str(period),
                    return_pct=float(monthly.get(period, 0.0)),
                    volatility=vol,
                    sharpe_ratio=_safe_div(mean_return * periods - self.risk_free_rate, vol),
                    max_drawdown=max_drawdown(values),
                )
            )
        return rows

    def rolling(
        self,
        trades: Sequence[Trade],
        snapshots: Sequence[PortfolioSnapshot],
        window: timedelta | None = None,
    ) -> list[RollingWindow]:
        """
        Trailing-window metrics ending at each snapshot.

        Args:
            trades: Closed trades; counted in a window by exit time
            snapshots: Snapshots in time order
            window: Window length (default ``rolling_window_days`` from settings)

        Returns:
            One RollingWindow per snapshot whose window holds two or more snapshots
        """
        window = window or timedelta(days=self.settings.rolling_window_days)
        timestamps = [s.timestamp for s in snapshots]
        equity = np.array([s.total_value for s in snapshots], dtype=float)
        periods = self._periods(timestamps)

        windows: list[RollingWindow] = []
        start_idx = 0
        for end_idx, end in enumerate(timestamps):
            start = end - window
            while timestamps[start_idx] < start:
                start_idx += 1
            values = equity[start_idx:end_idx + 1]
            if len(values) < 2:
                continue

            returns = calculate_returns(values)
            vol = volatility(returns, periods)
            mean_return = float(np.mean(returns)) if len(returns) else 0.0
            window_trades = [t for t in trades if start <= t.exit_time <= end]
            wins = sum(1 for t in window_trades if t.net_pnl > 0)

            windows.append(
                RollingWindow(
                    start=start,
                    end=end,
                    return_pct=_safe_div(values[-1] - values[0], values[0]),
                    volatility=vol,
                    sharpe_ratio=_safe_div(mean_return * periods - self.risk_free_rate, vol),
                    max_drawdown=max_drawdown(values),
                    win_rate=_safe_div(wins, len(window_trades)),
                    trades=len(window_trades),
                )
            )
        return windows


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Period detection
    "detect_periods_per_year",
    # Return metrics
    "calculate_returns",
    "annualized_return",
    "period_returns",
    # Volatility metrics
    "volatility",
    "downside_volatility",
    # Drawdown metrics
    "calculate_drawdown_series",
    "max_drawdown",
    "max_drawdown_amount",
    "max_drawdown_duration",
    # VaR metrics
    "var_historical",
    "cvar",
    # Distribution metrics
    "skewness",
    "kurtosis",
    # Trade statistics
    "TradeStats",
    "calculate_trade_stats",
    "symbol_attribution",
    # Classes
    "MonthlyPerformance",
    "RollingWindow",
    "PerformanceMetrics",
    "PerformanceEngine",
]
