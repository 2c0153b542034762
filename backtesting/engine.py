"""
Backtesting Engine Module
=========================

Event-driven backtest controller.

The controller owns the run lifecycle

    idle -> initializing -> running <-> paused -> completed | error | cancelled

and drives one simulated timestamp at a time: market data for every symbol
stamped at that time is queued, then signals, orders, fills and position
events derived from it are drained in priority order before the scheduler
advances. The strategy is awaited when it returns a coroutine, so nothing
from a later bar is processed while it runs.

Cancellation and pausing are cooperative and take effect at bar
boundaries only.

Example:
    controller = BacktestController()
    result = await controller.start_run(config, strategy, provider)
    print(result.metrics.sharpe_ratio)

    # or, from synchronous code
    result = run_backtest(config, strategy, provider)

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import asyncio
import inspect
import math
import numbers
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import psutil
from pydantic import ValidationError

from backtesting.execution import ExecutionModel
from backtesting.metrics import PerformanceEngine, PerformanceMetrics
from backtesting.portfolio import PortfolioLedger
from backtesting.risk import RiskAlert, RiskLevel, RiskManager
from backtesting.run_config import RunConfig
from backtesting.scheduler import EventScheduler, PriorityEventQueue, TimeStep
from backtesting.validation import DataQualityValidator
from config.settings import EngineSettings, get_settings
from core.enums import (
    BacktestState,
    ExitReason,
    LogLevel,
    OrderSide,
    OrderType,
    SignalAction,
)
from core.events import (
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
    DataUnavailableError,
    InvalidStateTransition,
    LedgerInvariantError,
    LimitOrder,
    MarketOrder,
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
from utils.logger import PerformanceLogger, TradeLogger, get_logger

logger = get_logger(__name__)


_TRANSITIONS: dict[BacktestState, frozenset[BacktestState]] = {
    BacktestState.IDLE: frozenset({BacktestState.INITIALIZING}),
    BacktestState.INITIALIZING: frozenset(
        {BacktestState.RUNNING, BacktestState.ERROR, BacktestState.CANCELLED}
    ),
    BacktestState.RUNNING: frozenset(
        {BacktestState.PAUSED, BacktestState.COMPLETED, BacktestState.ERROR, BacktestState.CANCELLED}
    ),
    BacktestState.PAUSED: frozenset(
        {BacktestState.RUNNING, BacktestState.ERROR, BacktestState.CANCELLED}
    ),
    BacktestState.COMPLETED: frozenset({BacktestState.IDLE}),
    BacktestState.ERROR: frozenset({BacktestState.IDLE}),
    BacktestState.CANCELLED: frozenset({BacktestState.IDLE}),
}


async def _resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True, slots=True)
class RunLogEntry:
    """One entry of a run's own log, stamped with simulated time."""
    timestamp: datetime | None
    level: LogLevel
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "level": self.level.value,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


@dataclass(frozen=True, slots=True)
class ProgressReport:
    """Read-only progress snapshot, safe to hand to another thread."""
    state: BacktestState
    current_bar: int = 0
    total_bars: int = 0
    percent: float = 0.0
    current_drawdown: float = 0.0
    trades_completed: int = 0
    current_time: datetime | None = None
    elapsed_seconds: float = 0.0
    bars_per_second: float = 0.0
    eta_seconds: float | None = None
    memory_mb: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "current_bar": self.current_bar,
            "total_bars": self.total_bars,
            "percent": self.percent,
            "current_drawdown": self.current_drawdown,
            "trades_completed": self.trades_completed,
            "current_time": self.current_time.isoformat() if self.current_time else None,
            "elapsed_seconds": self.elapsed_seconds,
            "bars_per_second": self.bars_per_second,
            "eta_seconds": self.eta_seconds,
            "memory_mb": self.memory_mb,
        }


@dataclass
class RunResult:
    """
    Final aggregate of one run.

    Produced for ``completed`` and ``cancelled`` runs and attached to
    BacktestAborted for ``error`` runs.
    """
    run_id: str
    state: BacktestState
    config: RunConfig | None
    trades: list[Trade] = field(default_factory=list)
    snapshots: list[PortfolioSnapshot] = field(default_factory=list)
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    log: list[RunLogEntry] = field(default_factory=list)
    open_positions: list[Position] = field(default_factory=list)
    execution_stats: dict[str, Any] = field(default_factory=dict)
    slippage_analysis: dict[str, dict[str, float]] = field(default_factory=dict)
    risk_alerts: list[RiskAlert] = field(default_factory=list)
    bars_processed: int = 0
    total_bars: int = 0
    events_processed: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float = 0.0
    stop_reason: str | None = None

    @property
    def initial_capital(self) -> float:
        return self.config.initial_capital if self.config else 0.0

    @property
    def final_value(self) -> float:
        if self.snapshots:
            return self.snapshots[-1].total_value
        return self.initial_capital

    @property
    def errors(self) -> list[RunLogEntry]:
        return [e for e in self.log if e.level is LogLevel.ERROR]

    @property
    def warnings(self) -> list[RunLogEntry]:
        return [e for e in self.log if e.level is LogLevel.WARNING]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "config": self.config.to_dict() if self.config else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "bars_processed": self.bars_processed,
            "total_bars": self.total_bars,
            "events_processed": self.events_processed,
            "elapsed_seconds": self.elapsed_seconds,
            "stop_reason": self.stop_reason,
            "final_value": self.final_value,
            "metrics": self.metrics.to_dict(),
            "execution_stats": dict(self.execution_stats),
            "slippage_analysis": {s: dict(v) for s, v in self.slippage_analysis.items()},
            "trades": [t.to_dict() for t in self.trades],
            "snapshots": [s.to_dict() for s in self.snapshots],
            "open_positions": [p.to_dict() for p in self.open_positions],
            "risk_alerts": [a.to_dict() for a in self.risk_alerts],
            "log": [e.to_dict() for e in self.log],
        }


# =============================================================================
# SIGNAL VALIDATION
# =============================================================================

def validate_signal(signal: Signal, symbols: tuple[str, ...] | list[str]) -> Signal:
    """
    Check a strategy signal and normalize its enum fields.

    Raises:
        SignalValidationError: Unknown action or order type, unknown symbol,
            strength/confidence outside [0, 1], a quantity or price that is
            not a finite number, non-positive quantity or protective level
    """
    if not isinstance(signal, Signal):
        raise SignalValidationError(f"Strategy returned {type(signal).__name__}, expected Signal")

    try:
        action = SignalAction(signal.action)
    except ValueError:
        raise SignalValidationError(f"Unknown signal action: {signal.action!r}") from None
    try:
        order_type = OrderType(signal.order_type)
    except ValueError:
        raise SignalValidationError(f"Unknown order type: {signal.order_type!r}") from None

    if signal.symbol not in symbols:
        raise SignalValidationError(f"Signal for unknown symbol: {signal.symbol!r}")

    for name in ("strength", "confidence"):
        value = getattr(signal, name)
        if not _is_number(value) or not math.isfinite(value) or not 0.0 <= value <= 1.0:
            raise SignalValidationError(f"Signal {name} must be in [0, 1], got {value!r}")

    for name in ("quantity", "limit_price", "stop_price", "stop_loss", "take_profit"):
        value = getattr(signal, name)
        if value is None:
            continue
        if not _is_number(value) or not math.isfinite(value):
            raise SignalValidationError(f"Signal {name} must be a finite number, got {value!r}")

    if signal.quantity is not None and signal.quantity <= 0:
        raise SignalValidationError(f"Signal quantity must be positive, got {signal.quantity}")
    for name in ("stop_loss", "take_profit"):
        value = getattr(signal, name)
        if value is not None and value <= 0:
            raise SignalValidationError(f"Signal {name} must be positive, got {value}")

    return replace(signal, action=action, order_type=order_type)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


# =============================================================================
# BACKTEST CONTROLLER
# =============================================================================

class BacktestController:
    """
    Runs one backtest at a time.

    Every run builds fresh ledger, execution and risk components, so a
    controller can be reused sequentially but never shares state between
    runs. ``cancel``, ``pause``, ``resume`` and ``get_progress`` may be
    called from other tasks or threads while a run is in progress.
    """

    def __init__(
        self,
        engine_settings: EngineSettings | None = None,
        trade_log_file: str | None = None,
        pause_poll_seconds: float = 0.05,
    ):
        """
        Initialize controller.

        Args:
            engine_settings: Override for the global engine settings section
            trade_log_file: Optional dedicated file for ORDER/FILL/TRADE lines
            pause_poll_seconds: How often a paused run checks for resume
        """
        self.settings = engine_settings or get_settings().engine
        self.trade_log_file = trade_log_file
        self.pause_poll_seconds = pause_poll_seconds

        self._state = BacktestState.IDLE
        self._state_lock = threading.Lock()
        self._cancel_requested = threading.Event()
        self._pause_requested = threading.Event()
        self._progress = ProgressReport(state=BacktestState.IDLE)
        self._perf_logger = PerformanceLogger()

        self.config: RunConfig | None = None
        self.ledger: PortfolioLedger | None = None
        self.execution: ExecutionModel | None = None
        self.risk: RiskManager | None = None
        self.performance: PerformanceEngine | None = None
        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self._log: list[RunLogEntry] = []
        self._queue = PriorityEventQueue()
        self._history: dict[str, deque[Bar]] = {}
        self._last_bars: dict[str, Bar] = {}
        self._pending_exits: set[str] = set()
        self._protective_levels: dict[str, tuple[float | None, float | None]] = {}
        self._strategy: StrategyAdapter | None = None
        self._scheduler: EventScheduler | None = None
        self._trade_logger: TradeLogger | None = None

        self._order_counter = 0
        self._signal_counter = 0
        self._error_count = 0
        self._warning_count = 0
        self._events_processed = 0
        self._bars_processed = 0
        self._total_bars = 0
        self._current_time: datetime | None = None
        self._first_time: datetime | None = None
        self._warmup_complete = False
        self._stop_reason: str | None = None

        self._wall_start = 0.0
        self._last_progress_log = 0.0
        self._memory_mb = 0.0

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    @property
    def state(self) -> BacktestState:
        with self._state_lock:
            return self._state

    def _transition(self, new_state: BacktestState) -> None:
        with self._state_lock:
            if new_state not in _TRANSITIONS[self._state]:
                raise InvalidStateTransition(
                    f"Cannot move from {self._state.value} to {new_state.value}"
                )
            old_state = self._state
            self._state = new_state
        logger.debug(f"State {old_state.value} -> {new_state.value}")
        self._publish_progress()

    def cancel(self) -> None:
        """Request cancellation; honored at the next bar boundary. Idempotent."""
        state = self.state
        if state in (BacktestState.INITIALIZING, BacktestState.RUNNING, BacktestState.PAUSED):
            if not self._cancel_requested.is_set():
                logger.info("Cancellation requested")
            self._cancel_requested.set()

    def pause(self) -> None:
        """Request a pause at the next bar boundary."""
        if self.state is BacktestState.RUNNING:
            self._pause_requested.set()

    def resume(self) -> None:
        """Resume a paused run."""
        self._pause_requested.clear()

    def get_progress(self) -> ProgressReport:
        """Latest progress snapshot."""
        with self._state_lock:
            return self._progress

    def _publish_progress(self) -> None:
        elapsed = time.perf_counter() - self._wall_start if self._wall_start else 0.0
        bars_per_second = self._bars_processed / elapsed if elapsed > 0 else 0.0
        remaining = self._total_bars - self._bars_processed
        eta = remaining / bars_per_second if bars_per_second > 0 else None
        percent = 100.0 * self._bars_processed / self._total_bars if self._total_bars else 0.0

        with self._state_lock:
            self._progress = ProgressReport(
                state=self._state,
                current_bar=self._bars_processed,
                total_bars=self._total_bars,
                percent=percent,
                current_drawdown=self.ledger.current_drawdown if self.ledger else 0.0,
                trades_completed=self.ledger.num_trades if self.ledger else 0,
                current_time=self._current_time,
                elapsed_seconds=elapsed,
                bars_per_second=bars_per_second,
                eta_seconds=eta,
                memory_mb=self._memory_mb,
            )

    # =========================================================================
    # RUN LOG
    # =========================================================================

    def _record(self, level: LogLevel, message: str, **context: Any) -> None:
        """Write to loguru and, for warnings/errors or verbose runs, to the run log."""
        getattr(logger, level.value)(message)
        verbose = self.config.verbose_log if self.config else False
        if level in (LogLevel.WARNING, LogLevel.ERROR) or verbose:
            self._log.append(RunLogEntry(self._current_time, level, message, context))
        if level is LogLevel.WARNING:
            self._warning_count += 1

    def _record_error(self, message: str, **context: Any) -> None:
        """Count a recoverable error; raise when the run may not continue."""
        self._error_count += 1
        self._record(LogLevel.ERROR, message, **context)
        if self._current_time is not None:
            self._queue.push(
                LifecycleEvent(
                    self._current_time,
                    EventType.ERROR,
                    symbol=context.get("symbol"),
                    message=message,
                )
            )
        if not self.config.continue_on_error:
            raise BacktestAborted(f"Event processing failed: {message}")

    # =========================================================================
    # PUBLIC ENTRY POINT
    # =========================================================================

    async def start_run(
        self,
        config: RunConfig | Mapping[str, Any],
        strategy: StrategyAdapter | Callable[[StrategyContext], Any],
        provider: DataProvider,
    ) -> RunResult:
        """
        Execute one backtest.

        Args:
            config: Run configuration (or a mapping to build one from)
            strategy: StrategyAdapter or a plain (async) function of the context
            provider: Historical data source

        Returns:
            RunResult for a ``completed`` or ``cancelled`` run

        Raises:
            BacktestAborted: The run ended in ``error``; ``.result`` holds
                whatever was recorded and ``__cause__`` the original failure,
                whatever its type
            InvalidStateTransition: A run is already in progress
        """
        with self._state_lock:
            if not (self._state is BacktestState.IDLE or self._state.is_terminal):
                raise InvalidStateTransition(f"Run already in progress ({self._state.value})")
            self._state = BacktestState.IDLE

        self._cancel_requested.clear()
        self._pause_requested.clear()
        self.config = None
        self.ledger = self.execution = self.risk = self.performance = None
        self._reset_run_state()
        self._wall_start = time.perf_counter()
        self._transition(BacktestState.INITIALIZING)

        try:
            await self._initialize(config, strategy, provider)
            self._checkpoint_cancel()
            self._transition(BacktestState.RUNNING)
            self._record(LogLevel.INFO, f"Running {self._total_bars} bars for {list(self.config.symbols)}")
            await self._run_loop()
            await self._finalize_positions()
        except CancellationRequested:
            self._record(LogLevel.INFO, "Backtest cancelled", bars_processed=self._bars_processed)
            self._transition(BacktestState.CANCELLED)
            return self._build_result()
        except asyncio.CancelledError:
            self._record(LogLevel.INFO, "Backtest task cancelled", bars_processed=self._bars_processed)
            self._transition(BacktestState.CANCELLED)
            raise
        except Exception as e:
            self._abort(e)
        finally:
            if self._trade_logger is not None:
                self._trade_logger.close()

        self._transition(BacktestState.COMPLETED)
        result = self._build_result()
        logger.info(
            f"Backtest complete: {len(result.trades)} trades, "
            f"total return {result.metrics.total_return_pct:.2%}"
        )
        return result

    def _abort(self, error: Exception) -> None:
        if isinstance(error, BacktestAborted):
            message = str(error)
        else:
            message = f"Backtest failed: {type(error).__name__}: {error}"
        if not isinstance(error, BacktestCoreError):
            logger.opt(exception=error).error("Unexpected error during backtest")
        self._record(LogLevel.ERROR, message)
        self._transition(BacktestState.ERROR)
        result = self._build_result()
        raise BacktestAborted(message, result=result, errors=result.errors) from error

    # =========================================================================
    # INITIALIZING
    # =========================================================================

    async def _initialize(
        self,
        config: RunConfig | Mapping[str, Any],
        strategy: StrategyAdapter | Callable[[StrategyContext], Any],
        provider: DataProvider,
    ) -> None:
        if not isinstance(config, RunConfig):
            try:
                config = RunConfig.from_dict(dict(config))
            except ValidationError as e:
                raise ConfigValidationError(f"Invalid run configuration: {e}") from e
        config.validate_config()
        self.config = config

        self.ledger = PortfolioLedger(config.initial_capital, config.snapshot_interval)
        self.execution = ExecutionModel.from_config(config)
        self.risk = RiskManager.from_run_config(config)
        self.performance = PerformanceEngine(
            risk_free_rate=config.risk_free_rate,
            periods_per_year=config.periods_per_year,
            default_periods_per_year=config.effective_periods_per_year,
        )
        self._trade_logger = TradeLogger(run_id=config.run_id, log_file=self.trade_log_file)
        self._strategy = strategy if isinstance(strategy, StrategyAdapter) else CallableStrategy(strategy)

        symbols = list(config.symbols)
        report: AvailabilityReport = await self._call_provider(
            "validate_availability",
            lambda: provider.validate_availability(
                symbols, config.start, config.end, config.timeframe.value
            ),
        )
        for warning in report.warnings:
            self._record(LogLevel.WARNING, f"Data availability: {warning}")
        if not report.available or report.missing_symbols:
            raise DataUnavailableError(
                f"Historical data not available: {', '.join(report.missing_symbols)}",
                missing_symbols=list(report.missing_symbols),
            )

        load_start = time.perf_counter()
        bars = await self._call_provider(
            "get_historical_bars",
            lambda: provider.get_historical_bars(
                symbols,
                config.start,
                config.end,
                config.timeframe.value,
                {"include_weekends": config.include_weekends},
            ),
        )
        self._perf_logger.log_timing(
            "load_bars", (time.perf_counter() - load_start) * 1000, bars=len(bars)
        )
        in_range = [b for b in bars if config.start <= b.timestamp <= config.end]
        if len(in_range) < len(bars):
            self._record(LogLevel.WARNING, f"Dropped {len(bars) - len(in_range)} bars outside the run range")

        present = {b.symbol for b in in_range}
        missing = [s for s in symbols if s not in present]
        extra = sorted(present - set(symbols))
        if missing:
            raise DataUnavailableError(
                f"No bars returned for: {', '.join(missing)}", missing_symbols=missing
            )
        if extra:
            raise DataUnavailableError(f"Provider returned unrequested symbols: {', '.join(extra)}")
        scheduler = EventScheduler.from_bars(in_range, symbols)

        if config.validate_data:
            by_symbol: dict[str, list[Bar]] = {s: [] for s in symbols}
            for bar in in_range:
                by_symbol[bar.symbol].append(bar)
            results = DataQualityValidator(self.settings.gap_tolerance).validate_bars(
                by_symbol, config.timeframe, config.start, config.end
            )
            for result in results.values():
                for message in result.messages:
                    self._record(LogLevel.WARNING, f"Data quality: {message}")

        self._scheduler = scheduler
        self._total_bars = scheduler.total_steps
        self._history = {s: deque(maxlen=config.lookback_window) for s in symbols}

        try:
            await _resolve(self._strategy.initialize())
        except Exception as e:
            raise BacktestCoreError(f"Failed to initialize strategy {self._strategy.name}: {e}") from e

        self._record(
            LogLevel.INFO,
            f"Loaded {scheduler.total_bars} bars across {len(symbols)} symbols",
            steps=scheduler.total_steps,
        )

    async def _call_provider(self, operation: str, call: Callable[[], Any]) -> Any:
        """Invoke a data provider method, mapping its failures to DataUnavailableError."""
        try:
            return await _resolve(call())
        except BacktestCoreError:
            raise
        except Exception as e:
            raise DataUnavailableError(
                f"Data provider {operation} failed: {type(e).__name__}: {e}"
            ) from e

    # =========================================================================
    # RUNNING
    # =========================================================================

    def _checkpoint_cancel(self) -> None:
        if self._cancel_requested.is_set():
            raise CancellationRequested()

    async def _checkpoint(self) -> None:
        """Bar-boundary pause and cancellation check."""
        await asyncio.sleep(0)

        if self._pause_requested.is_set() and not self._cancel_requested.is_set():
            self._transition(BacktestState.PAUSED)
            self._record(LogLevel.INFO, "Backtest paused")
            while self._pause_requested.is_set() and not self._cancel_requested.is_set():
                await asyncio.sleep(self.pause_poll_seconds)
            if not self._cancel_requested.is_set():
                self._transition(BacktestState.RUNNING)
                self._record(LogLevel.INFO, "Backtest resumed")

        self._checkpoint_cancel()

    async def _run_loop(self) -> None:
        config = self.config
        for step in self._scheduler:
            await self._checkpoint()

            self._current_time = step.timestamp
            if self._first_time is None:
                self._first_time = step.timestamp
            self._pending_exits.clear()

            if not self._warmup_complete and step.index >= config.warmup_period:
                self._warmup_complete = True
                if config.warmup_period > 0:
                    self._record(LogLevel.INFO, "Warm-up period completed, strategy signals enabled")

            if step.index == 0:
                self._queue.push(
                    LifecycleEvent(
                        step.timestamp,
                        EventType.BACKTEST_START,
                        message="Backtest started",
                        details={"symbols": ",".join(config.symbols), "total_bars": self._total_bars},
                    )
                )
            for bar in step.bars:
                self._queue.push(MarketDataEvent.from_bar(bar))
            await self._drain(step)

            self._end_of_step(step)
            await self._drain(step)

            self._bars_processed += 1
            self._report_progress()

            if self._error_count > config.max_errors:
                raise BacktestAborted(f"Maximum error threshold exceeded ({config.max_errors})")
            if self._stop_reason is not None:
                self._record(LogLevel.WARNING, f"Stopping run: {self._stop_reason}")
                break

        self._record(
            LogLevel.INFO,
            "Simulation completed",
            bars_processed=self._bars_processed,
            errors=self._error_count,
            warnings=self._warning_count,
        )

    async def _drain(self, step: TimeStep) -> None:
        for event in self._queue.drain():
            self._events_processed += 1
            try:
                await self._dispatch(event, step)
            except LedgerInvariantError as e:
                if not self.config.downgrade_ledger_errors:
                    raise
                self._record_error(f"Ledger error: {e}", symbol=event.symbol)
            except BacktestCoreError:
                raise
            except Exception as e:
                logger.opt(exception=e).debug(f"Failed to process {event.event_type.value}")
                self._record_error(
                    f"Error processing {event.event_type.value} event: {type(e).__name__}: {e}",
                    symbol=event.symbol,
                )

    async def _dispatch(self, event: SimEvent, step: TimeStep) -> None:
        event_type = event.event_type
        if event_type is EventType.MARKET_DATA:
            await self._on_market_data(event, step)
        elif event_type is EventType.SIGNAL_GENERATED:
            self._on_signal(event)
        elif event_type is EventType.ORDER_PLACED:
            self._on_order(event)
        elif event_type is EventType.ORDER_FILLED:
            self._on_fill(event)
        elif event_type is EventType.ORDER_CANCELLED:
            self._record(
                LogLevel.WARNING,
                f"Order {event.order.id} rejected: {event.reason}",
                symbol=event.symbol,
            )
        elif event_type in (EventType.POSITION_OPENED, EventType.POSITION_CLOSED):
            self._on_position(event)
        elif event_type in (
            EventType.STOP_LOSS_HIT,
            EventType.TAKE_PROFIT_HIT,
            EventType.RISK_LIMIT_BREACH,
        ):
            self._on_risk(event)
        elif event_type is EventType.PORTFOLIO_UPDATE:
            logger.debug(f"Snapshot at {event.timestamp}: {event.snapshot.total_value:,.2f}")
        elif event_type in (EventType.BACKTEST_START, EventType.BACKTEST_END):
            self._record(LogLevel.INFO, event.message, **event.details)
        elif event_type is EventType.ERROR:
            logger.debug(f"Error event at {event.timestamp}: {event.message}")

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _on_market_data(self, event: MarketDataEvent, step: TimeStep) -> None:
        bar = event.bar
        self._last_bars[bar.symbol] = bar
        self._history[bar.symbol].append(bar)
        self.execution.update_market(bar)
        self.ledger.mark_to_market(bar.symbol, bar.close, bar.timestamp, bar.high, bar.low)

        self._check_protective_exit(bar)

        context = StrategyContext(
            bar=bar,
            history=tuple(self._history[bar.symbol]),
            portfolio=self.ledger.current_snapshot(bar.timestamp),
            position=self.ledger.get_position(bar.symbol),
            bar_index=step.index,
        )
        try:
            signal = await _resolve(self._strategy.on_bar(context))
        except Exception as e:
            self._record_error(f"Strategy execution error for {bar.symbol}: {e}", symbol=bar.symbol)
            return

        if signal is None or not self._warmup_complete:
            return

        try:
            signal = validate_signal(signal, self.config.symbols)
        except SignalValidationError as e:
            self._record(LogLevel.WARNING, f"Invalid signal dropped: {e}", symbol=bar.symbol)
            return

        if signal.action is SignalAction.HOLD:
            return

        self._signal_counter += 1
        self._queue.push(
            SignalEvent(
                timestamp=bar.timestamp,
                event_type=EventType.SIGNAL_GENERATED,
                symbol=signal.symbol,
                signal=signal,
                signal_id=f"S{self._signal_counter:06d}",
            )
        )

    def _check_protective_exit(self, bar: Bar) -> None:
        position = self.ledger.get_position(bar.symbol)
        if position is None or bar.symbol in self._pending_exits:
            return
        hit = self.risk.check_protective_exit(position, bar)
        if hit is None:
            return

        reason, trigger = hit
        event_type = (
            EventType.STOP_LOSS_HIT if reason is ExitReason.STOP_LOSS else EventType.TAKE_PROFIT_HIT
        )
        self._queue.push(
            RiskEvent(
                timestamp=bar.timestamp,
                event_type=event_type,
                symbol=bar.symbol,
                message=f"{reason.value} triggered at {trigger:.4f}",
                value=bar.low if reason is ExitReason.STOP_LOSS else bar.high,
                limit=trigger,
            )
        )
        intent = MarketOrder(
            id=self._next_order_id(),
            symbol=bar.symbol,
            side=OrderSide.SELL,
            quantity=position.quantity,
            timestamp=bar.timestamp,
            exit_reason=reason,
        )
        self._pending_exits.add(bar.symbol)
        self._place(intent, reason=reason.value)

    def _on_signal(self, event: SignalEvent) -> None:
        signal = event.signal
        symbol = signal.symbol

        if signal.action is SignalAction.SELL and symbol in self._pending_exits:
            self._record(LogLevel.INFO, f"Sell signal for {symbol} ignored: protective exit pending")
            return

        bar = self._last_bars.get(symbol)
        if bar is None:
            self._record(LogLevel.WARNING, f"Signal for {symbol} before any bar; dropped")
            return

        price = bar.close
        position = self.ledger.get_position(symbol)
        held = position.quantity if position else 0.0
        cash = self.ledger.cash
        total_value = self.ledger.total_value

        quantity = self.risk.calculate_position_size(signal, price, cash, total_value, held)
        if quantity <= 0:
            self._record(LogLevel.WARNING, f"Signal for {symbol} sized to zero; dropped")
            return

        side = OrderSide.BUY if signal.action is SignalAction.BUY else OrderSide.SELL
        try:
            ok, reason = self.risk.validate_order(side, quantity, price, cash, total_value, held * price)
            if not ok:
                raise RiskLimitBreach(reason)
        except RiskLimitBreach as e:
            self._record(LogLevel.WARNING, f"Signal rejected by risk management: {e}", symbol=symbol)
            self._trade_logger.log_risk_event("order_rejected", str(e), symbol=symbol)
            return

        intent = self._build_intent(signal, side, quantity, event.timestamp, event.signal_id)
        if side is OrderSide.BUY and (signal.stop_loss is not None or signal.take_profit is not None):
            self._protective_levels[intent.id] = (signal.stop_loss, signal.take_profit)
        self._place(intent)

    def _next_order_id(self) -> str:
        self._order_counter += 1
        return f"O{self._order_counter:06d}"

    def _build_intent(
        self,
        signal: Signal,
        side: OrderSide,
        quantity: float,
        timestamp: datetime,
        signal_id: str,
    ) -> OrderIntent:
        common = {
            "id": self._next_order_id(),
            "symbol": signal.symbol,
            "side": side,
            "quantity": quantity,
            "timestamp": timestamp,
            "signal_id": signal_id,
            "exit_reason": ExitReason.SIGNAL if side is OrderSide.SELL else None,
        }
        order_type = signal.order_type
        if order_type is OrderType.LIMIT:
            return LimitOrder(limit_price=signal.limit_price or 0.0, **common)
        if order_type is OrderType.STOP:
            return StopOrder(stop_price=signal.stop_price or 0.0, **common)
        if order_type is OrderType.STOP_LIMIT:
            return StopLimitOrder(
                stop_price=signal.stop_price or 0.0,
                limit_price=signal.limit_price or 0.0,
                **common,
            )
        return MarketOrder(**common)

    def _place(self, intent: OrderIntent, reason: str | None = None) -> None:
        self._trade_logger.log_order(
            intent.symbol,
            intent.side.value,
            intent.quantity,
            intent.order_type.value,
            intent.reference_price,
            order_id=intent.id,
        )
        self._queue.push(
            OrderEvent(
                timestamp=intent.timestamp,
                event_type=EventType.ORDER_PLACED,
                symbol=intent.symbol,
                order=intent,
                reason=reason,
            )
        )

    def _on_order(self, event: OrderEvent) -> None:
        intent = event.order
        fill = self.execution.execute(intent, timestamp=event.timestamp)

        if fill.rejected:
            self._protective_levels.pop(intent.id, None)
            self._queue.push(
                OrderEvent(
                    timestamp=event.timestamp,
                    event_type=EventType.ORDER_CANCELLED,
                    symbol=intent.symbol,
                    order=intent,
                    reason=fill.rejection_reason,
                )
            )
            return

        self._queue.push(
            FillEvent(
                timestamp=event.timestamp,
                event_type=EventType.ORDER_FILLED,
                symbol=intent.symbol,
                fill=fill,
            )
        )

    def _on_fill(self, event: FillEvent) -> None:
        fill = event.fill
        self._trade_logger.log_fill(
            fill.symbol,
            fill.side.value,
            fill.filled_quantity,
            fill.fill_price,
            fill.commission,
            order_id=fill.order_id,
            slippage=fill.slippage,
            partial=fill.is_partial,
        )
        if fill.is_partial:
            self._record(
                LogLevel.INFO,
                f"Partial fill {fill.order_id}: {fill.filled_quantity:.4f}/{fill.requested_quantity:.4f}",
            )

        update = self.ledger.apply_fill(fill)

        levels = self._protective_levels.pop(fill.order_id, None)
        if levels is not None and update.position is not None:
            self.ledger.set_protective_levels(fill.symbol, *levels)

        if update.opened:
            self._queue.push(
                PositionEvent(
                    timestamp=event.timestamp,
                    event_type=EventType.POSITION_OPENED,
                    symbol=fill.symbol,
                    quantity=fill.filled_quantity,
                    price=fill.fill_price,
                )
            )
        if update.trade is not None:
            trade = update.trade
            self._trade_logger.log_trade(
                trade.symbol,
                trade.quantity,
                trade.entry_price,
                trade.exit_price,
                trade.net_pnl,
                trade.exit_reason.value,
                trade_id=trade.id,
            )
            if update.closed:
                self._queue.push(
                    PositionEvent(
                        timestamp=event.timestamp,
                        event_type=EventType.POSITION_CLOSED,
                        symbol=fill.symbol,
                        quantity=trade.quantity,
                        price=trade.exit_price,
                        trade=trade,
                    )
                )

    def _on_position(self, event: PositionEvent) -> None:
        if event.event_type is EventType.POSITION_OPENED:
            self._record(LogLevel.DEBUG, f"Opened {event.symbol}: {event.quantity:.4f} @ {event.price:.4f}")
        else:
            self._record(
                LogLevel.DEBUG,
                f"Closed {event.symbol}: {event.quantity:.4f} @ {event.price:.4f}, "
                f"pnl={event.trade.net_pnl:.2f}",
            )

    def _on_risk(self, event: RiskEvent) -> None:
        severity = "WARNING"
        if event.event_type is EventType.RISK_LIMIT_BREACH:
            level = LogLevel.WARNING
        else:
            level = LogLevel.INFO
            severity = "INFO"
        self._record(level, f"{event.event_type.value}: {event.message}", symbol=event.symbol)
        self._trade_logger.log_risk_event(
            event.event_type.value,
            event.message,
            severity=severity,
            value=event.value,
            limit=event.limit,
        )

    # -------------------------------------------------------------------------
    # Step bookkeeping
    # -------------------------------------------------------------------------

    def _end_of_step(self, step: TimeStep) -> None:
        snapshot = self.ledger.maybe_snapshot(step.timestamp)
        if snapshot is not None:
            self._queue.push(
                PortfolioUpdateEvent(
                    timestamp=step.timestamp,
                    event_type=EventType.PORTFOLIO_UPDATE,
                    snapshot=snapshot,
                )
            )

        drawdown = self.ledger.current_drawdown
        alert = self.risk.check_drawdown(drawdown, step.timestamp)
        if alert is not None:
            self._queue.push(
                RiskEvent(
                    timestamp=step.timestamp,
                    event_type=EventType.RISK_LIMIT_BREACH,
                    message=alert.message,
                    value=alert.value,
                    limit=alert.limit,
                )
            )
        if self.risk.should_stop(drawdown):
            self._stop_reason = (
                f"max drawdown {drawdown:.2%} exceeded limit {self.config.max_drawdown:.2%}"
            )
        elif alert is not None and alert.level is RiskLevel.CRITICAL:
            logger.warning(f"Drawdown limit breached at {step.timestamp}; run continues")

    def _report_progress(self) -> None:
        now = time.perf_counter()
        if now - self._last_progress_log >= self.settings.progress_interval_seconds:
            self._last_progress_log = now
            self._memory_mb = psutil.Process().memory_info().rss / (1024 * 1024)
            self._publish_progress()
            progress = self._progress
            self._perf_logger.log_progress(
                progress.current_bar,
                progress.total_bars,
                progress.bars_per_second,
                progress.memory_mb,
                eta_seconds=progress.eta_seconds,
            )
        else:
            self._publish_progress()

    # =========================================================================
    # COMPLETION
    # =========================================================================

    async def _finalize_positions(self) -> None:
        """Optional liquidation at the last bar, then a closing snapshot."""
        if self._current_time is None:
            return

        liquidated = False
        if self.config.close_positions_at_end and self.ledger.num_positions:
            self._record(LogLevel.INFO, f"Closing {self.ledger.num_positions} open positions")
            for position in self.ledger.positions:
                self._place(
                    MarketOrder(
                        id=self._next_order_id(),
                        symbol=position.symbol,
                        side=OrderSide.SELL,
                        quantity=position.quantity,
                        timestamp=self._current_time,
                        exit_reason=ExitReason.END_OF_BACKTEST,
                    ),
                    reason=ExitReason.END_OF_BACKTEST.value,
                )
            liquidated = True

        self._queue.push(
            LifecycleEvent(
                self._current_time,
                EventType.BACKTEST_END,
                message="Backtest finished",
                details={"bars_processed": self._bars_processed},
            )
        )
        await self._drain(TimeStep(self._bars_processed, self._current_time, ()))

        snapshots = self.ledger.snapshots
        if liquidated or not snapshots or snapshots[-1].timestamp != self._current_time:
            self.ledger.take_snapshot(self._current_time)

    def _build_result(self) -> RunResult:
        config = self.config
        ledger = self.ledger
        trades = ledger.trades if ledger else []
        snapshots = ledger.snapshots if ledger else []
        execution_stats = self.execution.get_stats() if self.execution else {}

        metrics = PerformanceMetrics()
        if config is not None and self.performance is not None:
            metrics = self.performance.compute(
                trades, snapshots, config.initial_capital, execution_stats
            )

        elapsed = time.perf_counter() - self._wall_start if self._wall_start else 0.0
        self._publish_progress()
        return RunResult(
            run_id=config.run_id if config else "",
            state=self.state,
            config=config,
            trades=trades,
            snapshots=snapshots,
            metrics=metrics,
            log=list(self._log),
            open_positions=ledger.positions if ledger else [],
            execution_stats=execution_stats,
            slippage_analysis=self.execution.slippage_analysis() if self.execution else {},
            risk_alerts=list(self.risk.alerts) if self.risk else [],
            bars_processed=self._bars_processed,
            total_bars=self._total_bars,
            events_processed=self._events_processed,
            start_time=self._first_time,
            end_time=self._current_time,
            elapsed_seconds=elapsed,
            stop_reason=self._stop_reason,
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def run_backtest(
    config: RunConfig | Mapping[str, Any],
    strategy: StrategyAdapter | Callable[[StrategyContext], Any],
    provider: DataProvider,
    trade_log_file: str | None = None,
) -> RunResult:
    """Run a backtest from synchronous code."""
    controller = BacktestController(trade_log_file=trade_log_file)
    return asyncio.run(controller.start_run(config, strategy, provider))


__all__ = [
    "RunLogEntry",
    "ProgressReport",
    "RunResult",
    "validate_signal",
    "BacktestController",
    "run_backtest",
]
