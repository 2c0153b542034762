"""
Custom logging configuration using loguru.

This module provides a centralized logging setup with:
- Console and file handlers
- Structured logging support
- Trade-specific logging for simulated orders and fills
- Progress logging for long runs
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import LOGS_DIR, get_settings


def setup_logging(
    level: str | None = None,
    log_file: Path | str | None = None,
    rotation: str | None = None,
    retention: str | None = None,
    serialize: bool | None = None,
    console: bool = True,
    error_log: bool = False,
) -> None:
    """
    Configure the global logger with specified settings.

    Unset arguments fall back to ``settings.logging``.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None to disable file logging)
        rotation: When to rotate the log file
        retention: How long to keep old log files
        serialize: Whether to output JSON logs
        console: Whether to log to console
        error_log: Whether to add an errors-only file under ``logs/``
    """
    log_settings = get_settings().logging
    level = level or log_settings.level
    log_file = log_file if log_file is not None else log_settings.log_file
    rotation = rotation or log_settings.rotation
    retention = retention or log_settings.retention
    serialize = log_settings.serialize if serialize is None else serialize

    # Remove default handler
    logger.remove()

    if console:
        logger.add(
            sys.stderr,
            level=level,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            colorize=True,
        )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            level="DEBUG",
            format=log_settings.format,
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
        )

    if error_log:
        error_path = LOGS_DIR / "errors.log"
        error_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(error_path),
            level="ERROR",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="5 MB",
            retention="90 days",
            compression="gz",
        )


def get_logger(name: str | None = None) -> "logger":
    """
    Get a logger instance with optional name binding.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


class TradeLogger:
    """
    Specialized logger for simulated trading events.

    Records are bound with ``category="trades"`` so a sink can filter them.
    Pass ``log_file`` to route them to a dedicated file.
    """

    def __init__(self, run_id: str = "", log_file: Path | str | None = None) -> None:
        self._logger = logger.bind(category="trades", run_id=run_id)
        self._sink_id: int | None = None

        if log_file:
            trade_log = Path(log_file)
            trade_log.parent.mkdir(parents=True, exist_ok=True)
            self._sink_id = logger.add(
                str(trade_log),
                level="DEBUG",
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}",
                rotation="5 MB",
                retention="90 days",
                filter=lambda record: record["extra"].get("category") == "trades",
            )

    def close(self) -> None:
        """Detach the dedicated file sink, if any."""
        if self._sink_id is not None:
            logger.remove(self._sink_id)
            self._sink_id = None

    def log_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        order_type: str,
        price: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Log a simulated order submission."""
        self._logger.debug(
            f"ORDER | {symbol} | {side} | qty={quantity:.4f} | type={order_type} | price={price}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            order_type=order_type,
            price=price,
            **kwargs,
        )

    def log_fill(
        self,
        symbol: str,
        side: str,
        quantity: float,
        fill_price: float,
        commission: float = 0.0,
        **kwargs: Any,
    ) -> None:
        """
        Log a simulated fill.

        Args:
            symbol: Trading symbol
            side: Order side (buy/sell)
            quantity: Filled quantity
            fill_price: Execution price
            commission: Commission paid
            **kwargs: Additional fill details
        """
        self._logger.debug(
            f"FILL | {symbol} | {side} | qty={quantity:.4f} | price={fill_price:.4f} | comm={commission:.2f}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            fill_price=fill_price,
            commission=commission,
            **kwargs,
        )

    def log_trade(
        self,
        symbol: str,
        quantity: float,
        entry_price: float,
        exit_price: float,
        net_pnl: float,
        exit_reason: str,
        **kwargs: Any,
    ) -> None:
        """Log a closed round trip."""
        self._logger.info(
            f"TRADE | {symbol} | qty={quantity:.4f} | entry={entry_price:.4f} | exit={exit_price:.4f} | pnl={net_pnl:.2f} | reason={exit_reason}",
            symbol=symbol,
            quantity=quantity,
            entry_price=entry_price,
            exit_price=exit_price,
            net_pnl=net_pnl,
            exit_reason=exit_reason,
            **kwargs,
        )

    def log_risk_event(
        self,
        event_type: str,
        message: str,
        severity: str = "WARNING",
        **kwargs: Any,
    ) -> None:
        """
        Log a risk management event.

        Args:
            event_type: Type of risk event
            message: Event description
            severity: Event severity
            **kwargs: Additional event details
        """
        log_func = getattr(self._logger, severity.lower(), self._logger.warning)
        log_func(
            f"RISK | {event_type} | {message}",
            event_type=event_type,
            **kwargs,
        )


class PerformanceLogger:
    """
    Logger for run progress, timing and memory.
    """

    def __init__(self, slow_threshold_ms: float = 1000.0) -> None:
        self._logger = logger.bind(category="performance")
        self.slow_threshold_ms = slow_threshold_ms

    def log_timing(
        self,
        operation: str,
        duration_ms: float,
        **kwargs: Any,
    ) -> None:
        """
        Log operation timing.

        Args:
            operation: Name of the operation
            duration_ms: Duration in milliseconds
            **kwargs: Additional metrics
        """
        if duration_ms > self.slow_threshold_ms:
            self._logger.warning(
                f"SLOW | {operation} | {duration_ms:.2f}ms",
                operation=operation,
                duration_ms=duration_ms,
                **kwargs,
            )
        else:
            self._logger.debug(
                f"TIMING | {operation} | {duration_ms:.2f}ms",
                operation=operation,
                duration_ms=duration_ms,
                **kwargs,
            )

    def log_progress(
        self,
        current: int,
        total: int,
        bars_per_second: float,
        memory_mb: float,
        **kwargs: Any,
    ) -> None:
        """Log periodic progress of a simulation run."""
        percent = 100.0 * current / total if total > 0 else 0.0
        self._logger.info(
            f"PROGRESS | {current}/{total} bars ({percent:.1f}%) | {bars_per_second:.0f} bars/s | {memory_mb:.1f}MB",
            current=current,
            total=total,
            bars_per_second=bars_per_second,
            memory_mb=memory_mb,
            **kwargs,
        )


__all__ = [
    "setup_logging",
    "get_logger",
    "TradeLogger",
    "PerformanceLogger",
]
