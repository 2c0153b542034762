"""Utility helpers for barsim."""

from utils.logger import PerformanceLogger, TradeLogger, get_logger, setup_logging

__all__ = [
    "setup_logging",
    "get_logger",
    "TradeLogger",
    "PerformanceLogger",
]
