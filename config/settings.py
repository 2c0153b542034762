"""
Global settings and configuration management for barsim.

This module provides centralized configuration using Pydantic for validation
and environment variable support. Per-run parameters live in
``backtesting.run_config.RunConfig``; the values here are process-wide
defaults and the empirical tuning constants of the execution model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
CONFIG_DIR = PROJECT_ROOT / "config"
REPORTS_DIR = PROJECT_ROOT / "reports"
LOGS_DIR = PROJECT_ROOT / "logs"


class ExecutionSettings(BaseSettings):
    """Empirical constants of the fill model."""

    model_config = SettingsConfigDict(
        env_prefix="BARSIM_EXECUTION_",
        env_file=".env",
        extra="ignore"
    )

    # Slippage
    slippage_variation_band: float = 0.2  # +/-20% random variation
    linear_impact_coefficient: float = 0.01
    sqrt_impact_coefficient: float = 0.001
    log_impact_coefficient: float = 0.0005
    spread_weight: float = 0.5  # half the quoted spread

    # Partial fills
    partial_fill_volume_ceiling: float = 0.10  # 10% of bar volume
    partial_fill_floor: float = 0.5  # never below 50% of the order
    full_fill_probability: float = 0.8

    # Latency
    latency_jitter: float = 0.5  # +/-50%

    # Market state
    default_spread_pct: float = 0.001
    default_volatility: float = 0.02
    default_average_volume: float = 1_000_000.0
    history_window: int = 100


class EngineSettings(BaseSettings):
    """Controller loop defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BARSIM_ENGINE_",
        env_file=".env",
        extra="ignore"
    )

    lookback_window: int = 100
    max_errors: int = 100
    continue_on_error: bool = True
    progress_interval_seconds: float = 5.0
    gap_tolerance: float = 1.5  # gap if interval > 1.5x expected
    drawdown_warning_fraction: float = 0.7  # warn at 70% of the limit


class PerformanceSettings(BaseSettings):
    """Performance analysis defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BARSIM_PERFORMANCE_",
        env_file=".env",
        extra="ignore"
    )

    risk_free_rate: float = 0.02
    trading_days_per_year: int = 252
    days_per_year: float = 365.25
    rolling_window_days: int = 30


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="BARSIM_LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
    log_file: Path | None = None
    rotation: str = "10 MB"
    retention: str = "30 days"
    serialize: bool = False  # JSON logging


class Settings(BaseSettings):
    """Main settings container combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    environment: Literal["development", "testing", "production"] = "development"
    debug: bool = False


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment and config files."""
    global settings
    settings = Settings()
    return settings
