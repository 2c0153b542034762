"""
Run Configuration
=================

Immutable per-run parameters for a backtest.

Types are enforced by pydantic when the model is built. Semantic checks
(ordered date range, positive capital, rates inside [0, 1], at least one
symbol) live in ``validate_config`` so that the controller can run them in
its ``initializing`` phase and move to ``error`` on failure.

Usage:
    config = RunConfig.from_yaml("config/backtest_run.yaml")
    config.validate_config()

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from config import load_yaml_config
from config.settings import get_settings
from core.enums import CommissionStructure, SlippageModelType, Timeframe
from core.types import ConfigValidationError


class CommissionTier(BaseModel):
    """Rate applied once order notional reaches ``threshold``."""
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=0.0, ge=0)
    rate: float = Field(default=0.001, ge=0)


class MarketConditions(BaseModel):
    """Multipliers applied by the slippage model."""
    model_config = ConfigDict(frozen=True)

    volatility: float = 1.0
    liquidity: float = 1.0
    spread: float = 1.0


def _default_max_errors() -> int:
    return get_settings().engine.max_errors


def _default_continue_on_error() -> bool:
    return get_settings().engine.continue_on_error


def _default_lookback() -> int:
    return get_settings().engine.lookback_window


def _default_risk_free_rate() -> float:
    return get_settings().performance.risk_free_rate


def _default_spread_pct() -> float:
    return get_settings().execution.default_spread_pct


class RunConfig(BaseModel):
    """Backtesting run configuration."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Identity
    run_id: str = "backtest"
    name: str = ""

    # Universe and range
    symbols: tuple[str, ...] = ()
    start: datetime
    end: datetime
    timeframe: Timeframe = Timeframe.D1
    initial_capital: float = 100_000.0

    # Commission
    commission: float = 0.001
    commission_structure: CommissionStructure = CommissionStructure.PERCENTAGE
    commission_tiers: tuple[CommissionTier, ...] = ()
    min_commission: float = 1.0
    max_commission: float = 1000.0

    # Slippage
    slippage: float = 0.001
    slippage_model: SlippageModelType = SlippageModelType.SQRT
    volatility_adjustment: bool = True
    liquidity_adjustment: bool = True
    market_conditions: MarketConditions = Field(default_factory=MarketConditions)
    slippage_variation: bool = True
    spread_pct: float = Field(default_factory=_default_spread_pct)

    # Fills and latency
    fill_ratio: float = 1.0
    enable_partial_fills: bool = False
    latency_ms: float = 100.0
    latency_variation: bool = True
    seed: int | None = 42

    # Strategy gating
    warmup_period: int = 0
    lookback_window: int = Field(default_factory=_default_lookback)
    position_size_pct: float = 0.1

    # Risk
    max_position_size: float = 0.1
    max_drawdown: float = 0.2
    stop_on_max_drawdown: bool = False

    # Ledger
    snapshot_interval: timedelta | None = None
    close_positions_at_end: bool = False
    downgrade_ledger_errors: bool = False

    # Error policy
    continue_on_error: bool = Field(default_factory=_default_continue_on_error)
    max_errors: int = Field(default_factory=_default_max_errors)

    # Data
    validate_data: bool = True
    include_weekends: bool = True

    # Reporting
    risk_free_rate: float = Field(default_factory=_default_risk_free_rate)
    periods_per_year: float | None = None
    verbose_log: bool = False

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def problems(self) -> list[str]:
        """Return every semantic problem found, empty when the config is sound."""
        problems: list[str] = []

        if not self.symbols:
            problems.append("at least one symbol is required")
        if len(set(self.symbols)) != len(self.symbols):
            problems.append("symbols must be unique")
        if self.start >= self.end:
            problems.append(f"start ({self.start}) must be before end ({self.end})")
        if self.initial_capital <= 0:
            problems.append(f"initial_capital must be positive, got {self.initial_capital}")

        for name in ("commission", "slippage", "fill_ratio", "spread_pct"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                problems.append(f"{name} must be in [0, 1], got {value}")

        if self.min_commission < 0 or self.max_commission < 0:
            problems.append("commission bounds must be non-negative")
        if self.min_commission > self.max_commission:
            problems.append("min_commission cannot exceed max_commission")
        if self.commission_structure is CommissionStructure.TIERED and not self.commission_tiers:
            problems.append("tiered commission requires at least one tier")

        if self.latency_ms < 0:
            problems.append("latency_ms must be non-negative")
        if self.warmup_period < 0:
            problems.append("warmup_period must be non-negative")
        if self.lookback_window < 1:
            problems.append("lookback_window must be at least 1")
        if not 0.0 < self.position_size_pct <= 1.0:
            problems.append("position_size_pct must be in (0, 1]")
        if not 0.0 < self.max_position_size <= 1.0:
            problems.append("max_position_size must be in (0, 1]")
        if not 0.0 < self.max_drawdown <= 1.0:
            problems.append("max_drawdown must be in (0, 1]")
        if self.max_errors < 0:
            problems.append("max_errors must be non-negative")
        if self.snapshot_interval is not None and self.snapshot_interval <= timedelta(0):
            problems.append("snapshot_interval must be positive")
        if self.periods_per_year is not None and self.periods_per_year <= 0:
            problems.append("periods_per_year must be positive")

        return problems

    def validate_config(self) -> "RunConfig":
        """
        Raise ConfigValidationError listing every problem.

        Returns:
            self, so calls can be chained
        """
        problems = self.problems()
        if problems:
            raise ConfigValidationError(
                "Invalid run configuration: " + "; ".join(problems),
                problems=problems,
            )
        return self

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def effective_periods_per_year(self) -> float:
        return self.periods_per_year or self.timeframe.periods_per_year

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    # =========================================================================
    # LOADING
    # =========================================================================

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunConfig":
        """Build from a plain mapping (e.g. a parsed YAML document)."""
        return cls.model_validate(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RunConfig":
        """Load from a YAML file path or a config directory name."""
        return cls.from_dict(load_yaml_config(path))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json")


__all__ = [
    "CommissionTier",
    "MarketConditions",
    "RunConfig",
]
