"""
Risk Management Module
======================

Pre-trade checks, position sizing, drawdown monitoring and protective
(stop-loss / take-profit) exits for a backtest run.

Features:
    - Order validation against position size and cash limits
    - Position sizing from signal strength
    - Drawdown warning and breach detection with optional run stop
    - Stop-loss / take-profit triggers from bar lows and highs

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from config.settings import get_settings
from core.enums import ExitReason, OrderSide, SignalAction
from core.types import Bar, Position, Signal
from utils.logger import get_logger

logger = get_logger(__name__)


class RiskLevel(str, Enum):
    """Risk alert levels."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class RiskConfig:
    """
    Risk management configuration.

    Attributes:
        max_position_size: Maximum position value as a fraction of total value
        max_drawdown: Drawdown fraction treated as a breach
        stop_on_max_drawdown: Stop the run once the breach is seen
        warning_fraction: Fraction of max_drawdown that raises a warning
        position_size_pct: Default sizing as a fraction of total value
        cash_buffer: Extra fraction reserved on buys for costs
    """
    max_position_size: float = 0.10
    max_drawdown: float = 0.20
    stop_on_max_drawdown: bool = False
    warning_fraction: float = 0.7
    position_size_pct: float = 0.10
    cash_buffer: float = 0.001


@dataclass(frozen=True, slots=True)
class RiskAlert:
    """Drawdown warning or breach raised at a bar."""
    timestamp: datetime
    level: RiskLevel
    risk_type: str
    value: float
    limit: float
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "risk_type": self.risk_type,
            "value": self.value,
            "limit": self.limit,
            "message": self.message,
        }


# =============================================================================
# RISK MANAGER
# =============================================================================

class RiskManager:
    """
    Risk checks applied by the backtest controller.

    Example:
        risk_mgr = RiskManager(RiskConfig(max_drawdown=0.15))

        is_valid, reason = risk_mgr.validate_order(OrderSide.BUY, 10, 101.0, 50_000, 90_000, 0.0)
        alert = risk_mgr.check_drawdown(0.12, timestamp)
    """

    def __init__(self, config: RiskConfig | None = None):
        self.config = config or RiskConfig(
            warning_fraction=get_settings().engine.drawdown_warning_fraction
        )
        self._level = RiskLevel.OK
        self.alerts: list[RiskAlert] = []

    @classmethod
    def from_run_config(cls, run_config: Any) -> "RiskManager":
        return cls(
            RiskConfig(
                max_position_size=run_config.max_position_size,
                max_drawdown=run_config.max_drawdown,
                stop_on_max_drawdown=run_config.stop_on_max_drawdown,
                warning_fraction=get_settings().engine.drawdown_warning_fraction,
                position_size_pct=run_config.position_size_pct,
            )
        )

    def reset(self) -> None:
        self._level = RiskLevel.OK
        self.alerts.clear()

    # =========================================================================
    # PRE-TRADE
    # =========================================================================

    def validate_order(
        self,
        side: OrderSide,
        quantity: float,
        price: float,
        cash: float,
        total_value: float,
        current_position_value: float = 0.0,
    ) -> tuple[bool, str]:
        """
        Validate an order against risk limits.

        Sells that only reduce exposure always pass.

        Returns:
            Tuple of (is_valid, reason_if_invalid)
        """
        if side is OrderSide.SELL:
            return True, ""

        order_value = quantity * price
        if total_value <= 0:
            return False, "Portfolio value is not positive"

        position_pct = (current_position_value + order_value) / total_value
        if position_pct > self.config.max_position_size + 1e-12:
            return False, (
                f"Position size {position_pct:.1%} exceeds limit {self.config.max_position_size:.1%}"
            )

        estimated_cost = order_value * (1 + self.config.cash_buffer)
        if estimated_cost > cash:
            return False, f"Insufficient cash: need ${estimated_cost:,.2f}, have ${cash:,.2f}"

        return True, ""

    def calculate_position_size(
        self,
        signal: Signal,
        price: float,
        cash: float,
        total_value: float,
        held_quantity: float = 0.0,
    ) -> float:
        """
        Quantity for a signal.

        Explicit signal quantities are used as given; the ledger decides what
        an oversized or uncovered sell means. Otherwise buys are sized at
        ``position_size_pct * strength`` of total value, capped by the
        position limit and available cash, and sells close the whole position.
        """
        if signal.quantity is not None:
            return signal.quantity

        if signal.action == SignalAction.SELL:
            return held_quantity

        if price <= 0 or total_value <= 0:
            return 0.0

        target_value = total_value * self.config.position_size_pct * signal.strength
        held_value = held_quantity * price
        max_value = max(0.0, total_value * self.config.max_position_size - held_value)
        quantity = min(target_value, max_value) / price

        max_from_cash = cash / (price * (1 + self.config.cash_buffer))
        quantity = min(quantity, max_from_cash * 0.95)
        return max(0.0, quantity)

    # =========================================================================
    # MONITORING
    # =========================================================================

    def check_drawdown(self, drawdown: float, timestamp: datetime) -> RiskAlert | None:
        """
        Raise an alert when the drawdown enters a worse band.

        Alerts fire once per band entry: OK -> WARNING -> CRITICAL. Dropping
        back to a better band re-arms them.
        """
        limit = self.config.max_drawdown
        if drawdown > limit:
            level = RiskLevel.CRITICAL
        elif drawdown > limit * self.config.warning_fraction:
            level = RiskLevel.WARNING
        else:
            level = RiskLevel.OK

        previous = self._level
        self._level = level
        if level is RiskLevel.OK or level is previous:
            return None
        if previous is RiskLevel.CRITICAL and level is RiskLevel.WARNING:
            return None

        alert = RiskAlert(
            timestamp=timestamp,
            level=level,
            risk_type="drawdown",
            value=drawdown,
            limit=limit,
            message=f"Drawdown {drawdown:.2%} vs limit {limit:.2%}",
        )
        self.alerts.append(alert)
        logger.warning(f"Risk {level.value}: {alert.message}")
        return alert

    def should_stop(self, drawdown: float) -> bool:
        """True when the run must stop on a max drawdown breach."""
        return self.config.stop_on_max_drawdown and drawdown > self.config.max_drawdown

    @staticmethod
    def check_protective_exit(position: Position, bar: Bar) -> tuple[ExitReason, float] | None:
        """
        Stop-loss / take-profit trigger for ``position`` on ``bar``.

        The stop is checked first, so a bar touching both levels exits at
        the stop.

        Returns:
            (exit_reason, trigger_price) or None
        """
        if position.stop_loss is not None and bar.low <= position.stop_loss:
            return ExitReason.STOP_LOSS, position.stop_loss
        if position.take_profit is not None and bar.high >= position.take_profit:
            return ExitReason.TAKE_PROFIT, position.take_profit
        return None


__all__ = [
    "RiskLevel",
    "RiskConfig",
    "RiskAlert",
    "RiskManager",
]
