"""
Execution Models Module
=======================

Realistic execution modeling for backtesting.
Simulates liquidity rejection, latency, slippage, commission and partial
fills for a single order against the current simulated quote.

Models:
- Slippage: Fixed, linear, square-root, logarithmic
- Commission: Flat, percentage, tiered
- Fill: Full or stochastic partial fills bounded by bar volume

All randomness comes from one seeded ``numpy.random.Generator`` owned by
the ExecutionModel, so a fixed seed reproduces every fill.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import numpy as np

from config.settings import ExecutionSettings, get_settings
from core.enums import CommissionStructure, OrderSide, OrderType, SlippageModelType
from core.types import (
    Bar,
    ExecutionRejection,
    Fill,
    LimitOrder,
    MarketState,
    OrderIntent,
    StopLimitOrder,
    StopOrder,
)
from utils.logger import get_logger

if TYPE_CHECKING:
    from backtesting.run_config import MarketConditions, RunConfig

logger = get_logger(__name__)


# =============================================================================
# SLIPPAGE MODELS
# =============================================================================

class SlippageModel(ABC):
    """
    Abstract base class for slippage models.

    A model returns the size-driven slippage as a fraction of price, before
    volatility, liquidity, spread and random adjustments.
    """

    def __init__(self, base_slippage: float = 0.001):
        self.base_slippage = base_slippage

    @abstractmethod
    def calculate_slippage(
        self,
        quantity: float,
        price: float,
        market: MarketState,
        average_volume: float,
    ) -> float:
        """
        Calculate base slippage.

        Args:
            quantity: Order quantity
            price: Reference execution price
            market: Current quote
            average_volume: Rolling average bar volume for the symbol

        Returns:
            Slippage as a fraction of price (positive = worse price)
        """
        pass

    @staticmethod
    def _volume(market: MarketState, average_volume: float) -> float:
        return market.volume if market.volume > 0 else average_volume


class FixedSlippage(SlippageModel):
    """Constant slippage, independent of order size."""

    def calculate_slippage(self, quantity, price, market, average_volume) -> float:
        return self.base_slippage


class LinearSlippage(SlippageModel):
    """
    Slippage grows linearly with order notional relative to average volume.
    """

    def __init__(self, base_slippage: float = 0.001, coefficient: float = 0.01):
        super().__init__(base_slippage)
        self.coefficient = coefficient

    def calculate_slippage(self, quantity, price, market, average_volume) -> float:
        if average_volume <= 0 or price <= 0:
            return self.base_slippage
        notional = quantity * price
        return self.base_slippage + notional / (average_volume * price) * self.coefficient


class SqrtSlippage(SlippageModel):
    """
    Square-root market impact: ``k * sqrt(quantity / volume)``.
    """

    def __init__(self, base_slippage: float = 0.001, coefficient: float = 0.001):
        super().__init__(base_slippage)
        self.coefficient = coefficient

    def calculate_slippage(self, quantity, price, market, average_volume) -> float:
        volume = self._volume(market, average_volume)
        if volume <= 0:
            return self.base_slippage
        return self.base_slippage + math.sqrt(quantity / volume) * self.coefficient


class LogarithmicSlippage(SlippageModel):
    """Logarithmic impact: ``k * ln(1 + quantity / volume)``."""

    def __init__(self, base_slippage: float = 0.001, coefficient: float = 0.0005):
        super().__init__(base_slippage)
        self.coefficient = coefficient

    def calculate_slippage(self, quantity, price, market, average_volume) -> float:
        volume = self._volume(market, average_volume)
        if volume <= 0:
            return self.base_slippage
        return self.base_slippage + math.log1p(quantity / volume) * self.coefficient


def create_slippage_model(
    model_type: SlippageModelType | str,
    base_slippage: float,
    execution_settings: ExecutionSettings | None = None,
) -> SlippageModel:
    """Build a slippage model from its selector."""
    exec_settings = execution_settings or get_settings().execution
    model_type = SlippageModelType(model_type)

    if model_type is SlippageModelType.FIXED:
        return FixedSlippage(base_slippage)
    if model_type is SlippageModelType.LINEAR:
        return LinearSlippage(base_slippage, exec_settings.linear_impact_coefficient)
    if model_type is SlippageModelType.SQRT:
        return SqrtSlippage(base_slippage, exec_settings.sqrt_impact_coefficient)
    return LogarithmicSlippage(base_slippage, exec_settings.log_impact_coefficient)


# =============================================================================
# COMMISSION MODELS
# =============================================================================

class CommissionModel(ABC):
    """
    Abstract base class for commission models.

    ``min_commission`` and ``max_commission`` are applied only when non-zero.
    """

    def __init__(self, min_commission: float = 0.0, max_commission: float = 0.0):
        self.min_commission = min_commission
        self.max_commission = max_commission

    @abstractmethod
    def raw_commission(self, notional: float) -> float:
        """Commission before min/max limits."""
        pass

    def calculate_commission(self, fill_price: float, fill_quantity: float) -> float:
        """
        Calculate commission for a fill.

        Args:
            fill_price: Execution price
            fill_quantity: Filled quantity

        Returns:
            Commission amount
        """
        commission = self.raw_commission(fill_price * fill_quantity)
        if self.min_commission:
            commission = max(commission, self.min_commission)
        if self.max_commission:
            commission = min(commission, self.max_commission)
        return commission


class FlatCommission(CommissionModel):
    """Fixed commission per order."""

    def __init__(self, amount: float = 1.0, **limits: float):
        super().__init__(**limits)
        self.amount = amount

    def raw_commission(self, notional: float) -> float:
        return self.amount


class PercentageCommission(CommissionModel):
    """
    Percentage-based commission model.

    Common for crypto and forex trading.
    """

    def __init__(self, commission_pct: float = 0.001, **limits: float):
        super().__init__(**limits)
        self.commission_pct = commission_pct

    def raw_commission(self, notional: float) -> float:
        return notional * self.commission_pct


class TieredCommission(CommissionModel):
    """
    Tiered commission by order notional.

    Tiers are walked in ascending threshold order; the rate of the last tier
    whose threshold the notional reaches applies to the whole notional.
    Below the first threshold the base rate applies.
    """

    def __init__(
        self,
        tiers: Sequence[tuple[float, float]],
        base_rate: float = 0.001,
        **limits: float,
    ):
        super().__init__(**limits)
        self.tiers = sorted(tiers, key=lambda tier: tier[0])
        self.base_rate = base_rate

    def rate_for(self, notional: float) -> float:
        rate = self.base_rate
        for threshold, tier_rate in self.tiers:
            if notional >= threshold:
                rate = tier_rate
            else:
                break
        return rate

    def raw_commission(self, notional: float) -> float:
        return notional * self.rate_for(notional)


def create_commission_model(
    structure: CommissionStructure | str,
    commission: float,
    min_commission: float = 0.0,
    max_commission: float = 0.0,
    tiers: Sequence[tuple[float, float]] | None = None,
) -> CommissionModel:
    """Build a commission model from its selector."""
    structure = CommissionStructure(structure)
    limits = {"min_commission": min_commission, "max_commission": max_commission}

    if structure is CommissionStructure.FLAT:
        return FlatCommission(commission, **limits)
    if structure is CommissionStructure.TIERED and tiers:
        return TieredCommission(tiers, base_rate=commission, **limits)
    return PercentageCommission(commission, **limits)


# =============================================================================
# FILL MODEL
# =============================================================================

@dataclass(slots=True)
class PartialFillModel:
    """
    Stochastic partial fills bounded by bar volume.

    With probability ``full_fill_probability`` (or whenever the volume
    ceiling covers the order) the order fills completely. Otherwise the fill
    is drawn between ``floor * quantity`` and the volume ceiling.
    """
    enabled: bool = False
    volume_ceiling: float = 0.10
    floor: float = 0.5
    full_fill_probability: float = 0.8

    def fill_quantity(self, quantity: float, volume: float, rng: np.random.Generator) -> float:
        if not self.enabled:
            return quantity

        max_fill = min(quantity, volume * self.volume_ceiling)
        if rng.random() < self.full_fill_probability or max_fill >= quantity:
            return quantity

        min_fill = max(1.0, math.floor(quantity * self.floor))
        upper = max(min_fill, max_fill)
        drawn = math.floor(min_fill + rng.random() * (upper - min_fill))
        return float(min(max(drawn, 0.0), quantity))


# =============================================================================
# EXECUTION STATISTICS
# =============================================================================

@dataclass
class ExecutionStats:
    """Running totals over every order the model has seen."""
    total_orders: int = 0
    filled_orders: int = 0
    rejected_orders: int = 0
    partial_fills: int = 0
    total_commission: float = 0.0
    total_slippage_cost: float = 0.0
    total_latency_ms: float = 0.0
    total_slippage_rate: float = 0.0

    @property
    def fill_rate(self) -> float:
        if self.total_orders == 0:
            return 0.0
        return self.filled_orders / self.total_orders

    @property
    def average_latency_ms(self) -> float:
        if self.filled_orders == 0:
            return 0.0
        return self.total_latency_ms / self.filled_orders

    @property
    def average_slippage_bps(self) -> float:
        if self.filled_orders == 0:
            return 0.0
        return self.total_slippage_rate / self.filled_orders * 10_000

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_orders": self.total_orders,
            "filled_orders": self.filled_orders,
            "rejected_orders": self.rejected_orders,
            "partial_fills": self.partial_fills,
            "fill_rate": self.fill_rate,
            "total_commission": self.total_commission,
            "total_slippage_cost": self.total_slippage_cost,
            "average_latency_ms": self.average_latency_ms,
            "average_slippage_bps": self.average_slippage_bps,
        }


# =============================================================================
# EXECUTION MODEL
# =============================================================================

class ExecutionModel:
    """
    Converts an order intent plus the current quote into a Fill.

    Steps per order: validation, liquidity gate, latency, base price,
    slippage, fill quantity, commission. Exactly one Fill is returned per
    order; rejections are zero-quantity Fills.

    Example:
        model = ExecutionModel.from_config(run_config)
        model.update_market(bar)
        fill = model.execute(order)
    """

    def __init__(
        self,
        slippage_model: SlippageModel | None = None,
        commission_model: CommissionModel | None = None,
        fill_model: PartialFillModel | None = None,
        fill_ratio: float = 1.0,
        latency_ms: float = 100.0,
        latency_variation: bool = True,
        slippage_variation: bool = True,
        volatility_adjustment: bool = True,
        liquidity_adjustment: bool = True,
        market_conditions: "MarketConditions | None" = None,
        spread_pct: float | None = None,
        seed: int | None = None,
        execution_settings: ExecutionSettings | None = None,
    ):
        self.settings = execution_settings or get_settings().execution
        self.slippage_model = slippage_model or SqrtSlippage(
            0.001, self.settings.sqrt_impact_coefficient
        )
        self.commission_model = commission_model or PercentageCommission(0.001)
        self.fill_model = fill_model or PartialFillModel(
            volume_ceiling=self.settings.partial_fill_volume_ceiling,
            floor=self.settings.partial_fill_floor,
            full_fill_probability=self.settings.full_fill_probability,
        )
        self.fill_ratio = fill_ratio
        self.latency_ms = latency_ms
        self.latency_variation = latency_variation
        self.slippage_variation = slippage_variation
        self.volatility_adjustment = volatility_adjustment
        self.liquidity_adjustment = liquidity_adjustment
        self.volatility_factor = market_conditions.volatility if market_conditions else 1.0
        self.liquidity_factor = market_conditions.liquidity if market_conditions else 1.0
        self.spread_factor = market_conditions.spread if market_conditions else 1.0
        self.spread_pct = self.settings.default_spread_pct if spread_pct is None else spread_pct
        self.seed = seed

        self._rng = np.random.default_rng(seed)
        self._markets: dict[str, MarketState] = {}
        self._prices: dict[str, deque[float]] = {}
        self._volumes: dict[str, deque[float]] = {}
        self.history: list[Fill] = []
        self.stats = ExecutionStats()

    @classmethod
    def from_config(
        cls,
        config: "RunConfig",
        execution_settings: ExecutionSettings | None = None,
    ) -> "ExecutionModel":
        """Build a model from a run configuration."""
        exec_settings = execution_settings or get_settings().execution
        return cls(
            slippage_model=create_slippage_model(
                config.slippage_model, config.slippage, exec_settings
            ),
            commission_model=create_commission_model(
                config.commission_structure,
                config.commission,
                min_commission=config.min_commission,
                max_commission=config.max_commission,
                tiers=[(t.threshold, t.rate) for t in config.commission_tiers],
            ),
            fill_model=PartialFillModel(
                enabled=config.enable_partial_fills,
                volume_ceiling=exec_settings.partial_fill_volume_ceiling,
                floor=exec_settings.partial_fill_floor,
                full_fill_probability=exec_settings.full_fill_probability,
            ),
            fill_ratio=config.fill_ratio,
            latency_ms=config.latency_ms,
            latency_variation=config.latency_variation,
            slippage_variation=config.slippage_variation,
            volatility_adjustment=config.volatility_adjustment,
            liquidity_adjustment=config.liquidity_adjustment,
            market_conditions=config.market_conditions,
            spread_pct=config.spread_pct,
            seed=config.seed,
            execution_settings=exec_settings,
        )

    def reset(self) -> None:
        """Clear market state and statistics and reseed the generator."""
        self._rng = np.random.default_rng(self.seed)
        self._markets.clear()
        self._prices.clear()
        self._volumes.clear()
        self.history.clear()
        self.stats = ExecutionStats()

    # =========================================================================
    # MARKET STATE
    # =========================================================================

    def update_market(self, bar: Bar) -> MarketState:
        """Derive the quote from ``bar`` and extend the rolling history."""
        window = self.settings.history_window
        prices = self._prices.setdefault(bar.symbol, deque(maxlen=window))
        volumes = self._volumes.setdefault(bar.symbol, deque(maxlen=window))
        prices.append(bar.close)
        if bar.volume > 0:
            volumes.append(bar.volume)

        state = MarketState.from_bar(bar, self.spread_pct)
        state.volatility = self.get_volatility(bar.symbol)
        self._markets[bar.symbol] = state
        return state

    def set_market_state(self, state: MarketState) -> None:
        """Install an explicit quote, e.g. from a test or an external feed."""
        self._markets[state.symbol] = state
        if state.last > 0:
            window = self.settings.history_window
            self._prices.setdefault(state.symbol, deque(maxlen=window)).append(state.last)

    def get_market_state(self, symbol: str) -> MarketState | None:
        return self._markets.get(symbol)

    def get_volatility(self, symbol: str) -> float:
        """Population standard deviation of simple returns over the window."""
        prices = self._prices.get(symbol)
        if not prices or len(prices) < 2:
            return self.settings.default_volatility
        arr = np.asarray(prices, dtype=float)
        returns = np.diff(arr) / arr[:-1]
        return float(np.std(returns))

    def get_average_volume(self, symbol: str) -> float:
        volumes = self._volumes.get(symbol)
        if not volumes:
            return self.settings.default_average_volume
        return float(np.mean(volumes))

    # =========================================================================
    # EXECUTION
    # =========================================================================

    @staticmethod
    def validate_intent(intent: OrderIntent) -> None:
        """
        Raise ExecutionRejection for a malformed intent.
        """
        if not isinstance(intent.side, OrderSide):
            raise ExecutionRejection(f"Invalid order side: {intent.side!r}", intent.id)
        try:
            order_type = intent.order_type
        except NotImplementedError:
            raise ExecutionRejection("Invalid order type", intent.id) from None
        if not isinstance(order_type, OrderType):
            raise ExecutionRejection(f"Invalid order type: {order_type!r}", intent.id)
        if not math.isfinite(intent.quantity) or intent.quantity <= 0:
            raise ExecutionRejection(
                f"Order quantity must be positive, got {intent.quantity}", intent.id
            )

        prices: list[float] = []
        if isinstance(intent, LimitOrder):
            prices.append(intent.limit_price)
        elif isinstance(intent, StopLimitOrder):
            prices.extend([intent.stop_price, intent.limit_price])
        elif isinstance(intent, StopOrder):
            prices.append(intent.stop_price)
        for price in prices:
            if not math.isfinite(price) or price <= 0:
                raise ExecutionRejection(
                    "Order price must be positive for non-market orders", intent.id
                )

    def execute(
        self,
        intent: OrderIntent,
        market: MarketState | None = None,
        timestamp: datetime | None = None,
    ) -> Fill:
        """
        Simulate execution of one order.

        Args:
            intent: Order to execute
            market: Quote to execute against (default: last tracked quote)
            timestamp: Simulated time of the fill (default: order timestamp)

        Returns:
            Fill, with ``rejected=True`` when the order was refused
        """
        self.stats.total_orders += 1
        timestamp = timestamp or intent.timestamp

        try:
            self.validate_intent(intent)
            market = market or self._markets.get(intent.symbol)
            if market is None:
                raise ExecutionRejection(f"No market state for {intent.symbol}", intent.id)

            # Liquidity gate
            if self._rng.random() > self.fill_ratio:
                raise ExecutionRejection("Insufficient liquidity", intent.id)
        except ExecutionRejection as e:
            return self._reject(intent, str(e), timestamp)

        latency = self._latency()
        base_price = self._base_price(intent, market)
        slippage = self._slippage(intent, market, base_price)

        if intent.side is OrderSide.BUY:
            fill_price = base_price * (1 + slippage)
        else:
            fill_price = base_price * (1 - slippage)

        fill_quantity = self.fill_model.fill_quantity(intent.quantity, market.volume, self._rng)
        if fill_quantity <= 0:
            return self._reject(intent, "No fillable quantity", timestamp)

        commission = self.commission_model.calculate_commission(fill_price, fill_quantity)
        slippage_cost = abs(fill_price - base_price) * fill_quantity

        fill = Fill(
            order_id=intent.id,
            symbol=intent.symbol,
            side=intent.side,
            order_type=intent.order_type,
            requested_quantity=intent.quantity,
            filled_quantity=fill_quantity,
            fill_price=fill_price,
            commission=commission,
            slippage=slippage,
            slippage_cost=slippage_cost,
            latency_ms=latency,
            timestamp=timestamp,
            exit_reason=intent.exit_reason,
        )

        self.stats.filled_orders += 1
        self.stats.total_commission += commission
        self.stats.total_slippage_cost += slippage_cost
        self.stats.total_slippage_rate += slippage
        self.stats.total_latency_ms += latency
        if fill.is_partial:
            self.stats.partial_fills += 1
        self.history.append(fill)

        return fill

    def _reject(self, intent: OrderIntent, reason: str, timestamp: datetime) -> Fill:
        self.stats.rejected_orders += 1
        fill = Fill.rejection(intent, reason, timestamp)
        self.history.append(fill)
        logger.debug(f"Order {intent.id} rejected: {reason}")
        return fill

    def _latency(self) -> float:
        latency = self.latency_ms
        if self.latency_variation:
            jitter = self.settings.latency_jitter
            latency *= 1 + jitter * (2 * self._rng.random() - 1)
        return max(0.0, latency)

    @staticmethod
    def _base_price(intent: OrderIntent, market: MarketState) -> float:
        opposite = market.ask if intent.side is OrderSide.BUY else market.bid
        if isinstance(intent, LimitOrder):
            if intent.side is OrderSide.BUY:
                return min(intent.limit_price, market.ask)
            return max(intent.limit_price, market.bid)
        # Stop and stop-limit orders execute as triggered market orders
        return opposite

    def _slippage(self, intent: OrderIntent, market: MarketState, price: float) -> float:
        base = self.slippage_model.base_slippage
        if not self.slippage_variation:
            return max(0.0, base)

        slippage = self.slippage_model.calculate_slippage(
            intent.quantity, price, market, self.get_average_volume(intent.symbol)
        )

        if self.volatility_adjustment:
            volatility = market.volatility
            if volatility is None:
                volatility = self.get_volatility(intent.symbol)
            slippage *= 1 + volatility * self.volatility_factor

        if self.liquidity_adjustment and self.liquidity_factor > 0:
            slippage *= 1 / self.liquidity_factor

        if market.last > 0:
            spread = (market.ask - market.bid) / market.last
            slippage += spread * self.spread_factor * self.settings.spread_weight

        band = self.settings.slippage_variation_band
        slippage *= 1 + (self._rng.random() - 0.5) * 2 * band

        return max(0.0, slippage)

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    def slippage_analysis(self) -> dict[str, dict[str, float]]:
        """
        Per-symbol slippage statistics over filled orders.

        Returns:
            {symbol: {mean, max, min, std, count}} with slippage as fractions
        """
        by_symbol: dict[str, list[float]] = {}
        for fill in self.history:
            if fill.is_filled:
                by_symbol.setdefault(fill.symbol, []).append(fill.slippage)

        analysis: dict[str, dict[str, float]] = {}
        for symbol, values in by_symbol.items():
            arr = np.asarray(values, dtype=float)
            analysis[symbol] = {
                "mean": float(np.mean(arr)),
                "max": float(np.max(arr)),
                "min": float(np.min(arr)),
                "std": float(np.std(arr)),
                "count": float(len(arr)),
            }
        return analysis

    def get_stats(self) -> dict[str, Any]:
        return self.stats.to_dict()


__all__ = [
    # Slippage
    "SlippageModel",
    "FixedSlippage",
    "LinearSlippage",
    "SqrtSlippage",
    "LogarithmicSlippage",
    "create_slippage_model",
    # Commission
    "CommissionModel",
    "FlatCommission",
    "PercentageCommission",
    "TieredCommission",
    "create_commission_model",
    # Fills
    "PartialFillModel",
    "ExecutionStats",
    "ExecutionModel",
]
