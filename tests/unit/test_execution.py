"""
Unit tests for execution modeling: quotes, slippage, commission and fills.
"""

import numpy as np
import pytest

from backtesting.execution import (
    ExecutionModel,
    FixedSlippage,
    LinearSlippage,
    LogarithmicSlippage,
    PartialFillModel,
    PercentageCommission,
    SqrtSlippage,
    TieredCommission,
    create_commission_model,
    create_slippage_model,
)
from core.enums import OrderSide, SlippageModelType
from core.types import LimitOrder, MarketOrder, MarketState, StopOrder


def _model(**kwargs) -> ExecutionModel:
    params = {
        "slippage_model": FixedSlippage(0.0),
        "commission_model": PercentageCommission(0.0),
        "latency_variation": False,
        "slippage_variation": False,
        "spread_pct": 0.002,
        "seed": 7,
    }
    params.update(kwargs)
    return ExecutionModel(**params)


def _order(side=OrderSide.BUY, quantity=100.0, ts=None, order_id="O000001", cls=MarketOrder, **kwargs):
    return cls(id=order_id, symbol="TEST", side=side, quantity=quantity, timestamp=ts, **kwargs)


@pytest.fixture
def market(flat_bars) -> MarketState:
    return MarketState(symbol="TEST", bid=99.9, ask=100.1, last=100.0, volume=1_000_000.0)


class TestQuotes:
    """Tests for quote derivation and base prices."""

    def test_quote_from_bar(self, flat_bars):
        model = _model()
        state = model.update_market(flat_bars[0])

        assert state.bid == pytest.approx(99.9)
        assert state.ask == pytest.approx(100.1)
        assert state.mid == pytest.approx(100.0)
        assert model.get_market_state("TEST") is state

    def test_market_buy_fills_at_ask(self, flat_bars):
        model = _model()
        model.update_market(flat_bars[0])

        fill = model.execute(_order(ts=flat_bars[0].timestamp))

        assert fill.is_filled
        assert fill.fill_price == pytest.approx(100.1)
        assert fill.filled_quantity == 100.0
        assert fill.timestamp == flat_bars[0].timestamp

    def test_market_sell_fills_at_bid(self, flat_bars):
        model = _model()
        model.update_market(flat_bars[0])

        fill = model.execute(_order(side=OrderSide.SELL, ts=flat_bars[0].timestamp))

        assert fill.fill_price == pytest.approx(99.9)

    def test_limit_orders_take_better_price(self, flat_bars, market):
        model = _model()
        ts = flat_bars[0].timestamp

        buy = model.execute(_order(cls=LimitOrder, limit_price=101.0, ts=ts), market)
        sell = model.execute(
            _order(cls=LimitOrder, side=OrderSide.SELL, limit_price=99.0, ts=ts, order_id="O2"),
            market,
        )

        assert buy.fill_price == pytest.approx(100.1)
        assert sell.fill_price == pytest.approx(99.9)

    def test_stop_order_executes_as_market(self, flat_bars, market):
        model = _model()
        fill = model.execute(
            _order(cls=StopOrder, stop_price=95.0, side=OrderSide.SELL, ts=flat_bars[0].timestamp),
            market,
        )
        assert fill.fill_price == pytest.approx(99.9)

    def test_volatility_defaults_until_two_prices(self, bar_factory):
        model = _model()
        bars = bar_factory([100.0, 110.0])

        model.update_market(bars[0])
        assert model.get_volatility("TEST") == model.settings.default_volatility

        model.update_market(bars[1])
        assert model.get_volatility("TEST") == pytest.approx(0.0)


class TestRejections:
    """Tests for orders the model refuses."""

    def test_non_positive_quantity(self, flat_bars, market):
        model = _model()
        fill = model.execute(_order(quantity=0.0, ts=flat_bars[0].timestamp), market)

        assert fill.rejected
        assert fill.filled_quantity == 0.0
        assert "quantity" in fill.rejection_reason

    def test_limit_without_price(self, flat_bars, market):
        model = _model()
        fill = model.execute(_order(cls=LimitOrder, limit_price=0.0, ts=flat_bars[0].timestamp), market)

        assert fill.rejected
        assert "price" in fill.rejection_reason

    def test_no_market_state(self, flat_bars):
        model = _model()
        fill = model.execute(_order(ts=flat_bars[0].timestamp))

        assert fill.rejected
        assert "No market state" in fill.rejection_reason

    def test_liquidity_gate(self, flat_bars, market):
        model = _model(fill_ratio=0.0)

        fills = [
            model.execute(_order(ts=flat_bars[0].timestamp, order_id=f"O{i}"), market)
            for i in range(20)
        ]

        assert all(f.rejected for f in fills)
        assert model.stats.rejected_orders == 20
        assert model.stats.fill_rate == 0.0


class TestSlippage:
    """Tests for slippage models."""

    def test_fixed_slippage_is_adverse(self, flat_bars, market):
        model = _model(slippage_model=FixedSlippage(0.001))
        ts = flat_bars[0].timestamp

        buy = model.execute(_order(ts=ts), market)
        sell = model.execute(_order(side=OrderSide.SELL, ts=ts, order_id="O2"), market)

        assert buy.fill_price == pytest.approx(100.1 * 1.001)
        assert sell.fill_price == pytest.approx(99.9 * 0.999)
        assert buy.slippage == pytest.approx(0.001)
        assert buy.slippage_cost == pytest.approx(100.1 * 0.001 * 100)

    def test_linear_slippage(self, market):
        model = LinearSlippage(0.001, coefficient=0.01)
        assert model.calculate_slippage(1000, 100.0, market, 1e6) == pytest.approx(0.00101)

    def test_sqrt_slippage(self, market):
        model = SqrtSlippage(0.001, coefficient=0.001)
        assert model.calculate_slippage(10_000, 100.0, market, 1e6) == pytest.approx(0.0011)

    def test_log_slippage_grows_with_size(self, market):
        model = LogarithmicSlippage(0.001, coefficient=0.0005)
        small = model.calculate_slippage(100, 100.0, market, 1e6)
        large = model.calculate_slippage(100_000, 100.0, market, 1e6)
        assert model.base_slippage < small < large

    def test_factory(self):
        assert isinstance(create_slippage_model("fixed", 0.001), FixedSlippage)
        assert isinstance(create_slippage_model(SlippageModelType.LINEAR, 0.001), LinearSlippage)
        assert isinstance(create_slippage_model("sqrt", 0.001), SqrtSlippage)
        assert isinstance(create_slippage_model("logarithmic", 0.001), LogarithmicSlippage)

    def test_variation_stays_non_negative(self, flat_bars, market):
        model = _model(slippage_model=SqrtSlippage(0.0005), slippage_variation=True)
        ts = flat_bars[0].timestamp

        fills = [model.execute(_order(ts=ts, order_id=f"O{i}"), market) for i in range(50)]

        slippages = np.array([f.slippage for f in fills])
        assert (slippages >= 0).all()
        assert slippages.std() > 0
        assert all(f.fill_price >= market.ask for f in fills)


class TestCommission:
    """Tests for commission models."""

    def test_percentage(self):
        model = PercentageCommission(0.001)
        assert model.calculate_commission(100.0, 100) == pytest.approx(10.0)

    def test_min_and_max(self):
        floor = PercentageCommission(0.001, min_commission=5.0)
        cap = PercentageCommission(0.01, max_commission=50.0)

        assert floor.calculate_commission(100.0, 10) == pytest.approx(5.0)
        assert cap.calculate_commission(100.0, 100) == pytest.approx(50.0)

    def test_tiered(self):
        model = TieredCommission([(10_000, 0.0005), (0, 0.001)])

        assert model.rate_for(5_000) == pytest.approx(0.001)
        assert model.rate_for(15_000) == pytest.approx(0.0005)
        assert model.calculate_commission(100.0, 150) == pytest.approx(7.5)

    def test_tiered_below_first_threshold_uses_base_rate(self):
        model = TieredCommission([(1_000, 0.002)], base_rate=0.003)
        assert model.rate_for(500) == pytest.approx(0.003)

    def test_flat_factory(self):
        model = create_commission_model("flat", 2.5)
        assert model.calculate_commission(100.0, 1) == pytest.approx(2.5)
        assert model.calculate_commission(100.0, 1000) == pytest.approx(2.5)

    def test_commission_on_filled_notional(self, flat_bars, market):
        model = _model(commission_model=PercentageCommission(0.001))
        fill = model.execute(_order(ts=flat_bars[0].timestamp), market)
        assert fill.commission == pytest.approx(fill.notional * 0.001)


class TestPartialFills:
    """Tests for the stochastic partial fill model."""

    def test_disabled_fills_everything(self):
        model = PartialFillModel(enabled=False)
        assert model.fill_quantity(1000, 1.0, np.random.default_rng(0)) == 1000

    def test_volume_covers_order(self):
        model = PartialFillModel(enabled=True)
        rng = np.random.default_rng(0)
        assert all(model.fill_quantity(10, 1e6, rng) == 10 for _ in range(50))

    def test_partial_fill_bounds(self):
        model = PartialFillModel(enabled=True, volume_ceiling=0.1, floor=0.5)
        rng = np.random.default_rng(3)

        results = {model.fill_quantity(1000, 100.0, rng) for _ in range(200)}

        assert results == {500.0, 1000.0}

    def test_partial_fill_reported(self, flat_bars):
        model = _model(fill_model=PartialFillModel(enabled=True), seed=11)
        market = MarketState(symbol="TEST", bid=99.9, ask=100.1, last=100.0, volume=100.0)

        fills = [
            model.execute(_order(quantity=1000, ts=flat_bars[0].timestamp, order_id=f"O{i}"), market)
            for i in range(100)
        ]

        partial = [f for f in fills if f.is_partial]
        assert partial
        assert all(0 < f.filled_quantity < f.requested_quantity for f in partial)
        assert model.stats.partial_fills == len(partial)


class TestExecutionModel:
    """Tests for latency, determinism and statistics."""

    def test_latency_jitter_bounds(self, flat_bars, market):
        model = _model(latency_ms=100.0, latency_variation=True)
        fills = [
            model.execute(_order(ts=flat_bars[0].timestamp, order_id=f"O{i}"), market)
            for i in range(50)
        ]
        assert all(50.0 <= f.latency_ms <= 150.0 for f in fills)

    def test_fixed_latency(self, flat_bars, market):
        model = _model(latency_ms=80.0)
        fill = model.execute(_order(ts=flat_bars[0].timestamp), market)
        assert fill.latency_ms == 80.0

    def test_same_seed_same_fills(self, sample_bars):
        def run():
            model = _model(
                slippage_model=SqrtSlippage(0.001),
                slippage_variation=True,
                latency_variation=True,
                fill_model=PartialFillModel(enabled=True),
                fill_ratio=0.9,
                seed=123,
            )
            fills = []
            for i, bar in enumerate(sample_bars[:40]):
                model.update_market(bar)
                side = OrderSide.BUY if i % 2 == 0 else OrderSide.SELL
                fills.append(model.execute(_order(side=side, quantity=500, ts=bar.timestamp, order_id=f"O{i}")))
            return [f.to_dict() for f in fills]

        assert run() == run()

    def test_stats_and_analysis(self, flat_bars, market):
        model = _model(commission_model=PercentageCommission(0.001))
        ts = flat_bars[0].timestamp
        model.execute(_order(ts=ts), market)
        model.execute(_order(quantity=0.0, ts=ts, order_id="O2"), market)

        stats = model.get_stats()
        assert stats["total_orders"] == 2
        assert stats["filled_orders"] == 1
        assert stats["rejected_orders"] == 1
        assert stats["fill_rate"] == pytest.approx(0.5)
        assert stats["total_commission"] == pytest.approx(100 * 100.1 * 0.001)

        analysis = model.slippage_analysis()
        assert analysis["TEST"]["count"] == 1.0

    def test_reset_reseeds(self, flat_bars, market):
        model = _model(slippage_model=SqrtSlippage(0.001), slippage_variation=True)
        ts = flat_bars[0].timestamp

        first = model.execute(_order(ts=ts), market)
        model.reset()
        second = model.execute(_order(ts=ts), market)

        assert first.fill_price == second.fill_price
        assert model.stats.total_orders == 1
