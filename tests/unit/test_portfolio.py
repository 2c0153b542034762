"""
Unit tests for the portfolio ledger.
"""

from datetime import datetime, timedelta

import pytest

from backtesting.portfolio import PortfolioLedger
from core.enums import ExitReason, OrderSide, OrderType
from core.types import Fill, LedgerInvariantError

T0 = datetime(2023, 1, 1)


def _fill(
    side: OrderSide,
    quantity: float,
    price: float,
    ts: datetime = T0,
    commission: float = 0.0,
    symbol: str = "TEST",
    order_id: str = "O000001",
    exit_reason: ExitReason | None = None,
) -> Fill:
    return Fill(
        order_id=order_id,
        symbol=symbol,
        side=side,
        order_type=OrderType.MARKET,
        requested_quantity=quantity,
        filled_quantity=quantity,
        fill_price=price,
        commission=commission,
        slippage=0.0,
        slippage_cost=0.0,
        latency_ms=0.0,
        timestamp=ts,
        exit_reason=exit_reason,
    )


@pytest.fixture
def ledger() -> PortfolioLedger:
    return PortfolioLedger(initial_capital=100_000.0)


class TestOpeningPositions:
    """Tests for buys."""

    def test_open_position(self, ledger):
        update = ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0, commission=10.0))

        assert update.opened
        assert ledger.cash == pytest.approx(100_000 - 10_000 - 10)
        position = ledger.get_position("TEST")
        assert position.quantity == 100
        assert position.entry_price == 100.0
        assert position.cost_basis == pytest.approx(10_000)
        assert position.entry_commission == 10.0
        assert position.trade_id == "T000001"

    def test_add_uses_weighted_average(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0))
        update = ledger.apply_fill(_fill(OrderSide.BUY, 100, 110.0, ts=T0 + timedelta(days=1)))

        assert not update.opened
        position = ledger.get_position("TEST")
        assert position.quantity == 200
        assert position.entry_price == pytest.approx(105.0)
        assert position.cost_basis == pytest.approx(21_000)
        assert position.trade_id == "T000001"

    def test_positions_are_copies(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0))

        copy = ledger.get_position("TEST")
        copy.quantity = 1

        assert ledger.get_position("TEST").quantity == 100
        assert ledger.has_position("TEST")
        assert not ledger.has_position("OTHER")
        assert ledger.get_position("OTHER") is None

    def test_invalid_capital(self):
        with pytest.raises(LedgerInvariantError):
            PortfolioLedger(initial_capital=0.0)


class TestClosingPositions:
    """Tests for sells, trades and P&L."""

    def test_full_close(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0, commission=10.0))
        update = ledger.apply_fill(
            _fill(OrderSide.SELL, 100, 110.0, ts=T0 + timedelta(days=2), commission=11.0)
        )

        trade = update.trade
        assert update.closed
        assert trade.id == "T000001"
        assert trade.gross_pnl == pytest.approx(1_000)
        assert trade.net_pnl == pytest.approx(1_000 - 10 - 11)
        assert trade.holding_hours == pytest.approx(48.0)
        assert trade.exit_reason is ExitReason.SIGNAL
        assert not ledger.has_position("TEST")
        assert ledger.num_trades == 1
        assert ledger.realized_pnl == pytest.approx(979)
        assert ledger.cash == pytest.approx(100_000 + 979)

    def test_partial_reduce(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0, commission=10.0))

        first = ledger.apply_fill(_fill(OrderSide.SELL, 40, 110.0, commission=4.0))
        assert first.trade.id == "T000001.1"
        assert first.trade.is_partial
        assert first.trade.entry_commission == pytest.approx(4.0)
        assert first.trade.gross_pnl == pytest.approx(400)
        assert first.trade.net_pnl == pytest.approx(392)
        assert not first.closed

        position = ledger.get_position("TEST")
        assert position.quantity == 60
        assert position.cost_basis == pytest.approx(6_000)
        assert position.entry_commission == pytest.approx(6.0)

        second = ledger.apply_fill(_fill(OrderSide.SELL, 60, 120.0, commission=6.0))
        assert second.closed
        assert second.trade.id == "T000001"
        assert second.trade.net_pnl == pytest.approx(1_200 - 6 - 6)
        assert [t.id for t in ledger.trades] == ["T000001.1", "T000001"]

    def test_oversell_closes_position(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 10, 100.0))
        update = ledger.apply_fill(_fill(OrderSide.SELL, 15, 100.0))

        assert update.closed
        assert update.trade.quantity == 10
        assert ledger.cash == pytest.approx(100_000)

    def test_sell_without_position_raises(self, ledger):
        with pytest.raises(LedgerInvariantError):
            ledger.apply_fill(_fill(OrderSide.SELL, 10, 100.0))

    def test_rejected_fill_raises(self, ledger):
        rejected = Fill(
            order_id="O000001",
            symbol="TEST",
            side=OrderSide.BUY,
            order_type=OrderType.MARKET,
            requested_quantity=10,
            filled_quantity=0.0,
            fill_price=0.0,
            commission=0.0,
            slippage=0.0,
            slippage_cost=0.0,
            latency_ms=0.0,
            timestamp=T0,
            rejected=True,
            rejection_reason="Insufficient liquidity",
        )
        with pytest.raises(LedgerInvariantError):
            ledger.apply_fill(rejected)

    def test_exit_reason_and_excursions(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0))
        ledger.mark_to_market("TEST", 100.0, T0 + timedelta(days=1), high=110.0, low=95.0)
        update = ledger.apply_fill(
            _fill(OrderSide.SELL, 100, 105.0, ts=T0 + timedelta(days=1), exit_reason=ExitReason.TAKE_PROFIT)
        )

        trade = update.trade
        assert trade.exit_reason is ExitReason.TAKE_PROFIT
        assert trade.max_favorable_excursion == pytest.approx(1_000)
        assert trade.max_adverse_excursion == pytest.approx(500)

    def test_new_trade_id_after_close(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 10, 100.0))
        ledger.apply_fill(_fill(OrderSide.SELL, 10, 100.0))
        ledger.apply_fill(_fill(OrderSide.BUY, 10, 100.0))

        assert ledger.get_position("TEST").trade_id == "T000002"


class TestValuation:
    """Tests for marking, drawdown and snapshots."""

    def test_drawdown_tracking(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 500, 100.0))

        ledger.mark_to_market("TEST", 90.0, T0 + timedelta(days=1))
        assert ledger.total_value == pytest.approx(95_000)
        assert ledger.current_drawdown == pytest.approx(0.05)

        ledger.mark_to_market("TEST", 110.0, T0 + timedelta(days=2))
        assert ledger.peak_value == pytest.approx(105_000)
        assert ledger.current_drawdown == 0.0
        assert ledger.max_drawdown == pytest.approx(0.05)

    def test_snapshot_value_identity(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 100, 100.0, commission=5.0))
        ledger.apply_fill(_fill(OrderSide.BUY, 50, 20.0, symbol="OTHER"))
        ledger.mark_to_market("TEST", 103.0, T0 + timedelta(days=1))

        snapshot = ledger.take_snapshot(T0 + timedelta(days=1))

        assert snapshot.total_value == pytest.approx(snapshot.cash + sum(snapshot.position_values.values()))
        assert snapshot.position_quantities == {"TEST": 100, "OTHER": 50}
        assert snapshot.open_positions == 2
        assert snapshot.unrealized_pnl == pytest.approx(300)
        assert snapshot.total_pnl == pytest.approx(300 - 5)

    def test_snapshot_cadence(self):
        ledger = PortfolioLedger(100_000.0, snapshot_interval=timedelta(days=1))

        assert ledger.maybe_snapshot(T0) is not None
        assert ledger.maybe_snapshot(T0 + timedelta(hours=12)) is None
        assert ledger.maybe_snapshot(T0 + timedelta(days=1)) is not None
        assert len(ledger.snapshots) == 2

    def test_snapshot_every_call_without_interval(self, ledger):
        for i in range(3):
            ledger.maybe_snapshot(T0 + timedelta(hours=i))
        assert len(ledger.snapshots) == 3

    def test_snapshot_requires_time(self, ledger):
        with pytest.raises(LedgerInvariantError):
            ledger.current_snapshot()

    def test_mark_without_position_is_ignored(self, ledger):
        ledger.mark_to_market("TEST", 50.0, T0)
        assert ledger.total_value == pytest.approx(100_000)

    def test_protective_levels(self, ledger):
        with pytest.raises(LedgerInvariantError):
            ledger.set_protective_levels("TEST", stop_loss=90.0)

        ledger.apply_fill(_fill(OrderSide.BUY, 10, 100.0))
        ledger.set_protective_levels("TEST", stop_loss=90.0, take_profit=120.0)

        position = ledger.get_position("TEST")
        assert position.stop_loss == 90.0
        assert position.take_profit == 120.0

    def test_state_summary(self, ledger):
        ledger.apply_fill(_fill(OrderSide.BUY, 10, 100.0, commission=1.0))
        state = ledger.get_state()

        assert state["open_positions"] == 1
        assert state["total_commission"] == pytest.approx(1.0)
        assert state["trades"] == 0
