"""
Portfolio Ledger
================

Owns cash, open positions, realized/unrealized P&L, peak value and drawdown
for one backtest run. Mutated only through fills and mark-to-market updates;
produces point-in-time snapshots.

Positions live in a dense slot list indexed by symbol. A slot is either an
open Position or None, and ``has_position`` is the explicit exists check.
Callers only ever receive copies.

Only long exposure is modeled: reducing a symbol with no open position
raises LedgerInvariantError.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from core.enums import ExitReason, OrderSide, PositionSide
from core.types import Fill, LedgerInvariantError, PortfolioSnapshot, Position, Trade
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class LedgerUpdate:
    """Result of applying one fill."""
    fill: Fill
    position: Position | None = None
    trade: Trade | None = None
    opened: bool = False
    closed: bool = False


class PortfolioLedger:
    """
    Tracks portfolio state during backtesting.

    All methods that change state take the simulated market time, never the
    wall clock.
    """

    def __init__(
        self,
        initial_capital: float,
        snapshot_interval: timedelta | None = None,
    ):
        """
        Initialize the ledger.

        Args:
            initial_capital: Starting cash
            snapshot_interval: Minimum simulated time between cadence
                snapshots; None snapshots on every ``maybe_snapshot`` call
        """
        if initial_capital <= 0:
            raise LedgerInvariantError(f"initial_capital must be positive, got {initial_capital}")

        self.initial_capital = initial_capital
        self.snapshot_interval = snapshot_interval
        self.reset()

    def reset(self) -> None:
        """Reset to the initial state."""
        self.cash = self.initial_capital
        self.realized_pnl = 0.0
        self.total_commission = 0.0
        self.total_slippage_cost = 0.0
        self.peak_value = self.initial_capital
        self.current_drawdown = 0.0
        self.max_drawdown = 0.0

        self._slot_index: dict[str, int] = {}
        self._slots: list[Position | None] = []
        self._trades: list[Trade] = []
        self._snapshots: list[PortfolioSnapshot] = []
        self._partial_counts: dict[str, int] = {}
        self._trade_counter = 0
        self._last_snapshot_time: datetime | None = None
        self._last_update: datetime | None = None

    # =========================================================================
    # POSITION STORAGE
    # =========================================================================

    def _slot(self, symbol: str) -> int:
        index = self._slot_index.get(symbol)
        if index is None:
            index = len(self._slots)
            self._slot_index[symbol] = index
            self._slots.append(None)
        return index

    def _open_position(self, symbol: str) -> Position | None:
        index = self._slot_index.get(symbol)
        return None if index is None else self._slots[index]

    def has_position(self, symbol: str) -> bool:
        """Check if an open position exists for ``symbol``."""
        return self._open_position(symbol) is not None

    def get_position(self, symbol: str) -> Position | None:
        """Copy of the open position, or None."""
        position = self._open_position(symbol)
        return replace(position) if position is not None else None

    @property
    def positions(self) -> list[Position]:
        """Copies of all open positions, in first-seen symbol order."""
        return [replace(p) for p in self._slots if p is not None]

    @property
    def num_positions(self) -> int:
        return sum(1 for p in self._slots if p is not None)

    @property
    def trades(self) -> list[Trade]:
        return list(self._trades)

    @property
    def num_trades(self) -> int:
        return len(self._trades)

    @property
    def snapshots(self) -> list[PortfolioSnapshot]:
        return list(self._snapshots)

    # =========================================================================
    # VALUATION
    # =========================================================================

    @property
    def positions_value(self) -> float:
        return sum(p.market_value for p in self._slots if p is not None)

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self._slots if p is not None)

    @property
    def total_value(self) -> float:
        return self.cash + self.positions_value

    @property
    def total_pnl(self) -> float:
        return self.total_value - self.initial_capital

    def _update_metrics(self) -> None:
        total = self.total_value
        if total > self.peak_value:
            self.peak_value = total
        if self.peak_value > 0 and total < self.peak_value:
            self.current_drawdown = (self.peak_value - total) / self.peak_value
        else:
            self.current_drawdown = 0.0
        self.max_drawdown = max(self.max_drawdown, self.current_drawdown)

    def mark_to_market(
        self,
        symbol: str,
        price: float,
        timestamp: datetime,
        high: float | None = None,
        low: float | None = None,
    ) -> None:
        """
        Revalue the open position in ``symbol`` at ``price``.

        ``high`` and ``low`` widen the excursion range used for MAE/MFE.
        Symbols without a position are ignored.
        """
        position = self._open_position(symbol)
        self._last_update = timestamp
        if position is None:
            return
        position.mark(price, timestamp, high, low)
        self._update_metrics()

    def set_protective_levels(
        self,
        symbol: str,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> None:
        """Attach stop-loss / take-profit prices to an open position."""
        position = self._open_position(symbol)
        if position is None:
            raise LedgerInvariantError(f"No position found for symbol: {symbol}")
        if stop_loss is not None:
            position.stop_loss = stop_loss
        if take_profit is not None:
            position.take_profit = take_profit

    # =========================================================================
    # FILLS
    # =========================================================================

    def apply_fill(self, fill: Fill) -> LedgerUpdate:
        """
        Apply an executed fill.

        Args:
            fill: Fill with positive filled quantity

        Returns:
            LedgerUpdate with the resulting position copy and any trade

        Raises:
            LedgerInvariantError: Rejected fill, or a sell with no open position
        """
        if not fill.is_filled:
            raise LedgerInvariantError(f"Cannot apply unfilled order {fill.order_id}")

        if fill.side is OrderSide.BUY:
            update = self._buy(fill)
        else:
            update = self._sell(fill)

        self.total_commission += fill.commission
        self.total_slippage_cost += fill.slippage_cost
        self._last_update = fill.timestamp
        self._update_metrics()
        return update

    def _buy(self, fill: Fill) -> LedgerUpdate:
        quantity = fill.filled_quantity
        price = fill.fill_price
        self.cash -= quantity * price + fill.commission

        index = self._slot(fill.symbol)
        position = self._slots[index]

        if position is None:
            self._trade_counter += 1
            position = Position(
                symbol=fill.symbol,
                quantity=quantity,
                entry_price=price,
                cost_basis=quantity * price,
                entry_time=fill.timestamp,
                trade_id=f"T{self._trade_counter:06d}",
                current_price=price,
                updated_at=fill.timestamp,
                entry_commission=fill.commission,
                entry_slippage=fill.slippage_cost,
                highest_price=price,
                lowest_price=price,
            )
            self._slots[index] = position
            logger.debug(f"Opened {fill.symbol}: {quantity:.4f} @ {price:.4f}")
            return LedgerUpdate(fill=fill, position=replace(position), opened=True)

        total_quantity = position.quantity + quantity
        position.entry_price = (
            position.entry_price * position.quantity + price * quantity
        ) / total_quantity
        position.quantity = total_quantity
        position.cost_basis += quantity * price
        position.entry_commission += fill.commission
        position.entry_slippage += fill.slippage_cost
        position.mark(price, fill.timestamp)
        return LedgerUpdate(fill=fill, position=replace(position))

    def _sell(self, fill: Fill) -> LedgerUpdate:
        position = self._open_position(fill.symbol)
        if position is None:
            raise LedgerInvariantError(f"No position found to reduce for symbol: {fill.symbol}")

        price = fill.fill_price
        quantity = fill.filled_quantity
        if quantity > position.quantity:
            logger.warning(
                f"Sell of {quantity:.4f} {fill.symbol} exceeds held {position.quantity:.4f}; closing position"
            )
            quantity = position.quantity

        self.cash += quantity * price - fill.commission
        position.mark(price, fill.timestamp)

        if quantity >= position.quantity:
            trade = self._close(position, price, fill)
            self._slots[self._slot_index[fill.symbol]] = None
            logger.debug(f"Closed {fill.symbol}: pnl={trade.net_pnl:.2f}")
            return LedgerUpdate(fill=fill, trade=trade, closed=True)

        trade = self._reduce(position, quantity, price, fill)
        return LedgerUpdate(fill=fill, position=replace(position), trade=trade)

    def _reduce(self, position: Position, quantity: float, price: float, fill: Fill) -> Trade:
        fraction = quantity / position.quantity
        sold_cost_basis = fraction * position.cost_basis
        gross_pnl = quantity * price - sold_cost_basis
        entry_commission = fraction * position.entry_commission
        entry_slippage = fraction * position.entry_slippage

        count = self._partial_counts.get(position.trade_id, 0) + 1
        self._partial_counts[position.trade_id] = count

        trade = self._record_trade(
            trade_id=f"{position.trade_id}.{count}",
            position=position,
            quantity=quantity,
            exit_price=price,
            fill=fill,
            gross_pnl=gross_pnl,
            entry_commission=entry_commission,
            entry_slippage=entry_slippage,
            is_partial=True,
        )

        position.quantity -= quantity
        position.cost_basis -= sold_cost_basis
        position.entry_commission -= entry_commission
        position.entry_slippage -= entry_slippage
        return trade

    def _close(self, position: Position, price: float, fill: Fill) -> Trade:
        gross_pnl = position.quantity * price - position.cost_basis
        return self._record_trade(
            trade_id=position.trade_id,
            position=position,
            quantity=position.quantity,
            exit_price=price,
            fill=fill,
            gross_pnl=gross_pnl,
            entry_commission=position.entry_commission,
            entry_slippage=position.entry_slippage,
            is_partial=False,
        )

    def _record_trade(
        self,
        trade_id: str,
        position: Position,
        quantity: float,
        exit_price: float,
        fill: Fill,
        gross_pnl: float,
        entry_commission: float,
        entry_slippage: float,
        is_partial: bool,
    ) -> Trade:
        exit_commission = fill.commission
        exit_slippage = fill.slippage_cost
        net_pnl = gross_pnl - entry_commission - exit_commission

        trade = Trade(
            id=trade_id,
            symbol=position.symbol,
            side=PositionSide.LONG,
            entry_time=position.entry_time,
            entry_price=position.entry_price,
            exit_time=fill.timestamp,
            exit_price=exit_price,
            quantity=quantity,
            gross_pnl=gross_pnl,
            net_pnl=net_pnl,
            entry_commission=entry_commission,
            exit_commission=exit_commission,
            entry_slippage=entry_slippage,
            exit_slippage=exit_slippage,
            exit_reason=fill.exit_reason or ExitReason.SIGNAL,
            max_adverse_excursion=max(0.0, (position.entry_price - position.lowest_price) * quantity),
            max_favorable_excursion=max(0.0, (position.highest_price - position.entry_price) * quantity),
            is_partial=is_partial,
        )
        self._trades.append(trade)
        self.realized_pnl += net_pnl
        return trade

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def current_snapshot(self, timestamp: datetime | None = None) -> PortfolioSnapshot:
        """Build a snapshot of the current state without recording it."""
        timestamp = timestamp or self._last_update
        if timestamp is None:
            raise LedgerInvariantError("Snapshot requires a timestamp before the first update")

        position_values: dict[str, float] = {}
        position_quantities: dict[str, float] = {}
        for position in self._slots:
            if position is not None:
                position_values[position.symbol] = position.market_value
                position_quantities[position.symbol] = position.quantity

        positions_value = sum(position_values.values())
        total_value = self.cash + positions_value

        return PortfolioSnapshot(
            timestamp=timestamp,
            cash=self.cash,
            positions_value=positions_value,
            total_value=total_value,
            peak_value=self.peak_value,
            current_drawdown=self.current_drawdown,
            max_drawdown=self.max_drawdown,
            realized_pnl=self.realized_pnl,
            unrealized_pnl=self.unrealized_pnl,
            total_pnl=total_value - self.initial_capital,
            total_return_pct=(total_value / self.initial_capital - 1) * 100,
            position_values=position_values,
            position_quantities=position_quantities,
        )

    def take_snapshot(self, timestamp: datetime | None = None) -> PortfolioSnapshot:
        """Record a snapshot now, regardless of cadence."""
        snapshot = self.current_snapshot(timestamp)
        self._snapshots.append(snapshot)
        self._last_snapshot_time = snapshot.timestamp
        return snapshot

    def should_snapshot(self, timestamp: datetime) -> bool:
        if self._last_snapshot_time is None or self.snapshot_interval is None:
            return True
        return timestamp - self._last_snapshot_time >= self.snapshot_interval

    def maybe_snapshot(self, timestamp: datetime) -> PortfolioSnapshot | None:
        """Record a snapshot if the cadence interval has elapsed."""
        if self.should_snapshot(timestamp):
            return self.take_snapshot(timestamp)
        return None

    def get_state(self) -> dict[str, Any]:
        """Summary of the ledger for logging and reports."""
        return {
            "cash": self.cash,
            "positions_value": self.positions_value,
            "total_value": self.total_value,
            "realized_pnl": self.realized_pnl,
            "unrealized_pnl": self.unrealized_pnl,
            "total_commission": self.total_commission,
            "peak_value": self.peak_value,
            "current_drawdown": self.current_drawdown,
            "max_drawdown": self.max_drawdown,
            "open_positions": self.num_positions,
            "trades": len(self._trades),
        }


__all__ = [
    "LedgerUpdate",
    "PortfolioLedger",
]
