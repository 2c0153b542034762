"""
Unit tests for the bar scheduler and the same-timestamp event queue.
"""

from datetime import timedelta

import pytest

from backtesting.scheduler import EventScheduler, PriorityEventQueue
from core.events import EventType, LifecycleEvent, MarketDataEvent, SimEvent
from core.types import DataValidationError


class TestEventScheduler:
    """Tests for the multi-symbol merge."""

    def test_single_symbol_steps(self, flat_bars):
        scheduler = EventScheduler({"TEST": flat_bars})

        steps = list(scheduler)

        assert len(steps) == len(flat_bars)
        assert [s.index for s in steps] == list(range(len(flat_bars)))
        assert [s.timestamp for s in steps] == [b.timestamp for b in flat_bars]
        assert scheduler.total_steps == len(flat_bars)
        assert scheduler.cursor("TEST") == len(flat_bars)

    def test_merge_strictly_ascending(self, bar_factory, start_time):
        daily = bar_factory([100.0] * 5, symbol="AAA")
        offset = bar_factory(
            [50.0] * 5, symbol="BBB", start=start_time + timedelta(hours=12)
        )
        scheduler = EventScheduler({"AAA": daily, "BBB": offset})

        timestamps = [step.timestamp for step in scheduler]

        assert len(timestamps) == 10
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))

    def test_same_timestamp_grouped_in_symbol_order(self, bar_factory):
        first = bar_factory([10.0, 11.0], symbol="ZZZ")
        second = bar_factory([20.0, 21.0], symbol="AAA")
        scheduler = EventScheduler({"ZZZ": first, "AAA": second})

        steps = list(scheduler)

        assert len(steps) == 2
        assert steps[0].symbols == ["ZZZ", "AAA"]
        assert steps[1].symbols == ["ZZZ", "AAA"]
        assert scheduler.total_bars == 4
        assert scheduler.bars_emitted == 4

    def test_unequal_lengths(self, bar_factory):
        long = bar_factory([1.0] * 6, symbol="LONG")
        short = bar_factory([2.0] * 3, symbol="SHORT")
        scheduler = EventScheduler.from_bars(long + short, ["LONG", "SHORT"])

        steps = list(scheduler)

        assert len(steps) == 6
        assert [len(s.bars) for s in steps] == [2, 2, 2, 1, 1, 1]
        assert scheduler.cursor("SHORT") == 3

    def test_non_ascending_series_rejected(self, flat_bars):
        bars = [flat_bars[1], flat_bars[0]]
        with pytest.raises(DataValidationError):
            EventScheduler({"TEST": bars})

    def test_duplicate_timestamp_rejected(self, flat_bars):
        with pytest.raises(DataValidationError):
            EventScheduler({"TEST": [flat_bars[0], flat_bars[0]]})

    def test_wrong_symbol_rejected(self, bar_factory):
        bars = bar_factory([1.0, 2.0], symbol="OTHER")
        with pytest.raises(DataValidationError):
            EventScheduler({"TEST": bars})

    def test_reset_rewinds(self, flat_bars):
        scheduler = EventScheduler({"TEST": flat_bars})
        first_pass = [s.timestamp for s in scheduler]

        assert not scheduler.has_next
        scheduler.reset()

        assert scheduler.peek_timestamp() == flat_bars[0].timestamp
        assert [s.timestamp for s in scheduler] == first_pass

    def test_empty_symbol_is_skipped(self, flat_bars):
        scheduler = EventScheduler.from_bars(flat_bars, ["TEST", "EMPTY"])
        assert len(scheduler) == len(flat_bars)
        assert scheduler.cursor("EMPTY") == 0


class TestPriorityEventQueue:
    """Tests for same-timestamp event ordering."""

    def test_priority_order_at_same_timestamp(self, flat_bars):
        bar = flat_bars[0]
        queue = PriorityEventQueue()
        queue.push(SimEvent(bar.timestamp, EventType.PORTFOLIO_UPDATE))
        queue.push(SimEvent(bar.timestamp, EventType.ORDER_FILLED, symbol="TEST"))
        queue.push(MarketDataEvent.from_bar(bar))
        queue.push(SimEvent(bar.timestamp, EventType.SIGNAL_GENERATED, symbol="TEST"))

        order = [event.event_type for event in queue.drain()]

        assert order == [
            EventType.MARKET_DATA,
            EventType.SIGNAL_GENERATED,
            EventType.ORDER_FILLED,
            EventType.PORTFOLIO_UPDATE,
        ]

    def test_fifo_within_priority(self, flat_bars):
        queue = PriorityEventQueue()
        for bar in flat_bars[:1]:
            for symbol in ["C", "A", "B"]:
                queue.push(SimEvent(bar.timestamp, EventType.MARKET_DATA, symbol=symbol))

        assert [e.symbol for e in queue.drain()] == ["C", "A", "B"]

    def test_events_pushed_while_draining_are_processed(self, flat_bars):
        ts = flat_bars[0].timestamp
        queue = PriorityEventQueue()
        queue.push(SimEvent(ts, EventType.SIGNAL_GENERATED))

        seen = []
        for event in queue.drain():
            seen.append(event.event_type)
            if event.event_type is EventType.SIGNAL_GENERATED:
                queue.push(SimEvent(ts, EventType.ORDER_PLACED))

        assert seen == [EventType.SIGNAL_GENERATED, EventType.ORDER_PLACED]
        assert len(queue) == 0

    def test_push_into_the_past_rejected(self, flat_bars):
        queue = PriorityEventQueue()
        queue.push(SimEvent(flat_bars[1].timestamp, EventType.MARKET_DATA))
        queue.pop()

        with pytest.raises(ValueError):
            queue.push(SimEvent(flat_bars[0].timestamp, EventType.MARKET_DATA))

    def test_lifecycle_events_sort_last(self, flat_bars):
        ts = flat_bars[0].timestamp
        queue = PriorityEventQueue()
        queue.push(LifecycleEvent(ts, EventType.BACKTEST_END))
        queue.push(SimEvent(ts, EventType.RISK_LIMIT_BREACH))

        assert queue.pop().event_type is EventType.RISK_LIMIT_BREACH
        assert queue.pop().event_type is EventType.BACKTEST_END
        assert not queue

    def test_risk_breach_precedes_portfolio_update(self, flat_bars):
        ts = flat_bars[0].timestamp
        queue = PriorityEventQueue()
        queue.push(SimEvent(ts, EventType.PORTFOLIO_UPDATE))
        queue.push(SimEvent(ts, EventType.RISK_LIMIT_BREACH))
        queue.push(SimEvent(ts, EventType.STOP_LOSS_HIT, symbol="TEST"))

        assert [e.event_type for e in queue.drain()] == [
            EventType.STOP_LOSS_HIT,
            EventType.RISK_LIMIT_BREACH,
            EventType.PORTFOLIO_UPDATE,
        ]

    def test_start_precedes_market_data(self, flat_bars):
        bar = flat_bars[0]
        queue = PriorityEventQueue()
        queue.push(MarketDataEvent.from_bar(bar))
        queue.push(LifecycleEvent(bar.timestamp, EventType.BACKTEST_START, message="Backtest started"))
        queue.push(LifecycleEvent(bar.timestamp, EventType.ERROR, message="boom"))

        assert [e.event_type for e in queue.drain()] == [
            EventType.BACKTEST_START,
            EventType.MARKET_DATA,
            EventType.ERROR,
        ]
