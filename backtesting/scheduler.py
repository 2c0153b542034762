"""
Event Scheduler
===============

Merges per-symbol bar streams into one strictly ordered stream of simulated
timestamps, and orders the derived events raised at each timestamp.

Two pieces:
- EventScheduler: the bar loop. Each step yields the minimum next timestamp
  across all symbol cursors together with every bar stamped at it, then
  advances only those cursors.
- PriorityEventQueue: a heap keyed on (timestamp, priority, sequence) that
  the controller drains to process same-timestamp events in the fixed
  priority order, first-in first-out within a priority.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import heapq
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from core.events import SimEvent
from core.types import Bar, DataValidationError
from utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# BAR LOOP
# =============================================================================

@dataclass(frozen=True, slots=True)
class TimeStep:
    """One scheduler step: a timestamp and the bars stamped at it."""
    index: int
    timestamp: datetime
    bars: tuple[Bar, ...]

    @property
    def symbols(self) -> list[str]:
        return [bar.symbol for bar in self.bars]


class EventScheduler:
    """
    Multi-way merge over per-symbol bar sequences.

    Bars inside a step are ordered by the position of their symbol in the
    mapping handed to the constructor, so the emission order never depends
    on hashing.
    """

    def __init__(self, bars_by_symbol: Mapping[str, Sequence[Bar]]):
        self._symbols: list[str] = list(bars_by_symbol.keys())
        self._series: list[Sequence[Bar]] = []
        for symbol in self._symbols:
            series = bars_by_symbol[symbol]
            self._check_series(symbol, series)
            self._series.append(series)

        self._total_steps = len({bar.timestamp for series in self._series for bar in series})
        self._total_bars = sum(len(series) for series in self._series)
        self.reset()

    @staticmethod
    def _check_series(symbol: str, series: Sequence[Bar]) -> None:
        previous: datetime | None = None
        for bar in series:
            if bar.symbol != symbol:
                raise DataValidationError(
                    f"Bar for {bar.symbol} found in the {symbol} series"
                )
            if previous is not None and bar.timestamp <= previous:
                raise DataValidationError(
                    f"{symbol} bars must be strictly ascending: {bar.timestamp} after {previous}"
                )
            previous = bar.timestamp

    @classmethod
    def from_bars(cls, bars: Sequence[Bar], symbols: Sequence[str] | None = None) -> "EventScheduler":
        """
        Group a flat bar list by symbol.

        Args:
            bars: Bars in any symbol order, ascending within each symbol
            symbols: Symbol order to use; symbols without bars get an empty series
        """
        grouped: dict[str, list[Bar]] = {s: [] for s in symbols or []}
        for bar in bars:
            grouped.setdefault(bar.symbol, []).append(bar)
        return cls(grouped)

    def reset(self) -> None:
        """Rewind every cursor to the first bar."""
        self._cursors: list[int] = [0] * len(self._series)
        self._heap: list[tuple[datetime, int]] = [
            (series[0].timestamp, i) for i, series in enumerate(self._series) if series
        ]
        heapq.heapify(self._heap)
        self._steps_emitted = 0
        self._bars_emitted = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    @property
    def total_steps(self) -> int:
        """Number of distinct timestamps across all symbols."""
        return self._total_steps

    @property
    def total_bars(self) -> int:
        return self._total_bars

    @property
    def steps_emitted(self) -> int:
        return self._steps_emitted

    @property
    def bars_emitted(self) -> int:
        return self._bars_emitted

    @property
    def has_next(self) -> bool:
        return bool(self._heap)

    def peek_timestamp(self) -> datetime | None:
        """Timestamp of the next step without advancing."""
        return self._heap[0][0] if self._heap else None

    def cursor(self, symbol: str) -> int:
        """Number of bars already emitted for ``symbol``."""
        return self._cursors[self._symbols.index(symbol)]

    # =========================================================================
    # ITERATION
    # =========================================================================

    def next_step(self) -> TimeStep | None:
        """
        Emit the next timestamp and its bars, or None when exhausted.
        """
        if not self._heap:
            return None

        timestamp = self._heap[0][0]
        indices: list[int] = []
        while self._heap and self._heap[0][0] == timestamp:
            _, i = heapq.heappop(self._heap)
            indices.append(i)
        indices.sort()

        bars: list[Bar] = []
        for i in indices:
            series = self._series[i]
            bars.append(series[self._cursors[i]])
            self._cursors[i] += 1
            if self._cursors[i] < len(series):
                heapq.heappush(self._heap, (series[self._cursors[i]].timestamp, i))

        step = TimeStep(index=self._steps_emitted, timestamp=timestamp, bars=tuple(bars))
        self._steps_emitted += 1
        self._bars_emitted += len(bars)
        return step

    def __iter__(self) -> Iterator[TimeStep]:
        while True:
            step = self.next_step()
            if step is None:
                return
            yield step

    def __len__(self) -> int:
        return self._total_steps


# =============================================================================
# SAME-TIMESTAMP EVENT QUEUE
# =============================================================================

class PriorityEventQueue:
    """
    Heap of simulation events ordered by (timestamp, priority, sequence).

    The sequence number is the insertion counter, which makes the order
    total and stable for events sharing a timestamp and priority.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[datetime, int, int, SimEvent]] = []
        self._sequence = 0
        self._last_popped: datetime | None = None

    def push(self, event: SimEvent) -> None:
        if self._last_popped is not None and event.timestamp < self._last_popped:
            raise ValueError(
                f"Cannot queue {event.event_type.value} at {event.timestamp}: "
                f"simulation already reached {self._last_popped}"
            )
        heapq.heappush(self._heap, (event.timestamp, event.priority, self._sequence, event))
        self._sequence += 1

    def pop(self) -> SimEvent:
        timestamp, _, _, event = heapq.heappop(self._heap)
        self._last_popped = timestamp
        return event

    def peek(self) -> SimEvent | None:
        return self._heap[0][3] if self._heap else None

    def drain(self) -> Iterator[SimEvent]:
        """
        Pop events until empty, including any pushed while draining.
        """
        while self._heap:
            yield self.pop()

    def clear(self) -> None:
        self._heap.clear()

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)


__all__ = [
    "TimeStep",
    "EventScheduler",
    "PriorityEventQueue",
]
