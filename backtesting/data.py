"""
Historical Data Module
======================

In-memory DataProvider over polars frames, plus frame <-> bar helpers.

Features:
- Column normalization (lower-case names, ``date``/``datetime`` -> ``timestamp``)
- CSV loading with polars
- Range and weekend filtering
- Invalid rows are skipped with a warning instead of failing the load

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import polars as pl

from backtesting.validation import REQUIRED_COLUMNS, frame_from_bars
from core.enums import Timeframe
from core.interfaces import AvailabilityReport
from core.types import Bar, DataError, DataValidationError
from utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# FRAME HELPERS
# =============================================================================

def normalize_frame(df: pl.DataFrame) -> pl.DataFrame:
    """
    Normalize an OHLCV frame.

    Lower-cases column names, renames ``date``/``datetime`` to
    ``timestamp``, casts prices and volume to Float64 and sorts by time.

    Raises:
        DataValidationError: No timestamp column or missing OHLCV columns
    """
    df = df.rename({col: col.lower().strip() for col in df.columns})

    if "timestamp" not in df.columns:
        if "date" in df.columns:
            df = df.rename({"date": "timestamp"})
        elif "datetime" in df.columns:
            df = df.rename({"datetime": "timestamp"})
        else:
            raise DataValidationError("No timestamp column found")

    if df["timestamp"].dtype == pl.Utf8:
        df = df.with_columns(
            pl.col("timestamp").str.to_datetime(strict=False)
        )
    elif df["timestamp"].dtype == pl.Date:
        df = df.with_columns(pl.col("timestamp").cast(pl.Datetime("us")))

    missing = set(REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        raise DataValidationError(f"Missing columns: {sorted(missing)}")

    df = df.with_columns([
        pl.col("open").cast(pl.Float64),
        pl.col("high").cast(pl.Float64),
        pl.col("low").cast(pl.Float64),
        pl.col("close").cast(pl.Float64),
        pl.col("volume").cast(pl.Float64),
    ])

    return df.sort("timestamp")


def bars_from_frame(
    df: pl.DataFrame,
    symbol: str,
    timeframe: Timeframe | str = Timeframe.D1,
) -> list[Bar]:
    """
    Convert a normalized frame into validated bars.

    Rows with nulls or broken OHLC relationships are skipped and logged.
    """
    timeframe = Timeframe(timeframe).value
    bars: list[Bar] = []
    skipped = 0

    for row in df.select(REQUIRED_COLUMNS).iter_rows(named=True):
        if any(row[col] is None for col in REQUIRED_COLUMNS):
            skipped += 1
            continue
        try:
            bars.append(
                Bar(
                    symbol=symbol,
                    timestamp=row["timestamp"],
                    open=row["open"],
                    high=row["high"],
                    low=row["low"],
                    close=row["close"],
                    volume=row["volume"],
                    timeframe=timeframe,
                )
            )
        except DataValidationError as e:
            skipped += 1
            logger.debug(f"Skipping bar: {e}")

    if skipped:
        logger.warning(f"Skipped {skipped} invalid rows for {symbol}")

    return bars


def load_csv(file_path: Path | str) -> pl.DataFrame:
    """Load and normalize an OHLCV CSV file."""
    file_path = Path(file_path)
    try:
        df = pl.read_csv(file_path, try_parse_dates=True)
    except (OSError, pl.exceptions.ComputeError) as e:
        raise DataError(f"Failed to load {file_path}: {e}") from e
    return normalize_frame(df)


# =============================================================================
# IN-MEMORY PROVIDER
# =============================================================================

class InMemoryDataProvider:
    """
    DataProvider backed by per-symbol polars frames.

    Example:
        provider = InMemoryDataProvider({"BTC-USD": df})
        report = provider.validate_availability(["BTC-USD"], start, end, "1d")
        bars = provider.get_historical_bars(["BTC-USD"], start, end, "1d")
    """

    def __init__(
        self,
        data: Mapping[str, pl.DataFrame | Sequence[Bar]] | None = None,
        include_weekends: bool = True,
    ):
        """
        Args:
            data: Per-symbol frames or bar lists
            include_weekends: Keep Saturday/Sunday bars by default
        """
        self.include_weekends = include_weekends
        self._frames: dict[str, pl.DataFrame] = {}
        for symbol, series in (data or {}).items():
            self.add_data(symbol, series)

    @classmethod
    def from_csv_files(
        cls,
        files: Mapping[str, Path | str],
        include_weekends: bool = True,
    ) -> "InMemoryDataProvider":
        """Build from one CSV file per symbol."""
        return cls({symbol: load_csv(path) for symbol, path in files.items()}, include_weekends)

    def add_data(self, symbol: str, data: pl.DataFrame | Sequence[Bar]) -> None:
        """Add or replace the series for ``symbol``."""
        if isinstance(data, pl.DataFrame):
            frame = normalize_frame(data)
        else:
            frame = frame_from_bars(list(data)).sort("timestamp")
        self._frames[symbol] = frame
        logger.debug(f"Added {len(frame)} bars for {symbol}")

    @property
    def symbols(self) -> list[str]:
        return list(self._frames)

    def get_frame(self, symbol: str) -> pl.DataFrame | None:
        return self._frames.get(symbol)

    def _select(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        include_weekends: bool,
    ) -> pl.DataFrame:
        df = self._frames[symbol].filter(pl.col("timestamp").is_between(start, end))
        if not include_weekends:
            df = df.filter(pl.col("timestamp").dt.weekday() <= 5)
        return df

    def validate_availability(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str,
    ) -> AvailabilityReport:
        """Report symbols with no bars in range and coverage warnings."""
        report = AvailabilityReport(available=True)
        interval = Timeframe(timeframe).interval

        for symbol in symbols:
            if symbol not in self._frames:
                report.missing_symbols.append(symbol)
                continue
            df = self._select(symbol, start, end, self.include_weekends)
            if len(df) == 0:
                report.missing_symbols.append(symbol)
                continue
            first = df["timestamp"].min()
            last = df["timestamp"].max()
            if first > start + interval:
                report.warnings.append(f"{symbol}: data starts at {first}, requested {start}")
            if last < end - interval:
                report.warnings.append(f"{symbol}: data ends at {last}, requested {end}")

        report.available = not report.missing_symbols
        return report

    def get_historical_bars(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: str,
        options: dict[str, Any] | None = None,
    ) -> list[Bar]:
        """
        Bars for ``symbols`` inside ``[start, end]``.

        Options:
            include_weekends: Override the provider default
        """
        options = options or {}
        include_weekends = options.get("include_weekends", self.include_weekends)

        bars: list[Bar] = []
        for symbol in symbols:
            if symbol not in self._frames:
                continue
            df = self._select(symbol, start, end, include_weekends)
            bars.extend(bars_from_frame(df, symbol, timeframe))
        return bars


__all__ = [
    "normalize_frame",
    "bars_from_frame",
    "load_csv",
    "InMemoryDataProvider",
]
