"""
Data Quality Validation
=======================

Checks historical bars before a run and reports problems as warnings.

Checks, per symbol:
- Required columns, nulls and duplicate timestamps
- OHLC relationships and non-positive prices
- Bars outside the requested range
- Late start and early end relative to the requested range
- Gaps larger than ``gap_tolerance`` times the timeframe interval

Nothing here is fatal to a run; the controller copies the warnings into the
run log.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import polars as pl

from config.settings import get_settings
from core.enums import Timeframe
from core.types import Bar
from utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


@dataclass
class ValidationResult:
    """Result of data validation."""
    symbol: str
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    gaps: list[tuple[datetime, datetime]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid

    @property
    def messages(self) -> list[str]:
        return [f"{self.symbol}: {m}" for m in self.errors + self.warnings]


def frame_from_bars(bars: Sequence[Bar]) -> pl.DataFrame:
    """Build an OHLCV frame from bars."""
    return pl.DataFrame(
        {
            "timestamp": [b.timestamp for b in bars],
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        },
        schema={
            "timestamp": pl.Datetime("us"),
            "open": pl.Float64,
            "high": pl.Float64,
            "low": pl.Float64,
            "close": pl.Float64,
            "volume": pl.Float64,
        },
    )


class DataQualityValidator:
    """
    OHLCV data-quality validator.

    Example:
        validator = DataQualityValidator()
        result = validator.validate_frame(df, "BTC-USD", Timeframe.D1, start, end)
        for message in result.messages:
            print(message)
    """

    def __init__(self, gap_tolerance: float | None = None):
        """
        Args:
            gap_tolerance: Multiple of the timeframe interval above which a
                spacing counts as a gap (default from settings)
        """
        self.gap_tolerance = (
            get_settings().engine.gap_tolerance if gap_tolerance is None else gap_tolerance
        )

    def validate_frame(
        self,
        df: pl.DataFrame,
        symbol: str,
        timeframe: Timeframe | str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ValidationResult:
        """
        Validate one symbol's OHLCV frame.

        Args:
            df: Frame with the OHLCV columns
            symbol: Symbol name used in messages
            timeframe: Expected bar spacing
            start: Requested range start
            end: Requested range end

        Returns:
            ValidationResult with details
        """
        result = ValidationResult(symbol=symbol)
        interval = Timeframe(timeframe).interval

        missing_cols = set(REQUIRED_COLUMNS) - set(df.columns)
        if missing_cols:
            result.errors.append(f"Missing columns: {sorted(missing_cols)}")
            result.is_valid = False
            return result

        result.stats["total_rows"] = len(df)
        if len(df) == 0:
            result.errors.append("No data")
            result.is_valid = False
            return result

        df = df.sort("timestamp")

        # Nulls
        total_nulls = sum(df.select(REQUIRED_COLUMNS).null_count().row(0))
        result.stats["nulls"] = total_nulls
        if total_nulls > 0:
            result.warnings.append(f"Found {total_nulls} null values")

        # Duplicates
        duplicate_count = len(df) - df.n_unique("timestamp")
        result.stats["duplicates"] = duplicate_count
        if duplicate_count > 0:
            result.warnings.append(f"Found {duplicate_count} duplicate timestamps")

        # OHLC relationships
        invalid_ohlc = df.filter(
            (pl.col("high") < pl.col("low")) |
            (pl.col("high") < pl.col("open")) |
            (pl.col("high") < pl.col("close")) |
            (pl.col("low") > pl.col("open")) |
            (pl.col("low") > pl.col("close"))
        )
        result.stats["invalid_ohlc"] = len(invalid_ohlc)
        if len(invalid_ohlc) > 0:
            result.warnings.append(f"Found {len(invalid_ohlc)} bars with invalid OHLC relationships")

        invalid_prices = df.filter(
            (pl.col("open") <= 0) |
            (pl.col("high") <= 0) |
            (pl.col("low") <= 0) |
            (pl.col("close") <= 0)
        )
        result.stats["invalid_prices"] = len(invalid_prices)
        if len(invalid_prices) > 0:
            result.warnings.append(f"Found {len(invalid_prices)} bars with zero/negative prices")

        first = df["timestamp"].min()
        last = df["timestamp"].max()
        result.stats["date_range"] = (first, last)

        # Range coverage
        if start is not None and end is not None:
            outside = df.filter((pl.col("timestamp") < start) | (pl.col("timestamp") > end))
            result.stats["out_of_range"] = len(outside)
            if len(outside) > 0:
                result.warnings.append(f"Found {len(outside)} bars outside {start} - {end}")
        if start is not None and first > start + interval:
            result.warnings.append(f"Data starts late: first bar {first}, requested {start}")
        if end is not None and last < end - interval:
            result.warnings.append(f"Data ends early: last bar {last}, requested {end}")

        # Gaps
        threshold = interval * self.gap_tolerance
        gap_rows = (
            df.select(
                pl.col("timestamp").shift(1).alias("gap_start"),
                pl.col("timestamp").alias("gap_end"),
                pl.col("timestamp").diff().alias("spacing"),
            )
            .filter(pl.col("spacing") > threshold)
        )
        result.gaps = list(zip(gap_rows["gap_start"].to_list(), gap_rows["gap_end"].to_list()))
        result.stats["gaps"] = len(result.gaps)
        if result.gaps:
            largest = max(end_ts - start_ts for start_ts, end_ts in result.gaps)
            result.warnings.append(
                f"Found {len(result.gaps)} gaps longer than {threshold} (largest {largest})"
            )

        return result

    def validate_bars(
        self,
        bars_by_symbol: Mapping[str, Sequence[Bar]],
        timeframe: Timeframe | str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, ValidationResult]:
        """Validate every symbol's bar series."""
        results: dict[str, ValidationResult] = {}
        for symbol, bars in bars_by_symbol.items():
            result = self.validate_frame(frame_from_bars(bars), symbol, timeframe, start, end)
            if result.errors or result.warnings:
                logger.warning(f"Data quality issues for {symbol}: {result.errors + result.warnings}")
            results[symbol] = result
        return results


__all__ = [
    "REQUIRED_COLUMNS",
    "ValidationResult",
    "frame_from_bars",
    "DataQualityValidator",
]
