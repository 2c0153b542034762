"""
Unit tests for the in-memory data provider and frame helpers.
"""

from datetime import datetime, timedelta

import polars as pl
import pytest

from backtesting.data import InMemoryDataProvider, bars_from_frame, load_csv, normalize_frame
from core.interfaces import DataProvider
from core.types import DataError, DataValidationError

T0 = datetime(2023, 1, 1)  # a Sunday


class TestFrameHelpers:
    """Tests for normalization and bar conversion."""

    def test_normalize_renames_and_sorts(self):
        df = pl.DataFrame({
            "Date": ["2023-01-02 00:00:00", "2023-01-01 00:00:00"],
            "Open": [2, 1],
            "High": [2, 1],
            "Low": [2, 1],
            "Close": [2, 1],
            "Volume": [10, 20],
        })

        normalized = normalize_frame(df)

        assert normalized.columns[:6] == ["timestamp", "open", "high", "low", "close", "volume"]
        assert normalized["close"].dtype == pl.Float64
        assert normalized["close"].to_list() == [1.0, 2.0]

    def test_normalize_requires_timestamp(self):
        with pytest.raises(DataValidationError):
            normalize_frame(pl.DataFrame({"close": [1.0]}))

    def test_normalize_requires_ohlcv(self):
        with pytest.raises(DataValidationError):
            normalize_frame(pl.DataFrame({"timestamp": [T0], "close": [1.0]}))

    def test_bars_from_frame_skips_invalid_rows(self):
        df = pl.DataFrame({
            "timestamp": [T0, T0 + timedelta(days=1), T0 + timedelta(days=2)],
            "open": [100.0, 100.0, None],
            "high": [101.0, 99.0, 101.0],
            "low": [99.0, 98.0, 99.0],
            "close": [100.0, 100.0, 100.0],
            "volume": [1e6, 1e6, 1e6],
        })

        bars = bars_from_frame(df, "TEST")

        assert len(bars) == 1
        assert bars[0].timestamp == T0
        assert bars[0].timeframe == "1d"

    def test_load_csv(self, tmp_path, sample_ohlcv_data):
        path = tmp_path / "TEST.csv"
        sample_ohlcv_data.write_csv(path)

        df = load_csv(path)

        assert len(df) == len(sample_ohlcv_data)
        assert df["timestamp"].dtype.is_temporal()

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(DataError):
            load_csv(tmp_path / "missing.csv")


class TestInMemoryDataProvider:
    """Tests for range selection and availability."""

    def test_satisfies_protocol(self, flat_provider):
        assert isinstance(flat_provider, DataProvider)

    def test_range_is_inclusive(self, flat_provider, flat_bars):
        start = flat_bars[2].timestamp
        end = flat_bars[5].timestamp

        bars = flat_provider.get_historical_bars(["TEST"], start, end, "1d")

        assert [b.timestamp for b in bars] == [b.timestamp for b in flat_bars[2:6]]
        assert all(b.symbol == "TEST" for b in bars)

    def test_accepts_frames(self, sample_multi_symbol_data):
        provider = InMemoryDataProvider(sample_multi_symbol_data)
        end = T0 + timedelta(days=119)

        bars = provider.get_historical_bars(["BTC-USD", "ETH-USD"], T0, end, "1d")

        assert provider.symbols == ["BTC-USD", "ETH-USD"]
        assert len(bars) == 240

    def test_weekend_filter(self, flat_bars):
        provider = InMemoryDataProvider({"TEST": flat_bars}, include_weekends=False)
        end = flat_bars[-1].timestamp

        bars = provider.get_historical_bars(["TEST"], T0, end, "1d")
        with_weekends = provider.get_historical_bars(
            ["TEST"], T0, end, "1d", {"include_weekends": True}
        )

        assert all(b.timestamp.weekday() < 5 for b in bars)
        assert len(bars) == 7
        assert len(with_weekends) == 10

    def test_availability_missing_symbol(self, flat_provider, flat_bars):
        report = flat_provider.validate_availability(
            ["TEST", "NOPE"], T0, flat_bars[-1].timestamp, "1d"
        )
        assert not report.available
        assert report.missing_symbols == ["NOPE"]

    def test_availability_out_of_range(self, flat_provider):
        start = T0 + timedelta(days=100)
        report = flat_provider.validate_availability(["TEST"], start, start + timedelta(days=5), "1d")
        assert report.missing_symbols == ["TEST"]

    def test_availability_coverage_warnings(self, flat_provider, flat_bars):
        report = flat_provider.validate_availability(
            ["TEST"], T0 - timedelta(days=3), flat_bars[-1].timestamp + timedelta(days=3), "1d"
        )
        assert report.available
        assert len(report.warnings) == 2

    def test_from_csv_files(self, tmp_path, sample_ohlcv_data):
        path = tmp_path / "TEST.csv"
        sample_ohlcv_data.write_csv(path)

        provider = InMemoryDataProvider.from_csv_files({"TEST": path})

        assert provider.get_frame("TEST") is not None
        assert len(provider.get_frame("TEST")) == 120
