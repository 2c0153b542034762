"""
Pytest Configuration and Fixtures
==================================

Shared fixtures for the barsim test suite.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import numpy as np
import polars as pl
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backtesting.data import InMemoryDataProvider, bars_from_frame
from backtesting.run_config import RunConfig
from core.types import Bar

START = datetime(2023, 1, 1)


# =============================================================================
# CONFIGURATION
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root path."""
    return PROJECT_ROOT


@pytest.fixture
def start_time() -> datetime:
    return START


# =============================================================================
# DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_ohlcv_data() -> pl.DataFrame:
    """Generate 120 daily OHLCV bars from a seeded random walk."""
    n_bars = 120
    rng = np.random.default_rng(42)

    timestamps = [START + timedelta(days=i) for i in range(n_bars)]
    returns = rng.normal(0.0005, 0.02, n_bars)
    close = 100.0 * np.cumprod(1 + returns)
    open_ = close * (1 + rng.uniform(-0.005, 0.005, n_bars))
    high = np.maximum(open_, close) * (1 + rng.uniform(0.001, 0.015, n_bars))
    low = np.minimum(open_, close) * (1 - rng.uniform(0.001, 0.015, n_bars))

    return pl.DataFrame({
        "timestamp": timestamps,
        "open": open_,
        "high": high,
        "low": low,
        "close": close,
        "volume": rng.uniform(1e6, 1e7, n_bars),
    })


@pytest.fixture
def sample_multi_symbol_data(sample_ohlcv_data: pl.DataFrame) -> dict[str, pl.DataFrame]:
    """Scaled copies of the sample data for two symbols."""
    data = {}
    for i, symbol in enumerate(["BTC-USD", "ETH-USD"]):
        multiplier = 1.0 + 0.5 * i
        data[symbol] = sample_ohlcv_data.with_columns([
            (pl.col("open") * multiplier).alias("open"),
            (pl.col("high") * multiplier).alias("high"),
            (pl.col("low") * multiplier).alias("low"),
            (pl.col("close") * multiplier).alias("close"),
        ])
    return data


@pytest.fixture
def sample_bars(sample_ohlcv_data: pl.DataFrame) -> list[Bar]:
    return bars_from_frame(sample_ohlcv_data, "TEST")


@pytest.fixture
def bar_factory() -> Callable[..., list[Bar]]:
    """
    Build bars from a list of closes.

    Each bar opens at its close and spans ``band`` either side of it unless
    explicit highs/lows are given.
    """

    def _make(
        closes: Sequence[float],
        symbol: str = "TEST",
        start: datetime = START,
        interval: timedelta = timedelta(days=1),
        volume: float = 1_000_000.0,
        band: float = 0.005,
        highs: Sequence[float] | None = None,
        lows: Sequence[float] | None = None,
    ) -> list[Bar]:
        bars = []
        for i, close in enumerate(closes):
            bars.append(
                Bar(
                    symbol=symbol,
                    timestamp=start + interval * i,
                    open=close,
                    high=highs[i] if highs is not None else close * (1 + band),
                    low=lows[i] if lows is not None else close * (1 - band),
                    close=close,
                    volume=volume,
                )
            )
        return bars

    return _make


@pytest.fixture
def flat_bars(bar_factory) -> list[Bar]:
    """Ten daily bars closing at 100."""
    return bar_factory([100.0] * 10)


@pytest.fixture
def flat_provider(flat_bars) -> InMemoryDataProvider:
    return InMemoryDataProvider({"TEST": flat_bars})


# =============================================================================
# BACKTESTING FIXTURES
# =============================================================================

@pytest.fixture
def config_factory() -> Callable[..., RunConfig]:
    """
    RunConfig with frictionless execution over daily bars from START.

    No spread, slippage or commission, and no latency jitter; tests switch
    on the costs they exercise.
    """

    def _make(n_bars: int = 10, **overrides: Any) -> RunConfig:
        params: dict[str, Any] = {
            "run_id": "test-run",
            "symbols": ("TEST",),
            "start": START,
            "end": START + timedelta(days=n_bars - 1),
            "initial_capital": 100_000.0,
            "commission": 0.0,
            "min_commission": 0.0,
            "slippage": 0.0,
            "slippage_model": "fixed",
            "slippage_variation": False,
            "spread_pct": 0.0,
            "latency_variation": False,
            "max_position_size": 1.0,
            "position_size_pct": 0.1,
            "seed": 42,
        }
        params.update(overrides)
        return RunConfig(**params)

    return _make


@pytest.fixture
def sample_config(config_factory) -> RunConfig:
    """Costs switched on, matching the sample OHLCV data range."""
    return config_factory(
        n_bars=120,
        commission=0.001,
        min_commission=1.0,
        slippage=0.0005,
        slippage_model="sqrt",
        slippage_variation=True,
        spread_pct=0.001,
        latency_variation=True,
        max_position_size=0.25,
        position_size_pct=0.2,
    )


# =============================================================================
# UTILITY FIXTURES
# =============================================================================

@pytest.fixture
def temp_report_dir(tmp_path: Path) -> Path:
    """Create temporary directory for reports."""
    report_dir = tmp_path / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    return report_dir


# =============================================================================
# MARKS
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
