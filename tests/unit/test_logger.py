"""
Unit tests for logging helpers.
"""

import sys

import pytest
from loguru import logger

from utils.logger import PerformanceLogger, TradeLogger, get_logger, setup_logging


@pytest.fixture
def captured():
    """Collect formatted messages from every category."""
    messages: list[str] = []
    sink_id = logger.add(messages.append, level="DEBUG", format="{extra[category]} | {message}",
                         filter=lambda record: "category" in record["extra"])
    yield messages
    logger.remove(sink_id)


@pytest.fixture
def restore_logging():
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestSetupLogging:
    """Tests for sink configuration."""

    def test_file_sink(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "run.log"

        setup_logging(level="INFO", log_file=log_file, console=False)
        get_logger("tests").info("file sink ready")
        logger.remove()

        assert "file sink ready" in log_file.read_text()

    def test_serialized_sink(self, tmp_path, restore_logging):
        log_file = tmp_path / "run.json"

        setup_logging(log_file=log_file, serialize=True, console=False)
        get_logger("tests").warning("structured")
        logger.remove()

        content = log_file.read_text()
        assert '"message": "structured"' in content
        assert '"name": "tests"' in content


class TestTradeLogger:
    """Tests for trade event lines."""

    def test_lines(self, captured):
        trades = TradeLogger(run_id="r1")

        trades.log_order("TEST", "buy", 10, "market", None, order_id="O000001")
        trades.log_fill("TEST", "buy", 10, 100.5, 1.25)
        trades.log_trade("TEST", 10, 100.5, 101.0, 3.75, "signal")
        trades.log_risk_event("risk_limit_breach", "drawdown 15%", severity="WARNING")

        assert captured[0].startswith("trades | ORDER | TEST | buy | qty=10.0000 | type=market")
        assert "FILL | TEST | buy | qty=10.0000 | price=100.5000 | comm=1.25" in captured[1]
        assert "reason=signal" in captured[2]
        assert "RISK | risk_limit_breach | drawdown 15%" in captured[3]

    def test_dedicated_file(self, tmp_path):
        log_file = tmp_path / "trades.log"
        trades = TradeLogger(log_file=log_file)

        trades.log_fill("TEST", "sell", 5, 99.0)
        get_logger("other").info("not a trade line")
        trades.close()
        trades.close()

        content = log_file.read_text()
        assert "FILL | TEST | sell" in content
        assert "not a trade line" not in content


class TestPerformanceLogger:
    """Tests for timing and progress lines."""

    def test_timing_threshold(self, captured):
        perf = PerformanceLogger(slow_threshold_ms=50.0)

        perf.log_timing("load_bars", 10.0)
        perf.log_timing("load_bars", 75.0)

        assert "TIMING | load_bars | 10.00ms" in captured[0]
        assert "SLOW | load_bars | 75.00ms" in captured[1]

    def test_progress(self, captured):
        PerformanceLogger().log_progress(50, 200, 1234.0, 88.5)
        assert "PROGRESS | 50/200 bars (25.0%) | 1234 bars/s | 88.5MB" in captured[0]
