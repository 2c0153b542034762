"""
Unit tests for run configuration and settings.
"""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from backtesting.run_config import CommissionTier, RunConfig
from config import load_run_config, load_yaml_config
from config.settings import get_settings, reload_settings
from core.enums import CommissionStructure, SlippageModelType, Timeframe
from core.types import ConfigValidationError


class TestRunConfig:
    """Tests for RunConfig construction and validation."""

    def test_defaults(self, config_factory):
        config = RunConfig(symbols=("TEST",), start=datetime(2023, 1, 1), end=datetime(2023, 2, 1))

        assert config.timeframe is Timeframe.D1
        assert config.slippage_model is SlippageModelType.SQRT
        assert config.commission_structure is CommissionStructure.PERCENTAGE
        assert config.max_errors == get_settings().engine.max_errors
        assert config.seed == 42
        assert config.problems() == []

    def test_sound_config_validates(self, config_factory):
        config = config_factory()
        assert config.validate_config() is config

    def test_collects_every_problem(self, config_factory):
        config = config_factory(
            symbols=(),
            start=datetime(2023, 2, 1),
            end=datetime(2023, 1, 1),
            initial_capital=-1.0,
            commission=1.5,
        )

        with pytest.raises(ConfigValidationError) as exc_info:
            config.validate_config()

        problems = exc_info.value.problems
        assert len(problems) == 4
        assert any("symbol" in p for p in problems)
        assert any("start" in p for p in problems)
        assert any("initial_capital" in p for p in problems)
        assert any("commission" in p for p in problems)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"symbols": ("A", "A")},
            {"fill_ratio": 1.2},
            {"min_commission": 10.0, "max_commission": 5.0},
            {"commission_structure": "tiered"},
            {"warmup_period": -1},
            {"max_drawdown": 0.0},
            {"snapshot_interval": timedelta(0)},
        ],
    )
    def test_single_problems(self, config_factory, overrides):
        assert len(config_factory(**overrides).problems()) == 1

    def test_unknown_field_rejected(self, config_factory):
        with pytest.raises(ValidationError):
            config_factory(not_a_field=True)

    def test_frozen(self, config_factory):
        config = config_factory()
        with pytest.raises(ValidationError):
            config.seed = 1

    def test_tiers_from_dict(self, config_factory):
        config = RunConfig.from_dict({
            "symbols": ["TEST"],
            "start": "2023-01-01T00:00:00",
            "end": "2023-03-01T00:00:00",
            "commission_structure": "tiered",
            "commission_tiers": [{"threshold": 0, "rate": 0.001}, {"threshold": 10_000, "rate": 0.0005}],
        })

        assert config.symbols == ("TEST",)
        assert config.commission_tiers[1] == CommissionTier(threshold=10_000, rate=0.0005)
        assert config.problems() == []

    def test_round_trip_through_dict(self, config_factory):
        config = config_factory(snapshot_interval=timedelta(hours=6))
        assert RunConfig.from_dict(config.to_dict()) == config

    def test_effective_periods(self, config_factory):
        assert config_factory(timeframe="1h").effective_periods_per_year == pytest.approx(8760)
        assert config_factory(periods_per_year=252).effective_periods_per_year == 252

    def test_bundled_yaml(self):
        config = RunConfig.from_yaml("backtest_run")

        assert config.symbols == ("BTC-USD", "ETH-USD")
        assert config.warmup_period == 20
        assert config.problems() == []

    def test_bundled_yaml_as_dict(self):
        data = load_run_config()
        assert data["symbols"] == ["BTC-USD", "ETH-USD"]
        assert RunConfig.from_dict(data) == RunConfig.from_yaml("backtest_run")

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_config(tmp_path / "missing.yaml")


class TestSettings:
    """Tests for global settings."""

    def test_sections(self):
        settings = get_settings()

        assert settings.execution.slippage_variation_band == pytest.approx(0.2)
        assert settings.execution.latency_jitter == pytest.approx(0.5)
        assert settings.engine.drawdown_warning_fraction == pytest.approx(0.7)
        assert settings.performance.days_per_year == pytest.approx(365.25)

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_reload_reads_environment(self, monkeypatch, config_factory):
        monkeypatch.setenv("BARSIM_ENGINE_MAX_ERRORS", "7")
        try:
            assert reload_settings().engine.max_errors == 7
            assert get_settings().engine.max_errors == 7
            assert config_factory().max_errors == 7
        finally:
            monkeypatch.delenv("BARSIM_ENGINE_MAX_ERRORS")
            reload_settings()

        assert get_settings().engine.max_errors == 100
