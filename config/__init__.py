"""
Configuration module for barsim.

This module provides centralized configuration management including:
- Global settings (settings.py)
- Run configuration documents (backtest_run.yaml)
"""

from pathlib import Path

import yaml

from config.settings import (
    PROJECT_ROOT,
    CONFIG_DIR,
    REPORTS_DIR,
    LOGS_DIR,
    Settings,
    get_settings,
    reload_settings,
    settings,
)


def load_yaml_config(config_name: str | Path) -> dict:
    """
    Load a YAML configuration file.

    Args:
        config_name: Name of a file in the config directory (with or without
            .yaml extension) or a path to any YAML file

    Returns:
        Dictionary containing the configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid
    """
    config_path = Path(config_name)

    if not config_path.is_absolute() and not config_path.exists():
        name = str(config_name)
        if not name.endswith((".yaml", ".yml")):
            name = f"{name}.yaml"
        config_path = CONFIG_DIR / name

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_run_config() -> dict:
    """Load the bundled example run configuration."""
    return load_yaml_config("backtest_run")


__all__ = [
    "PROJECT_ROOT",
    "CONFIG_DIR",
    "REPORTS_DIR",
    "LOGS_DIR",
    "Settings",
    "get_settings",
    "reload_settings",
    "settings",
    "load_yaml_config",
    "load_run_config",
]
