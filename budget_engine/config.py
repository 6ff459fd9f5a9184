"""Configuration management for the budget engine.

This module centralizes paths, environment variable overrides, logging
setup and the tunable constants used by the analytical components.
Tunables live in JSON files under ``defaults/`` and are loaded into an
immutable :class:`EngineSettings` that callers pass into the pure
functions explicitly.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Base project root - assumes this file is in budget_engine/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Bundled JSON defaults
DEFAULTS_DIR = Path(__file__).parent / "defaults"

# Data directory
DATA_DIR = Path(os.getenv("BUDGET_ENGINE_DATA_DIR", _PROJECT_ROOT / "data"))

# Database
DB_PATH = Path(
    os.getenv("BUDGET_ENGINE_DB_PATH", DATA_DIR / "budgets.db")
).resolve()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def ensure_data_directories() -> None:
    """Create the data directory if it doesn't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def get_db_path() -> str:
    """Get the database path as a string."""
    return str(DB_PATH)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and interactive use.

    Args:
        level: Log level name. Defaults to ``BUDGET_ENGINE_LOG_LEVEL`` or INFO.
    """
    level_name = (level or os.getenv("BUDGET_ENGINE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )


def load_config(config_name: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load a JSON configuration file by name.

    Args:
        config_name: Name of the config file (without .json extension)
        config_dir: Directory to read from. Defaults to the bundled defaults.

    Returns:
        Dictionary containing the configuration

    Raises:
        FileNotFoundError: If the configuration file doesn't exist
        json.JSONDecodeError: If the configuration file is invalid JSON

    Example:
        >>> load_config('engine')['seasonal']['spike_threshold']
        1.5
    """
    config_path = (config_dir or DEFAULTS_DIR) / f"{config_name}.json"

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def get_config_value(config_name: str, *keys: str, default: Any = None) -> Any:
    """Get a nested configuration value by key path.

    Example:
        >>> get_config_value('engine', 'alerts', 'pace_tolerance')
        1.1
    """
    try:
        value: Any = load_config(config_name)
        for key in keys:
            value = value[key]
        return value
    except (KeyError, FileNotFoundError):
        return default


@dataclass(frozen=True)
class VelocitySettings:
    under_pace_ratio: float = 0.9


@dataclass(frozen=True)
class HealthSettings:
    base_score: float = 100.0
    need_weight: float = 1.5
    over_budget_rate: float = 0.3
    over_budget_cap: float = 15.0
    essential_penalty_rate: float = 0.1
    essential_penalty_cap: float = 5.0
    near_limit_percent: float = 90.0
    near_limit_rate: float = 0.2
    under_budget_percent: float = 80.0
    under_budget_rate: float = 0.05
    under_budget_cap: float = 3.0
    trend_rate: float = 0.2
    trend_cap: float = 5.0
    # (minimum score, label), highest band first
    labels: Tuple[Tuple[int, str], ...] = (
        (90, "Excellent"),
        (70, "Good"),
        (50, "Needs Attention"),
        (0, "Critical"),
    )


@dataclass(frozen=True)
class SeasonalSettings:
    spike_threshold: float = 1.5
    min_years: int = 2
    lookback_years: int = 3


@dataclass(frozen=True)
class GeneratorSettings:
    allowed_months: Tuple[int, ...] = (3, 6, 12)
    fixed_cv_threshold: float = 0.1
    seasonal_sigma: float = 1.5
    min_active_months: int = 2


@dataclass(frozen=True)
class AlertSettings:
    flex_group_warn_percent: float = 90.0
    pace_tolerance: float = 1.1
    min_elapsed_days: int = 3
    income_min_progress: float = 0.5
    income_shortfall_ratio: float = 0.8
    milestone_min_progress: float = 0.5
    milestone_max_percent: float = 60.0
    finish_under_percent: float = 50.0
    bill_horizon_days: int = 7
    bill_urgent_days: int = 1


@dataclass(frozen=True)
class PersistenceSettings:
    close_attempts: int = 2
    busy_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class EngineSettings:
    """All tunable constants, grouped by the component that reads them."""

    velocity: VelocitySettings = field(default_factory=VelocitySettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    seasonal: SeasonalSettings = field(default_factory=SeasonalSettings)
    generator: GeneratorSettings = field(default_factory=GeneratorSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    needs_keywords: Tuple[str, ...] = ()
    wants_keywords: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'EngineSettings':
        health = dict(raw.get('health', {}))
        if 'labels' in health:
            health['labels'] = tuple((int(floor), str(label)) for floor, label in health['labels'])
        generator = dict(raw.get('generator', {}))
        if 'allowed_months' in generator:
            generator['allowed_months'] = tuple(int(m) for m in generator['allowed_months'])
        keywords = raw.get('keywords', {})
        return cls(
            velocity=VelocitySettings(**raw.get('velocity', {})),
            health=HealthSettings(**health),
            seasonal=SeasonalSettings(**raw.get('seasonal', {})),
            generator=GeneratorSettings(**generator),
            alerts=AlertSettings(**raw.get('alerts', {})),
            persistence=PersistenceSettings(**raw.get('persistence', {})),
            needs_keywords=tuple(kw.lower() for kw in keywords.get('needs', [])),
            wants_keywords=tuple(kw.lower() for kw in keywords.get('wants', [])),
        )


def load_settings(config_name: str = 'engine', config_dir: Optional[Path] = None) -> EngineSettings:
    """Load :class:`EngineSettings` from a JSON defaults file."""
    return EngineSettings.from_dict(load_config(config_name, config_dir))


DEFAULT_SETTINGS = load_settings()
