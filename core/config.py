"""
config.py - Engine Configuration

Loads the engine configuration once at startup: built-in defaults, merged
with a YAML file, with a couple of environment overrides (.env supported).
The result is a tree of frozen dataclasses handed to every component; no
component reads configuration on its own.

Environment variables:
    ENGINE_CONFIG      path to the YAML file
    ENGINE_LOG_LEVEL   overrides monitoring.log_level
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field, fields
from datetime import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from core.errors import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/engine.yaml"

WEEKDAYS = {
    'monday': 0, 'tuesday': 1, 'wednesday': 2, 'thursday': 3,
    'friday': 4, 'saturday': 5, 'sunday': 6
}


def parse_time_of_day(value: Any) -> time:
    """
    Parse 'HH:MM' into a time.

    YAML 1.1 reads an unquoted 21:00 as the sexagesimal integer 1260, so an
    integer is taken as minutes since midnight.
    """
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        if not 0 <= value < 24 * 60:
            raise ConfigError(f"time of day out of range: {value}")
        return time(value // 60, value % 60)
    try:
        hours, minutes = str(value).strip().split(':')
        return time(int(hours), int(minutes))
    except ValueError:
        raise ConfigError(f"invalid time of day: {value!r}")


def parse_weekday(value: Any) -> int:
    if isinstance(value, int) and 0 <= value <= 6:
        return value
    name = str(value).strip().lower()
    if name not in WEEKDAYS:
        raise ConfigError(f"invalid weekday: {value!r}")
    return WEEKDAYS[name]


@dataclass(frozen=True)
class RiskProfile:
    """Per-account risk parameters, read-only after startup."""
    risk_percent: float = 1.0
    max_daily_loss_percent: float = 3.0
    max_drawdown_percent: float = 10.0
    max_trades_per_day: int = 10

    def __post_init__(self):
        if not 0 < self.risk_percent <= 100:
            raise ConfigError(f"risk_percent must be in (0, 100], got {self.risk_percent}")
        if not 0 < self.max_daily_loss_percent <= 100:
            raise ConfigError(f"max_daily_loss_percent must be in (0, 100], got {self.max_daily_loss_percent}")
        if not 0 < self.max_drawdown_percent <= 100:
            raise ConfigError(f"max_drawdown_percent must be in (0, 100], got {self.max_drawdown_percent}")
        if self.max_trades_per_day < 0:
            raise ConfigError(f"max_trades_per_day must be >= 0, got {self.max_trades_per_day}")


@dataclass(frozen=True)
class SignalConfig:
    timeframe: str = "M15"
    atr_timeframe: str = "H1"
    bars: int = 100
    min_signal_strength: float = 0.3
    min_confidence: float = 0.5


@dataclass(frozen=True)
class FusionConfig:
    external_threshold: float = 0.70


@dataclass(frozen=True)
class ExternalSignalConfig:
    enabled: bool = True
    directory: str = "signals"
    filename_template: str = "{symbol}_signal.csv"
    max_age_seconds: float = 300.0
    min_confidence: float = 0.1


@dataclass(frozen=True)
class NewsWindow:
    """
    Recurring high-impact news blackout (UTC).

    week_of_month restricts the window to the n-th occurrence of the weekday
    in the month (1 = first); None means every week.
    """
    name: str
    weekday: int
    start: time
    end: time
    week_of_month: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NewsWindow':
        try:
            return cls(
                name=str(data['name']),
                weekday=parse_weekday(data['weekday']),
                start=parse_time_of_day(data['start']),
                end=parse_time_of_day(data['end']),
                week_of_month=data.get('week_of_month')
            )
        except KeyError as e:
            raise ConfigError(f"news window missing field {e}")


def default_news_windows() -> Tuple[NewsWindow, ...]:
    """Employment report, rate decision and inflation report blackouts (UTC)."""
    return (
        NewsWindow("employment_report", WEEKDAYS['friday'], time(12, 0), time(14, 0), week_of_month=1),
        NewsWindow("rate_decision", WEEKDAYS['wednesday'], time(17, 45), time(19, 15)),
        NewsWindow("inflation_report", WEEKDAYS['wednesday'], time(12, 15), time(13, 45), week_of_month=2),
    )


@dataclass(frozen=True)
class FilterConfig:
    regime_enabled: bool = True
    volatility_enabled: bool = True
    time_enabled: bool = True
    spread_enabled: bool = True
    choppy_threshold: float = 0.3
    choppy_min_signal: float = 0.7
    max_volatility_ratio: float = 2.0
    max_spread_points: float = 20.0
    low_liquidity_start: time = time(21, 0)
    low_liquidity_end: time = time(1, 0)
    news_windows: Tuple[NewsWindow, ...] = field(default_factory=default_news_windows)


@dataclass(frozen=True)
class SizingConfig:
    kelly_scale: float = 0.25
    kelly_min: float = 0.01
    kelly_max: float = 0.05
    max_risk_percent: float = 5.0
    max_margin_usage: float = 0.5


@dataclass(frozen=True)
class LifecycleConfig:
    price_improvement: bool = True
    improvement_points: float = 2.0
    base_stop_multiplier: float = 2.0
    stop_confidence_slope: float = 1.5
    min_stop_multiplier: float = 0.5
    base_reward_ratio: float = 1.5
    reward_confidence_slope: float = 0.5
    breakeven_enabled: bool = True
    breakeven_trigger_atr: float = 1.0
    breakeven_lock_points: float = 0.0
    trailing_enabled: bool = True
    trailing_start_atr: float = 1.5
    trailing_distance_atr: float = 1.0
    min_stop_step_points: float = 1.0


@dataclass(frozen=True)
class ExecutionConfig:
    max_spread_pips: float = 2.0
    deviation_points: int = 10


@dataclass(frozen=True)
class MonitoringConfig:
    log_level: str = "INFO"
    log_file: Optional[str] = None


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration for one engine instance."""
    symbols: Tuple[str, ...] = ("EURUSD",)
    owner_tag: int = 20240101
    day_rollover_hour: int = 0
    risk: RiskProfile = field(default_factory=RiskProfile)
    signal: SignalConfig = field(default_factory=SignalConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    external_signal: ExternalSignalConfig = field(default_factory=ExternalSignalConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    sizing: SizingConfig = field(default_factory=SizingConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    performance: Dict[str, Dict[str, float]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """
        Build a validated configuration from a plain dictionary.

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        data = copy.deepcopy(data or {})

        sections = {
            'risk': RiskProfile,
            'signal': SignalConfig,
            'fusion': FusionConfig,
            'external_signal': ExternalSignalConfig,
            'sizing': SizingConfig,
            'lifecycle': LifecycleConfig,
            'execution': ExecutionConfig,
            'monitoring': MonitoringConfig,
        }

        kwargs: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            if name in data:
                kwargs[name] = _build_section(section_cls, data.pop(name), name)

        if 'filters' in data:
            kwargs['filters'] = _build_filters(data.pop('filters'))

        if 'symbols' in data:
            symbols = data.pop('symbols')
            if isinstance(symbols, str):
                symbols = [s.strip() for s in symbols.split(',') if s.strip()]
            kwargs['symbols'] = tuple(symbols)

        for key in ('owner_tag', 'day_rollover_hour'):
            if key in data:
                kwargs[key] = int(data.pop(key))

        if 'performance' in data:
            kwargs['performance'] = dict(data.pop('performance') or {})

        if data:
            raise ConfigError(f"unknown configuration keys: {sorted(data)}")

        config = cls(**kwargs)
        if not config.symbols:
            raise ConfigError("at least one symbol must be configured")
        if not 0 <= config.day_rollover_hour <= 23:
            raise ConfigError(f"day_rollover_hour must be 0-23, got {config.day_rollover_hour}")
        return config


def _build_section(section_cls, values: Optional[Dict[str, Any]], name: str):
    values = dict(values or {})
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"unknown keys in '{name}': {sorted(unknown)}")
    try:
        return section_cls(**values)
    except TypeError as e:
        raise ConfigError(f"invalid '{name}' section: {e}")


def _build_filters(values: Optional[Dict[str, Any]]) -> FilterConfig:
    values = dict(values or {})
    if 'news_windows' in values:
        values['news_windows'] = tuple(
            NewsWindow.from_dict(window) for window in (values['news_windows'] or [])
        )
    for key in ('low_liquidity_start', 'low_liquidity_end'):
        if key in values:
            values[key] = parse_time_of_day(values[key])
    return _build_section(FilterConfig, values, 'filters')


def load_config(path: Optional[str] = None, env_file: Optional[str] = ".env") -> EngineConfig:
    """
    Load the engine configuration.

    Args:
        path: YAML file (default: $ENGINE_CONFIG or config/engine.yaml)
        env_file: .env file loaded before reading the environment

    Returns:
        EngineConfig

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values
    """
    if env_file and Path(env_file).is_file():
        load_dotenv(env_file, override=False)
        logger.info(f"Loaded environment variables from: {env_file}")

    config_path = Path(path or os.getenv('ENGINE_CONFIG') or DEFAULT_CONFIG_PATH)

    data: Dict[str, Any] = {}
    if config_path.is_file():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid configuration file {config_path}: {e}")
        logger.info(f"Configuration loaded from {config_path}")
    else:
        logger.warning(f"Config file {config_path} not found, using defaults")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping, got {type(data).__name__}")

    log_level = os.getenv('ENGINE_LOG_LEVEL')
    if log_level:
        monitoring = data.setdefault('monitoring', {}) or {}
        monitoring['log_level'] = log_level.upper()
        data['monitoring'] = monitoring

    return EngineConfig.from_dict(data)
