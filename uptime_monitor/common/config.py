"""
Configuration Dataclasses

Type-safe configuration structures for the monitor, loaded from the
YAML config file (see config.example.yaml).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .exceptions import ConfigError

DEFAULT_TIMEZONE = "Asia/Kolkata"
DEFAULT_DOWNTIME_REASON = "Machine Status: DOWN"


@dataclass
class DatabaseSettings:
    """SQLite storage settings"""
    path: str = "/var/lib/uptime-monitor/uptime.db"
    busy_timeout_s: float = 5.0


@dataclass
class EvaluatorSettings:
    """Status evaluation tick settings"""
    interval_s: float = 60.0
    lookback_minutes: float = 5.0
    down_threshold_minutes: float = 10.0
    max_concurrency: int = 8
    io_timeout_s: float = 10.0


@dataclass
class SplitterSettings:
    """Midnight boundary tick settings"""
    interval_s: float = 120.0


@dataclass
class HealthSettings:
    """HTTP health/status server"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8090


@dataclass
class MonitorConfig:
    """Complete monitor configuration"""
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    evaluator: EvaluatorSettings = field(default_factory=EvaluatorSettings)
    splitter: SplitterSettings = field(default_factory=SplitterSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    default_timezone: str = DEFAULT_TIMEZONE
    downtime_reason: str = DEFAULT_DOWNTIME_REASON


def _positive(section: str, name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{name} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{section}.{name} must be positive, got {value!r}")
    return number


def load_monitor_config(data: dict | None) -> MonitorConfig:
    """Load MonitorConfig from a dictionary (e.g., parsed YAML)"""
    data = data or {}

    db_data = data.get("database", {}) or {}
    database = DatabaseSettings(
        path=str(db_data.get("path", DatabaseSettings.path)),
        busy_timeout_s=_positive(
            "database", "busy_timeout_s",
            db_data.get("busy_timeout_s", DatabaseSettings.busy_timeout_s),
        ),
    )

    ev_data = data.get("evaluator", {}) or {}
    evaluator = EvaluatorSettings(
        interval_s=_positive("evaluator", "interval_s", ev_data.get("interval_s", 60)),
        lookback_minutes=_positive(
            "evaluator", "lookback_minutes", ev_data.get("lookback_minutes", 5)
        ),
        down_threshold_minutes=_positive(
            "evaluator", "down_threshold_minutes",
            ev_data.get("down_threshold_minutes", 10),
        ),
        max_concurrency=int(_positive(
            "evaluator", "max_concurrency", ev_data.get("max_concurrency", 8)
        )),
        io_timeout_s=_positive("evaluator", "io_timeout_s", ev_data.get("io_timeout_s", 10)),
    )

    sp_data = data.get("splitter", {}) or {}
    splitter = SplitterSettings(
        interval_s=_positive("splitter", "interval_s", sp_data.get("interval_s", 120)),
    )

    health_data = data.get("health", {}) or {}
    health = HealthSettings(
        enabled=bool(health_data.get("enabled", True)),
        host=str(health_data.get("host", "127.0.0.1")),
        port=int(health_data.get("port", 8090)),
    )

    default_timezone = data.get("default_timezone") or DEFAULT_TIMEZONE
    try:
        ZoneInfo(default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"default_timezone '{default_timezone}' is not a known IANA zone")

    return MonitorConfig(
        database=database,
        evaluator=evaluator,
        splitter=splitter,
        health=health,
        default_timezone=default_timezone,
        downtime_reason=data.get("downtime_reason") or DEFAULT_DOWNTIME_REASON,
    )


def load_config_file(config_path: str | Path) -> MonitorConfig:
    """
    Load configuration from a YAML file.

    Raises:
        ConfigError: file missing or not valid YAML
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    return load_monitor_config(data)
