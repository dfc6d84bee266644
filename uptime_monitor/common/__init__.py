"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Single-flight interval scheduler
- timestamp.py - UTC / local-day arithmetic
- timezones.py - Customer timezone resolution
- executor.py - Blocking call helper with timeouts
"""

from .config import (
    MonitorConfig,
    DatabaseSettings,
    EvaluatorSettings,
    SplitterSettings,
    HealthSettings,
    DEFAULT_TIMEZONE,
    DEFAULT_DOWNTIME_REASON,
    load_monitor_config,
    load_config_file,
)
from .exceptions import (
    MonitorError,
    ConfigError,
    RegistryLookupError,
    MachineLookupError,
    CustomerNotFoundError,
    TimezoneLookupError,
    StorageError,
    StorageTimeoutError,
    InvariantViolationError,
    ServiceError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_transition,
    log_downtime,
)
from .scheduler import ScheduledLoop, SchedulerGroup
from .timezones import TimezoneResolver

__all__ = [
    # Config
    "MonitorConfig",
    "DatabaseSettings",
    "EvaluatorSettings",
    "SplitterSettings",
    "HealthSettings",
    "DEFAULT_TIMEZONE",
    "DEFAULT_DOWNTIME_REASON",
    "load_monitor_config",
    "load_config_file",
    # Exceptions
    "MonitorError",
    "ConfigError",
    "RegistryLookupError",
    "MachineLookupError",
    "CustomerNotFoundError",
    "TimezoneLookupError",
    "StorageError",
    "StorageTimeoutError",
    "InvariantViolationError",
    "ServiceError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_transition",
    "log_downtime",
    # Scheduling
    "ScheduledLoop",
    "SchedulerGroup",
    # Timezones
    "TimezoneResolver",
]
