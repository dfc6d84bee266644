"""
Structured Logging Setup

All monitor loggers live under one tree (``uptime.<service>``). The tree
gets a single stdout handler; service loggers propagate into it and stamp
their service name on every record.

Level and format come from setup_logging() (the CLI) or, when nothing has
configured the tree yet, from UPTIME_LOG_LEVEL / UPTIME_LOG_FORMAT.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_ROOT = "uptime"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "service", "taskName",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, extra= fields copied to the top level"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", record.name),
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Merges the service name into the caller's extra fields"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> logging.Logger:
    """
    (Re)configure the ``uptime`` logger tree.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ...)
        json_format: JSON lines for production, plain text for development

    Returns:
        The tree's parent logger
    """
    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # Monitor output stays on our handler only
    root.propagate = False
    return root


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """Logger adapter for ``uptime.<service_name>``."""
    if not logging.getLogger(LOGGER_ROOT).handlers:
        setup_logging(
            os.environ.get("UPTIME_LOG_LEVEL", "INFO"),
            os.environ.get("UPTIME_LOG_FORMAT", "json").lower() == "json",
        )

    logger = logging.getLogger(f"{LOGGER_ROOT}.{service_name}")
    return ServiceLoggerAdapter(logger, {"service": service_name})


def log_transition(
    logger: logging.LoggerAdapter,
    machine_id: str,
    device_id: str,
    previous: str | None,
    current: str,
    down_since: datetime | None = None,
) -> None:
    """Log a persisted machine status transition"""
    logger.info(
        f"Machine {machine_id} status {previous or 'NONE'} -> {current}",
        extra={
            "machine_id": machine_id,
            "device_id": device_id,
            "previous_status": previous,
            "status": current,
            "down_since": down_since.isoformat() if down_since else None,
        },
    )


def log_downtime(
    logger: logging.LoggerAdapter,
    action: str,
    machine_id: str,
    local_date: Any,
    accumulated_hours: float,
    record_id: int | None = None,
) -> None:
    """Log a downtime ledger change (opened, extended, reactivated, closed, split)"""
    logger.info(
        f"Downtime {action} for machine {machine_id} on {local_date}: "
        f"{accumulated_hours:.3f}h",
        extra={
            "action": action,
            "machine_id": machine_id,
            "local_date": str(local_date),
            "accumulated_hours": round(accumulated_hours, 6),
            "record_id": record_id,
        },
    )
