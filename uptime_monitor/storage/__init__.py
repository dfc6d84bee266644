"""
Storage

SQLite-backed stores for the registry, telemetry, machine status and the
downtime ledger.
"""

from .local_db import LocalDatabase
from .records import (
    Customer,
    DowntimeRecord,
    Machine,
    MachineStatus,
    StatusRecord,
    TelemetrySample,
)
from .registry import MachineRegistry
from .telemetry import TelemetryStore
from .status_store import StatusStore
from .downtime_store import DowntimeStore

__all__ = [
    "LocalDatabase",
    "Customer",
    "DowntimeRecord",
    "Machine",
    "MachineStatus",
    "StatusRecord",
    "TelemetrySample",
    "MachineRegistry",
    "TelemetryStore",
    "StatusStore",
    "DowntimeStore",
]
