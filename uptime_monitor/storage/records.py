"""
Storage Records

Dataclasses for rows read from and written to the local database.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from ..common.config import DEFAULT_DOWNTIME_REASON


class MachineStatus(str, Enum):
    """Persisted machine status values"""
    RUNNING = "RUNNING"
    DOWN = "DOWN"
    # Reserved in the schema; no evaluation path produces it.
    IDLE = "IDLE"


@dataclass(frozen=True)
class TelemetrySample:
    """One timestamped device report"""
    device_id: str
    captured_at: datetime
    production_count: int | None = None


@dataclass
class Customer:
    id: str
    name: str = ""
    timezone: str | None = None


@dataclass
class Machine:
    id: str
    device_id: str | None
    customer_id: str | None
    name: str = ""
    is_active: bool = True


@dataclass
class StatusRecord:
    """
    Machine status for one local day.

    Unique per (device_id, local_date). down_since anchors the current
    no-production grace period and is None while producing.
    """
    machine_id: str
    device_id: str
    local_date: date
    status: MachineStatus
    evaluated_at: datetime
    last_seen_at: datetime | None = None
    down_since: datetime | None = None


@dataclass
class DowntimeRecord:
    """
    Day-scoped downtime segment.

    start_time marks the instant up to which accumulated_hours is already
    folded in; it moves forward on every extend.
    """
    machine_id: str
    customer_id: str
    local_date: date
    start_time: datetime
    accumulated_hours: float = 0.0
    is_active: bool = True
    end_time: datetime | None = None
    reason: str = DEFAULT_DOWNTIME_REASON
    # Internal tracking
    id: int | None = None
