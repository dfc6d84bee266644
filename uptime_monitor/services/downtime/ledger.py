"""
Downtime Ledger

Owns day-scoped downtime records per machine. The status evaluator calls
start_downtime on every DOWN tick and end_downtime on recovery; each call
folds exactly the time elapsed since the previous call into the record,
so repeated calls never double count.

Every operation reads and writes its key inside one BEGIN IMMEDIATE
transaction. Lookups (customer, timezone) happen before the transaction
opens, so a lookup failure never leaves a partial write behind.
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime
from zoneinfo import ZoneInfo

from ...common.config import DEFAULT_DOWNTIME_REASON
from ...common.exceptions import MachineLookupError
from ...common.executor import run_blocking
from ...common.logging_setup import get_service_logger, log_downtime
from ...common.timestamp import (
    day_boundary_after,
    ensure_utc,
    hours_between,
    local_date_of,
    local_day_hours,
    utc_now,
)
from ...common.timezones import TimezoneResolver
from ...storage.downtime_store import DowntimeStore
from ...storage.local_db import LocalDatabase
from ...storage.records import DowntimeRecord, Machine
from .splitter import split_at_day_boundaries

logger = get_service_logger("downtime.ledger")


@dataclass
class MachineDayAvailability:
    """Downtime and availability of one machine over one local day"""
    machine_id: str
    local_date: date
    downtime_hours: float
    records: int
    active: bool
    day_hours: float
    availability_pct: float

    def to_dict(self) -> dict:
        data = asdict(self)
        data["local_date"] = self.local_date.isoformat()
        data["downtime_hours"] = round(self.downtime_hours, 4)
        data["availability_pct"] = round(self.availability_pct, 2)
        return data


class DowntimeLedger:
    """
    Opens, extends and closes downtime segments.

    Usage:
        ledger = DowntimeLedger(db, DowntimeStore(db), resolver)
        await ledger.start_downtime(machine, now)   # every DOWN tick
        await ledger.end_downtime(machine, now)     # on recovery
    """

    def __init__(
        self,
        db: LocalDatabase,
        downtimes: DowntimeStore,
        resolver: TimezoneResolver,
        reason: str = DEFAULT_DOWNTIME_REASON,
        io_timeout_s: float = 10.0,
    ):
        self.db = db
        self.downtimes = downtimes
        self.resolver = resolver
        self.reason = reason
        self.io_timeout_s = io_timeout_s

    async def start_downtime(
        self, machine: Machine, now: datetime | None = None
    ) -> DowntimeRecord:
        """
        Open, extend or reactivate the machine's record for today.

        Raises:
            RegistryLookupError: machine has no resolvable customer/timezone
            StorageTimeoutError: storage did not answer in time
        """
        return await run_blocking(
            self._start_sync,
            machine,
            ensure_utc(now or utc_now()),
            timeout_s=self.io_timeout_s,
            operation=f"start_downtime[{machine.id}]",
        )

    async def end_downtime(
        self, machine: Machine, now: datetime | None = None
    ) -> DowntimeRecord | None:
        """
        Close the machine's active record for today.

        Returns None when there is nothing to close.
        """
        return await run_blocking(
            self._end_sync,
            machine,
            ensure_utc(now or utc_now()),
            timeout_s=self.io_timeout_s,
            operation=f"end_downtime[{machine.id}]",
        )

    async def has_open_downtime(self, machine: Machine) -> bool:
        """True while any downtime of the machine is still active."""
        return await run_blocking(
            self.downtimes.has_active,
            machine.id,
            timeout_s=self.io_timeout_s,
            operation=f"has_open_downtime[{machine.id}]",
        )

    async def daily_availability(
        self, customer_id: str, local_date: date, now: datetime | None = None
    ) -> list[MachineDayAvailability]:
        """Per-machine downtime totals for one of the customer's local days."""
        return await run_blocking(
            self._availability_sync,
            customer_id,
            local_date,
            ensure_utc(now or utc_now()),
            timeout_s=self.io_timeout_s,
            operation=f"daily_availability[{customer_id}]",
        )

    def _resolve_zone(self, machine: Machine) -> ZoneInfo:
        if not machine.customer_id:
            raise MachineLookupError(
                f"machine {machine.id} is not bound to a customer", machine.id
            )
        return self.resolver.zone_for_customer(machine.customer_id)

    def _roll_forward(self, conn, machine: Machine, tz: ZoneInfo, today: date, now: datetime) -> None:
        """Split records still open on earlier local days before touching today's."""
        for stale in self.downtimes.find_active_before(conn, machine.id, today):
            closed, _ = split_at_day_boundaries(self.downtimes, conn, stale, tz, now)
            for segment in closed:
                log_downtime(
                    logger, "split", segment.machine_id, segment.local_date,
                    segment.accumulated_hours, segment.id,
                )

    def _start_sync(self, machine: Machine, now: datetime) -> DowntimeRecord:
        tz = self._resolve_zone(machine)
        today = local_date_of(now, tz)

        with self.db.transaction() as conn:
            self._roll_forward(conn, machine, tz, today, now)

            record = self.downtimes.find_latest(conn, machine.id, today)
            if record is None:
                action = "opened"
                record = self.downtimes.insert(conn, DowntimeRecord(
                    machine_id=machine.id,
                    customer_id=machine.customer_id,
                    local_date=today,
                    start_time=now,
                    accumulated_hours=0.0,
                    is_active=True,
                    reason=self.reason,
                ))
            elif record.is_active:
                action = "extended"
                record.accumulated_hours += hours_between(record.start_time, now)
                record.start_time = now
                self.downtimes.update(conn, record)
            else:
                # Earlier stall today already closed; keep its hours
                action = "reactivated"
                record.is_active = True
                record.start_time = now
                record.end_time = None
                self.downtimes.update(conn, record)

        if action == "extended":
            logger.debug(
                f"Downtime extended for machine {machine.id}: {record.accumulated_hours:.3f}h",
                extra={"machine_id": machine.id, "record_id": record.id},
            )
        else:
            log_downtime(logger, action, machine.id, today, record.accumulated_hours, record.id)
        return record

    def _end_sync(self, machine: Machine, now: datetime) -> DowntimeRecord | None:
        tz = self._resolve_zone(machine)
        today = local_date_of(now, tz)

        with self.db.transaction() as conn:
            self._roll_forward(conn, machine, tz, today, now)

            record = self.downtimes.find_active(conn, machine.id, today)
            if record is None:
                logger.debug(f"No active downtime for machine {machine.id} on {today}")
                return None

            record.accumulated_hours += hours_between(record.start_time, now)
            record.end_time = now
            record.is_active = False
            self.downtimes.update(conn, record)

        log_downtime(logger, "closed", machine.id, today, record.accumulated_hours, record.id)
        return record

    def _availability_sync(
        self, customer_id: str, local_date: date, now: datetime
    ) -> list[MachineDayAvailability]:
        tz = self.resolver.zone_for_customer(customer_id)
        day_hours = local_day_hours(local_date, tz)
        # Open segments count up to now, or to the end of the day if it is over
        cutoff = min(now, day_boundary_after(local_date, tz))

        totals: dict[str, MachineDayAvailability] = {}
        for record in self.downtimes.list_for_customer_day(customer_id, local_date):
            entry = totals.get(record.machine_id)
            if entry is None:
                entry = MachineDayAvailability(
                    machine_id=record.machine_id,
                    local_date=local_date,
                    downtime_hours=0.0,
                    records=0,
                    active=False,
                    day_hours=day_hours,
                    availability_pct=100.0,
                )
                totals[record.machine_id] = entry

            entry.downtime_hours += record.accumulated_hours
            entry.records += 1
            if record.is_active:
                entry.active = True
                entry.downtime_hours += hours_between(record.start_time, cutoff)

        for entry in totals.values():
            entry.availability_pct = max(0.0, 1.0 - entry.downtime_hours / day_hours) * 100.0

        return list(totals.values())
