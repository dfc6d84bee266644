"""
Boundary Splitter

Closes downtime records whose local day ended while the machine was still
down, and opens the continuation for the next local day starting exactly
at local midnight. Each record is split at its own customer's midnight.

Runs on a short fixed interval; a run after everything is split finds
nothing to do, so repeated runs are harmless.
"""

import sqlite3
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from ...common.exceptions import (
    InvariantViolationError,
    MonitorError,
    RegistryLookupError,
    StorageError,
)
from ...common.executor import run_blocking
from ...common.logging_setup import get_service_logger, log_downtime
from ...common.timestamp import (
    day_boundary_after,
    ensure_utc,
    hours_between,
    local_date_of,
    utc_now,
)
from ...common.timezones import TimezoneResolver
from ...storage.downtime_store import DowntimeStore
from ...storage.local_db import LocalDatabase
from ...storage.records import DowntimeRecord

logger = get_service_logger("downtime.splitter")


def open_segment(
    store: DowntimeStore,
    conn: sqlite3.Connection,
    template: DowntimeRecord,
    day: date,
    start: datetime,
) -> DowntimeRecord:
    """
    Open the downtime segment of (template.machine_id, day) at `start`.

    A closed record for that day is reactivated with its hours kept. An
    already-active one is returned untouched.
    """
    latest = store.find_latest(conn, template.machine_id, day)

    if latest is None:
        return store.insert(conn, DowntimeRecord(
            machine_id=template.machine_id,
            customer_id=template.customer_id,
            local_date=day,
            start_time=start,
            accumulated_hours=0.0,
            is_active=True,
            reason=template.reason,
        ))

    if not latest.is_active:
        latest.is_active = True
        latest.start_time = start
        latest.end_time = None
        return store.update(conn, latest)

    logger.warning(
        f"Active downtime {latest.id} already open for machine "
        f"{template.machine_id} on {day}, not opening a continuation",
        extra={"machine_id": template.machine_id, "local_date": day.isoformat()},
    )
    return latest


def split_at_day_boundaries(
    store: DowntimeStore,
    conn: sqlite3.Connection,
    record: DowntimeRecord,
    tz: ZoneInfo,
    now: datetime,
) -> tuple[list[DowntimeRecord], DowntimeRecord]:
    """
    Roll an active record forward to the current local day.

    Every local midnight between record.local_date and today closes the
    open segment at the boundary and opens the next day's segment there.

    Returns:
        (closed records, record active for the current local day)
    """
    today = local_date_of(now, tz)
    closed: list[DowntimeRecord] = []

    while record.is_active and record.local_date < today:
        boundary = day_boundary_after(record.local_date, tz)

        record.accumulated_hours += hours_between(record.start_time, boundary)
        record.end_time = boundary
        record.is_active = False
        store.update(conn, record)
        closed.append(record)

        record = open_segment(
            store, conn, record, record.local_date + timedelta(days=1), boundary
        )

    return closed, record


class BoundarySplitter:
    """
    Splits active downtimes at each customer's local midnight.

    Usage:
        splitter = BoundarySplitter(db, DowntimeStore(db), resolver)
        count = await splitter.split_active_downtimes()
    """

    def __init__(
        self,
        db: LocalDatabase,
        downtimes: DowntimeStore,
        resolver: TimezoneResolver,
        io_timeout_s: float = 10.0,
    ):
        self.db = db
        self.downtimes = downtimes
        self.resolver = resolver
        self.io_timeout_s = io_timeout_s

    async def split_active_downtimes(self, now: datetime | None = None) -> int:
        """
        Split every active record whose local day has ended.

        Returns:
            Number of records closed at a day boundary
        """
        now = ensure_utc(now or utc_now())

        try:
            active = await run_blocking(
                self.downtimes.list_active,
                timeout_s=self.io_timeout_s,
                operation="list_active_downtimes",
            )
        except MonitorError as e:
            logger.error(f"Cannot list active downtimes: {e}")
            return 0

        split_count = 0
        for record in active:
            try:
                split_count += await run_blocking(
                    self._split_record,
                    record,
                    now,
                    timeout_s=self.io_timeout_s,
                    operation=f"split_downtime[{record.id}]",
                )
            except InvariantViolationError as e:
                logger.critical(f"Downtime {record.id}: {e}", extra={"record_id": record.id})
            except RegistryLookupError as e:
                logger.error(
                    f"Cannot split downtime {record.id}: {e}",
                    extra={"record_id": record.id, "customer_id": record.customer_id},
                )
            except StorageError as e:
                logger.warning(f"Downtime {record.id} skipped this tick: {e}")
            except Exception as e:
                logger.error(f"Error splitting downtime {record.id}: {e}", exc_info=True)

        if split_count:
            logger.info(f"Split {split_count} downtimes at local midnight")
        return split_count

    def _split_record(self, record: DowntimeRecord, now: datetime) -> int:
        tz = self.resolver.zone_for_customer(record.customer_id)
        today = local_date_of(now, tz)

        if record.local_date > today:
            logger.warning(
                f"Downtime {record.id} dated {record.local_date} is ahead of "
                f"local date {today}, leaving it open",
            )
            return 0
        if record.local_date == today:
            return 0

        with self.db.transaction() as conn:
            # Re-read under the write lock; the ledger may have rolled it already
            current = self.downtimes.get(conn, record.id)
            if current is None or not current.is_active:
                return 0
            closed, continuation = split_at_day_boundaries(
                self.downtimes, conn, current, tz, now
            )

        for segment in closed:
            log_downtime(
                logger, "split", segment.machine_id, segment.local_date,
                segment.accumulated_hours, segment.id,
            )
        logger.debug(
            f"Continuation {continuation.id} for machine {continuation.machine_id} "
            f"opened on {continuation.local_date}",
        )
        return len(closed)
