"""
Downtime Store

Day-scoped downtime records. Keyed lookups and writes take the caller's
transaction connection so a ledger operation reads and writes a key inside
one BEGIN IMMEDIATE transaction.
"""

import sqlite3
from datetime import date

from ..common.exceptions import InvariantViolationError
from ..common.timestamp import from_db_timestamp, to_db_timestamp
from .local_db import LocalDatabase
from .records import DowntimeRecord


class DowntimeStore:

    def __init__(self, db: LocalDatabase):
        self.db = db

    # ============================================
    # KEYED ACCESS (inside a transaction)
    # ============================================

    def get(self, conn: sqlite3.Connection, record_id: int) -> DowntimeRecord | None:
        row = conn.execute("SELECT * FROM downtimes WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_downtime(row) if row else None

    def find_latest(
        self, conn: sqlite3.Connection, machine_id: str, local_date: date
    ) -> DowntimeRecord | None:
        """Most recent record for (machine_id, local_date), active or not."""
        row = conn.execute("""
            SELECT * FROM downtimes
            WHERE machine_id = ? AND local_date = ?
            ORDER BY is_active DESC, id DESC
            LIMIT 1
        """, (machine_id, local_date.isoformat())).fetchone()
        return self._row_to_downtime(row) if row else None

    def find_active(
        self, conn: sqlite3.Connection, machine_id: str, local_date: date
    ) -> DowntimeRecord | None:
        rows = conn.execute("""
            SELECT * FROM downtimes
            WHERE machine_id = ? AND local_date = ? AND is_active = 1
            ORDER BY id DESC
            LIMIT 2
        """, (machine_id, local_date.isoformat())).fetchall()
        if len(rows) > 1:
            raise InvariantViolationError(
                f"{len(rows)} active downtimes for machine {machine_id} on {local_date}",
                key=(machine_id, local_date.isoformat()),
            )
        return self._row_to_downtime(rows[0]) if rows else None

    def find_active_before(
        self, conn: sqlite3.Connection, machine_id: str, local_date: date
    ) -> list[DowntimeRecord]:
        """Active records of a machine left open on earlier local dates."""
        rows = conn.execute("""
            SELECT * FROM downtimes
            WHERE machine_id = ? AND is_active = 1 AND local_date < ?
            ORDER BY local_date ASC, id ASC
        """, (machine_id, local_date.isoformat())).fetchall()
        return [self._row_to_downtime(row) for row in rows]

    def insert(self, conn: sqlite3.Connection, record: DowntimeRecord) -> DowntimeRecord:
        try:
            cursor = conn.execute("""
                INSERT INTO downtimes (
                    machine_id, customer_id, local_date, start_time, end_time,
                    accumulated_hours, is_active, reason
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, self._params(record))
        except sqlite3.IntegrityError as e:
            raise InvariantViolationError(
                f"cannot insert downtime for machine {record.machine_id} "
                f"on {record.local_date}: {e}",
                key=(record.machine_id, record.local_date.isoformat()),
            ) from e
        record.id = cursor.lastrowid
        return record

    def update(self, conn: sqlite3.Connection, record: DowntimeRecord) -> DowntimeRecord:
        if record.id is None:
            raise ValueError("cannot update a downtime record without an id")
        try:
            conn.execute("""
                UPDATE downtimes SET
                    machine_id = ?, customer_id = ?, local_date = ?, start_time = ?,
                    end_time = ?, accumulated_hours = ?, is_active = ?, reason = ?,
                    updated_at = datetime('now')
                WHERE id = ?
            """, (*self._params(record), record.id))
        except sqlite3.IntegrityError as e:
            raise InvariantViolationError(
                f"cannot update downtime {record.id}: {e}",
                key=(record.machine_id, record.local_date.isoformat()),
            ) from e
        return record

    # ============================================
    # QUERIES (own connection)
    # ============================================

    def list_active(self) -> list[DowntimeRecord]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM downtimes WHERE is_active = 1 ORDER BY local_date, id"
            ).fetchall()
        return [self._row_to_downtime(row) for row in rows]

    def has_active(self, machine_id: str) -> bool:
        """True while the machine has an open downtime on any local date."""
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM downtimes WHERE machine_id = ? AND is_active = 1 LIMIT 1",
                (machine_id,),
            ).fetchone()
        return row is not None

    def list_for_customer_day(self, customer_id: str, local_date: date) -> list[DowntimeRecord]:
        with self.db.connection() as conn:
            rows = conn.execute("""
                SELECT * FROM downtimes
                WHERE customer_id = ? AND local_date = ?
                ORDER BY machine_id, id
            """, (customer_id, local_date.isoformat())).fetchall()
        return [self._row_to_downtime(row) for row in rows]

    def list_for_machine(self, machine_id: str) -> list[DowntimeRecord]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM downtimes WHERE machine_id = ? ORDER BY local_date, id",
                (machine_id,),
            ).fetchall()
        return [self._row_to_downtime(row) for row in rows]

    @staticmethod
    def _params(record: DowntimeRecord) -> tuple:
        return (
            record.machine_id,
            record.customer_id,
            record.local_date.isoformat(),
            to_db_timestamp(record.start_time),
            to_db_timestamp(record.end_time),
            record.accumulated_hours,
            1 if record.is_active else 0,
            record.reason,
        )

    @staticmethod
    def _row_to_downtime(row: sqlite3.Row) -> DowntimeRecord:
        return DowntimeRecord(
            id=row["id"],
            machine_id=row["machine_id"],
            customer_id=row["customer_id"],
            local_date=date.fromisoformat(row["local_date"]),
            start_time=from_db_timestamp(row["start_time"]),
            end_time=from_db_timestamp(row["end_time"]),
            accumulated_hours=float(row["accumulated_hours"]),
            is_active=bool(row["is_active"]),
            reason=row["reason"],
        )
