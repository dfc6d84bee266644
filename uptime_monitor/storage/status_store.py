"""
Machine Status Store

One row per (device_id, local_date), written with an atomic upsert on
every evaluation tick.
"""

import sqlite3
from datetime import date

from ..common.timestamp import from_db_timestamp, to_db_timestamp
from .local_db import LocalDatabase
from .records import MachineStatus, StatusRecord


class StatusStore:

    def __init__(self, db: LocalDatabase):
        self.db = db

    def find_status(self, device_id: str, local_date: date) -> StatusRecord | None:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM machine_status WHERE device_id = ? AND local_date = ?",
                (device_id, local_date.isoformat()),
            ).fetchone()
        return self._row_to_status(row) if row else None

    def find_latest_before(self, device_id: str, local_date: date) -> StatusRecord | None:
        """Most recent record of the device dated on or before local_date."""
        with self.db.connection() as conn:
            row = conn.execute("""
                SELECT * FROM machine_status
                WHERE device_id = ? AND local_date <= ?
                ORDER BY local_date DESC
                LIMIT 1
            """, (device_id, local_date.isoformat())).fetchone()
        return self._row_to_status(row) if row else None

    def upsert_status(self, record: StatusRecord) -> None:
        """Insert or overwrite the record for (device_id, local_date)."""
        with self.db.connection() as conn:
            conn.execute("""
                INSERT INTO machine_status (
                    machine_id, device_id, local_date, status,
                    last_seen_at, evaluated_at, down_since
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(device_id, local_date) DO UPDATE SET
                    machine_id = excluded.machine_id,
                    status = excluded.status,
                    last_seen_at = excluded.last_seen_at,
                    evaluated_at = excluded.evaluated_at,
                    down_since = excluded.down_since
            """, (
                record.machine_id,
                record.device_id,
                record.local_date.isoformat(),
                MachineStatus(record.status).value,
                to_db_timestamp(record.last_seen_at),
                to_db_timestamp(record.evaluated_at),
                to_db_timestamp(record.down_since),
            ))
            conn.commit()

    @staticmethod
    def _row_to_status(row: sqlite3.Row) -> StatusRecord:
        return StatusRecord(
            machine_id=row["machine_id"],
            device_id=row["device_id"],
            local_date=date.fromisoformat(row["local_date"]),
            status=MachineStatus(row["status"]),
            last_seen_at=from_db_timestamp(row["last_seen_at"]),
            evaluated_at=from_db_timestamp(row["evaluated_at"]),
            down_since=from_db_timestamp(row["down_since"]),
        )
