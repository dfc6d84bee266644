"""
Telemetry Store

Append-only device samples. The engine only reads a recent window.
"""

from datetime import datetime

from ..common.timestamp import from_db_timestamp, to_db_timestamp
from .local_db import LocalDatabase
from .records import TelemetrySample


class TelemetryStore:

    def __init__(self, db: LocalDatabase):
        self.db = db

    def insert_sample(self, sample: TelemetrySample) -> None:
        """Append one sample (ingestion side)."""
        self.insert_samples([sample])

    def insert_samples(self, samples: list[TelemetrySample]) -> None:
        """Append samples (ingestion side)."""
        if not samples:
            return
        with self.db.connection() as conn:
            conn.executemany("""
                INSERT INTO telemetry (device_id, captured_at, production_count)
                VALUES (?, ?, ?)
            """, [
                (s.device_id, to_db_timestamp(s.captured_at), s.production_count)
                for s in samples
            ])
            conn.commit()

    def query_recent(
        self,
        device_id: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[TelemetrySample]:
        """
        Samples captured in [since, until], oldest first.

        Ties on captured_at keep insertion order.
        """
        query = "SELECT * FROM telemetry WHERE device_id = ? AND captured_at >= ?"
        params: list = [device_id, to_db_timestamp(since)]
        if until is not None:
            query += " AND captured_at <= ?"
            params.append(to_db_timestamp(until))
        query += " ORDER BY captured_at ASC, id ASC"

        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            TelemetrySample(
                device_id=row["device_id"],
                captured_at=from_db_timestamp(row["captured_at"]),
                production_count=row["production_count"],
            )
            for row in rows
        ]
