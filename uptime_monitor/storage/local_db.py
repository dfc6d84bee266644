"""
Local SQLite Database

Owns the database file, the schema and connection handling for the
registry, telemetry, status and downtime stores.

Features:
- One short-lived connection per operation (safe from executor threads)
- Atomic per-key writes (ON CONFLICT upserts, BEGIN IMMEDIATE transactions)
- Partial unique index enforcing one active downtime per machine and day
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..common.logging_setup import get_service_logger

logger = get_service_logger("storage.local_db")

DEFAULT_DB_PATH = Path("/var/lib/uptime-monitor/uptime.db")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS customers (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        timezone TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS machines (
        id TEXT PRIMARY KEY,
        device_id TEXT,
        customer_id TEXT,
        name TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_machines_customer ON machines(customer_id)",
    """
    CREATE TABLE IF NOT EXISTS telemetry (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL,
        captured_at TEXT NOT NULL,
        production_count INTEGER
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_telemetry_device_time
    ON telemetry(device_id, captured_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS machine_status (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        machine_id TEXT NOT NULL,
        device_id TEXT NOT NULL,
        local_date TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('RUNNING', 'IDLE', 'DOWN')),
        last_seen_at TEXT,
        evaluated_at TEXT NOT NULL,
        down_since TEXT,
        UNIQUE (device_id, local_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_status_machine ON machine_status(machine_id)",
    """
    CREATE TABLE IF NOT EXISTS downtimes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        machine_id TEXT NOT NULL,
        customer_id TEXT NOT NULL,
        local_date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT,
        accumulated_hours REAL NOT NULL DEFAULT 0 CHECK (accumulated_hours >= 0),
        is_active INTEGER NOT NULL DEFAULT 1,
        reason TEXT,
        created_at TEXT DEFAULT (datetime('now')),
        updated_at TEXT DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_downtimes_active_day
    ON downtimes(machine_id, local_date) WHERE is_active = 1
    """,
    "CREATE INDEX IF NOT EXISTS idx_downtimes_machine_day ON downtimes(machine_id, local_date)",
    "CREATE INDEX IF NOT EXISTS idx_downtimes_customer_day ON downtimes(customer_id, local_date)",
    "CREATE INDEX IF NOT EXISTS idx_downtimes_active ON downtimes(is_active)",
)


class LocalDatabase:
    """
    SQLite database for the monitor.

    All methods are blocking; async callers run them in an executor.
    """

    def __init__(self, db_path: str | Path | None = None, busy_timeout_s: float = 5.0):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.busy_timeout_s = busy_timeout_s

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(
                f"Cannot create database directory {self.db_path.parent}: {e}"
            ) from e

        self._init_db()

        logger.info(f"Local database initialized at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_s)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Connection for single statements; closed on exit."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction holding the database write lock from the start.

        BEGIN IMMEDIATE makes read-then-write sequences on a key atomic
        with respect to other writers. Commits on success, rolls back on error.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_stats(self) -> dict:
        """Get database statistics."""
        with self.connection() as conn:
            stats = {}
            for table in ("customers", "machines", "telemetry", "machine_status", "downtimes"):
                stats[f"{table}_total"] = conn.execute(
                    f"SELECT COUNT(*) FROM {table}"
                ).fetchone()[0]
            stats["downtimes_active"] = conn.execute(
                "SELECT COUNT(*) FROM downtimes WHERE is_active = 1"
            ).fetchone()[0]

        stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 3)
        return stats
