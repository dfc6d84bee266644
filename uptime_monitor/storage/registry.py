"""
Machine / Customer Registry

Read side used by the engine, plus upsert helpers used to seed the
registry from admin tooling and tests.
"""

import sqlite3

from ..common.exceptions import CustomerNotFoundError, MachineLookupError
from .local_db import LocalDatabase
from .records import Customer, Machine


class MachineRegistry:
    """Active machines and their customers' timezones"""

    def __init__(self, db: LocalDatabase):
        self.db = db

    def list_active_machines(self) -> list[Machine]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM machines WHERE is_active = 1 ORDER BY id"
            ).fetchall()
        return [self._row_to_machine(row) for row in rows]

    def get_machine(self, machine_id: str) -> Machine:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM machines WHERE id = ?", (machine_id,)
            ).fetchone()
        if row is None:
            raise MachineLookupError(f"machine {machine_id} not found", machine_id)
        return self._row_to_machine(row)

    def get_customer(self, customer_id: str) -> Customer:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM customers WHERE id = ?", (customer_id,)
            ).fetchone()
        if row is None:
            raise CustomerNotFoundError(customer_id)
        return Customer(id=row["id"], name=row["name"], timezone=row["timezone"])

    def get_customer_timezone(self, customer_id: str) -> str | None:
        """Raw timezone name; None when the customer has none set."""
        return self.get_customer(customer_id).timezone

    def upsert_customer(self, customer: Customer) -> None:
        with self.db.connection() as conn:
            conn.execute("""
                INSERT INTO customers (id, name, timezone) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    timezone = excluded.timezone
            """, (customer.id, customer.name, customer.timezone))
            conn.commit()

    def upsert_machine(self, machine: Machine) -> None:
        with self.db.connection() as conn:
            conn.execute("""
                INSERT INTO machines (id, device_id, customer_id, name, is_active)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    device_id = excluded.device_id,
                    customer_id = excluded.customer_id,
                    name = excluded.name,
                    is_active = excluded.is_active
            """, (
                machine.id,
                machine.device_id,
                machine.customer_id,
                machine.name,
                1 if machine.is_active else 0,
            ))
            conn.commit()

    @staticmethod
    def _row_to_machine(row: sqlite3.Row) -> Machine:
        return Machine(
            id=row["id"],
            device_id=row["device_id"],
            customer_id=row["customer_id"],
            name=row["name"],
            is_active=bool(row["is_active"]),
        )
