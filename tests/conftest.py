"""Shared fixtures: a temporary SQLite database and a wired engine."""

from datetime import datetime, timezone

import pytest

from uptime_monitor.common.config import DatabaseSettings, MonitorConfig
from uptime_monitor.services.engine import UptimeEngine
from uptime_monitor.storage import Customer, LocalDatabase, Machine, TelemetrySample


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def db(tmp_path):
    return LocalDatabase(tmp_path / "uptime.db")


@pytest.fixture
def config(tmp_path):
    return MonitorConfig(database=DatabaseSettings(path=str(tmp_path / "uptime.db")))


@pytest.fixture
def engine(config):
    return UptimeEngine(config)


def add_machine(engine, machine_id, customer_id="c-utc", tz="UTC", device_id=None):
    """Register a customer (if tz is given) and an active machine bound to it."""
    if tz is not None:
        engine.registry.upsert_customer(Customer(id=customer_id, name=customer_id, timezone=tz))
    machine = Machine(
        id=machine_id,
        device_id=device_id or f"dev-{machine_id}",
        customer_id=customer_id,
        name=machine_id,
    )
    engine.registry.upsert_machine(machine)
    return machine


def add_counts(engine, device_id, points):
    """Insert (captured_at, production_count) pairs for a device."""
    engine.telemetry.insert_samples([
        TelemetrySample(device_id=device_id, captured_at=ts, production_count=count)
        for ts, count in points
    ])
