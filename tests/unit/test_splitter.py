"""Splitting open downtimes at each customer's local midnight."""

import asyncio
from datetime import date

import pytest

from uptime_monitor.services.downtime.splitter import open_segment
from uptime_monitor.storage import DowntimeRecord
from tests.conftest import add_machine, utc


def test_split_at_local_midnight(engine):
    machine = add_machine(engine, "m1", customer_id="c-ist", tz="Asia/Kolkata")

    async def scenario():
        # 23:00 IST on 2026-03-01
        await engine.ledger.start_downtime(machine, utc(2026, 3, 1, 17, 30))
        # 00:05 IST on 2026-03-02
        first = await engine.split_downtimes_at_midnight(utc(2026, 3, 1, 18, 35))
        second = await engine.split_downtimes_at_midnight(utc(2026, 3, 1, 18, 37))
        return first, second

    first, second = asyncio.run(scenario())
    assert (first, second) == (1, 0)

    closed, continuation = engine.downtimes.list_for_machine("m1")
    assert closed.local_date == date(2026, 3, 1)
    assert closed.is_active is False
    assert closed.accumulated_hours == pytest.approx(1.0)
    assert closed.end_time == utc(2026, 3, 1, 18, 30)

    assert continuation.local_date == date(2026, 3, 2)
    assert continuation.is_active is True
    assert continuation.start_time == utc(2026, 3, 1, 18, 30)
    assert continuation.accumulated_hours == 0.0
    assert continuation.reason == closed.reason


def test_each_customer_splits_at_its_own_midnight(engine):
    ist = add_machine(engine, "m-ist", customer_id="c-ist", tz="Asia/Kolkata")
    ny = add_machine(engine, "m-ny", customer_id="c-ny", tz="America/New_York")

    async def scenario():
        await engine.ledger.start_downtime(ist, utc(2026, 3, 1, 17, 30))
        await engine.ledger.start_downtime(ny, utc(2026, 3, 1, 12, 0))
        # Past midnight in Kolkata, mid-afternoon in New York
        return await engine.split_downtimes_at_midnight(utc(2026, 3, 1, 18, 35))

    assert asyncio.run(scenario()) == 1

    [ny_record] = engine.downtimes.list_for_machine("m-ny")
    assert ny_record.is_active is True
    assert ny_record.local_date == date(2026, 3, 1)
    assert ny_record.accumulated_hours == 0.0
    assert len(engine.downtimes.list_for_machine("m-ist")) == 2


def test_multi_day_stall_gets_one_record_per_day(engine):
    machine = add_machine(engine, "m1")

    async def scenario():
        await engine.ledger.start_downtime(machine, utc(2026, 3, 1, 22, 0))
        return await engine.split_downtimes_at_midnight(utc(2026, 3, 4, 1, 0))

    assert asyncio.run(scenario()) == 3

    records = engine.downtimes.list_for_machine("m1")
    assert [r.local_date.day for r in records] == [1, 2, 3, 4]
    assert [r.accumulated_hours for r in records] == pytest.approx([2.0, 24.0, 24.0, 0.0])
    assert [r.is_active for r in records] == [False, False, False, True]
    assert records[-1].start_time == utc(2026, 3, 4, 0, 0)


def test_nothing_to_split_on_current_day(engine):
    machine = add_machine(engine, "m1")

    async def scenario():
        await engine.ledger.start_downtime(machine, utc(2026, 3, 1, 10, 0))
        return await engine.split_downtimes_at_midnight(utc(2026, 3, 1, 23, 59))

    assert asyncio.run(scenario()) == 0
    [record] = engine.downtimes.list_for_machine("m1")
    assert record.is_active is True


def test_unresolvable_customer_is_skipped(engine):
    good = add_machine(engine, "m1")
    add_machine(engine, "m2", customer_id="c-bad", tz="Not/AZone")

    with engine.db.transaction() as conn:
        engine.downtimes.insert(conn, DowntimeRecord(
            machine_id="m2", customer_id="c-bad", local_date=date(2026, 3, 1),
            start_time=utc(2026, 3, 1, 10, 0),
        ))

    async def scenario():
        await engine.ledger.start_downtime(good, utc(2026, 3, 1, 22, 0))
        return await engine.split_downtimes_at_midnight(utc(2026, 3, 2, 0, 30))

    assert asyncio.run(scenario()) == 1
    [stuck] = engine.downtimes.list_for_machine("m2")
    assert stuck.is_active is True


def test_continuation_reactivates_closed_record(engine):
    """A closed record already on the next day is reopened, keeping its hours."""
    day = date(2026, 3, 2)
    template = DowntimeRecord(
        machine_id="m1", customer_id="c-utc", local_date=date(2026, 3, 1),
        start_time=utc(2026, 3, 1, 22, 0),
    )

    with engine.db.transaction() as conn:
        earlier = engine.downtimes.insert(conn, DowntimeRecord(
            machine_id="m1", customer_id="c-utc", local_date=day,
            start_time=utc(2026, 3, 2, 1, 0), accumulated_hours=0.5,
            is_active=False, end_time=utc(2026, 3, 2, 1, 30),
        ))
        reopened = open_segment(engine.downtimes, conn, template, day, utc(2026, 3, 2, 0, 0))
        again = open_segment(engine.downtimes, conn, template, day, utc(2026, 3, 2, 0, 0))

    assert reopened.id == earlier.id
    assert reopened.is_active is True
    assert reopened.accumulated_hours == 0.5
    assert again.id == earlier.id
