"""Status evaluation: production detection, grace period, ledger dispatch."""

import asyncio
import sqlite3
from datetime import date, timedelta

import pytest

from uptime_monitor.common.exceptions import StorageError, StorageTimeoutError
from uptime_monitor.common.executor import run_blocking
from uptime_monitor.services.status.evaluator import decide_status, detect_production
from uptime_monitor.storage import MachineStatus, StatusRecord, TelemetrySample
from tests.conftest import add_counts, add_machine, utc

THRESHOLD = timedelta(minutes=10)


def samples(*counts, start=utc(2026, 3, 1, 9, 56)):
    return [
        TelemetrySample("d1", start + timedelta(minutes=i), count)
        for i, count in enumerate(counts)
    ]


def carried(status, down_since):
    return StatusRecord(
        machine_id="m1", device_id="d1", local_date=date(2026, 3, 1),
        status=status, evaluated_at=utc(2026, 3, 1, 9, 59), down_since=down_since,
    )


def test_detect_production():
    assert detect_production(samples(100, 100, 101)) is True
    assert detect_production(samples(100, 100, 100)) is False
    assert detect_production(samples(None, 100, None, 102)) is True
    # Counter reset is not production
    assert detect_production(samples(100, 3)) is False
    assert detect_production(samples(100)) is False
    assert detect_production([]) is False


def test_production_clears_grace_anchor():
    now = utc(2026, 3, 1, 10, 0)
    decision = decide_status(
        samples(100, 105), carried(MachineStatus.DOWN, utc(2026, 3, 1, 9, 0)), now, THRESHOLD
    )
    assert decision.status == MachineStatus.RUNNING
    assert decision.down_since is None
    assert decision.has_production


def test_first_idle_tick_starts_grace_period():
    now = utc(2026, 3, 1, 10, 0)
    decision = decide_status(samples(100, 100), None, now, THRESHOLD)
    assert decision.status == MachineStatus.RUNNING
    assert decision.down_since == now
    assert decision.last_seen_at == utc(2026, 3, 1, 9, 57)


def test_down_exactly_at_threshold():
    anchor = utc(2026, 3, 1, 10, 0)
    state = carried(MachineStatus.RUNNING, anchor)

    just_before = decide_status([], state, anchor + THRESHOLD - timedelta(seconds=1), THRESHOLD)
    assert just_before.status == MachineStatus.RUNNING
    assert just_before.down_since == anchor

    at_threshold = decide_status([], state, anchor + THRESHOLD, THRESHOLD)
    assert at_threshold.status == MachineStatus.DOWN
    assert at_threshold.down_since == anchor


def test_no_samples_keeps_last_seen():
    state = carried(MachineStatus.RUNNING, utc(2026, 3, 1, 10, 0))
    state.last_seen_at = utc(2026, 3, 1, 9, 58)
    decision = decide_status([], state, utc(2026, 3, 1, 10, 5), THRESHOLD)
    assert decision.last_seen_at == utc(2026, 3, 1, 9, 58)


def test_stall_and_recovery_dispatch_once(engine):
    """10:00 idle, 10:10 DOWN, 10:15 still DOWN, 10:20 producing again."""
    machine = add_machine(engine, "m1")
    add_counts(engine, machine.device_id, [
        (utc(2026, 3, 1, 9, 56), 100),
        (utc(2026, 3, 1, 9, 58), 100),
    ])

    async def tick(hour, minute):
        return await engine.evaluate_machine_statuses(utc(2026, 3, 1, hour, minute))

    async def scenario():
        first = await tick(10, 0)
        assert (first.running, first.down, first.start_calls) == (1, 0, 0)

        await tick(10, 5)
        status = engine.statuses.find_status(machine.device_id, date(2026, 3, 1))
        assert status.status == MachineStatus.RUNNING
        assert status.down_since == utc(2026, 3, 1, 10, 0)

        down = await tick(10, 10)
        assert (down.down, down.start_calls) == (1, 1)

        still_down = await tick(10, 15)
        assert still_down.start_calls == 1

        add_counts(engine, machine.device_id, [
            (utc(2026, 3, 1, 10, 16), 100),
            (utc(2026, 3, 1, 10, 18), 105),
        ])
        recovered = await tick(10, 20)
        assert (recovered.running, recovered.end_calls) == (1, 1)

        after = await tick(10, 21)
        assert (after.start_calls, after.end_calls) == (0, 0)

    asyncio.run(scenario())

    [record] = engine.downtimes.list_for_machine("m1")
    assert record.is_active is False
    assert record.end_time == utc(2026, 3, 1, 10, 20)
    assert record.accumulated_hours == pytest.approx(10 / 60)

    status = engine.statuses.find_status(machine.device_id, date(2026, 3, 1))
    assert status.status == MachineStatus.RUNNING
    assert status.down_since is None
    assert status.last_seen_at == utc(2026, 3, 1, 10, 18)


def test_repeated_tick_does_not_double_count(engine):
    add_machine(engine, "m1")

    async def scenario():
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 0))
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 10))
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 10))
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 40))

    asyncio.run(scenario())

    [record] = engine.downtimes.list_for_machine("m1")
    assert record.is_active is True
    assert record.accumulated_hours == pytest.approx(0.5)


def test_failing_machine_does_not_block_others(engine):
    add_machine(engine, "m1")
    add_machine(engine, "m2", customer_id="ghost", tz=None)
    add_machine(engine, "m3", customer_id="c-bad", tz="Not/AZone")

    summary = asyncio.run(engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 0)))

    assert summary.machines == 3
    assert summary.evaluated == 1
    assert summary.failed == 2
    assert set(summary.errors) == {"m2", "m3"}
    assert engine.statuses.find_status("dev-m1", date(2026, 3, 1)) is not None
    assert engine.statuses.find_status("dev-m2", date(2026, 3, 1)) is None


def test_grace_period_carries_over_local_midnight(engine):
    machine = add_machine(engine, "m1", customer_id="c-ist", tz="Asia/Kolkata")

    async def scenario():
        # 23:55 IST on 2026-03-01
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 18, 25))
        # 00:06 IST on 2026-03-02
        return await engine.evaluate_machine_statuses(utc(2026, 3, 1, 18, 36))

    summary = asyncio.run(scenario())
    assert summary.down == 1

    yesterday = engine.statuses.find_status(machine.device_id, date(2026, 3, 1))
    today = engine.statuses.find_status(machine.device_id, date(2026, 3, 2))
    assert yesterday.status == MachineStatus.RUNNING
    assert today.status == MachineStatus.DOWN
    assert today.down_since == utc(2026, 3, 1, 18, 25)

    [record] = engine.downtimes.list_for_machine("m1")
    assert record.local_date == date(2026, 3, 2)
    assert record.customer_id == "c-ist"


def test_recovery_after_multi_day_gap_closes_downtime(engine):
    """DOWN on day 1, next evaluation on day 3 while producing."""
    machine = add_machine(engine, "m1")

    async def scenario():
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 0))
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 10))

        add_counts(engine, machine.device_id, [
            (utc(2026, 3, 3, 11, 56), 100),
            (utc(2026, 3, 3, 11, 58), 105),
        ])
        recovered = await engine.evaluate_machine_statuses(utc(2026, 3, 3, 12, 0))
        split = await engine.split_downtimes_at_midnight(utc(2026, 3, 5, 1, 0))
        return recovered, split

    recovered, split = asyncio.run(scenario())
    assert recovered.end_calls == 1
    assert split == 0

    records = engine.downtimes.list_for_machine("m1")
    assert [r.local_date.day for r in records] == [1, 2, 3]
    assert not any(r.is_active for r in records)
    assert [r.accumulated_hours for r in records] == pytest.approx([13 + 50 / 60, 24.0, 12.0])


def test_failed_close_is_retried_on_next_tick(engine, monkeypatch):
    machine = add_machine(engine, "m1")
    close = engine.ledger.end_downtime
    attempts = []

    async def flaky_end(target, now=None):
        attempts.append(now)
        if len(attempts) == 1:
            raise StorageTimeoutError("end_downtime", 10.0)
        return await close(target, now)

    monkeypatch.setattr(engine.ledger, "end_downtime", flaky_end)

    async def scenario():
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 0))
        await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 10))
        add_counts(engine, machine.device_id, [
            (utc(2026, 3, 1, 10, 16), 100),
            (utc(2026, 3, 1, 10, 18), 105),
            (utc(2026, 3, 1, 10, 20), 106),
        ])
        failed = await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 20))
        retried = await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 21))
        quiet = await engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 22))
        split = await engine.split_downtimes_at_midnight(utc(2026, 3, 3, 0, 30))
        return failed, retried, quiet, split

    failed, retried, quiet, split = asyncio.run(scenario())
    assert failed.failed == 1
    assert retried.end_calls == 1
    assert quiet.end_calls == 0
    assert split == 0

    [record] = engine.downtimes.list_for_machine("m1")
    assert record.is_active is False
    assert record.end_time == utc(2026, 3, 1, 10, 21)
    assert record.accumulated_hours == pytest.approx(11 / 60)


def test_locked_database_fails_only_that_machine(engine, monkeypatch):
    add_machine(engine, "m1")
    add_machine(engine, "m2")
    find = engine.statuses.find_latest_before

    def locked_for_m2(device_id, local_date):
        if device_id == "dev-m2":
            raise sqlite3.OperationalError("database is locked")
        return find(device_id, local_date)

    monkeypatch.setattr(engine.statuses, "find_latest_before", locked_for_m2)

    summary = asyncio.run(engine.evaluate_machine_statuses(utc(2026, 3, 1, 10, 0)))
    assert summary.evaluated == 1
    assert summary.failed == 1
    assert "database is locked" in summary.errors["m2"]


def test_storage_errors_are_wrapped():
    def locked():
        raise sqlite3.OperationalError("database is locked")

    async def scenario():
        return await run_blocking(locked, timeout_s=1.0, operation="list_active_machines")

    with pytest.raises(StorageError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.operation == "list_active_machines"
