"""Single-flight behaviour of ScheduledLoop."""

import asyncio

import pytest

from uptime_monitor.common.scheduler import ScheduledLoop, SchedulerGroup


def test_interval_must_be_positive():
    async def noop():
        pass

    with pytest.raises(ValueError):
        ScheduledLoop(0, noop)


def test_trigger_skipped_while_run_in_flight():
    async def scenario():
        release = asyncio.Event()
        calls = []

        async def slow():
            calls.append(1)
            await release.wait()

        loop = ScheduledLoop(60, slow, name="slow")
        assert loop.trigger() is True
        await asyncio.sleep(0)
        assert loop.in_flight

        assert loop.trigger() is False
        assert await loop.run_once() is False

        release.set()
        await loop.stop()

        assert calls == [1]
        assert loop.skipped_count == 2
        assert loop.execution_count == 1

        # Marker cleared: the next trigger runs
        assert await loop.run_once() is True
        assert calls == [1, 1]

    asyncio.run(scenario())


def test_loops_have_independent_markers():
    async def scenario():
        release = asyncio.Event()

        async def slow():
            await release.wait()

        group = SchedulerGroup()
        evaluate = group.add("evaluate", 60, slow)
        split = group.add("split", 120, slow)

        assert evaluate.trigger() is True
        assert split.trigger() is True
        await asyncio.sleep(0)
        assert evaluate.in_flight and split.in_flight

        release.set()
        await group.stop_all()

        stats = group.get_stats()
        assert stats["evaluate"]["skipped_count"] == 0
        assert stats["split"]["execution_count"] == 1
        assert group.get("split") is split

    asyncio.run(scenario())


def test_stop_waits_for_in_flight_run():
    async def scenario():
        finished = []

        async def slow():
            await asyncio.sleep(0.05)
            finished.append(True)

        loop = ScheduledLoop(60, slow, name="slow")
        await loop.start()
        loop.trigger()
        await asyncio.sleep(0)
        await loop.stop()

        assert finished == [True]
        assert loop.last_execution_time >= 0.04
        assert loop.drift_seconds >= 0
        assert not loop.is_running
        assert not loop.in_flight

    asyncio.run(scenario())


def test_callback_errors_are_counted_not_raised():
    async def scenario():
        async def broken():
            raise RuntimeError("boom")

        loop = ScheduledLoop(60, broken, name="broken")
        assert await loop.run_once() is True
        assert loop.error_count == 1
        assert loop.execution_count == 0
        assert not loop.in_flight

    asyncio.run(scenario())
