"""
Single-Flight Interval Scheduler

Provides ScheduledLoop class that fires callbacks at exact wall-clock
interval boundaries, with one in-flight run at most per loop.

Unlike asyncio.sleep()-based loops, this scheduler:
- Fires at exact wall-clock boundaries
- Runs the callback as its own task so boundaries keep being observed
- Skips (never queues) a trigger while the previous run is in progress
- Reports drift and skip metrics for observability

Usage:
    async def evaluate_tick():
        ...

    scheduler = ScheduledLoop(60.0, evaluate_tick, name="evaluate")
    await scheduler.start()

    # Later:
    await scheduler.stop()
"""

import asyncio
import time
from typing import Callable, Awaitable

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Precise interval scheduler with single-flight protection.

    Each loop owns its in-flight marker (the task of the current run), so
    several loops never interfere with each other. A boundary reached while
    the marker is set is counted in skipped_count and logged.

    Attributes:
        interval: The interval in seconds between executions
        callback: Async function to call each interval
        drift_seconds: Total accumulated drift (for observability)
        skipped_count: Number of triggers skipped because a run was in flight
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval must be positive, got {interval_seconds}")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name

        self._next_run: float = 0
        self._running = False
        self._task: asyncio.Task | None = None
        self._in_flight: asyncio.Task | None = None

        # Observability metrics
        self._drift_total: float = 0
        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0
        self._last_drift_ms: float = 0

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """
        Stop scheduling new runs.

        A run already in progress is allowed to finish.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._in_flight and not self._in_flight.done():
            logger.info(f"Scheduler '{self.name}' waiting for in-progress run to finish")
            await asyncio.shield(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        """True while a callback run is in progress."""
        return self._in_flight is not None and not self._in_flight.done()

    def trigger(self) -> bool:
        """
        Fire one run now unless a run is already in flight.

        Returns:
            True if a run was started, False if it was skipped
        """
        if self.in_flight:
            self._skipped_count += 1
            logger.warning(
                f"Scheduler '{self.name}' previous run still in progress, skipping"
            )
            return False

        self._in_flight = asyncio.create_task(self._execute())
        return True

    async def run_once(self) -> bool:
        """
        Run the callback now and wait for it, under the same single-flight marker.

        Returns:
            True if the callback ran, False if skipped because a run was in flight
        """
        if not self.trigger():
            return False
        await asyncio.shield(self._in_flight)
        return True

    async def _execute(self) -> None:
        start = time.time()
        try:
            await self.callback()
            self._execution_count += 1
        except Exception as e:
            self._error_count += 1
            logger.error(f"Scheduled callback '{self.name}' error: {e}", exc_info=True)
        finally:
            self._last_execution_time = time.time() - start

    async def _run(self) -> None:
        """Main loop that fires callback at exact intervals."""
        # Align first run to next interval boundary
        now = time.time()
        self._next_run = ((now // self.interval) + 1) * self.interval

        while self._running:
            sleep_duration = self._next_run - time.time()
            if sleep_duration > 0:
                try:
                    await asyncio.sleep(sleep_duration)
                except asyncio.CancelledError:
                    break

            if not self._running:
                break

            # Track drift (how late we are)
            drift = time.time() - self._next_run
            if drift > 30:
                # Clock jump (NTP sync, suspend/resume), not real drift
                logger.info(
                    f"Scheduler '{self.name}' clock jump detected ({drift:.0f}s), realigning"
                )
                self._last_drift_ms = 0
            else:
                self._drift_total += max(0, drift)
                self._last_drift_ms = drift * 1000

            self.trigger()

            # Don't queue up missed boundaries
            now = time.time()
            while self._next_run <= now:
                self._next_run += self.interval

    @property
    def drift_seconds(self) -> float:
        """Total accumulated drift in seconds."""
        return self._drift_total

    @property
    def drift_ms(self) -> float:
        """Most recent drift in milliseconds."""
        return self._last_drift_ms

    @property
    def skipped_count(self) -> int:
        """Number of triggers skipped because a run was in flight."""
        return self._skipped_count

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    @property
    def error_count(self) -> int:
        """Number of runs whose callback raised."""
        return self._error_count

    @property
    def last_execution_time(self) -> float:
        """Duration of last callback execution in seconds."""
        return self._last_execution_time

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "in_flight": self.in_flight,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "drift_total_s": round(self._drift_total, 3),
            "drift_last_ms": round(self._last_drift_ms, 1),
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }


class SchedulerGroup:
    """
    Manage multiple scheduled loops together.

    Provides a single interface to start/stop multiple schedulers
    and aggregate their statistics.
    """

    def __init__(self):
        self._schedulers: dict[str, ScheduledLoop] = {}

    def add(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledLoop:
        """Add a scheduler to the group."""
        scheduler = ScheduledLoop(interval_seconds, callback, name)
        self._schedulers[name] = scheduler
        return scheduler

    async def start_all(self) -> None:
        """Start all schedulers."""
        for scheduler in self._schedulers.values():
            await scheduler.start()

    async def stop_all(self) -> None:
        """Stop all schedulers, letting in-progress runs finish."""
        for scheduler in self._schedulers.values():
            await scheduler.stop()

    def get_stats(self) -> dict:
        """Get aggregated statistics for all schedulers."""
        return {
            name: scheduler.get_stats()
            for name, scheduler in self._schedulers.items()
        }

    def get(self, name: str) -> ScheduledLoop | None:
        """Get a specific scheduler by name."""
        return self._schedulers.get(name)
