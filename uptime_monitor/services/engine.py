"""
Uptime Engine

Wires storage, timezone resolution, the status evaluator, the downtime
ledger and the boundary splitter from one MonitorConfig, and exposes the
two timer-driven entry points.
"""

from datetime import date, datetime

from ..common.config import MonitorConfig
from ..common.timezones import TimezoneResolver
from ..storage.downtime_store import DowntimeStore
from ..storage.local_db import LocalDatabase
from ..storage.registry import MachineRegistry
from ..storage.status_store import StatusStore
from ..storage.telemetry import TelemetryStore
from .downtime.ledger import DowntimeLedger, MachineDayAvailability
from .downtime.splitter import BoundarySplitter
from .status.evaluator import EvaluationSummary, StatusEvaluator


class UptimeEngine:
    """
    Machine status and downtime accounting.

    Usage:
        engine = UptimeEngine(config)
        await engine.evaluate_machine_statuses()     # every evaluation tick
        await engine.split_downtimes_at_midnight()   # every boundary tick
    """

    def __init__(self, config: MonitorConfig, db: LocalDatabase | None = None):
        self.config = config
        self.db = db or LocalDatabase(
            config.database.path, busy_timeout_s=config.database.busy_timeout_s
        )

        self.registry = MachineRegistry(self.db)
        self.telemetry = TelemetryStore(self.db)
        self.statuses = StatusStore(self.db)
        self.downtimes = DowntimeStore(self.db)
        self.resolver = TimezoneResolver(self.registry, config.default_timezone)

        io_timeout_s = config.evaluator.io_timeout_s
        self.ledger = DowntimeLedger(
            self.db,
            self.downtimes,
            self.resolver,
            reason=config.downtime_reason,
            io_timeout_s=io_timeout_s,
        )
        self.evaluator = StatusEvaluator(
            self.registry,
            self.telemetry,
            self.statuses,
            self.ledger,
            self.resolver,
            config.evaluator,
        )
        self.splitter = BoundarySplitter(
            self.db, self.downtimes, self.resolver, io_timeout_s=io_timeout_s
        )

    async def evaluate_machine_statuses(self, now: datetime | None = None) -> EvaluationSummary:
        return await self.evaluator.evaluate(now)

    async def split_downtimes_at_midnight(self, now: datetime | None = None) -> int:
        return await self.splitter.split_active_downtimes(now)

    async def daily_availability(
        self, customer_id: str, local_date: date, now: datetime | None = None
    ) -> list[MachineDayAvailability]:
        return await self.ledger.daily_availability(customer_id, local_date, now)
