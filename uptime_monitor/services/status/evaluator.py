"""
Status Evaluator

Turns the recent telemetry window of every active machine into a
RUNNING/DOWN status for the machine's current local day.

Hysteresis:
- Production seen in the window: RUNNING, grace anchor cleared
- No production, no anchor: anchor = now, still RUNNING (grace starts)
- No production, anchor older than the threshold: DOWN, anchor kept

The anchor (down_since) and the previous status are read back from the
persisted status record on every tick and nothing is kept in memory, so
restarts and multiple instances see the same state. Ledger side effects
are derived from the persisted previous status:

    previous  new    ledger call
    !DOWN     DOWN   start_downtime
    DOWN      DOWN   start_downtime (extends the open segment)
    DOWN      !DOWN  end_downtime
    !DOWN     !DOWN  end_downtime, only while a downtime is still open

The previous status comes from today's record or, after a gap, from the
latest record of an earlier local day.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from ...common.config import EvaluatorSettings
from ...common.exceptions import (
    InvariantViolationError,
    MachineLookupError,
    MonitorError,
    RegistryLookupError,
    StorageError,
)
from ...common.executor import run_blocking
from ...common.logging_setup import get_service_logger, log_transition
from ...common.timestamp import ensure_utc, local_date_of, utc_now
from ...common.timezones import TimezoneResolver
from ...storage.records import Machine, MachineStatus, StatusRecord, TelemetrySample
from ...storage.registry import MachineRegistry
from ...storage.status_store import StatusStore
from ...storage.telemetry import TelemetryStore
from ..downtime.ledger import DowntimeLedger

logger = get_service_logger("status.evaluator")


@dataclass
class StatusDecision:
    """Outcome of the hysteresis rules for one machine and tick"""
    status: MachineStatus
    down_since: datetime | None
    last_seen_at: datetime | None
    has_production: bool


@dataclass
class MachineEvaluation:
    """What one machine's evaluation persisted and dispatched"""
    machine_id: str
    record: StatusRecord
    previous_status: MachineStatus | None
    ledger_action: str | None = None  # "start" | "end"


@dataclass
class EvaluationSummary:
    """Counters for one evaluation tick"""
    evaluated_at: datetime
    machines: int = 0
    evaluated: int = 0
    failed: int = 0
    running: int = 0
    down: int = 0
    start_calls: int = 0
    end_calls: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "evaluated_at": self.evaluated_at.isoformat(),
            "machines": self.machines,
            "evaluated": self.evaluated,
            "failed": self.failed,
            "running": self.running,
            "down": self.down,
            "start_calls": self.start_calls,
            "end_calls": self.end_calls,
            "errors": dict(self.errors),
        }


def detect_production(samples: Sequence[TelemetrySample]) -> bool:
    """
    True when a counter in the window exceeds the window's first counter.

    Samples without a counter value are ignored. A counter that drops
    (device reset) is not production.
    """
    baseline: int | None = None
    for sample in samples:
        if sample.production_count is None:
            continue
        if baseline is None:
            baseline = sample.production_count
        elif sample.production_count > baseline:
            return True
    return False


def decide_status(
    samples: Sequence[TelemetrySample],
    carried: StatusRecord | None,
    now: datetime,
    down_threshold: timedelta,
) -> StatusDecision:
    """Apply the grace-period rules to one telemetry window."""
    last_seen_at = carried.last_seen_at if carried else None
    if samples:
        last_seen_at = max(s.captured_at for s in samples)

    if detect_production(samples):
        return StatusDecision(MachineStatus.RUNNING, None, last_seen_at, True)

    down_since = carried.down_since if carried else None
    if down_since is None:
        return StatusDecision(MachineStatus.RUNNING, now, last_seen_at, False)

    if now - down_since >= down_threshold:
        return StatusDecision(MachineStatus.DOWN, down_since, last_seen_at, False)
    return StatusDecision(MachineStatus.RUNNING, down_since, last_seen_at, False)


class StatusEvaluator:
    """
    Evaluates all active machines once per tick.

    Machines are evaluated concurrently (bounded by max_concurrency); one
    machine failing is logged and never stops the others.
    """

    def __init__(
        self,
        registry: MachineRegistry,
        telemetry: TelemetryStore,
        statuses: StatusStore,
        ledger: DowntimeLedger,
        resolver: TimezoneResolver,
        settings: EvaluatorSettings | None = None,
    ):
        self.registry = registry
        self.telemetry = telemetry
        self.statuses = statuses
        self.ledger = ledger
        self.resolver = resolver
        self.settings = settings or EvaluatorSettings()

        self.lookback = timedelta(minutes=self.settings.lookback_minutes)
        self.down_threshold = timedelta(minutes=self.settings.down_threshold_minutes)

    async def _io(self, func, *args, operation: str):
        return await run_blocking(
            func, *args, timeout_s=self.settings.io_timeout_s, operation=operation
        )

    async def evaluate(self, now: datetime | None = None) -> EvaluationSummary:
        """Evaluate every active machine at `now`."""
        now = ensure_utc(now or utc_now())
        summary = EvaluationSummary(evaluated_at=now)

        try:
            machines = await self._io(
                self.registry.list_active_machines, operation="list_active_machines"
            )
        except MonitorError as e:
            logger.error(f"Cannot list active machines: {e}")
            summary.errors["*"] = str(e)
            return summary

        summary.machines = len(machines)
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def guarded(machine: Machine) -> MachineEvaluation | None:
            async with semaphore:
                return await self._evaluate_guarded(machine, now, summary)

        results = await asyncio.gather(*(guarded(m) for m in machines))

        for result in results:
            if result is None:
                continue
            summary.evaluated += 1
            if result.record.status == MachineStatus.DOWN:
                summary.down += 1
            else:
                summary.running += 1
            if result.ledger_action == "start":
                summary.start_calls += 1
            elif result.ledger_action == "end":
                summary.end_calls += 1

        summary.failed = len(summary.errors)
        logger.info(
            f"Evaluated {summary.evaluated}/{summary.machines} machines "
            f"(down: {summary.down}, failed: {summary.failed})",
            extra={"down": summary.down, "failed": summary.failed},
        )
        return summary

    async def _evaluate_guarded(
        self, machine: Machine, now: datetime, summary: EvaluationSummary
    ) -> MachineEvaluation | None:
        try:
            return await self.evaluate_machine(machine, now)
        except InvariantViolationError as e:
            logger.critical(f"Machine {machine.id}: {e}", extra={"machine_id": machine.id})
            summary.errors[machine.id] = str(e)
        except RegistryLookupError as e:
            logger.error(f"Machine {machine.id}: {e}", extra={"machine_id": machine.id})
            summary.errors[machine.id] = str(e)
        except StorageError as e:
            logger.warning(
                f"Machine {machine.id} skipped this tick: {e}",
                extra={"machine_id": machine.id},
            )
            summary.errors[machine.id] = str(e)
        except Exception as e:
            logger.error(
                f"Error processing machine {machine.id}: {e}",
                exc_info=True,
                extra={"machine_id": machine.id},
            )
            summary.errors[machine.id] = str(e)
        return None

    async def _load_carried(self, device_id: str, local_date) -> StatusRecord | None:
        """Today's record, else the latest one from an earlier local day."""
        return await self._io(
            self.statuses.find_latest_before, device_id, local_date, operation="find_status"
        )

    async def evaluate_machine(self, machine: Machine, now: datetime) -> MachineEvaluation:
        """
        Evaluate, persist and dispatch for a single machine.

        Raises:
            MachineLookupError: machine has no device id or customer
            RegistryLookupError: customer or timezone cannot be resolved
            StorageError: a storage call failed or timed out
        """
        now = ensure_utc(now)
        if not machine.device_id:
            raise MachineLookupError(f"machine {machine.id} has no device id", machine.id)
        if not machine.customer_id:
            raise MachineLookupError(
                f"machine {machine.id} is not bound to a customer", machine.id
            )

        tz = await self._io(
            self.resolver.zone_for_customer, machine.customer_id, operation="resolve_timezone"
        )
        local_date = local_date_of(now, tz)

        carried = await self._load_carried(machine.device_id, local_date)
        previous_status = carried.status if carried else None

        samples = await self._io(
            self.telemetry.query_recent,
            machine.device_id,
            now - self.lookback,
            now,
            operation="query_recent",
        )

        decision = decide_status(samples, carried, now, self.down_threshold)

        record = StatusRecord(
            machine_id=machine.id,
            device_id=machine.device_id,
            local_date=local_date,
            status=decision.status,
            evaluated_at=now,
            last_seen_at=decision.last_seen_at,
            down_since=decision.down_since,
        )
        await self._io(self.statuses.upsert_status, record, operation="upsert_status")

        if previous_status != decision.status:
            log_transition(
                logger, machine.id, machine.device_id,
                previous_status.value if previous_status else None,
                decision.status.value,
                decision.down_since,
            )

        evaluation = MachineEvaluation(
            machine_id=machine.id, record=record, previous_status=previous_status
        )

        if decision.status == MachineStatus.DOWN:
            await self.ledger.start_downtime(machine, now)
            evaluation.ledger_action = "start"
        elif (
            previous_status == MachineStatus.DOWN
            or await self.ledger.has_open_downtime(machine)
        ):
            # Also closes a downtime left open by an earlier failed end call
            await self.ledger.end_downtime(machine, now)
            evaluation.ledger_action = "end"

        return evaluation
