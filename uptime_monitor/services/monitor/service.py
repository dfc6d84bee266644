"""
Monitor Service

Long-running process around the uptime engine:
- Evaluation tick (every evaluator.interval_s, default 60s)
- Boundary tick (every splitter.interval_s, default 120s)
- HTTP server for health, manual ticks and the availability report

Both ticks are single-flight: a tick still running when its next trigger
fires causes that trigger to be skipped. Shutdown lets running ticks finish.
"""

import asyncio
import signal
from datetime import date, datetime, timezone

from aiohttp import web

from ...common.config import MonitorConfig
from ...common.exceptions import MonitorError, RegistryLookupError, ServiceError
from ...common.executor import run_blocking
from ...common.logging_setup import get_service_logger
from ...common.scheduler import SchedulerGroup
from ...common.timestamp import local_date_of, utc_now
from ..engine import UptimeEngine
from ..status.evaluator import EvaluationSummary

logger = get_service_logger("monitor")


class MonitorService:
    """
    Uptime Monitor Service

    Drives the status evaluator and the boundary splitter on their
    schedules and serves:
    - GET  /health
    - POST /evaluate
    - POST /split
    - GET  /availability?customer_id=...&date=YYYY-MM-DD
    """

    def __init__(self, config: MonitorConfig, engine: UptimeEngine | None = None):
        self.config = config
        self.engine = engine or UptimeEngine(config)

        self.schedulers = SchedulerGroup()
        self.evaluate_scheduler = self.schedulers.add(
            "evaluate", config.evaluator.interval_s, self._evaluate_callback
        )
        self.split_scheduler = self.schedulers.add(
            "split", config.splitter.interval_s, self._split_callback
        )

        self._start_time = utc_now()
        self._last_summary: EvaluationSummary | None = None
        self._last_split_count: int | None = None
        self._last_split_time: datetime | None = None

        # HTTP server
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

        self._shutdown_event = asyncio.Event()
        self._is_running = False

    async def start(self) -> None:
        """Start schedulers and HTTP server, then wait for shutdown."""
        logger.info("Starting Uptime Monitor Service")
        self._is_running = True

        if self.config.health.enabled:
            await self._start_http_server()

        await self.schedulers.start_all()

        logger.info(
            f"Uptime Monitor started (evaluate: {self.config.evaluator.interval_s}s, "
            f"split: {self.config.splitter.interval_s}s, "
            f"threshold: {self.config.evaluator.down_threshold_minutes}min)",
        )

        self._setup_signal_handlers()

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop scheduling; in-progress ticks are allowed to finish."""
        logger.info("Stopping Uptime Monitor Service")
        self._is_running = False

        await self.schedulers.stop_all()
        await self._stop_http_server()

        logger.info("Uptime Monitor Service stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    # ============================================
    # SCHEDULED CALLBACKS
    # ============================================

    async def _evaluate_callback(self) -> None:
        self._last_summary = await self.engine.evaluate_machine_statuses()

    async def _split_callback(self) -> None:
        self._last_split_count = await self.engine.split_downtimes_at_midnight()
        self._last_split_time = utc_now()

    # ============================================
    # HTTP SERVER
    # ============================================

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_post("/evaluate", self._evaluate_handler)
        app.router.add_post("/split", self._split_handler)
        app.router.add_get("/availability", self._availability_handler)
        return app

    async def _start_http_server(self) -> None:
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.health.host, self.config.health.port)
        try:
            await site.start()
        except OSError as e:
            await self._stop_http_server()
            raise ServiceError(
                f"cannot bind {self.config.health.host}:{self.config.health.port}: {e}",
                "monitor",
                recoverable=False,
            ) from e

        logger.info(
            f"HTTP server started on {self.config.health.host}:{self.config.health.port}"
        )

    async def _stop_http_server(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        try:
            db_stats = await run_blocking(
                self.engine.db.get_stats,
                timeout_s=self.config.evaluator.io_timeout_s,
                operation="db_stats",
            )
        except MonitorError as e:
            db_stats = {"error": str(e)}

        now = utc_now()
        return web.json_response({
            "status": "healthy" if self._is_running else "stopped",
            "service": "uptime-monitor",
            "uptime": round((now - self._start_time).total_seconds(), 1),
            "timestamp": now.isoformat(),
            "schedulers": self.schedulers.get_stats(),
            "last_evaluation": self._last_summary.to_dict() if self._last_summary else None,
            "last_split": {
                "count": self._last_split_count,
                "at": self._last_split_time.isoformat() if self._last_split_time else None,
            },
            "database": db_stats,
        })

    async def _evaluate_handler(self, request: web.Request) -> web.Response:
        if not await self.evaluate_scheduler.run_once():
            return web.json_response(
                {"error": "evaluation already in progress"}, status=409
            )
        return web.json_response(
            self._last_summary.to_dict() if self._last_summary else {}
        )

    async def _split_handler(self, request: web.Request) -> web.Response:
        if not await self.split_scheduler.run_once():
            return web.json_response({"error": "split already in progress"}, status=409)
        return web.json_response({"split": self._last_split_count})

    async def _availability_handler(self, request: web.Request) -> web.Response:
        customer_id = request.query.get("customer_id")
        if not customer_id:
            return web.json_response({"error": "customer_id is required"}, status=400)

        now = utc_now()
        try:
            if "date" in request.query:
                local_date = date.fromisoformat(request.query["date"])
            else:
                tz = await run_blocking(
                    self.engine.resolver.zone_for_customer,
                    customer_id,
                    timeout_s=self.config.evaluator.io_timeout_s,
                    operation="resolve_timezone",
                )
                local_date = local_date_of(now, tz)
        except ValueError:
            return web.json_response(
                {"error": "date must be YYYY-MM-DD"}, status=400
            )
        except RegistryLookupError as e:
            return web.json_response({"error": str(e)}, status=404)

        try:
            report = await self.engine.daily_availability(customer_id, local_date, now)
        except RegistryLookupError as e:
            return web.json_response({"error": str(e)}, status=404)
        except MonitorError as e:
            logger.warning(f"Availability report failed: {e}")
            return web.json_response({"error": str(e)}, status=503)

        return web.json_response({
            "customer_id": customer_id,
            "local_date": local_date.isoformat(),
            "generated_at": now.astimezone(timezone.utc).isoformat(),
            "machines": [entry.to_dict() for entry in report],
        })


async def run_service(config: MonitorConfig) -> None:
    """Run the monitor until SIGTERM/SIGINT."""
    service = MonitorService(config)

    try:
        await service.start()
    finally:
        await service.stop()
