"""Background SLA loops.

Two independent loops share one scheduler object owned by the app:

* status check (default every 5 minutes): repairs missed pause/resume events,
  then flags overdue milestones batch by batch until nothing is left.
* escalation check (default every 15 minutes): raises the escalation level of
  breaches that have aged past the configured thresholds.

Both loops run once immediately on start. Manual triggers go through the same
tick function and lock as the scheduled run, so a loop never overlaps itself.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.config import settings
from sla_engine.schemas.scheduler import ScanResult, SchedulerConfig, SchedulerStatus
from sla_engine.services import breach_service, escalation_service, pause_service
from sla_engine.services.notification_service import Notifier

logger = logging.getLogger(__name__)

STATUS_CHECK = "status_check"
ESCALATION_CHECK = "escalation_check"


def config_from_settings() -> SchedulerConfig:
    return SchedulerConfig(
        enabled=settings.sla_scheduler_enabled,
        status_check_interval_minutes=settings.sla_status_check_interval_minutes,
        escalation_check_interval_minutes=settings.sla_escalation_check_interval_minutes,
        batch_size=settings.sla_batch_size,
        escalation_thresholds_minutes=settings.sla_escalation_thresholds_minutes,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SlaScheduler:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        notifier: Notifier,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self.config = config or config_from_settings()
        self._clock = clock
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._locks = {STATUS_CHECK: asyncio.Lock(), ESCALATION_CHECK: asyncio.Lock()}
        self._last_run_at: dict[str, datetime | None] = {STATUS_CHECK: None, ESCALATION_CHECK: None}
        self._last_result: dict[str, ScanResult | None] = {STATUS_CHECK: None, ESCALATION_CHECK: None}
        self._error_counts = {STATUS_CHECK: 0, ESCALATION_CHECK: 0}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(
                self._loop(STATUS_CHECK, self._status_check, "status_check_interval_minutes"),
                name="sla-status-check",
            ),
            asyncio.create_task(
                self._loop(ESCALATION_CHECK, self._escalation_check, "escalation_check_interval_minutes"),
                name="sla-escalation-check",
            ),
        ]
        logger.info(
            "SLA scheduler started (status every %s min, escalation every %s min, enabled=%s)",
            self.config.status_check_interval_minutes,
            self.config.escalation_check_interval_minutes,
            self.config.enabled,
        )

    async def stop(self, timeout: float | None = None) -> None:
        """Let in-flight ticks finish for up to ``timeout`` seconds, then cancel."""
        if not self._tasks:
            return
        timeout = settings.sla_shutdown_timeout_seconds if timeout is None else timeout
        self._stop_event.set()
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if pending:
            logger.warning("SLA scheduler cancelled %d tick(s) still running at shutdown", len(pending))
        self._tasks = []
        logger.info("SLA scheduler stopped")

    async def _loop(self, name: str, tick, interval_field: str) -> None:
        while not self._stop_event.is_set():
            if self.config.enabled:
                await self._run_tick(name, tick)
            interval = getattr(self.config, interval_field) * 60
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def _run_tick(self, name: str, tick) -> ScanResult:
        async with self._locks[name]:
            try:
                result = await tick()
            except Exception:
                logger.exception("SLA %s tick failed", name.replace("_", " "))
                result = ScanResult(errors=1)
            self._last_run_at[name] = self._clock()
            self._last_result[name] = result
            self._error_counts[name] += result.errors
            return result

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def _status_check(self) -> ScanResult:
        now = self._clock()
        batch_size = self.config.batch_size
        result = await pause_service.reconcile_pause_states(self._session_factory, now, batch_size)
        while True:
            scan = await breach_service.scan_and_flag(self._session_factory, self._notifier, now, batch_size)
            result += scan
            # Rows that keep failing stay selected; stop instead of spinning on them.
            if scan.processed < batch_size or scan.updated == 0:
                break
        return result

    async def _escalation_check(self) -> ScanResult:
        return await escalation_service.escalate_breaches(
            self._session_factory,
            self._notifier,
            now=self._clock(),
            thresholds=self.config.escalation_thresholds_minutes,
            batch_size=self.config.batch_size,
        )

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    async def trigger_status_check(self) -> ScanResult:
        return await self._run_tick(STATUS_CHECK, self._status_check)

    async def trigger_escalation_check(self) -> ScanResult:
        return await self._run_tick(ESCALATION_CHECK, self._escalation_check)

    def update_config(self, **changes) -> SchedulerConfig:
        """Replace config fields; running loops pick them up on their next tick."""
        self.config = SchedulerConfig.model_validate({**self.config.model_dump(), **changes})
        logger.info("SLA scheduler config updated: %s", changes)
        return self.config

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.running,
            config=self.config,
            last_status_check_at=self._last_run_at[STATUS_CHECK],
            last_escalation_check_at=self._last_run_at[ESCALATION_CHECK],
            last_status_check_result=self._last_result[STATUS_CHECK],
            last_escalation_check_result=self._last_result[ESCALATION_CHECK],
            status_check_errors=self._error_counts[STATUS_CHECK],
            escalation_check_errors=self._error_counts[ESCALATION_CHECK],
        )
