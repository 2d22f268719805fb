"""
Scheduler service.

Drives the escalation engine on a fixed interval (APScheduler) and exposes a
manual trigger for administrators. Both paths go through one single-flight
guard: a sweep that finds another sweep in flight is skipped, never queued.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .errors import SweepInProgress
from .escalation import EscalationEngine, SweepResult
from .metrics import ESCALATION_SWEEPS_SKIPPED
from .time_utils import utcnow

logger = logging.getLogger("app.scheduler")

ONE_HOUR_SECONDS = 60 * 60


class EscalationScheduler:
    """Lifecycle wrapper around the periodic escalation check."""

    def __init__(
        self,
        engine: EscalationEngine,
        interval_seconds: int = ONE_HOUR_SECONDS,
        run_on_start: bool = True,
        initial_delay_seconds: int = 30,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._engine = engine
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.initial_delay_seconds = max(0, initial_delay_seconds)
        self._lock: Optional[asyncio.Lock] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.last_result: Optional[SweepResult] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def sweep_in_progress(self) -> bool:
        return self._lock is not None and self._lock.locked()

    def _sweep_lock(self) -> asyncio.Lock:
        # Created on first use so it belongs to the loop that runs the sweeps.
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _run_exclusive(self, trigger: str) -> Optional[SweepResult]:
        lock = self._sweep_lock()
        # No await between the check and the acquire, so the pair is atomic on the loop.
        if lock.locked():
            ESCALATION_SWEEPS_SKIPPED.labels(trigger=trigger).inc()
            logger.info("Escalation check (%s) skipped: previous sweep still running", trigger)
            return None
        # Held until run_sweep returns; a cancelled sweep returns only after its in-flight row write.
        async with lock:
            result = await self._engine.run_sweep(trigger=trigger)
            self.last_result = result
            return result

    async def tick(self, trigger: str = "scheduled") -> Optional[SweepResult]:
        """Timer entry point. Errors are logged so the schedule keeps running."""
        logger.info("Running %s escalation check...", trigger)
        try:
            return await self._run_exclusive(trigger)
        except Exception:
            logger.exception("%s escalation check failed", trigger.capitalize())
            return None

    async def trigger(self) -> SweepResult:
        """Run a sweep now and return its counts.

        Raises SweepInProgress when a scheduled or manual sweep is already running.
        """
        logger.info("Manual escalation check triggered...")
        result = await self._run_exclusive("manual")
        if result is None:
            raise SweepInProgress("An escalation check is already running")
        return result

    async def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Escalation scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval_seconds,
            id="escalation_check",
            name="SLA escalation check",
            kwargs={"trigger": "scheduled"},
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self.run_on_start:
            scheduler.add_job(
                self.tick,
                "date",
                run_date=utcnow() + timedelta(seconds=self.initial_delay_seconds),
                id="escalation_check_startup",
                name="Initial SLA escalation check",
                kwargs={"trigger": "startup"},
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Escalation scheduler started (every %ss, initial run %s)",
            self.interval_seconds,
            f"in {self.initial_delay_seconds}s" if self.run_on_start else "disabled",
        )

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Escalation scheduler stopped")


__all__ = ["EscalationScheduler"]
