"""
Background sync scheduling using APScheduler.

- Scheduled sync: first run shortly after startup, then on a fixed interval
- Manual sync: on demand, single-flight and rate limited by a cooldown

Both entry points share one SyncGuard, so at most one run is ever in flight
in this process.
"""
import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shopsync.config import config
from shopsync.observability import get_logger
from shopsync.sync_service import SyncService

logger = get_logger(__name__)

SYNC_JOB_ID = "shopify_sync"


class TriggerOutcome(str, Enum):
    """Answer to a manual sync request."""
    ACCEPTED = "accepted"
    REJECTED_IN_PROGRESS = "in_progress"
    REJECTED_COOLDOWN = "cooldown"


@dataclass(frozen=True)
class TriggerResult:
    outcome: TriggerOutcome
    retry_after_seconds: Optional[int] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is TriggerOutcome.ACCEPTED

    @property
    def message(self) -> str:
        if self.outcome is TriggerOutcome.ACCEPTED:
            return "Sync started"
        if self.outcome is TriggerOutcome.REJECTED_IN_PROGRESS:
            return "Sync already in progress"
        return f"Please wait {self.retry_after_seconds}s before syncing again"


class SyncGuard:
    """
    Single-flight latch plus manual-trigger cooldown.

    Check-and-set happens without awaiting, so on one event loop no other
    coroutine can slip in between.

    Usage:
        guard = SyncGuard(cooldown_seconds=60)
        result = guard.try_acquire_manual()
        if result.accepted:
            try:
                ...
            finally:
                guard.release()
    """

    def __init__(self, cooldown_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._in_progress = False
        self._last_manual_trigger: Optional[float] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def cooldown_remaining(self) -> float:
        """Seconds until another manual trigger is allowed (0 when allowed)."""
        if self._last_manual_trigger is None:
            return 0.0
        elapsed = self._clock() - self._last_manual_trigger
        return max(0.0, self.cooldown_seconds - elapsed)

    def try_acquire(self) -> bool:
        """Take the run slot for a scheduled run. Cooldown does not apply."""
        if self._in_progress:
            return False
        self._in_progress = True
        return True

    def try_acquire_manual(self) -> TriggerResult:
        """Take the run slot for a manual run and start the cooldown window."""
        if self._in_progress:
            return TriggerResult(TriggerOutcome.REJECTED_IN_PROGRESS)

        remaining = self.cooldown_remaining()
        if remaining > 0:
            return TriggerResult(TriggerOutcome.REJECTED_COOLDOWN, retry_after_seconds=math.ceil(remaining))

        self._last_manual_trigger = self._clock()
        self._in_progress = True
        return TriggerResult(TriggerOutcome.ACCEPTED)

    def release(self) -> None:
        self._in_progress = False


class SyncScheduler:
    """
    Runs the sync service on a timer and on demand.

    Usage:
        scheduler = SyncScheduler(sync_service)
        await scheduler.start()
        result = scheduler.trigger_manual_sync()

        # Later...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        sync_service: SyncService,
        startup_delay: Optional[float] = None,
        interval_hours: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        guard: Optional[SyncGuard] = None,
    ):
        self.sync_service = sync_service
        self.startup_delay = startup_delay if startup_delay is not None else config.sync.startup_delay_seconds
        self.interval_hours = interval_hours if interval_hours is not None else config.sync.interval_hours
        cooldown = cooldown_seconds if cooldown_seconds is not None else config.sync.manual_cooldown_seconds
        self.guard = guard or SyncGuard(cooldown_seconds=cooldown)
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._started = False
        self._manual_tasks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        """Close out abandoned runs and register the interval job."""
        if self._started:
            logger.warning("Sync scheduler already started")
            return

        await self.sync_service.recover_abandoned_runs()

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        first_run = datetime.now(timezone.utc) + timedelta(seconds=self.startup_delay)
        self._scheduler.add_job(
            self._run_scheduled_sync,
            trigger=IntervalTrigger(hours=self.interval_hours, timezone=timezone.utc),
            id=SYNC_JOB_ID,
            name="Shopify Sync",
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._scheduler.start()
        self._started = True
        logger.info(
            f"Sync scheduler started: first run at {first_run.isoformat()}, "
            f"then every {self.interval_hours}h"
        )

    async def shutdown(self, wait: bool = False) -> None:
        """
        Stop the timer and cancel manual runs still in flight.

        Returns once every cancelled run has recorded its FAILED row, so the
        store can be closed right after.
        """
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Sync scheduler stopped")
        for task in list(self._manual_tasks):
            task.cancel()
        await self.wait_for_manual_syncs()

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None

    # ═══════════════════════════════════════════════════════════════════════════
    # RUNS
    # ═══════════════════════════════════════════════════════════════════════════

    async def _run_scheduled_sync(self) -> None:
        if not self.guard.try_acquire():
            logger.info("Scheduled sync skipped: a sync is already in progress")
            return
        try:
            await self.sync_service.run(manual=False)
        finally:
            self.guard.release()

    async def _run_manual_sync(self) -> None:
        try:
            await self.sync_service.run(manual=True)
        except Exception as e:
            logger.error(f"Manual sync crashed: {e}", exc_info=True)
        finally:
            self.guard.release()

    def trigger_manual_sync(self) -> TriggerResult:
        """
        Start a manual sync in the background and return immediately.

        Must be called from the running event loop. The run's outcome is only
        visible through the sync_runs audit trail.
        """
        result = self.guard.try_acquire_manual()
        if not result.accepted:
            logger.info(f"Manual sync rejected: {result.message}")
            return result

        task = asyncio.create_task(self._run_manual_sync())
        self._manual_tasks.add(task)
        task.add_done_callback(self._manual_tasks.discard)
        logger.info("Manual sync triggered")
        return result

    async def wait_for_manual_syncs(self) -> None:
        """Wait until every manual run started so far has finished."""
        if self._manual_tasks:
            await asyncio.gather(*list(self._manual_tasks), return_exceptions=True)

    # ═══════════════════════════════════════════════════════════════════════════
    # MONITORING
    # ═══════════════════════════════════════════════════════════════════════════

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            f"Scheduled job {event.job_id} failed: {event.exception}",
            extra={"job_id": event.job_id}
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(f"Scheduled job {event.job_id} missed its run time", extra={"job_id": event.job_id})

    def next_run_time(self) -> Optional[datetime]:
        if not self._scheduler:
            return None
        job = self._scheduler.get_job(SYNC_JOB_ID)
        return job.next_run_time if job else None

    def get_status(self) -> Dict[str, Any]:
        next_run = self.next_run_time()
        return {
            "started": self._started,
            "in_progress": self.guard.in_progress,
            "next_run": next_run.isoformat() if next_run else None,
            "interval_hours": self.interval_hours,
            "cooldown_remaining_seconds": math.ceil(self.guard.cooldown_remaining()),
        }
