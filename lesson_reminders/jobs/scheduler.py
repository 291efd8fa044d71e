"""Recurring reminder ticks on two overlapping cadences.

The primary job fires hourly and the backup job every 15 minutes, so a
missed or delayed tick heals on the next backup run. A non-blocking tick
lock makes a slow tick cause the next one to be skipped rather than run
concurrently.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from lesson_reminders.domain.models import TickResult
from lesson_reminders.utils.clock import Clock, utc_now

PRIMARY_JOB_ID = "lesson_reminders_primary"
BACKUP_JOB_ID = "lesson_reminders_backup"
HEALTH_LOG_EVERY = 4

TickFn = Callable[[datetime, int], TickResult]
SchedulerFactory = Callable[[], BackgroundScheduler]

logger = logging.getLogger(__name__)


def _log_job_state(scheduler: BackgroundScheduler, event: JobExecutionEvent) -> None:
    """Log last and next run metadata for observability."""
    job = scheduler.get_job(event.job_id)
    job_next_run = getattr(job, "next_run_time", None) if job else None
    next_run = job_next_run.isoformat() if job_next_run else "none"
    last_run_at = (
        event.scheduled_run_time.astimezone(UTC).isoformat()
        if event.scheduled_run_time
        else datetime.now(tz=UTC).isoformat()
    )

    if event.exception:
        logger.error(
            "Job %s failed at %s; next run at %s",
            event.job_id,
            last_run_at,
            next_run,
            exc_info=event.exception,
        )
        return

    logger.info("Job %s completed at %s; next run at %s", event.job_id, last_run_at, next_run)


class ReminderTicker:
    def __init__(
        self,
        tick_fn: TickFn,
        *,
        primary_interval_minutes: int = 60,
        backup_interval_minutes: int = 15,
        clock: Clock = utc_now,
        scheduler_factory: SchedulerFactory | None = None,
    ) -> None:
        self._tick_fn = tick_fn
        self.primary_interval_minutes = primary_interval_minutes
        self.backup_interval_minutes = backup_interval_minutes
        self.clock = clock
        self._scheduler_factory = scheduler_factory or (lambda: BackgroundScheduler(timezone=UTC))
        self._scheduler: BackgroundScheduler | None = None
        self._state_lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self.check_count = 0
        self.last_check_time: datetime | None = None
        self.skipped_overlaps = 0

    @property
    def is_running(self) -> bool:
        scheduler = self._scheduler
        return scheduler is not None and scheduler.running

    def build_scheduler(self) -> BackgroundScheduler:
        """Build the scheduler with both cadences registered."""
        scheduler = self._scheduler_factory()
        scheduler.add_job(
            self.scheduled_tick,
            trigger=IntervalTrigger(minutes=self.primary_interval_minutes, timezone=UTC),
            args=("primary",),
            id=PRIMARY_JOB_ID,
            next_run_time=datetime.now(tz=UTC),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.primary_interval_minutes * 30,
        )
        scheduler.add_job(
            self.scheduled_tick,
            trigger=IntervalTrigger(minutes=self.backup_interval_minutes, timezone=UTC),
            args=("backup",),
            id=BACKUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.backup_interval_minutes * 30,
        )
        scheduler.add_listener(
            lambda event: _log_job_state(scheduler, event),
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR,
        )
        return scheduler

    def start(self) -> None:
        with self._state_lock:
            if self.is_running:
                logger.info("Lesson reminder ticker is already running")
                return
            scheduler = self.build_scheduler()
            scheduler.start()
            self._scheduler = scheduler
        logger.info(
            "Lesson reminder ticker started - checking every %s minutes + backup every %s minutes",
            self.primary_interval_minutes,
            self.backup_interval_minutes,
        )

    def stop(self) -> None:
        with self._state_lock:
            scheduler, self._scheduler = self._scheduler, None
            if scheduler is not None and scheduler.running:
                scheduler.shutdown(wait=False)
        logger.info("Lesson reminder ticker stopped")

    def scheduled_tick(self, trigger: str) -> None:
        """Job entrypoint; a failing tick is logged and never kills the scheduler."""
        try:
            self.run_tick(trigger)
        except Exception:
            logger.exception("Unhandled error during %s tick", trigger)

    def run_tick(self, trigger: str = "manual") -> TickResult:
        if not self._tick_lock.acquire(blocking=False):
            self.skipped_overlaps += 1
            logger.warning("Skipping %s tick: previous tick still in progress", trigger)
            return TickResult(
                started_at=self.clock(),
                check_number=self.check_count,
                skipped_overlap=True,
            )

        try:
            now = self.clock()
            self.check_count += 1
            self.last_check_time = now
            result = self._tick_fn(now, self.check_count)
            if self.check_count % HEALTH_LOG_EVERY == 0:
                logger.info(
                    "Service health: running for %s checks, last check %s",
                    self.check_count,
                    now.isoformat(),
                )
            return result
        finally:
            self._tick_lock.release()
