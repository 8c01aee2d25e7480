from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Set

from jobwalk.core.config import settings
from jobwalk.core.logging import get_logger, log_with_context
from jobwalk.db.session import SessionLocal
from jobwalk.services.digest import digest_sent_since, generate_weekly_digest
from jobwalk.services.intelligence import stale_job_ids, update_job_intelligence
from jobwalk.services.notifications import cleanup_read_notifications
from jobwalk.services.pipeline import retry_session, retryable_session_ids

logger = get_logger(__name__)

TaskFn = Callable[[], Awaitable[None]]


@dataclass
class ScheduledTask:
    name: str
    interval_sec: float
    fn: TaskFn
    is_running: bool = False
    runs: int = 0
    skipped: int = 0
    failures: int = 0


class Scheduler:
    """
    Fixed-interval background tasks on the running event loop.

    Each task fires once after the startup delay and then every interval. A
    tick that arrives while the previous run is still going is skipped, never
    queued.
    """

    def __init__(self, *, startup_delay_sec: float = 30.0) -> None:
        self.startup_delay_sec = startup_delay_sec
        self._tasks: Dict[str, ScheduledTask] = {}
        self._loops: Dict[str, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()

    @property
    def tasks(self) -> Dict[str, ScheduledTask]:
        return dict(self._tasks)

    def schedule(self, name: str, interval_sec: float, fn: TaskFn) -> ScheduledTask:
        if name in self._tasks:
            raise ValueError(f"Task {name!r} already scheduled")
        task = ScheduledTask(name=name, interval_sec=interval_sec, fn=fn)
        self._tasks[name] = task
        return task

    async def run_task(self, name: str) -> bool:
        """One tick. Returns False when skipped by the overlap guard."""
        task = self._tasks[name]
        if task.is_running:
            task.skipped += 1
            log_with_context(logger, logging.WARNING, "Previous run still active, skipping tick", task=name)
            return False

        task.is_running = True
        try:
            await task.fn()
            task.runs += 1
        except Exception as e:  # noqa: BLE001 - a failed run must not stop future ticks
            task.failures += 1
            log_with_context(logger, logging.ERROR, "Scheduled task failed", task=name, error=str(e), exc_info=True)
        finally:
            task.is_running = False
        return True

    def _spawn(self, name: str) -> None:
        run = asyncio.create_task(self.run_task(name), name=f"sched-run-{name}")
        self._inflight.add(run)
        run.add_done_callback(self._inflight.discard)

    async def _loop(self, task: ScheduledTask) -> None:
        await asyncio.sleep(self.startup_delay_sec)
        while True:
            self._spawn(task.name)
            await asyncio.sleep(task.interval_sec)

    def start(self) -> None:
        for name, task in self._tasks.items():
            if name not in self._loops:
                self._loops[name] = asyncio.create_task(self._loop(task), name=f"sched-loop-{name}")
        logger.info(f"Scheduler started with {len(self._tasks)} task(s): {', '.join(self._tasks)}")

    async def stop(self) -> None:
        pending = list(self._loops.values()) + list(self._inflight)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._loops.clear()
        self._inflight.clear()
        logger.info("Scheduler stopped")


# ---------------------------
# maintenance tasks
# ---------------------------
def _weekly_digest_tick(now: Optional[datetime] = None) -> Optional[str]:
    now = now or datetime.now().astimezone()
    # Monday, 06:00 local
    if now.weekday() != 0 or now.hour != 6:
        return None

    db = SessionLocal()
    try:
        if digest_sent_since(db, now.astimezone(timezone.utc) - timedelta(hours=12)):
            return None
        return generate_weekly_digest(db)
    finally:
        db.close()


async def retry_failed_sessions(limit: Optional[int] = None) -> int:
    """Reset and replay a small batch of recently errored sessions, one at a time."""
    def _select() -> list[int]:
        db = SessionLocal()
        try:
            return retryable_session_ids(db, limit=limit or settings.retry_batch_size)
        finally:
            db.close()

    ids = await asyncio.to_thread(_select)
    for session_id in ids:
        log_with_context(logger, logging.INFO, "Retrying failed session", session_id=session_id)
        try:
            await asyncio.to_thread(retry_session, session_id)
        except Exception as e:  # noqa: BLE001 - already recorded on the session by the pipeline
            log_with_context(logger, logging.ERROR, "Retry failed", session_id=session_id, error=str(e))
    return len(ids)


def _refresh_stale_intel() -> int:
    db = SessionLocal()
    try:
        ids = stale_job_ids(db, settings.intel_refresh_batch_size)
        for job_id in ids:
            update_job_intelligence(db, job_id)
        if ids:
            logger.info(f"Refreshed intelligence for {len(ids)} job(s)")
        return len(ids)
    finally:
        db.close()


def _cleanup_notifications() -> int:
    db = SessionLocal()
    try:
        return cleanup_read_notifications(db, settings.notification_retention_days)
    finally:
        db.close()


def build_scheduler() -> Scheduler:
    scheduler = Scheduler(startup_delay_sec=settings.scheduler_startup_delay_sec)

    async def weekly_digest() -> None:
        await asyncio.to_thread(_weekly_digest_tick)

    async def retry_failed() -> None:
        await retry_failed_sessions()

    async def refresh_intel() -> None:
        await asyncio.to_thread(_refresh_stale_intel)

    async def cleanup_notifications() -> None:
        await asyncio.to_thread(_cleanup_notifications)

    scheduler.schedule("weekly-digest", 60 * 60, weekly_digest)
    scheduler.schedule("retry-failed", 15 * 60, retry_failed)
    scheduler.schedule("refresh-intel", 6 * 60 * 60, refresh_intel)
    if settings.notification_retention_days > 0:
        scheduler.schedule("cleanup-notifications", 24 * 60 * 60, cleanup_notifications)
    return scheduler
