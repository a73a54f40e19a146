"""
Fire-and-forget scheduling of delayed side effects.

Used for follow-up messages that must go out after the HTTP response has been
returned. Each call becomes a one-shot "date" job on an APScheduler
``AsyncIOScheduler``. Scheduled work is never awaited by the caller; failures
are logged here and go no further.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Set

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


class DelayedTaskScheduler:
    """Runs coroutine functions after a delay on the running event loop."""

    def __init__(self, misfire_grace_seconds: int = 30):
        self._scheduler = AsyncIOScheduler(
            job_defaults={"misfire_grace_time": misfire_grace_seconds, "coalesce": False},
            timezone="UTC"
        )
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._pending: Set[str] = set()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Start the scheduler on the running event loop. Safe to call twice."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Delayed task scheduler started")

    def schedule(
        self,
        delay: float,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: Optional[str] = None
    ) -> Optional[Job]:
        """
        Schedule ``func(*args)`` to run after ``delay`` seconds.

        Returns:
            The scheduled job, or None if no event loop is running
        """
        task_name = name or getattr(func, "__name__", "delayed_task")
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping scheduled task {task_name}")
            return None

        self.start()

        job_id = f"{task_name}-{uuid.uuid4().hex[:8]}"
        self._pending.add(job_id)
        return self._scheduler.add_job(
            func,
            "date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            args=list(args),
            id=job_id,
            name=task_name
        )

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        self._pending.discard(event.job_id)
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Scheduled task {event.job_id} failed: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Scheduled task {event.job_id} missed its run time")

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Give pending jobs a chance to finish, then drop the rest."""
        if not self._scheduler.running:
            return

        if self._pending:
            logger.info(f"Waiting for {len(self._pending)} scheduled task(s) before shutdown")
            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout
            while self._pending and loop.time() < deadline:
                await asyncio.sleep(0.05)

        if self._pending:
            logger.warning(f"Dropping {len(self._pending)} scheduled task(s) at shutdown")
            self._pending.clear()

        self._scheduler.shutdown(wait=False)
        logger.info("Delayed task scheduler stopped")


# Global scheduler instance
_task_scheduler: Optional[DelayedTaskScheduler] = None


def get_task_scheduler() -> DelayedTaskScheduler:
    """
    Get the global delayed task scheduler.

    Returns:
        DelayedTaskScheduler: The global scheduler instance
    """
    global _task_scheduler
    if _task_scheduler is None:
        _task_scheduler = DelayedTaskScheduler()
    return _task_scheduler


async def close_task_scheduler() -> None:
    """Drain and stop the global scheduler, if it was created."""
    global _task_scheduler
    if _task_scheduler is None:
        return

    scheduler, _task_scheduler = _task_scheduler, None
    await scheduler.shutdown()
