"""Queue backend - timer store shared by all job queues.

Delayed jobs and repeating registrations are both materialized by timers held
in a single APScheduler AsyncIOScheduler. Queues namespace their timer ids
with their own name, so one backend can serve any number of queues.
"""
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional
from urllib.parse import urlparse

from apscheduler.job import Job as SchedulerJob
from apscheduler.jobstores.base import ConflictingIdError, JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..exceptions import QueueBackendError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("memory",)


class SchedulerBackend:
    """APScheduler-backed timer store."""

    def __init__(self, url: str = "memory://", timezone: str = "UTC"):
        self.url = url
        self.timezone = timezone
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def connected(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def connect(self):
        """Start the backend. Raises QueueBackendError if it cannot be used."""
        if self.connected:
            return

        scheme = urlparse(self.url).scheme
        if scheme not in SUPPORTED_SCHEMES:
            raise QueueBackendError(
                f"Unsupported queue backend '{self.url}' (supported: {', '.join(SUPPORTED_SCHEMES)})"
            )

        try:
            self.scheduler = AsyncIOScheduler(
                jobstores={"default": MemoryJobStore()},
                timezone=self.timezone,
            )
            self.scheduler.start()
        except Exception as e:
            self.scheduler = None
            raise QueueBackendError(f"Could not start queue backend: {e}") from e

        logger.info(f"Queue backend connected ({self.url})")

    async def close(self):
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Queue backend closed")
        self.scheduler = None

    def _require_scheduler(self) -> AsyncIOScheduler:
        if not self.connected:
            raise QueueBackendError("Queue backend is not connected")
        return self.scheduler

    def add_timer(
        self,
        timer_id: str,
        func: Callable,
        trigger: Any,
        args: tuple = (),
    ) -> Optional[datetime]:
        """Install a timer and return its next fire time.

        Timer ids are unique: adding an id that already exists is an error,
        callers must remove the old timer first.
        """
        scheduler = self._require_scheduler()
        try:
            job = scheduler.add_job(
                func,
                trigger=trigger,
                args=args,
                id=timer_id,
                name=timer_id,
                replace_existing=False,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=None,
            )
        except ConflictingIdError as e:
            raise QueueBackendError(f"Timer already registered: {timer_id}") from e
        return job.next_run_time

    def remove_timer(self, timer_id: str) -> bool:
        scheduler = self._require_scheduler()
        try:
            scheduler.remove_job(timer_id)
            return True
        except JobLookupError:
            return False

    def get_timer(self, timer_id: str) -> Optional[SchedulerJob]:
        if not self.connected:
            return None
        return self.scheduler.get_job(timer_id)

    def list_timers(self, prefix: str = "") -> List[SchedulerJob]:
        """Timers whose id starts with prefix, ordered by id."""
        if not self.connected:
            return []
        timers = [job for job in self.scheduler.get_jobs() if job.id.startswith(prefix)]
        return sorted(timers, key=lambda job: job.id)
