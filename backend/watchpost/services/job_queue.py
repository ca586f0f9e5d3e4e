"""Job queue - per-subject FIFO/delay/repeat queue with an in-process worker.

Each queue owns:
- a FIFO of waiting jobs consumed by its worker task(s)
- delayed jobs, released into the FIFO by backend timers
- repeating registrations, which materialize a new job on every tick
- bounded buffers of completed and failed jobs for inspection

Failed jobs are retried with exponential backoff up to the configured number
of attempts, then kept in the failed buffer.
"""
import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol

from apscheduler.triggers.date import DateTrigger

from ..exceptions import QueueBackendError, QueueClosedError
from .queue_backend import SchedulerBackend
from .schedule import Schedule

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    SINGLE_CHECK = "single-check"
    BULK_CHECK = "bulk-check"
    RECURRING_CHECK = "recurring-check"


class JobState(str, Enum):
    DELAYED = "delayed"
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """One unit of work in a queue."""
    id: str
    kind: JobKind
    payload: Dict[str, Any]
    job_key: Optional[str] = None
    delay: float = 0
    enqueued_at: datetime = field(default_factory=datetime.utcnow)
    run_at: Optional[datetime] = None
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None


@dataclass
class RepeatingRegistration:
    """A persistent instruction to materialize a job on a schedule."""
    key: str
    kind: JobKind
    payload: Dict[str, Any]
    schedule: Schedule
    next_run_time: Optional[datetime] = None


@dataclass
class QueueStats:
    """Job counts for one queue."""
    name: str
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    repeating: int = 0
    paused: bool = False


class Processor(Protocol):
    """Handles jobs taken from a queue."""

    async def handle(self, job: Job) -> Any:
        ...


class JobQueue:
    """A named work queue bound to one subject."""

    def __init__(
        self,
        name: str,
        backend: SchedulerBackend,
        processor: Processor,
        concurrency: int = 1,
        attempts: int = 3,
        backoff_seconds: float = 5.0,
        keep_completed: int = 10,
        keep_failed: int = 50,
    ):
        self.name = name
        self.processor = processor
        self._backend = backend
        self._concurrency = max(1, concurrency)
        self._attempts = max(1, attempts)
        self._backoff_seconds = backoff_seconds

        self._waiting: Deque[Job] = deque()
        self._delayed: Dict[str, Job] = {}
        self._active: Dict[str, Job] = {}
        self._completed: Deque[Job] = deque(maxlen=keep_completed)
        self._failed: Deque[Job] = deque(maxlen=keep_failed)
        self._repeating: Dict[str, RepeatingRegistration] = {}

        self._registration_lock = asyncio.Lock()
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

        self._workers: List[asyncio.Task] = []
        self._ids = itertools.count(1)
        self._opened = False
        self._closed = False

    # Lifecycle

    async def open(self):
        """Start the worker task(s)."""
        if self._closed:
            raise QueueClosedError(f"Queue {self.name} is closed")
        if self._opened:
            return

        for index in range(self._concurrency):
            self._workers.append(
                asyncio.create_task(self._work(), name=f"{self.name}-worker-{index}")
            )
        self._opened = True
        logger.debug(f"Queue {self.name} opened with {self._concurrency} worker(s)")

    async def close(self, abandon_active: bool = False):
        """Release timers and stop the workers.

        A job that is already running finishes unless abandon_active is set.
        """
        if self._closed:
            return
        self._closed = True

        for timer in self._backend.list_timers(prefix=f"{self.name}:"):
            self._backend.remove_timer(timer.id)
        self._repeating.clear()
        self._delayed.clear()
        self._waiting.clear()

        # Let idle or paused workers observe the closed flag and exit
        self._resumed.set()
        self._wakeup.set()

        if abandon_active:
            for worker in self._workers:
                worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)

        self._update_idle()
        logger.debug(f"Queue {self.name} closed")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def _ensure_open(self):
        if self._closed:
            raise QueueClosedError(f"Queue {self.name} is closed")

    # Enqueueing

    async def enqueue(
        self,
        kind: JobKind,
        payload: Dict[str, Any],
        delay: Optional[float] = None,
        job_key: Optional[str] = None,
    ) -> Job:
        """Accept a job for immediate or delayed execution."""
        self._ensure_open()

        job = Job(
            id=f"{self.name}#{next(self._ids)}",
            kind=JobKind(kind),
            payload=dict(payload),
            job_key=job_key,
            delay=delay or 0,
        )
        if job.delay > 0:
            self._schedule_delayed(job, job.delay)
        else:
            self._push(job)

        logger.debug(f"Enqueued {job.kind.value} job {job.id} (delay={job.delay}s)")
        return job

    def _push(self, job: Job):
        job.state = JobState.WAITING
        job.run_at = None
        self._waiting.append(job)
        self._idle.clear()
        self._wakeup.set()

    def _schedule_delayed(self, job: Job, seconds: float):
        if seconds <= 0:
            self._push(job)
            return

        job.state = JobState.DELAYED
        job.run_at = datetime.utcnow() + timedelta(seconds=seconds)
        self._delayed[job.id] = job
        run_date = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        try:
            self._backend.add_timer(
                self._delayed_timer_id(job.id),
                self._release_delayed,
                DateTrigger(run_date=run_date),
                args=(job.id,),
            )
        except QueueBackendError:
            self._delayed.pop(job.id, None)
            raise

    async def _release_delayed(self, job_id: str):
        job = self._delayed.pop(job_id, None)
        if job is None or self._closed:
            return
        self._push(job)

    def _delayed_timer_id(self, job_id: str) -> str:
        return f"{self.name}:delayed:{job_id}"

    # Repeating registrations

    def _repeat_prefix(self) -> str:
        return f"{self.name}:repeat:"

    async def register_repeating(
        self,
        kind: JobKind,
        payload: Dict[str, Any],
        schedule: Schedule,
        job_key: str,
    ) -> RepeatingRegistration:
        """Install a repeating job under job_key, replacing any registration with that key."""
        self._ensure_open()

        async with self._registration_lock:
            for existing in await self.list_repeating():
                if existing.key == job_key:
                    await self.remove_repeating(existing.key)
                    logger.debug(f"Removed previous repeating registration {job_key} ({existing.schedule.describe()})")

            next_run_time = self._backend.add_timer(
                self._repeat_prefix() + job_key,
                self._materialize,
                schedule.to_trigger(self._backend.timezone),
                args=(job_key,),
            )
            registration = RepeatingRegistration(
                key=job_key,
                kind=JobKind(kind),
                payload=dict(payload),
                schedule=schedule,
                next_run_time=next_run_time,
            )
            self._repeating[job_key] = registration

        logger.info(f"Registered repeating job {job_key} on {self.name} ({schedule.describe()})")
        return registration

    async def remove_repeating(self, job_key: str) -> bool:
        removed = False
        if self._backend.connected:
            removed = self._backend.remove_timer(self._repeat_prefix() + job_key)
        self._repeating.pop(job_key, None)
        return removed

    async def _materialize(self, job_key: str):
        """Timer callback: turn one repeat tick into a waiting job."""
        registration = self._repeating.get(job_key)
        if registration is None or self._closed:
            return

        timer = self._backend.get_timer(self._repeat_prefix() + job_key)
        if timer is not None:
            registration.next_run_time = timer.next_run_time

        if any(job.job_key == job_key for job in self._waiting):
            logger.debug(f"Skipping tick for {job_key}: previous run still waiting")
            return

        self._push(Job(
            id=f"{self.name}#{next(self._ids)}",
            kind=registration.kind,
            payload=dict(registration.payload),
            job_key=job_key,
        ))

    # Introspection

    async def list_repeating(self) -> List[RepeatingRegistration]:
        """Registrations that the backend still holds a timer for."""
        prefix = self._repeat_prefix()
        live = {timer.id[len(prefix):]: timer for timer in self._backend.list_timers(prefix=prefix)}

        registrations = []
        for key in list(self._repeating):
            timer = live.get(key)
            if timer is None:
                logger.warning(f"Repeating registration {key} on {self.name} has no backend timer")
                self._repeating.pop(key, None)
                continue
            registration = self._repeating[key]
            registration.next_run_time = timer.next_run_time
            registrations.append(registration)
        return registrations

    async def list_waiting(self) -> List[Job]:
        return list(self._waiting)

    async def list_delayed(self) -> List[Job]:
        return sorted(self._delayed.values(), key=lambda job: job.run_at or job.enqueued_at)

    async def list_active(self) -> List[Job]:
        return list(self._active.values())

    async def list_completed(self) -> List[Job]:
        return list(self._completed)

    async def list_failed(self) -> List[Job]:
        return list(self._failed)

    async def counts(self) -> QueueStats:
        return QueueStats(
            name=self.name,
            waiting=len(self._waiting),
            delayed=len(self._delayed),
            active=len(self._active),
            completed=len(self._completed),
            failed=len(self._failed),
            repeating=len(await self.list_repeating()),
            paused=self.is_paused,
        )

    # Flow control

    async def pause(self):
        self._resumed.clear()
        logger.info(f"Queue {self.name} paused")

    async def resume(self):
        self._resumed.set()
        logger.info(f"Queue {self.name} resumed")

    async def drain(self) -> int:
        """Drop waiting and delayed jobs; repeating registrations stay."""
        removed = len(self._waiting) + len(self._delayed)
        for job_id in list(self._delayed):
            if self._backend.connected:
                self._backend.remove_timer(self._delayed_timer_id(job_id))
        self._delayed.clear()
        self._waiting.clear()
        self._update_idle()

        if removed:
            logger.info(f"Drained {removed} pending job(s) from {self.name}")
        return removed

    async def wait_until_idle(self):
        """Wait until nothing is waiting or running."""
        await self._idle.wait()

    # Worker

    def _update_idle(self):
        if not self._waiting and not self._active:
            self._idle.set()

    async def _work(self):
        while not self._closed:
            await self._resumed.wait()
            if self._closed:
                break
            if not self._waiting:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            await self._run(self._waiting.popleft())

    async def _run(self, job: Job):
        job.state = JobState.ACTIVE
        job.started_at = datetime.utcnow()
        job.attempts_made += 1
        self._active[job.id] = job

        try:
            job.result = await self.processor.handle(job)
        except Exception as e:
            self._active.pop(job.id, None)
            job.error = str(e) or e.__class__.__name__
            self._retry_or_fail(job, e)
        else:
            self._active.pop(job.id, None)
            job.state = JobState.COMPLETED
            job.error = None
            job.finished_at = datetime.utcnow()
            self._completed.append(job)
        finally:
            self._update_idle()

    def _retry_or_fail(self, job: Job, error: Exception):
        if job.attempts_made < self._attempts and not self._closed:
            delay = self._backoff_seconds * (2 ** (job.attempts_made - 1))
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts_made}/{self._attempts}), "
                f"retrying in {delay}s: {error}"
            )
            try:
                self._schedule_delayed(job, delay)
                return
            except QueueBackendError as e:
                logger.error(f"Could not schedule retry for job {job.id}: {e}")

        job.state = JobState.FAILED
        job.finished_at = datetime.utcnow()
        self._failed.append(job)
        logger.error(f"Job {job.id} failed after {job.attempts_made} attempt(s): {error}")
