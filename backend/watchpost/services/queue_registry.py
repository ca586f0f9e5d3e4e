"""Queue registry - owns the subject -> job queue mapping.

Queues are created lazily, one per subject, and every mutation of the map is
serialized per subject key. Stats reads take a snapshot of the map and may be
slightly stale while queues are being added or removed.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional

from .job_queue import JobQueue, QueueStats
from .subjects import SubjectRef

logger = logging.getLogger(__name__)

QueueFactory = Callable[[SubjectRef], JobQueue]


@dataclass
class AggregateStats:
    """Job counts summed over every managed queue."""
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    repeating: int = 0
    paused_queues: int = 0
    queue_count: int = 0


class QueueRegistry:
    """Maps subjects to their dedicated job queues."""

    def __init__(self, queue_factory: QueueFactory):
        self._queue_factory = queue_factory
        self._queues: Dict[SubjectRef, JobQueue] = {}
        self._locks: Dict[SubjectRef, asyncio.Lock] = {}
        self._lock_users: Dict[SubjectRef, int] = {}
        self._running = False

    async def init(self):
        self._running = True
        logger.info("Queue registry initialized")

    async def shutdown(self):
        """Close every open queue. Jobs still running are abandoned."""
        self._running = False
        for ref in list(self._queues):
            async with self.lock_for(ref):
                queue = self._queues.pop(ref, None)
                if queue:
                    await queue.close(abandon_active=True)
        logger.info("Queue registry shut down")

    @asynccontextmanager
    async def lock_for(self, ref: SubjectRef) -> AsyncIterator[None]:
        """Hold the per-subject lock guarding queue creation, removal and registration.

        A lock lives only while some caller holds or waits for it.
        """
        lock = self._locks.setdefault(ref, asyncio.Lock())
        self._lock_users[ref] = self._lock_users.get(ref, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[ref] -= 1
            if not self._lock_users[ref]:
                del self._lock_users[ref]
                del self._locks[ref]

    async def get_or_create(self, ref: SubjectRef) -> JobQueue:
        """Return the subject's queue, constructing and opening it on first use."""
        queue = self._queues.get(ref)
        if queue is not None:
            return queue

        async with self.lock_for(ref):
            queue = self._queues.get(ref)
            if queue is not None:
                return queue

            queue = self._queue_factory(ref)
            await queue.open()
            self._queues[ref] = queue
            logger.info(f"Created queue {queue.name}")
            return queue

    def get(self, ref: SubjectRef) -> Optional[JobQueue]:
        return self._queues.get(ref)

    async def remove(self, ref: SubjectRef):
        """Cancel repeating and pending jobs, close the queue and forget it.

        Unknown subjects are ignored.
        """
        async with self.lock_for(ref):
            queue = self._queues.get(ref)
            if queue is None:
                return

            for registration in await queue.list_repeating():
                await queue.remove_repeating(registration.key)
            await queue.drain()
            await queue.close()
            del self._queues[ref]

        logger.info(f"Removed queue {queue.name}")

    async def stats_for(self, ref: SubjectRef) -> Optional[QueueStats]:
        queue = self._queues.get(ref)
        if queue is None:
            return None
        return await queue.counts()

    async def aggregate_stats(self) -> AggregateStats:
        totals = AggregateStats()
        for queue in list(self._queues.values()):
            stats = await queue.counts()
            totals.waiting += stats.waiting
            totals.delayed += stats.delayed
            totals.active += stats.active
            totals.completed += stats.completed
            totals.failed += stats.failed
            totals.repeating += stats.repeating
            totals.paused_queues += 1 if stats.paused else 0
            totals.queue_count += 1
        return totals

    def list_subjects(self) -> List[SubjectRef]:
        return sorted(self._queues)

    def __len__(self) -> int:
        return len(self._queues)
