"""Scheduler service - orchestrates per-subject check queues.

Lifecycle of a subject:
    UNSCHEDULED -> SCHEDULED (repeating job registered) -> [CHECKING -> SCHEDULED]* -> UNSCHEDULED

Besides reacting to subject create/update/delete, the service runs its own
control loop with three periodic jobs:
- reconciliation sweep: when no repeating job is registered at all while
  active subjects exist, the primary path is considered broken and due
  subjects get paced catch-up checks; missing registrations are re-added
- queue health check: advisory warnings about missing schedules and failed jobs
- check log cleanup: prunes old result rows

Domain checks hit third-party registrars, so batches of them always go
through the pacer. Monitor checks are first-party and dispatched directly.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Settings, settings
from ..exceptions import QueueBackendError, SubjectNotScheduledError
from .alerter import alerter_service
from .checker import checker_service
from .job_queue import Job, JobKind, JobQueue, Processor, QueueStats
from .pacer import Pacer
from .processor import CheckProcessor
from .queue_backend import SchedulerBackend
from .queue_registry import AggregateStats, QueueFactory, QueueRegistry
from .result_sink import SqlResultSink
from .schedule import Schedule
from .subjects import (
    SqlSubjectStore,
    Subject,
    SubjectKind,
    SubjectRef,
    SubjectStore,
    creation_order,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """What one reconciliation sweep found and did."""
    active_subjects: int = 0
    repeating_registrations: int = 0
    catch_up_jobs: int = 0
    reregistered: int = 0
    removed: int = 0


@dataclass
class HealthReport:
    stats: AggregateStats
    warnings: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.warnings


def queue_factory_for(backend: SchedulerBackend, processor: Processor, config: Settings) -> QueueFactory:
    """Build queues for the registry with the configured retry and retention policy."""

    def create(ref: SubjectRef) -> JobQueue:
        return JobQueue(
            ref.queue_name,
            backend,
            processor,
            concurrency=config.queue_concurrency,
            attempts=config.job_attempts,
            backoff_seconds=config.job_backoff_seconds,
            keep_completed=config.keep_completed_jobs,
            keep_failed=config.keep_failed_jobs,
        )

    return create


class SchedulerService:
    """Service for scheduling, reconciling and dispatching subject checks."""

    def __init__(
        self,
        backend: SchedulerBackend,
        registry: QueueRegistry,
        store: SubjectStore,
        pacer: Pacer,
        config: Settings = settings,
        result_sink: Optional[SqlResultSink] = None,
    ):
        self.backend = backend
        self.registry = registry
        self.store = store
        self.pacer = pacer
        self.config = config
        self.result_sink = result_sink
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Connect the queue backend, schedule active subjects and start the control loop.

        Raises QueueBackendError when the backend cannot be used; the caller
        should refuse to serve in that case.
        """
        if self._running:
            return

        await self.backend.connect()
        await self.registry.init()

        subjects = await self.store.list_active()
        scheduled = 0
        for subject in subjects:
            if await self._schedule(subject):
                scheduled += 1
        logger.info(f"Scheduled {scheduled}/{len(subjects)} active subjects")

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._run_reconcile,
            trigger=IntervalTrigger(seconds=self.config.reconcile_interval_seconds),
            id="reconcile",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._run_health_check,
            trigger=IntervalTrigger(seconds=self.config.health_check_interval_seconds),
            id="queue_health_check",
            replace_existing=True,
            max_instances=1,
        )
        if self.result_sink:
            self.scheduler.add_job(
                self._cleanup_old_records,
                trigger=IntervalTrigger(hours=1),
                id="cleanup_old_records",
                replace_existing=True,
                max_instances=1,
            )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (reconcile={self.config.reconcile_interval_seconds}s, "
            f"health_check={self.config.health_check_interval_seconds}s)"
        )

    async def stop(self):
        """Stop the control loop and close every queue."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

        await self.registry.shutdown()
        await self.backend.close()
        self._running = False
        logger.info("Scheduler stopped")

    # Subject lifecycle

    async def _schedule(self, subject: Subject) -> bool:
        """Ensure the subject has a queue and exactly one repeating registration."""
        try:
            queue = await self.registry.get_or_create(subject.ref)
            async with self.registry.lock_for(subject.ref):
                await queue.register_repeating(
                    JobKind.RECURRING_CHECK,
                    subject.job_payload(),
                    Schedule.every(subject.check_interval),
                    subject.ref.job_key,
                )
            return True
        except QueueBackendError as e:
            logger.error(f"Could not schedule {subject.ref}, leaving it to the next reconciliation sweep: {e}")
            return False

    async def on_subject_created(self, subject: Subject) -> bool:
        """Register the repeating check and queue a first check shortly after creation.

        Returns whether the repeating registration succeeded. A failure to
        queue the first check raises QueueBackendError.
        """
        if not subject.is_active:
            logger.info(f"Subject {subject.ref} created inactive, not scheduling")
            return False

        scheduled = await self._schedule(subject)

        queue = await self.registry.get_or_create(subject.ref)
        await queue.enqueue(
            JobKind.SINGLE_CHECK,
            subject.job_payload(),
            delay=self.config.immediate_check_delay_seconds,
        )
        logger.info(f"Subject {subject.ref} scheduled every {subject.check_interval}s")
        return scheduled

    async def on_subject_updated(self, subject: Subject, changed_fields: Iterable[str] = ()) -> bool:
        changed = set(changed_fields)

        if not subject.is_active:
            await self.on_subject_deleted(subject.ref)
            return False

        if "is_active" in changed or self.registry.get(subject.ref) is None:
            return await self.on_subject_created(subject)

        if "check_interval" in changed:
            # Re-registration replaces the previous schedule under the same job key
            return await self._schedule(subject)
        return True

    async def on_subject_deleted(self, ref: SubjectRef):
        await self.registry.remove(ref)
        logger.info(f"Subject {ref} unscheduled")

    # Dispatch

    async def _enqueue(self, subject: Subject, job_kind: JobKind) -> Job:
        queue = await self.registry.get_or_create(subject.ref)
        return await queue.enqueue(job_kind, subject.job_payload())

    async def dispatch(self, subjects: Iterable[Subject], job_kind: JobKind) -> int:
        """Enqueue one job per subject in creation order.

        Monitors go out immediately. Every domain after the first waits a
        random pacing gap before its job is enqueued.

        Returns the number of jobs enqueued.
        """
        enqueued = 0
        domains_sent = 0
        for subject in sorted(subjects, key=creation_order):
            if subject.kind == SubjectKind.DOMAIN:
                if domains_sent:
                    delay = await self.pacer.jitter()
                    logger.debug(f"Paced dispatch of {subject.ref} after {delay:.2f}s")
                domains_sent += 1
            enqueued += await self._try_enqueue(subject, job_kind)
        return enqueued

    async def _try_enqueue(self, subject: Subject, job_kind: JobKind) -> int:
        try:
            await self._enqueue(subject, job_kind)
            return 1
        except QueueBackendError as e:
            logger.error(f"Could not enqueue {job_kind.value} for {subject.ref}: {e}")
            return 0

    async def trigger_bulk_check_now(self, kind: Optional[SubjectKind] = None) -> int:
        """Queue a check for every active subject (optionally of one kind)."""
        subjects = await self.store.list_active(kind)
        logger.info(f"Triggering bulk check for {len(subjects)} subjects")
        enqueued = await self.dispatch(subjects, JobKind.BULK_CHECK)
        logger.info(f"Bulk check queued {enqueued} job(s)")
        return enqueued

    async def check_subject_now(self, ref: SubjectRef) -> Job:
        subject = await self.store.get(ref)
        if subject is None or not subject.is_active:
            raise SubjectNotScheduledError(str(ref))
        return await self._enqueue(subject, JobKind.SINGLE_CHECK)

    # Reconciliation and health

    async def reconcile(self) -> ReconcileReport:
        """Backup sweep: catch up due subjects when no repeating job is registered, then repair registrations."""
        report = ReconcileReport()
        active = await self.store.list_active()

        # Queues left behind by subjects that are gone or inactive
        active_refs = {subject.ref for subject in active}
        for ref in self.registry.list_subjects():
            if ref not in active_refs:
                logger.warning(f"Queue for {ref} has no active subject, removing it")
                await self.registry.remove(ref)
                report.removed += 1

        stats = await self.registry.aggregate_stats()
        report.active_subjects = len(active)
        report.repeating_registrations = stats.repeating

        if not active:
            return report

        if stats.repeating == 0:
            now = datetime.utcnow()
            due = [s for s in active if s.is_due(now, self.config.expiry_alert_days)]
            logger.warning(
                f"No repeating jobs registered for {len(active)} active subjects, "
                f"running backup check for {len(due)} due subject(s)"
            )
            report.catch_up_jobs = await self.dispatch(due, JobKind.SINGLE_CHECK)
        else:
            logger.info("Repeating jobs are registered, skipping backup check")

        report.reregistered = await self._repair_registrations(active)
        return report

    async def _repair_registrations(self, subjects: List[Subject]) -> int:
        repaired = 0
        for subject in subjects:
            queue = self.registry.get(subject.ref)
            if queue is not None:
                keys = {registration.key for registration in await queue.list_repeating()}
                if subject.ref.job_key in keys:
                    continue

            logger.warning(f"Repeating job missing for {subject.ref}, re-registering")
            if await self._schedule(subject):
                repaired += 1
        return repaired

    async def health_check(self) -> HealthReport:
        """Advisory check of queue state; logs warnings, repairs nothing."""
        stats = await self.registry.aggregate_stats()
        report = HealthReport(stats=stats)

        logger.debug(
            f"Queue health check: queues={stats.queue_count} waiting={stats.waiting} "
            f"active={stats.active} repeating={stats.repeating} failed={stats.failed}"
        )

        if stats.repeating == 0 and await self.store.list_active():
            report.warnings.append("No repeating jobs found in queues, monitoring may not be working")
        if stats.failed > self.config.failed_job_alert_threshold:
            report.warnings.append(f"High number of failed jobs in queues: {stats.failed}")

        for warning in report.warnings:
            logger.warning(warning)
        return report

    async def _run_reconcile(self):
        try:
            await self.reconcile()
        except Exception as e:
            logger.error(f"Error in reconciliation sweep: {e}")

    async def _run_health_check(self):
        try:
            await self.health_check()
        except Exception as e:
            logger.error(f"Error in queue health check: {e}")

    async def _cleanup_old_records(self):
        try:
            await self.result_sink.cleanup_old_records(self.config.check_log_retention_days)
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")

    # Admin operations

    def get_subject_queue(self, ref: SubjectRef) -> JobQueue:
        queue = self.registry.get(ref)
        if queue is None:
            raise SubjectNotScheduledError(str(ref))
        return queue

    async def get_aggregate_queue_stats(self) -> AggregateStats:
        return await self.registry.aggregate_stats()

    async def get_subject_queue_stats(self, ref: SubjectRef) -> QueueStats:
        return await self.get_subject_queue(ref).counts()

    async def pause_subject(self, ref: SubjectRef):
        await self.get_subject_queue(ref).pause()

    async def resume_subject(self, ref: SubjectRef):
        await self.get_subject_queue(ref).resume()

    async def clear_subject_queue(self, ref: SubjectRef) -> int:
        return await self.get_subject_queue(ref).drain()

    def list_scheduled_subjects(self) -> List[SubjectRef]:
        return self.registry.list_subjects()


def create_scheduler_service(config: Settings = settings) -> SchedulerService:
    """Wire the production scheduler: SQL store and sink, APScheduler backend."""
    backend = SchedulerBackend(config.queue_backend_url)
    store = SqlSubjectStore()
    sink = SqlResultSink(alerter_service)
    processor = CheckProcessor(store, checker_service, sink)
    registry = QueueRegistry(queue_factory_for(backend, processor, config))
    return SchedulerService(
        backend,
        registry,
        store,
        Pacer(config.pace_min_delay_ms, config.pace_max_delay_ms),
        config=config,
        result_sink=sink,
    )


# Global instance
scheduler_service = create_scheduler_service()
