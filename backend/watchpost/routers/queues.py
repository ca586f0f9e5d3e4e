"""Queue administration endpoints."""
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks

from ..schemas.queue import (
    AggregateStatsResponse,
    FailedJobInfo,
    PendingJobInfo,
    QueueActionResponse,
    RepeatingJobInfo,
    ScheduledSubject,
    SubjectQueueResponse,
)
from ..services.job_queue import Job
from ..services.scheduler import scheduler_service
from ..services.subjects import SubjectKind, SubjectRef

router = APIRouter(prefix="/api/queues", tags=["queues"])


def _ref(kind: SubjectKind, key: str) -> SubjectRef:
    if kind == SubjectKind.DOMAIN:
        return SubjectRef.domain(key)
    return SubjectRef.monitor(key)


def _pending(job: Job) -> PendingJobInfo:
    return PendingJobInfo(
        id=job.id,
        kind=job.kind.value,
        state=job.state.value,
        attempts_made=job.attempts_made,
        run_at=job.run_at,
        started_at=job.started_at,
    )


@router.get("/stats", response_model=AggregateStatsResponse)
async def get_queue_stats():
    """Job counts over every subject queue."""
    stats = await scheduler_service.get_aggregate_queue_stats()
    return AggregateStatsResponse(**vars(stats))


@router.get("/subjects", response_model=List[ScheduledSubject])
async def list_scheduled_subjects():
    return [
        ScheduledSubject(kind=ref.kind.value, key=ref.key, job_key=ref.job_key)
        for ref in scheduler_service.list_scheduled_subjects()
    ]


@router.post("/check-all", response_model=QueueActionResponse, status_code=202)
async def check_all(background_tasks: BackgroundTasks, kind: Optional[SubjectKind] = None):
    """Queue a check for every active subject.

    Domain checks are paced, so dispatch continues in the background.
    """
    background_tasks.add_task(scheduler_service.trigger_bulk_check_now, kind)
    target = f"{kind.value}s" if kind else "subjects"
    return QueueActionResponse(success=True, message=f"Bulk check started for all active {target}")


@router.get("/{kind}/{key}", response_model=SubjectQueueResponse)
async def get_subject_queue(kind: SubjectKind, key: str):
    ref = _ref(kind, key)
    queue = scheduler_service.get_subject_queue(ref)
    stats = await queue.counts()

    return SubjectQueueResponse(
        kind=ref.kind.value,
        key=ref.key,
        name=stats.name,
        waiting=stats.waiting,
        delayed=stats.delayed,
        active=stats.active,
        completed=stats.completed,
        failed=stats.failed,
        paused=stats.paused,
        repeating=[
            RepeatingJobInfo(
                key=registration.key,
                kind=registration.kind.value,
                schedule=registration.schedule.describe(),
                next_run_time=registration.next_run_time,
            )
            for registration in await queue.list_repeating()
        ],
        active_jobs=[_pending(job) for job in await queue.list_active()],
        delayed_jobs=[_pending(job) for job in await queue.list_delayed()],
        recent_failures=[
            FailedJobInfo(
                id=job.id,
                kind=job.kind.value,
                attempts_made=job.attempts_made,
                error=job.error,
                finished_at=job.finished_at,
            )
            for job in await queue.list_failed()
        ],
    )


@router.post("/{kind}/{key}/pause", response_model=QueueActionResponse)
async def pause_subject(kind: SubjectKind, key: str):
    ref = _ref(kind, key)
    await scheduler_service.pause_subject(ref)
    return QueueActionResponse(success=True, message=f"Queue {ref} paused")


@router.post("/{kind}/{key}/resume", response_model=QueueActionResponse)
async def resume_subject(kind: SubjectKind, key: str):
    ref = _ref(kind, key)
    await scheduler_service.resume_subject(ref)
    return QueueActionResponse(success=True, message=f"Queue {ref} resumed")


@router.post("/{kind}/{key}/clear", response_model=QueueActionResponse)
async def clear_subject_queue(kind: SubjectKind, key: str):
    """Drop pending jobs; the repeating schedule stays."""
    ref = _ref(kind, key)
    removed = await scheduler_service.clear_subject_queue(ref)
    return QueueActionResponse(success=True, message=f"Removed {removed} pending job(s) from {ref}", count=removed)


@router.post("/{kind}/{key}/check", response_model=QueueActionResponse, status_code=202)
async def check_subject_now(kind: SubjectKind, key: str):
    ref = _ref(kind, key)
    job = await scheduler_service.check_subject_now(ref)
    return QueueActionResponse(success=True, message=f"Check queued for {ref}", job_id=job.id)
