"""Queue administration schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class AggregateStatsResponse(BaseModel):
    """Job counts summed over every subject queue."""
    waiting: int
    delayed: int
    active: int
    completed: int
    failed: int
    repeating: int
    paused_queues: int
    queue_count: int


class RepeatingJobInfo(BaseModel):
    key: str
    kind: str
    schedule: str
    next_run_time: Optional[datetime] = None


class PendingJobInfo(BaseModel):
    """A job that is scheduled for later or currently running."""
    id: str
    kind: str
    state: str
    attempts_made: int
    run_at: Optional[datetime] = None
    started_at: Optional[datetime] = None


class FailedJobInfo(BaseModel):
    id: str
    kind: str
    attempts_made: int
    error: Optional[str] = None
    finished_at: Optional[datetime] = None


class SubjectQueueResponse(BaseModel):
    """State of one subject's queue."""
    kind: str
    key: str
    name: str
    waiting: int
    delayed: int
    active: int
    completed: int
    failed: int
    paused: bool
    repeating: List[RepeatingJobInfo] = []
    active_jobs: List[PendingJobInfo] = []
    delayed_jobs: List[PendingJobInfo] = []
    recent_failures: List[FailedJobInfo] = []


class ScheduledSubject(BaseModel):
    kind: str
    key: str
    job_key: str


class QueueActionResponse(BaseModel):
    success: bool
    message: str
    count: Optional[int] = None
    job_id: Optional[str] = None
