"""Services for queueing, scheduling, checking and alerting."""
from .alerter import AlerterService
from .checker import CheckerService
from .job_queue import JobQueue
from .queue_registry import QueueRegistry
from .scheduler import SchedulerService

__all__ = ["AlerterService", "CheckerService", "JobQueue", "QueueRegistry", "SchedulerService"]
