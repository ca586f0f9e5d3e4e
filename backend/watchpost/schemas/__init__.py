"""Pydantic schemas for API request/response models."""
from .monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorResponse,
    CheckLogEntry,
    ResultsPage,
)
from .domain import (
    DomainCreate,
    DomainUpdate,
    DomainResponse,
)
from .queue import (
    AggregateStatsResponse,
    SubjectQueueResponse,
    ScheduledSubject,
    QueueActionResponse,
)

__all__ = [
    "MonitorCreate",
    "MonitorUpdate",
    "MonitorResponse",
    "CheckLogEntry",
    "ResultsPage",
    "DomainCreate",
    "DomainUpdate",
    "DomainResponse",
    "AggregateStatsResponse",
    "SubjectQueueResponse",
    "ScheduledSubject",
    "QueueActionResponse",
]
