"""Exception hierarchy for probes, queues and scheduling."""
from typing import Optional


class WatchpostError(Exception):
    """Base class for all application errors."""


class ProbeError(WatchpostError):
    """A single check failed (connection refused, DNS failure, bad status, unparsable WHOIS)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProbeTimeoutError(ProbeError):
    """The check did not finish within the subject's timeout."""


class QueueBackendError(WatchpostError):
    """The queue backend refused or lost an operation."""


class QueueClosedError(QueueBackendError):
    """Operation attempted on a queue that has been closed."""


class SubjectNotScheduledError(WatchpostError):
    """No queue is registered for the requested subject."""

    def __init__(self, subject_key: str):
        super().__init__(f"No queue registered for subject: {subject_key}")
        self.subject_key = subject_key


class UnsupportedScheduleError(WatchpostError, ValueError):
    """A schedule could not be turned into a trigger."""
