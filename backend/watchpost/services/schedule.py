"""Schedule value used for repeating job registrations."""
from dataclasses import dataclass
from typing import Optional

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..exceptions import UnsupportedScheduleError


@dataclass(frozen=True)
class Schedule:
    """Either "every N seconds" or a five-field cron expression."""
    every_seconds: Optional[int] = None
    cron: Optional[str] = None

    def __post_init__(self):
        if (self.every_seconds is None) == (self.cron is None):
            raise UnsupportedScheduleError("Schedule needs exactly one of every_seconds or cron")
        if self.every_seconds is not None and self.every_seconds <= 0:
            raise UnsupportedScheduleError(f"Interval must be positive, got {self.every_seconds}")

    @classmethod
    def every(cls, seconds: int) -> "Schedule":
        return cls(every_seconds=int(seconds))

    @classmethod
    def from_cron(cls, expression: str) -> "Schedule":
        # Validate eagerly so bad expressions fail at registration time
        schedule = cls(cron=expression.strip())
        schedule.to_trigger()
        return schedule

    def to_trigger(self, timezone: str = "UTC"):
        """Build the APScheduler trigger for this schedule."""
        if self.every_seconds is not None:
            return IntervalTrigger(seconds=self.every_seconds, timezone=timezone)

        try:
            return CronTrigger.from_crontab(self.cron, timezone=timezone)
        except ValueError as e:
            raise UnsupportedScheduleError(f"Invalid cron expression '{self.cron}': {e}") from e

    def describe(self) -> str:
        if self.every_seconds is not None:
            return f"every {self.every_seconds}s"
        return f"cron '{self.cron}'"
