from __future__ import annotations

from datetime import timedelta

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from watchpost.exceptions import UnsupportedScheduleError
from watchpost.services.schedule import Schedule


def test_every_builds_interval_trigger() -> None:
    trigger = Schedule.every(90).to_trigger()
    assert isinstance(trigger, IntervalTrigger)
    assert trigger.interval == timedelta(seconds=90)


def test_cron_builds_cron_trigger() -> None:
    schedule = Schedule.from_cron("*/5 * * * *")
    assert isinstance(schedule.to_trigger(), CronTrigger)
    assert schedule.describe() == "cron '*/5 * * * *'"


def test_malformed_cron_is_rejected_at_construction() -> None:
    with pytest.raises(UnsupportedScheduleError):
        Schedule.from_cron("* * *")


def test_schedule_errors_are_value_errors() -> None:
    with pytest.raises(ValueError):
        Schedule.every(0)


@pytest.mark.parametrize("kwargs", [{}, {"every_seconds": 60, "cron": "* * * * *"}])
def test_schedule_needs_exactly_one_form(kwargs) -> None:
    with pytest.raises(UnsupportedScheduleError):
        Schedule(**kwargs)


def test_schedules_compare_by_value() -> None:
    assert Schedule.every(60) == Schedule.every(60)
    assert Schedule.every(60) != Schedule.every(120)
    assert Schedule.every(60).describe() == "every 60s"
