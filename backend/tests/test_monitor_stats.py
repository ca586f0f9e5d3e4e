from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from watchpost.database import async_session
from watchpost.models import CheckLog, Monitor
from watchpost.routers.monitors import average_response_time, get_monitor_stats, uptime_percent


def _log(outcome: str, response_time_ms=None, hours_ago: float = 0) -> CheckLog:
    return CheckLog(
        subject_kind="monitor",
        outcome=outcome,
        response_time_ms=response_time_ms,
        checked_at=datetime.utcnow() - timedelta(hours=hours_ago),
    )


def test_empty_window_reports_zero() -> None:
    assert average_response_time([]) == 0
    assert uptime_percent([]) == 0


def test_missing_response_times_count_as_zero() -> None:
    logs = [_log("success", 100), _log("success", 51), _log("timeout")]

    assert average_response_time(logs) == 50
    assert uptime_percent(logs) == 67


@pytest.mark.asyncio
async def test_stats_cover_last_day_only(db) -> None:
    async with async_session() as session:
        monitor = Monitor(
            type="https", name="site", target="https://example.com",
            total_checks=10, successful_checks=9, failed_checks=1, uptime_percentage=90.0,
        )
        session.add(monitor)
        await session.commit()

        for index, outcome in enumerate(["success", "success", "failure", "success"]):
            row = _log(outcome, 40, hours_ago=index)
            row.subject_id = monitor.id
            session.add(row)
        old = _log("failure", 4000, hours_ago=48)
        old.subject_id = monitor.id
        session.add(old)
        # Another subject's results never leak in
        other = _log("failure", 9000)
        other.subject_id = monitor.id + 1
        session.add(other)
        await session.commit()

        stats = await get_monitor_stats(monitor.id, db=session)

    assert (stats.total_checks, stats.successful_checks, stats.failed_checks) == (10, 9, 1)
    assert stats.uptime_percentage == 90.0
    assert stats.average_response_time_ms == 40
    assert stats.last_24h_uptime == 75
    assert len(stats.recent_logs) == 5
    assert stats.recent_logs[0].checked_at > stats.recent_logs[-1].checked_at


@pytest.mark.asyncio
async def test_recent_logs_are_capped(db) -> None:
    async with async_session() as session:
        monitor = Monitor(type="tcp", name="db", target="db.internal:5432")
        session.add(monitor)
        await session.commit()

        for minutes in range(30):
            row = _log("success", 5, hours_ago=minutes / 60)
            row.subject_id = monitor.id
            session.add(row)
        await session.commit()

        stats = await get_monitor_stats(monitor.id, db=session)

    assert len(stats.recent_logs) == 20
    assert stats.last_24h_uptime == 100
