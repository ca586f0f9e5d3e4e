"""Monitor CRUD API endpoints."""
from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import CheckLog, Monitor
from ..schemas.monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorResponse,
    CheckLogEntry,
    MonitorStats,
    ResultsPage,
)
from ..services.checker import CheckOutcome
from ..services.scheduler import scheduler_service
from ..services.subjects import Subject, SubjectKind, SubjectRef
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/monitors", tags=["monitors"])

NULLABLE_FIELDS = {"description"}

# Stats look at no more than the latest STATS_WINDOW results
STATS_WINDOW = 100
RECENT_LOGS = 20


def average_response_time(logs: List[CheckLog]) -> int:
    """Mean response time in whole ms; results without a time count as 0."""
    if not logs:
        return 0
    return round(sum(log.response_time_ms or 0 for log in logs) / len(logs))


def uptime_percent(logs: List[CheckLog]) -> int:
    if not logs:
        return 0
    successes = sum(1 for log in logs if log.outcome == CheckOutcome.SUCCESS.value)
    return round(successes / len(logs) * 100)


async def _get_monitor_or_404(db: AsyncSession, monitor_id: int) -> Monitor:
    result = await db.execute(select(Monitor).where(Monitor.id == monitor_id))
    monitor = result.scalar_one_or_none()

    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return monitor


@router.get("", response_model=List[MonitorResponse])
async def list_monitors(db: AsyncSession = Depends(get_db)):
    """List all monitors with their last result summary."""
    result = await db.execute(select(Monitor).order_by(Monitor.name))
    return result.scalars().all()


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(monitor: MonitorCreate, db: AsyncSession = Depends(get_db)):
    """Create a new monitor and schedule its checks."""
    db_monitor = Monitor(**monitor.model_dump())
    db.add(db_monitor)

    # Use retry logic for commit to handle database lock contention
    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await db.refresh(db_monitor)

    await scheduler_service.on_subject_created(Subject.from_monitor(db_monitor))
    return db_monitor


@router.get("/{monitor_id}", response_model=MonitorResponse)
async def get_monitor(monitor_id: int, db: AsyncSession = Depends(get_db)):
    """Get a specific monitor by ID."""
    return await _get_monitor_or_404(db, monitor_id)


@router.put("/{monitor_id}", response_model=MonitorResponse)
async def update_monitor(
    monitor_id: int,
    update: MonitorUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update a monitor; interval and activation changes reschedule it."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    changed = set()
    for field_name, value in update.model_dump(exclude_unset=True).items():
        # Only the description may be cleared with an explicit null
        if value is None and field_name not in NULLABLE_FIELDS:
            continue
        if getattr(monitor, field_name) != value:
            setattr(monitor, field_name, value)
            changed.add(field_name)

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await db.refresh(monitor)

    if changed:
        await scheduler_service.on_subject_updated(Subject.from_monitor(monitor), changed)
    return monitor


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(monitor_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a monitor and cancel all of its jobs."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    await db.delete(monitor)

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await scheduler_service.on_subject_deleted(SubjectRef.monitor(monitor_id))


@router.get("/{monitor_id}/results", response_model=ResultsPage)
async def get_monitor_results(
    monitor_id: int,
    hours: int = Query(default=24, ge=1, le=8760),  # Max 1 year
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Get paginated individual check results for a monitor."""
    await _get_monitor_or_404(db, monitor_id)

    cutoff = datetime.utcnow() - timedelta(hours=hours)
    conditions = (
        CheckLog.subject_kind == SubjectKind.MONITOR.value,
        CheckLog.subject_id == monitor_id,
        CheckLog.checked_at >= cutoff,
    )

    count_result = await db.execute(select(func.count(CheckLog.id)).where(*conditions))
    total = count_result.scalar() or 0

    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    offset = (page - 1) * per_page

    log_result = await db.execute(
        select(CheckLog)
        .where(*conditions)
        .order_by(CheckLog.checked_at.desc())
        .offset(offset)
        .limit(per_page)
    )

    return ResultsPage(
        items=[CheckLogEntry.model_validate(row) for row in log_result.scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )


@router.get("/{monitor_id}/stats", response_model=MonitorStats)
async def get_monitor_stats(monitor_id: int, db: AsyncSession = Depends(get_db)):
    """Lifetime counters with average response time and uptime over the last 24 hours."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    log_result = await db.execute(
        select(CheckLog)
        .where(
            CheckLog.subject_kind == SubjectKind.MONITOR.value,
            CheckLog.subject_id == monitor_id,
        )
        .order_by(CheckLog.checked_at.desc())
        .limit(STATS_WINDOW)
    )
    logs = log_result.scalars().all()

    cutoff = datetime.utcnow() - timedelta(hours=24)
    last_day = [log for log in logs if log.checked_at >= cutoff]

    return MonitorStats(
        monitor_id=monitor.id,
        total_checks=monitor.total_checks or 0,
        successful_checks=monitor.successful_checks or 0,
        failed_checks=monitor.failed_checks or 0,
        uptime_percentage=monitor.uptime_percentage or 0,
        average_response_time_ms=average_response_time(last_day),
        last_24h_uptime=uptime_percent(last_day),
        recent_logs=[CheckLogEntry.model_validate(log) for log in logs[:RECENT_LOGS]],
    )
