"""Result sink - persists check results and updates subject status."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete

from ..database import async_session
from ..models import CheckLog, Domain, Monitor
from ..utils.db_utils import retry_on_lock
from .alerter import AlerterService
from .checker import CheckResult
from .subjects import Subject, SubjectKind

logger = logging.getLogger(__name__)


def domain_status(domain: Domain) -> str:
    """Coarse status of a domain row, used to detect threshold crossings."""
    if domain.last_checked_at is None:
        return "pending"
    if domain.is_expired:
        return "expired"
    if domain.is_expiring_soon:
        return "expiring"
    return "ok"


class SqlResultSink:
    """Writes results to the check log and the subject row, then notifies."""

    def __init__(self, alerter: Optional[AlerterService] = None, session_factory=async_session):
        self.alerter = alerter
        self._session_factory = session_factory

    async def record_result(self, subject: Subject, result: CheckResult) -> None:
        previous_status: Optional[str] = None

        async with self._session_factory() as session:
            if subject.kind == SubjectKind.MONITOR:
                row = await session.get(Monitor, subject.record_id)
            else:
                row = await session.get(Domain, subject.record_id)

            if row is None:
                logger.warning(f"Subject {subject.ref} was deleted before its result could be recorded")
                return

            session.add(CheckLog(
                subject_kind=subject.kind.value,
                subject_id=subject.record_id,
                checked_at=result.checked_at,
                outcome=result.outcome.value,
                response_time_ms=result.response_time_ms,
                status_code=result.status_code,
                error=result.error,
                days_until_expiry=result.days_until_expiry,
            ))

            if subject.kind == SubjectKind.MONITOR:
                previous_status = row.status
                self._apply_monitor(row, result)
            else:
                previous_status = domain_status(row)
                self._apply_domain(row, result)

            async def do_commit():
                await session.commit()

            await retry_on_lock(do_commit)

        if self.alerter:
            await self.alerter.notify_if_threshold_crossed(subject, result, previous_status)

    def _count(self, row, result: CheckResult):
        row.total_checks = (row.total_checks or 0) + 1
        if result.ok:
            row.successful_checks = (row.successful_checks or 0) + 1
        else:
            row.failed_checks = (row.failed_checks or 0) + 1

    def _apply_monitor(self, monitor: Monitor, result: CheckResult):
        self._count(monitor, result)
        monitor.uptime_percentage = round(monitor.successful_checks / monitor.total_checks * 100, 2)
        monitor.status = "up" if result.ok else "down"
        monitor.last_checked_at = result.checked_at
        monitor.last_response_time_ms = result.response_time_ms
        monitor.last_status_code = result.status_code
        monitor.last_error = None if result.ok else result.error

    def _apply_domain(self, domain: Domain, result: CheckResult):
        self._count(domain, result)
        domain.last_checked_at = result.checked_at
        if not result.ok:
            # Keep the last known expiry estimate, surface the error
            domain.last_error = result.error
            return

        domain.last_error = None
        domain.last_expiry_date = result.expiry_date
        domain.last_days_until_expiry = result.days_until_expiry
        domain.is_expired = result.is_expired
        domain.is_expiring_soon = result.is_expiring_soon

    async def cleanup_old_records(self, retention_days: int) -> None:
        """Delete check log rows older than the retention window."""
        cutoff = datetime.utcnow() - timedelta(days=retention_days)

        async with self._session_factory() as session:
            await session.execute(delete(CheckLog).where(CheckLog.checked_at < cutoff))
            await retry_on_lock(session.commit)
        logger.info(f"Cleaned up check log records older than {retention_days} days")

