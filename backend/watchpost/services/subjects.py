"""Subjects - the monitors and domains the scheduler keeps checking.

The scheduler works on immutable Subject snapshots rather than ORM rows, so
queue workers never share a session with the API layer.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Protocol

from sqlalchemy import select

from ..database import async_session
from ..models import Domain, Monitor

logger = logging.getLogger(__name__)


class SubjectKind(str, Enum):
    MONITOR = "monitor"
    DOMAIN = "domain"


@dataclass(frozen=True, order=True)
class SubjectRef:
    """Identity of a subject: monitor id or domain name."""
    kind: SubjectKind
    key: str

    @classmethod
    def monitor(cls, monitor_id) -> "SubjectRef":
        return cls(SubjectKind.MONITOR, str(monitor_id))

    @classmethod
    def domain(cls, name: str) -> "SubjectRef":
        return cls(SubjectKind.DOMAIN, name.strip().lower())

    @property
    def job_key(self) -> str:
        """Deterministic key of the subject's repeating registration."""
        if self.kind == SubjectKind.MONITOR:
            return f"monitor-{self.key}"
        return f"domain-expiry-{self.key}"

    @property
    def queue_name(self) -> str:
        return f"{self.kind.value}:{self.key}"

    def __str__(self) -> str:
        return self.queue_name


@dataclass(frozen=True)
class Subject:
    """Read-only snapshot of a monitor or domain."""
    ref: SubjectRef
    record_id: int
    probe_type: str  # http, https, tcp, ping, whois
    target: str
    check_interval: int  # seconds
    is_active: bool = True
    timeout_ms: int = 30000
    created_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    status: Optional[str] = None
    last_days_until_expiry: Optional[int] = None
    is_expiring_soon: bool = False
    alert_days_before: int = 30
    alerts_enabled: bool = True
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0

    @property
    def kind(self) -> SubjectKind:
        return self.ref.kind

    @classmethod
    def from_monitor(cls, monitor: Monitor) -> "Subject":
        return cls(
            ref=SubjectRef.monitor(monitor.id),
            record_id=monitor.id,
            probe_type=monitor.type,
            target=monitor.target,
            check_interval=monitor.check_interval or 60,
            is_active=bool(monitor.is_active),
            timeout_ms=monitor.timeout_ms or 30000,
            created_at=monitor.created_at,
            last_checked_at=monitor.last_checked_at,
            status=monitor.status,
            alerts_enabled=bool(monitor.enable_alerts),
            total_checks=monitor.total_checks or 0,
            successful_checks=monitor.successful_checks or 0,
            failed_checks=monitor.failed_checks or 0,
        )

    @classmethod
    def from_domain(cls, domain: Domain) -> "Subject":
        return cls(
            ref=SubjectRef.domain(domain.name),
            record_id=domain.id,
            probe_type="whois",
            target=domain.name,
            check_interval=domain.check_interval or 3600,
            is_active=bool(domain.is_active),
            created_at=domain.created_at,
            last_checked_at=domain.last_checked_at,
            last_days_until_expiry=domain.last_days_until_expiry,
            is_expiring_soon=bool(domain.is_expiring_soon),
            alert_days_before=domain.alert_days_before or 30,
            alerts_enabled=bool(domain.enable_expiry_alerts),
            total_checks=domain.total_checks or 0,
            successful_checks=domain.successful_checks or 0,
            failed_checks=domain.failed_checks or 0,
        )

    def job_payload(self) -> dict:
        return {
            "subject_kind": self.ref.kind.value,
            "subject_key": self.ref.key,
            "record_id": self.record_id,
        }

    def is_due(self, now: datetime, expiry_threshold_days: int) -> bool:
        """Whether the subject should be checked now, judged from persisted state only."""
        if self.last_checked_at is None:
            return True
        if self.last_checked_at + timedelta(seconds=self.check_interval) < now:
            return True
        if self.kind == SubjectKind.DOMAIN:
            if self.is_expiring_soon:
                return True
            days = self.last_days_until_expiry
            if days is not None and 0 <= days <= expiry_threshold_days:
                return True
        return False


def creation_order(subject: Subject):
    """Stable ordering key: oldest subject first, ties broken by identity."""
    return (subject.created_at or datetime.min, subject.ref)


def ref_from_payload(payload: dict) -> SubjectRef:
    return SubjectRef(SubjectKind(payload["subject_kind"]), str(payload["subject_key"]))


class SubjectStore(Protocol):
    """Read access to persisted subjects."""

    async def get(self, ref: SubjectRef) -> Optional[Subject]:
        ...

    async def list_active(self, kind: Optional[SubjectKind] = None) -> List[Subject]:
        ...


class SqlSubjectStore:
    """SubjectStore over the application database."""

    def __init__(self, session_factory=async_session):
        self._session_factory = session_factory

    async def get(self, ref: SubjectRef) -> Optional[Subject]:
        async with self._session_factory() as session:
            if ref.kind == SubjectKind.MONITOR:
                try:
                    monitor_id = int(ref.key)
                except ValueError:
                    return None
                result = await session.execute(select(Monitor).where(Monitor.id == monitor_id))
                monitor = result.scalar_one_or_none()
                return Subject.from_monitor(monitor) if monitor else None

            result = await session.execute(select(Domain).where(Domain.name == ref.key))
            domain = result.scalar_one_or_none()
            return Subject.from_domain(domain) if domain else None

    async def list_active(self, kind: Optional[SubjectKind] = None) -> List[Subject]:
        subjects: List[Subject] = []
        async with self._session_factory() as session:
            if kind in (None, SubjectKind.MONITOR):
                result = await session.execute(
                    select(Monitor).where(Monitor.is_active.is_(True)).order_by(Monitor.created_at, Monitor.id)
                )
                subjects.extend(Subject.from_monitor(m) for m in result.scalars().all())
            if kind in (None, SubjectKind.DOMAIN):
                result = await session.execute(
                    select(Domain).where(Domain.is_active.is_(True)).order_by(Domain.created_at, Domain.id)
                )
                subjects.extend(Subject.from_domain(d) for d in result.scalars().all())
        return sorted(subjects, key=creation_order)
