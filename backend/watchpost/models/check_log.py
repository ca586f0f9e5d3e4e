"""CheckLog model - append-only log of probe results."""
from datetime import datetime
from sqlalchemy import Column, DateTime, Index, Integer, String

from ..database import Base


class CheckLog(Base):
    """One probe result for a monitor or a domain."""

    __tablename__ = "check_logs"
    __table_args__ = (
        Index("ix_check_logs_subject", "subject_kind", "subject_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_kind = Column(String, nullable=False)  # monitor, domain
    subject_id = Column(Integer, nullable=False)
    checked_at = Column(DateTime, default=datetime.utcnow)
    outcome = Column(String, nullable=False)  # success, failure, timeout
    response_time_ms = Column(Integer, nullable=True)
    status_code = Column(Integer, nullable=True)
    error = Column(String, nullable=True)
    days_until_expiry = Column(Integer, nullable=True)
