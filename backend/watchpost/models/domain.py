"""Domain model - domain names checked for registration expiry."""
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Integer, String

from ..database import Base


class Domain(Base):
    """A domain whose WHOIS expiry date is watched."""

    __tablename__ = "domains"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)  # lower-cased, e.g. example.com
    description = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    check_interval = Column(Integer, default=3600)  # seconds
    enable_expiry_alerts = Column(Boolean, default=True)
    alert_days_before = Column(Integer, default=30)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Last result summary, written by the result sink
    last_checked_at = Column(DateTime, nullable=True)
    last_expiry_date = Column(DateTime, nullable=True)
    last_days_until_expiry = Column(Integer, nullable=True)
    last_error = Column(String, nullable=True)
    is_expired = Column(Boolean, default=False)
    is_expiring_soon = Column(Boolean, default=False)

    total_checks = Column(Integer, default=0)
    successful_checks = Column(Integer, default=0)
    failed_checks = Column(Integer, default=0)
