"""Monitor model - HTTP/HTTPS/TCP/ping endpoints checked for uptime."""
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from ..database import Base


class Monitor(Base):
    """A monitored endpoint."""

    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String, nullable=False, default="https")  # http, https, tcp, ping
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    target = Column(String, nullable=False)  # URL, host:port or hostname
    check_interval = Column(Integer, default=60)  # seconds
    timeout_ms = Column(Integer, default=30000)
    max_retries = Column(Integer, default=3)
    is_active = Column(Boolean, default=True)
    enable_alerts = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Last result summary, written by the result sink
    status = Column(String, default="pending")  # pending, up, down, paused
    last_checked_at = Column(DateTime, nullable=True)
    last_response_time_ms = Column(Integer, nullable=True)
    last_status_code = Column(Integer, nullable=True)
    last_error = Column(String, nullable=True)

    total_checks = Column(Integer, default=0)
    successful_checks = Column(Integer, default=0)
    failed_checks = Column(Integer, default=0)
    uptime_percentage = Column(Float, default=0)
