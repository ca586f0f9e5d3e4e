"""Alert model - log of sent notifications."""
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Integer, String

from ..database import Base


class Alert(Base):
    """Record of a notification sent for a subject."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_kind = Column(String, nullable=False)  # monitor, domain
    subject_id = Column(Integer, nullable=False)
    alert_type = Column(String, nullable=False)  # down, up, expiring, expired
    channel = Column(String, default="webhook")  # webhook, telegram, email
    sent_at = Column(DateTime, default=datetime.utcnow)
    message = Column(String, nullable=True)
    success = Column(Boolean, nullable=True)
