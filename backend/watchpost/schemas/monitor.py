"""Monitor schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ..config import settings


class MonitorCreate(BaseModel):
    """Schema for creating a new monitor."""
    type: str = Field(..., pattern="^(ping|http|https|tcp)$")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    target: str = Field(..., min_length=1)
    check_interval: int = Field(default=settings.default_monitor_interval_seconds, ge=10, le=86400)
    timeout_ms: int = Field(default=30000, ge=100, le=120000)
    max_retries: int = Field(default=3, ge=0, le=10)
    is_active: bool = True
    enable_alerts: bool = True


class MonitorUpdate(BaseModel):
    """Schema for updating a monitor."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    target: Optional[str] = Field(None, min_length=1)
    check_interval: Optional[int] = Field(None, ge=10, le=86400)
    timeout_ms: Optional[int] = Field(None, ge=100, le=120000)
    max_retries: Optional[int] = Field(None, ge=0, le=10)
    is_active: Optional[bool] = None
    enable_alerts: Optional[bool] = None


class MonitorResponse(BaseModel):
    """Schema for monitor in API responses."""
    id: int
    type: str
    name: str
    description: Optional[str] = None
    target: str
    check_interval: int
    timeout_ms: int
    max_retries: int = 3
    is_active: bool
    enable_alerts: bool
    created_at: datetime
    status: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    last_response_time_ms: Optional[int] = None
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    uptime_percentage: float = 0

    class Config:
        from_attributes = True


class CheckLogEntry(BaseModel):
    """A single persisted check result."""
    id: int
    checked_at: datetime
    outcome: str
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    days_until_expiry: Optional[int] = None

    class Config:
        from_attributes = True


class ResultsPage(BaseModel):
    """Paginated check results."""
    items: List[CheckLogEntry]
    total: int
    page: int
    per_page: int
    total_pages: int


class MonitorStats(BaseModel):
    """Lifetime counters plus figures over the last 24 hours of checks."""
    monitor_id: int
    total_checks: int
    successful_checks: int
    failed_checks: int
    uptime_percentage: float
    average_response_time_ms: int
    last_24h_uptime: int
    recent_logs: List[CheckLogEntry]
