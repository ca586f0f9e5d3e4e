"""Domain schemas for API."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from ..config import settings


class DomainCreate(BaseModel):
    """Schema for adding a domain to watch."""
    name: str = Field(..., min_length=3, max_length=253, pattern=r"^[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
    description: Optional[str] = Field(None, max_length=500)
    check_interval: int = Field(default=settings.default_domain_interval_seconds, ge=300, le=604800)
    alert_days_before: int = Field(default=30, ge=1, le=365)
    enable_expiry_alerts: bool = True
    is_active: bool = True


class DomainUpdate(BaseModel):
    """Schema for updating a domain. The name is its identity and cannot change."""
    description: Optional[str] = Field(None, max_length=500)
    check_interval: Optional[int] = Field(None, ge=300, le=604800)
    alert_days_before: Optional[int] = Field(None, ge=1, le=365)
    enable_expiry_alerts: Optional[bool] = None
    is_active: Optional[bool] = None


class DomainResponse(BaseModel):
    """Schema for domain in API responses."""
    id: int
    name: str
    description: Optional[str] = None
    check_interval: int
    alert_days_before: int
    enable_expiry_alerts: bool
    is_active: bool
    created_at: datetime
    last_checked_at: Optional[datetime] = None
    last_expiry_date: Optional[datetime] = None
    last_days_until_expiry: Optional[int] = None
    last_error: Optional[str] = None
    is_expired: bool = False
    is_expiring_soon: bool = False
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0

    class Config:
        from_attributes = True
