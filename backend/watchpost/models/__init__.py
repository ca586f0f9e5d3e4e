"""Database models."""
from .monitor import Monitor
from .domain import Domain
from .check_log import CheckLog
from .alert import Alert

__all__ = ["Monitor", "Domain", "CheckLog", "Alert"]
