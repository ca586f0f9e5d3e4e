"""API routers."""
from .monitors import router as monitors_router
from .domains import router as domains_router
from .queues import router as queues_router

__all__ = ["monitors_router", "domains_router", "queues_router"]
