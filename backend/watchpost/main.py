"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db, close_db
from .exceptions import QueueBackendError, SubjectNotScheduledError
from .routers import monitors_router, domains_router, queues_router
from .services.scheduler import scheduler_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting Watchpost")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Refuses to serve when the queue backend is unusable
    await scheduler_service.start()

    yield

    # Shutdown
    await scheduler_service.stop()
    await close_db()
    logger.info("Shutdown complete")


async def queue_backend_error_handler(request: Request, exc: QueueBackendError):
    logger.error(f"Queue backend error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": f"Queue backend unavailable: {exc}"})


async def subject_not_scheduled_handler(request: Request, exc: SubjectNotScheduledError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Watchpost",
        description="Uptime and domain expiry monitoring with per-subject check queues",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(QueueBackendError, queue_backend_error_handler)
    app.add_exception_handler(SubjectNotScheduledError, subject_not_scheduled_handler)

    app.include_router(monitors_router)
    app.include_router(domains_router)
    app.include_router(queues_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        report = await scheduler_service.health_check()
        return {
            "status": "healthy" if scheduler_service.running and report.healthy else "degraded",
            "scheduler_running": scheduler_service.running,
            "queues": report.stats.queue_count,
            "repeating_jobs": report.stats.repeating,
            "failed_jobs": report.stats.failed,
            "warnings": report.warnings,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
