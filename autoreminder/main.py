"""AutoReminder FastAPI Application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from autoreminder import __version__
from autoreminder.config import settings, validate_settings
from autoreminder.database import close_database
from autoreminder.logging_config import get_logger, setup_logging
from autoreminder.middleware import CorrelationIdMiddleware
from autoreminder.routers import cards, health, monitoring
from autoreminder.services.monitoring import close_monitoring_service
from autoreminder.services.scheduler import start_scheduler, stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Tables are created by the deployment; nothing to migrate here
    validate_settings()
    logger.info("AutoReminder API started")

    start_scheduler()

    yield

    logger.info("Shutting down AutoReminder API...")
    stop_scheduler()
    await close_monitoring_service()
    await close_database()
    logger.info("AutoReminder API shutdown complete")


app = FastAPI(
    title="AutoReminder API",
    description="Escalating reminders for stalled board cards",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(monitoring.router)
app.include_router(cards.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "AutoReminder API",
        "version": __version__,
        "docs": "/docs",
    }
