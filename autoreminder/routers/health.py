"""Health check endpoints for container orchestration."""

from typing import Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse

from autoreminder.database import check_database_connection
from autoreminder.services.scheduler import get_scheduler

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=None)
async def health_check() -> Response:
    """
    Health check with database and scheduler status.

    Returns 200 with status "healthy" when the database answers, 503 with
    "degraded" otherwise. The scheduler state is informational only.
    """
    db_connected = await check_database_connection()
    content = {
        "status": "healthy" if db_connected else "degraded",
        "database": "connected" if db_connected else "disconnected",
        "scheduler": "running" if get_scheduler() is not None else "stopped",
    }
    return JSONResponse(
        status_code=(
            status.HTTP_200_OK if db_connected else status.HTTP_503_SERVICE_UNAVAILABLE
        ),
        content=content,
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """
    Liveness probe.

    Succeeds while the process is up; never checks external dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready", response_model=None)
async def readiness_probe() -> Response:
    """
    Readiness probe.

    Ready once the database is reachable, since every poll cycle and every
    API call needs it.
    """
    if await check_database_connection():
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": "connected"},
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "database": "disconnected"},
    )
