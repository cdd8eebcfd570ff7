"""Monitoring router.

Operational endpoints for the poll cycle: status, manual trigger,
pause/resume and the runtime configuration.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from autoreminder.config import settings
from autoreminder.schemas.monitoring import (
    CycleReport,
    MonitoringStatusResponse,
    PauseResponse,
)
from autoreminder.schemas.monitoring_config import (
    MonitoringConfigResponse,
    MonitoringConfigUpdate,
)
from autoreminder.services.monitoring import MonitoringService, get_monitoring_service
from autoreminder.services.scheduler import get_scheduler, next_run_time

router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


@router.get("/status", response_model=MonitoringStatusResponse)
async def get_monitoring_status(
    service: MonitoringService = Depends(get_monitoring_service),
) -> MonitoringStatusResponse:
    """Scheduler state, card counts and the last cycle report."""
    config = await service.config_store.get()
    return MonitoringStatusResponse(
        scheduler_running=get_scheduler() is not None,
        monitoring_enabled=settings.monitoring_enabled,
        monitoring_paused=config.monitoring_paused,
        poll_interval_minutes=settings.poll_interval_minutes,
        next_run_at=next_run_time(),
        active_cards=await service.card_store.count_active(),
        cards_needing_attention=await service.card_store.count_needing_attention(),
        last_cycle=service.last_report,
    )


@router.post("/trigger", response_model=CycleReport)
async def trigger_cycle(
    service: MonitoringService = Depends(get_monitoring_service),
) -> CycleReport:
    """Run a poll cycle now and return its report.

    Returns 409 if a cycle is already running.
    """
    if service.cycle_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A poll cycle is already running",
        )
    return await service.run_cycle()


@router.post("/pause", response_model=PauseResponse)
async def pause_monitoring(
    service: MonitoringService = Depends(get_monitoring_service),
) -> PauseResponse:
    """Stop sending reminders until resumed. Cycles still run and skip."""
    await service.set_paused(True)
    return PauseResponse(monitoring_paused=True, message="Monitoring paused")


@router.post("/resume", response_model=PauseResponse)
async def resume_monitoring(
    service: MonitoringService = Depends(get_monitoring_service),
) -> PauseResponse:
    await service.set_paused(False)
    return PauseResponse(monitoring_paused=False, message="Monitoring resumed")


@router.get("/config", response_model=MonitoringConfigResponse)
async def get_monitoring_config(
    service: MonitoringService = Depends(get_monitoring_service),
) -> MonitoringConfigResponse:
    return await service.config_store.get()


@router.patch("/config", response_model=MonitoringConfigResponse)
async def update_monitoring_config(
    updates: MonitoringConfigUpdate,
    service: MonitoringService = Depends(get_monitoring_service),
) -> MonitoringConfigResponse:
    """Update the runtime configuration.

    Only provided fields change. The next poll cycle picks up the new
    values; a cycle already running keeps its snapshot.
    """
    return await service.config_store.update(updates)
