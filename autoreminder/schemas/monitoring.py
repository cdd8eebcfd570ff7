"""Poll cycle and monitoring status schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class CycleReport(BaseModel):
    """Summary of one poll cycle.

    ``deferred`` counts cards not started before the cycle deadline or
    after an abort; they are picked up again by the next cycle.
    """

    correlation_id: str
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    cards_seen: int = 0
    processed: int = 0
    sent: int = 0
    resolved: int = 0
    failed: int = 0
    deferred: int = 0
    conflicts: int = 0
    archived: int = 0
    new_cycles: int = 0
    aborted: bool = False
    abort_reason: str | None = None

    @property
    def clean(self) -> bool:
        return not self.aborted


class MonitoringStatusResponse(BaseModel):
    """Scheduler state plus the most recent cycle."""

    scheduler_running: bool
    monitoring_enabled: bool
    monitoring_paused: bool
    poll_interval_minutes: int
    next_run_at: datetime | None = None
    active_cards: int = 0
    cards_needing_attention: int = 0
    last_cycle: CycleReport | None = None


class PauseResponse(BaseModel):
    monitoring_paused: bool
    message: str = Field(default="")
