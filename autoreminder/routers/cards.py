"""Cards router.

Per-card escalation history and per-card pause.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import AwareDatetime, BaseModel

from autoreminder.schemas.escalation_event import EscalationTimelineResponse
from autoreminder.services.monitoring import MonitoringService, get_monitoring_service

router = APIRouter(prefix="/api/cards", tags=["cards"])


class CardPauseRequest(BaseModel):
    """Pause reminders for a card until ``until``; null lifts the pause."""

    until: AwareDatetime | None = None


class CardPauseResponse(BaseModel):
    card_id: str
    paused_until: AwareDatetime | None


@router.get("/{card_id}/escalations", response_model=EscalationTimelineResponse)
async def get_card_escalations(
    card_id: str,
    service: MonitoringService = Depends(get_monitoring_service),
) -> EscalationTimelineResponse:
    """Escalation events for a card, oldest cycle and level first."""
    card = await service.card_store.get(card_id)
    if card is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card not found",
        )

    events = await service.card_store.list_events(card_id)
    return EscalationTimelineResponse(card_id=card_id, events=events, count=len(events))


@router.post("/{card_id}/pause", response_model=CardPauseResponse)
async def pause_card(
    card_id: str,
    request: CardPauseRequest,
    service: MonitoringService = Depends(get_monitoring_service),
) -> CardPauseResponse:
    card = await service.card_store.set_paused_until(card_id, request.until)
    if card is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card not found",
        )
    return CardPauseResponse(card_id=card.card_id, paused_until=card.paused_until)
