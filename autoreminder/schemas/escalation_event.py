"""Escalation event schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DeliveryRecord(BaseModel):
    """Outcome of one channel x recipient send."""

    channel: str
    recipient: str
    success: bool
    provider_message_id: str | None = None
    error_class: str | None = None
    error: str | None = None
    transient: bool = False
    attempt: int = 1


class EscalationEventResponse(BaseModel):
    """Single escalation event response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    card_id: str
    cycle: int
    level: int
    kind: str
    channels: list[str]
    recipients: list[str]
    reason: str
    triggered_at: datetime
    notification_status: str
    deliveries: list[DeliveryRecord]
    needs_attention: bool
    attempts: int = 1
    released: bool = False
    created_at: datetime


class EscalationTimelineResponse(BaseModel):
    """Escalation history for a card."""

    card_id: str
    events: list[EscalationEventResponse]
    count: int
