# Database Models
from autoreminder.models.base import Base, TimestampMixin, UTCDateTime
from autoreminder.models.card import MonitoredCard
from autoreminder.models.escalation_event import EscalationEvent, NotificationStatus
from autoreminder.models.monitoring_config import MonitoringConfig

__all__ = [
    "Base",
    "EscalationEvent",
    "MonitoredCard",
    "MonitoringConfig",
    "NotificationStatus",
    "TimestampMixin",
    "UTCDateTime",
]
