"""Escalation policy.

Pure decision logic for card reminders. Given a card snapshot, the current
instant and the configuration snapshot, ``decide`` returns one of:

1. No-op (responded, closed cycle, paused, weekend, no assignees,
   already contacted today)
2. Reminder at a level, with the channels for that level
3. Final escalation to the supervisor list

Channel ladder: level 0 board comment, level 1 email, level 2 and above
SMS, chat and a repeated email.
"""

from autoreminder.core.escalation.enums import (
    ActionKind,
    Channel,
    CycleStatus,
    SkipReason,
)
from autoreminder.core.escalation.models import (
    EPOCH,
    Action,
    CardSnapshot,
    ConfigSnapshot,
    EscalationState,
    Recipient,
)
from autoreminder.core.escalation.policy import (
    calendar_days_between,
    channels_for_level,
    decide,
    initial_state,
    is_urgent,
    state_after_claim,
    state_after_response,
    state_for_new_cycle,
    weekday_number,
)

__all__ = [
    "EPOCH",
    "Action",
    "ActionKind",
    "CardSnapshot",
    "Channel",
    "ConfigSnapshot",
    "CycleStatus",
    "EscalationState",
    "Recipient",
    "SkipReason",
    "calendar_days_between",
    "channels_for_level",
    "decide",
    "initial_state",
    "is_urgent",
    "state_after_claim",
    "state_after_response",
    "state_for_new_cycle",
    "weekday_number",
]
