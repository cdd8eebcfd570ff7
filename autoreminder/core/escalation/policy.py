"""Escalation policy.

Decides, for one card at one instant, whether a reminder is due and on which
channels. Pure functions only: the caller supplies "now" and the
configuration snapshot, and nothing here touches the board or the database.

Day arithmetic is always a calendar-day difference in the configured
timezone, so a card opened at 23:50 is one day old ten minutes later.
"""

from datetime import date, datetime, timedelta, tzinfo

from autoreminder.core.escalation.constants import CHANNEL_LADDER, FINAL_CHANNELS
from autoreminder.core.escalation.enums import (
    ActionKind,
    Channel,
    CycleStatus,
    SkipReason,
)
from autoreminder.core.escalation.models import (
    Action,
    CardSnapshot,
    ConfigSnapshot,
    EscalationState,
)


def _local_date(moment: datetime, tz: tzinfo) -> date:
    if moment.tzinfo is None:
        raise ValueError("Naive datetimes are not allowed")
    return moment.astimezone(tz).date()


def weekday_number(moment: datetime, tz: tzinfo) -> int:
    """Weekday of ``moment`` in ``tz``, numbered 0 = Sunday .. 6 = Saturday."""
    return _local_date(moment, tz).isoweekday() % 7


def calendar_days_between(start: datetime, end: datetime, tz: tzinfo) -> int:
    """Number of local midnights crossed going from ``start`` to ``end``."""
    return (_local_date(end, tz) - _local_date(start, tz)).days


def is_urgent(card: CardSnapshot, now: datetime, config: ConfigSnapshot) -> bool:
    """A card is urgent when it is due within the horizon or already overdue."""
    if card.due_at is None:
        return False
    return card.due_at <= now + timedelta(hours=config.urgency_horizon_hours)


def channels_for_level(level: int) -> tuple[Channel, ...]:
    if level < 0:
        raise ValueError(f"Reminder level must be non-negative, got {level}")
    return CHANNEL_LADDER[min(level, len(CHANNEL_LADDER) - 1)]


def decide(card: CardSnapshot, now: datetime, config: ConfigSnapshot) -> Action:
    """Return the action due for ``card`` at ``now``.

    Checks run in a fixed order and the first match wins: responded, closed
    cycle, per-card pause, weekend, missing recipients, already contacted
    today, final escalation, reminder.

    Args:
        card: Snapshot of the card and its escalation state.
        now: Current instant; must be timezone-aware.
        config: Configuration snapshot for this poll cycle.

    Returns:
        An Action. No-ops carry a ``skip_reason``.
    """
    if now.tzinfo is None:
        raise ValueError("decide() requires an aware datetime")

    tz = config.tz
    state = card.escalation_state

    if state.has_responded:
        return Action.noop(SkipReason.responded, "Recipient already responded")

    if not card.is_active:
        return Action.noop(SkipReason.inactive, "Card is archived")

    if state.is_terminal:
        return Action.noop(
            SkipReason.cycle_closed, f"Escalation cycle is {state.status}"
        )

    if card.paused_until is not None and now < card.paused_until:
        return Action.noop(
            SkipReason.paused,
            f"Reminders paused until {card.paused_until.isoformat()}",
        )

    if weekday_number(now, tz) in config.weekend_days:
        if not (config.allow_urgent_override and is_urgent(card, now, config)):
            return Action.noop(SkipReason.weekend, "Weekend, card not urgent")

    if not card.recipients:
        return Action.noop(SkipReason.no_recipients, "Card has no assignees")

    if (
        state.last_contact_at is not None
        and calendar_days_between(state.last_contact_at, now, tz) <= 0
    ):
        return Action.noop(SkipReason.contacted_today, "Already contacted today")

    elapsed = calendar_days_between(state.cycle_opened_at, now, tz)

    if elapsed >= config.max_reminder_days:
        return Action(
            kind=ActionKind.final,
            level=state.reminder_level,
            channels=FINAL_CHANNELS,
            reason=(
                f"Open for {elapsed} days, limit is {config.max_reminder_days}"
            ),
        )

    level = max(state.reminder_level, elapsed)
    return Action(
        kind=ActionKind.remind,
        level=level,
        channels=channels_for_level(level),
        reason=f"Day {elapsed} of the cycle, reminder level {level}",
    )


def state_after_claim(
    state: EscalationState, action: Action, now: datetime
) -> EscalationState:
    """State once ``action`` has been claimed for sending."""
    if not action.sends or action.level is None:
        raise ValueError("Only reminders and final escalations can be claimed")
    status = (
        CycleStatus.exhausted
        if action.kind == ActionKind.final
        else CycleStatus.awaiting_response
    )
    return state.model_copy(
        update={
            "reminder_level": max(state.reminder_level, action.level + 1),
            "last_contact_at": now,
            "status": status,
        }
    )


def state_after_response(
    state: EscalationState, responded_at: datetime
) -> EscalationState:
    """State once a human response has been detected."""
    return state.model_copy(
        update={
            "has_responded": True,
            "responded_at": responded_at,
            "status": CycleStatus.resolved,
        }
    )


def state_for_new_cycle(state: EscalationState, now: datetime) -> EscalationState:
    """Fresh cycle after a reopen or a reassignment."""
    return EscalationState(cycle=state.cycle + 1, cycle_opened_at=now)


def initial_state(now: datetime) -> EscalationState:
    return EscalationState(cycle_opened_at=now)
