"""Escalation data models.

Pure, frozen Pydantic models shared by the policy, the state stores and the
scheduler. No database dependencies, no SQLAlchemy.
"""

import zoneinfo
from datetime import UTC, datetime
from typing import Self

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from autoreminder.core.escalation.constants import (
    DEFAULT_MAX_REMINDER_DAYS,
    DEFAULT_TIMEZONE,
    DEFAULT_URGENCY_HORIZON_HOURS,
    DEFAULT_WEEKEND_DAYS,
    MAX_MAX_REMINDER_DAYS,
    MIN_MAX_REMINDER_DAYS,
)
from autoreminder.core.escalation.enums import (
    ActionKind,
    Channel,
    CycleStatus,
    SkipReason,
)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class Recipient(BaseModel):
    """A person assigned to a card, with the addresses we can reach them on."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(min_length=1)
    username: str = ""
    full_name: str = ""
    email: str | None = None
    phone: str | None = None
    chat_id: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or self.identity

    def address_for(self, channel: Channel) -> str | None:
        """Return the address used on ``channel``, if the recipient has one."""
        match channel:
            case Channel.comment:
                return self.username or self.identity
            case Channel.email:
                return self.email
            case Channel.sms:
                return self.phone
            case Channel.chat:
                return self.chat_id


class EscalationState(BaseModel):
    """Where a card stands in its current escalation cycle.

    ``reminder_level`` counts reminders already claimed in the cycle, which
    is also the level the next reminder will carry.
    """

    model_config = ConfigDict(frozen=True)

    cycle: int = Field(default=1, ge=1)
    cycle_opened_at: AwareDatetime
    last_contact_at: AwareDatetime | None = None
    reminder_level: int = Field(default=0, ge=0)
    has_responded: bool = False
    responded_at: AwareDatetime | None = None
    status: CycleStatus = CycleStatus.open

    @model_validator(mode="after")
    def check_response_consistency(self) -> Self:
        """A response always closes the cycle."""
        if self.has_responded and self.status != CycleStatus.resolved:
            msg = "has_responded requires status 'resolved'"
            raise ValueError(msg)
        if self.status == CycleStatus.resolved and not self.has_responded:
            msg = "status 'resolved' requires has_responded"
            raise ValueError(msg)
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in (CycleStatus.exhausted, CycleStatus.resolved)


class CardSnapshot(BaseModel):
    """Immutable view of one monitored card as the policy sees it."""

    model_config = ConfigDict(frozen=True)

    card_id: str = Field(min_length=1)
    name: str
    url: str = ""
    board_id: str = ""
    list_id: str = ""
    list_name: str = ""
    recipients: tuple[Recipient, ...] = ()
    due_at: AwareDatetime | None = None
    paused_until: AwareDatetime | None = None
    is_active: bool = True
    version: int = Field(default=0, ge=0)
    escalation_state: EscalationState

    @field_validator("recipients")
    @classmethod
    def unique_recipients(cls, value: tuple[Recipient, ...]) -> tuple[Recipient, ...]:
        """Keep the first occurrence of each identity, in order."""
        seen: set[str] = set()
        unique: list[Recipient] = []
        for recipient in value:
            if recipient.identity in seen:
                continue
            seen.add(recipient.identity)
            unique.append(recipient)
        return tuple(unique)

    @property
    def recipient_identities(self) -> frozenset[str]:
        return frozenset(r.identity for r in self.recipients)


class ConfigSnapshot(BaseModel):
    """Runtime configuration, read once per poll cycle."""

    model_config = ConfigDict(frozen=True)

    weekend_days: frozenset[int] = DEFAULT_WEEKEND_DAYS
    max_reminder_days: int = Field(
        default=DEFAULT_MAX_REMINDER_DAYS,
        ge=MIN_MAX_REMINDER_DAYS,
        le=MAX_MAX_REMINDER_DAYS,
    )
    timezone: str = DEFAULT_TIMEZONE
    allow_urgent_override: bool = True
    urgency_horizon_hours: int = Field(default=DEFAULT_URGENCY_HORIZON_HOURS, ge=0)
    supervisor_emails: tuple[str, ...] = ()
    monitoring_paused: bool = False

    @field_validator("weekend_days")
    @classmethod
    def check_weekdays(cls, value: frozenset[int]) -> frozenset[int]:
        if any(day < 0 or day > 6 for day in value):
            msg = "Weekend days must be between 0 (Sunday) and 6 (Saturday)"
            raise ValueError(msg)
        return value

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            zoneinfo.ZoneInfo(value)
        except (KeyError, ValueError, zoneinfo.ZoneInfoNotFoundError):
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from None
        return value

    @property
    def tz(self) -> zoneinfo.ZoneInfo:
        return zoneinfo.ZoneInfo(self.timezone)


class Action(BaseModel):
    """The policy's verdict for one card.

    ``level`` is set for reminders and final escalations and is the key the
    resulting EscalationEvent is stored under.
    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    level: int | None = Field(default=None, ge=0)
    channels: tuple[Channel, ...] = ()
    reason: str = Field(min_length=1)
    skip_reason: SkipReason | None = None

    @model_validator(mode="after")
    def check_shape(self) -> Self:
        if self.kind == ActionKind.noop:
            if self.level is not None or self.channels:
                msg = "a no-op carries no level or channels"
                raise ValueError(msg)
        elif self.level is None or not self.channels:
            msg = f"a {self.kind} action needs a level and channels"
            raise ValueError(msg)
        return self

    @classmethod
    def noop(cls, skip_reason: SkipReason, reason: str) -> "Action":
        return cls(kind=ActionKind.noop, reason=reason, skip_reason=skip_reason)

    @property
    def sends(self) -> bool:
        return self.kind != ActionKind.noop
