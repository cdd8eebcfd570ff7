"""Escalation constants.

Defaults for the runtime configuration row and the channel ladder. The
runtime row overrides everything except the ladder itself.
"""

from typing import Final

from autoreminder.core.escalation.enums import Channel

# Weekday numbering follows the board's convention: 0 = Sunday, 6 = Saturday.
SUNDAY: Final[int] = 0
SATURDAY: Final[int] = 6
DEFAULT_WEEKEND_DAYS: Final[frozenset[int]] = frozenset({SUNDAY, SATURDAY})

DEFAULT_MAX_REMINDER_DAYS: Final[int] = 7
MIN_MAX_REMINDER_DAYS: Final[int] = 1
MAX_MAX_REMINDER_DAYS: Final[int] = 30

DEFAULT_TIMEZONE: Final[str] = "Europe/Amsterdam"

# Cards due within this many hours (or overdue) may be reminded on weekends
# when the urgent override is enabled.
DEFAULT_URGENCY_HORIZON_HOURS: Final[int] = 24

# Level index -> channels. Levels past the end reuse the last rung.
CHANNEL_LADDER: Final[tuple[tuple[Channel, ...], ...]] = (
    (Channel.comment,),
    (Channel.email,),
    (Channel.sms, Channel.chat, Channel.email),
)

# Final escalation goes to the supervisor list by email.
FINAL_CHANNELS: Final[tuple[Channel, ...]] = (Channel.email,)
