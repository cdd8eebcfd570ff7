"""Escalation enums."""

from enum import StrEnum, auto


class Channel(StrEnum):
    """Delivery channel for a reminder."""

    comment = auto()
    email = auto()
    sms = auto()
    chat = auto()


class ActionKind(StrEnum):
    """What the policy wants done for a card in this cycle."""

    noop = auto()
    remind = auto()
    final = auto()


class CycleStatus(StrEnum):
    """Position of a card inside its current escalation cycle.

    ``exhausted`` and ``resolved`` are terminal; only a reopen or a
    reassignment on the board starts a new cycle.
    """

    open = auto()
    awaiting_response = auto()
    exhausted = auto()
    resolved = auto()


class SkipReason(StrEnum):
    """Why the policy returned a no-op."""

    responded = auto()
    cycle_closed = auto()
    inactive = auto()
    paused = auto()
    weekend = auto()
    no_recipients = auto()
    contacted_today = auto()
