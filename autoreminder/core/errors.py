"""Error taxonomy for the reminder engine.

Per-card errors (delivery, malformed activity, persistence conflicts) stay
inside one card's pipeline. Cycle-level errors (board outage, invalid
configuration) abort the rest of the cycle but never the process.
"""


class AutoReminderError(Exception):
    """Base exception for reminder engine errors."""


class DeliveryError(AutoReminderError):
    """A notification could not be delivered."""

    error_class = "delivery_error"

    def __init__(self, message: str, *, error_class: str | None = None):
        super().__init__(message)
        if error_class is not None:
            self.error_class = error_class


class TransientDeliveryError(DeliveryError):
    """Timeout, 5xx or rate limit; worth retrying."""

    error_class = "transient"


class PermanentDeliveryError(DeliveryError):
    """Invalid recipient or rejected credentials; retrying cannot help."""

    error_class = "permanent"


class ExternalApiUnavailable(AutoReminderError):
    """The board API cannot be reached; the current cycle is abandoned."""


class BoardAuthError(ExternalApiUnavailable):
    """The board API rejected our credentials."""


class MalformedActivityError(AutoReminderError):
    """Board activity for a card could not be interpreted."""


class PersistenceConflict(AutoReminderError):
    """A state write lost an optimistic race or the event already exists.

    Callers treat this as "already handled": nothing is sent.
    """


class ConfigurationInvalid(AutoReminderError):
    """Runtime configuration cannot be used to run a poll cycle."""


class TemplateNotFoundError(AutoReminderError):
    """No message template registered under the requested id."""
