"""AutoReminder: escalating reminders for stalled board cards."""

__version__ = "0.1.0"
