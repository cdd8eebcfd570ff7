"""Runtime monitoring configuration model.

A single row holding the settings operators may change while the service
is running. Process-level settings live in ``autoreminder.config``.
"""

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from autoreminder.core.escalation.constants import (
    DEFAULT_MAX_REMINDER_DAYS,
    DEFAULT_TIMEZONE,
    DEFAULT_URGENCY_HORIZON_HOURS,
    SATURDAY,
    SUNDAY,
)
from autoreminder.models.base import Base, TimestampMixin

SINGLETON_ID = 1


class MonitoringConfig(Base, TimestampMixin):
    """Escalation timing and quiet-day configuration."""

    __tablename__ = "monitoring_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)

    # Weekday numbers, 0 = Sunday .. 6 = Saturday
    weekend_days: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [SUNDAY, SATURDAY],
    )

    max_reminder_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_REMINDER_DAYS,
    )

    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=DEFAULT_TIMEZONE,
    )

    allow_urgent_override: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    urgency_horizon_hours: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_URGENCY_HORIZON_HOURS,
    )

    supervisor_emails: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    monitoring_paused: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    def __repr__(self) -> str:
        return (
            f"<MonitoringConfig(max_days={self.max_reminder_days}, "
            f"tz={self.timezone}, paused={self.monitoring_paused})>"
        )
