"""Runtime monitoring configuration schemas."""

import zoneinfo
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from autoreminder.core.escalation.constants import (
    DEFAULT_MAX_REMINDER_DAYS,
    DEFAULT_TIMEZONE,
    DEFAULT_URGENCY_HORIZON_HOURS,
    MAX_MAX_REMINDER_DAYS,
    MIN_MAX_REMINDER_DAYS,
)


class MonitoringConfigResponse(BaseModel):
    """Response schema for the monitoring configuration."""

    model_config = {"from_attributes": True}

    weekend_days: list[int]
    max_reminder_days: int
    timezone: str
    allow_urgent_override: bool
    urgency_horizon_hours: int
    supervisor_emails: list[str]
    monitoring_paused: bool
    updated_at: datetime | None = None


class MonitoringConfigUpdate(BaseModel):
    """Request schema for updating the monitoring configuration.

    All fields are optional -- only provided fields are updated.
    """

    weekend_days: list[int] | None = Field(
        default=None,
        max_length=7,
        description="Weekday numbers to stay quiet on, 0 = Sunday .. 6 = Saturday.",
    )
    max_reminder_days: int | None = Field(
        default=None,
        ge=MIN_MAX_REMINDER_DAYS,
        le=MAX_MAX_REMINDER_DAYS,
        description="Days before the final escalation (1-30).",
    )
    timezone: str | None = Field(
        default=None,
        max_length=64,
        description="IANA timezone (e.g. 'Europe/Amsterdam').",
    )
    allow_urgent_override: bool | None = None
    urgency_horizon_hours: int | None = Field(default=None, ge=0, le=24 * 14)
    supervisor_emails: list[str] | None = None
    monitoring_paused: bool | None = None

    @field_validator("weekend_days")
    @classmethod
    def validate_weekend_days(cls, v: list[int] | None) -> list[int] | None:
        if v is None:
            return v
        if any(day < 0 or day > 6 for day in v):
            msg = "weekend_days must contain values between 0 and 6"
            raise ValueError(msg)
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            zoneinfo.ZoneInfo(v)
        except (KeyError, ValueError, zoneinfo.ZoneInfoNotFoundError):
            msg = f"Invalid timezone: {v}"
            raise ValueError(msg) from None
        return v

    @field_validator("supervisor_emails")
    @classmethod
    def validate_emails(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        cleaned = [email.strip() for email in v if email.strip()]
        for email in cleaned:
            if "@" not in email:
                msg = f"Invalid email address: {email}"
                raise ValueError(msg)
        return cleaned


class MonitoringConfigDefaults(BaseModel):
    """Default monitoring configuration values for reference."""

    weekend_days: list[int] = [0, 6]
    max_reminder_days: int = DEFAULT_MAX_REMINDER_DAYS
    timezone: str = DEFAULT_TIMEZONE
    allow_urgent_override: bool = True
    urgency_horizon_hours: int = DEFAULT_URGENCY_HORIZON_HOURS
