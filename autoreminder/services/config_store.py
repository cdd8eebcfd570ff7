"""Runtime monitoring configuration store.

Manages the single ``monitoring_config`` row with get-or-create semantics
and turns it into the immutable ConfigSnapshot a poll cycle runs on.
"""

from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoreminder.config import Settings, settings
from autoreminder.core.errors import ConfigurationInvalid
from autoreminder.core.escalation import ConfigSnapshot
from autoreminder.logging_config import get_logger
from autoreminder.models.monitoring_config import SINGLETON_ID, MonitoringConfig
from autoreminder.schemas.monitoring_config import (
    MonitoringConfigResponse,
    MonitoringConfigUpdate,
)

logger = get_logger(__name__)

SNAPSHOT_FIELDS = (
    "weekend_days",
    "max_reminder_days",
    "timezone",
    "allow_urgent_override",
    "urgency_horizon_hours",
    "supervisor_emails",
    "monitoring_paused",
)


def seed_values(config: Settings | None = None) -> dict:
    """Initial row values, taken from the process settings."""
    config = config or settings
    return {
        "weekend_days": sorted(set(config.default_weekend_days)),
        "max_reminder_days": config.default_max_reminder_days,
        "timezone": config.default_timezone,
        "allow_urgent_override": config.default_allow_urgent_override,
        "urgency_horizon_hours": config.default_urgency_horizon_hours,
        "supervisor_emails": list(config.default_supervisor_emails),
        "monitoring_paused": False,
    }


def to_snapshot(values: dict) -> ConfigSnapshot:
    """Validate stored values into a snapshot.

    Raises:
        ConfigurationInvalid: If the stored values are out of range.
    """
    try:
        return ConfigSnapshot(
            weekend_days=frozenset(values["weekend_days"]),
            max_reminder_days=values["max_reminder_days"],
            timezone=values["timezone"],
            allow_urgent_override=values["allow_urgent_override"],
            urgency_horizon_hours=values["urgency_horizon_hours"],
            supervisor_emails=tuple(values["supervisor_emails"]),
            monitoring_paused=values["monitoring_paused"],
        )
    except (KeyError, TypeError, ValidationError) as e:
        raise ConfigurationInvalid(f"Stored monitoring config is invalid: {e}") from e


class ConfigStore(Protocol):
    async def snapshot(self) -> ConfigSnapshot: ...

    async def get(self) -> MonitoringConfigResponse: ...

    async def update(self, updates: MonitoringConfigUpdate) -> MonitoringConfigResponse: ...


async def get_or_create_config(
    db: AsyncSession,
    config: Settings | None = None,
) -> MonitoringConfig:
    """Get the monitoring config row, creating defaults if none exists.

    Args:
        db: Database session.
        config: Settings used to seed a new row.

    Returns:
        The MonitoringConfig record.
    """
    result = await db.execute(
        select(MonitoringConfig).where(MonitoringConfig.id == SINGLETON_ID)
    )
    row = result.scalar_one_or_none()

    if row is None:
        row = MonitoringConfig(id=SINGLETON_ID, **seed_values(config))
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            # Concurrent start already created the row, fetch it
            await db.rollback()
            result = await db.execute(
                select(MonitoringConfig).where(MonitoringConfig.id == SINGLETON_ID)
            )
            return result.scalar_one()
        await db.refresh(row)

        logger.info("Created default monitoring config")

    return row


async def update_config(
    updates: MonitoringConfigUpdate,
    db: AsyncSession,
) -> MonitoringConfig:
    """Apply a partial update to the monitoring config.

    Only fields provided in the request are updated.

    Args:
        updates: Partial update, already validated by the schema.
        db: Database session.

    Returns:
        The updated MonitoringConfig record.
    """
    row = await get_or_create_config(db)

    update_data = updates.model_dump(exclude_none=True)
    for field_name, value in update_data.items():
        setattr(row, field_name, value)

    await db.commit()
    await db.refresh(row)

    logger.info(
        "Updated monitoring config",
        fields=list(update_data.keys()),
    )

    return row


class SqlConfigStore:
    """Config store backed by the ``monitoring_config`` table."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        config: Settings | None = None,
    ):
        self._session_maker = session_maker
        self._settings = config or settings

    async def snapshot(self) -> ConfigSnapshot:
        async with self._session_maker() as session:
            row = await get_or_create_config(session, self._settings)
            return to_snapshot({name: getattr(row, name) for name in SNAPSHOT_FIELDS})

    async def get(self) -> MonitoringConfigResponse:
        async with self._session_maker() as session:
            row = await get_or_create_config(session, self._settings)
            return MonitoringConfigResponse.model_validate(row)

    async def update(self, updates: MonitoringConfigUpdate) -> MonitoringConfigResponse:
        async with self._session_maker() as session:
            await get_or_create_config(session, self._settings)
            row = await update_config(updates, session)
            return MonitoringConfigResponse.model_validate(row)


class MemoryConfigStore:
    """Dict-backed config store for unit tests and dry runs."""

    def __init__(self, config: Settings | None = None, **overrides):
        self._values = {**seed_values(config), **overrides}

    async def snapshot(self) -> ConfigSnapshot:
        return to_snapshot(self._values)

    async def get(self) -> MonitoringConfigResponse:
        return MonitoringConfigResponse(**self._values)

    async def update(self, updates: MonitoringConfigUpdate) -> MonitoringConfigResponse:
        update_data = updates.model_dump(exclude_none=True)
        self._values.update(update_data)
        logger.info("Updated monitoring config", fields=list(update_data.keys()))
        return MonitoringConfigResponse(**self._values)
