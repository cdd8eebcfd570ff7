"""Monitored card model.

One row per board card the poller has seen, keyed by the board's own card
id. Holds the card's metadata, its recipients and the escalation state of
the current cycle.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Enum, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from autoreminder.core.escalation.enums import CycleStatus
from autoreminder.models.base import Base, TimestampMixin, UTCDateTime


class MonitoredCard(Base, TimestampMixin):
    """Persisted card state.

    ``version`` is bumped on every state write and guards the optimistic
    update performed when a reminder is claimed.
    """

    __tablename__ = "monitored_cards"

    card_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    board_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    list_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    list_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Ordered list of Recipient dicts, unique by identity
    recipients: Mapped[list[dict]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    due_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    paused_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )

    cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cycle_opened_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_contact_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    reminder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_responded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[CycleStatus] = mapped_column(
        Enum(
            CycleStatus,
            name="cyclestatus",
            native_enum=False,
            length=32,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=CycleStatus.open,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Statistics across all cycles
    total_reminders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_responses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_response_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<MonitoredCard(card_id={self.card_id}, cycle={self.cycle}, "
            f"level={self.reminder_level}, status={self.status.value})>"
        )
