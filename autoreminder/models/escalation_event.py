"""Escalation event model.

Audit trail of every reminder level claimed for a card. A row is inserted
as ``pending`` together with the card's state transition and updated with
the delivery outcome. A level whose sends all failed transiently is kept as
a ``released`` failure; the next claim of that level reuses the row and
appends to its delivery history.
"""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from autoreminder.core.escalation.enums import ActionKind
from autoreminder.models.base import Base, UTCDateTime


class NotificationStatus(str, enum.Enum):
    """Status of notification delivery."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EscalationEvent(Base):
    """Records one reminder level for one card cycle.

    The unique constraint on (card_id, cycle, level) ensures a level is
    sent at most once per cycle.
    """

    __tablename__ = "escalation_events"
    __table_args__ = (
        UniqueConstraint("card_id", "cycle", "level", name="uq_escalation_card_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    card_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("monitored_cards.card_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    kind: Mapped[ActionKind] = mapped_column(
        Enum(
            ActionKind,
            name="actionkind",
            native_enum=False,
            length=16,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    # Channel names, in send order
    channels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Recipient identities targeted at this level
    recipients: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    triggered_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    notification_status: Mapped[NotificationStatus] = mapped_column(
        Enum(
            NotificationStatus,
            name="notificationstatus",
            native_enum=False,
            length=16,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=NotificationStatus.PENDING,
    )

    # One entry per channel x recipient send, tagged with its attempt
    deliveries: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)

    needs_attention: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Claim given back after transient failures; reclaimable
    released: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationEvent(card={self.card_id}, cycle={self.cycle}, "
            f"level={self.level}, status={self.notification_status.value})>"
        )
