"""Card state store.

Persists each monitored card's metadata and escalation state, plus the
escalation event history. Two implementations share one protocol: the
SQLAlchemy store used in production and a dict-backed store for unit
tests and dry runs.

Every state write is optimistic: it only applies when the card's
``version`` still matches the snapshot the caller decided on. A lost race
or a duplicate (card, cycle, level) event raises PersistenceConflict.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoreminder.core.errors import PersistenceConflict
from autoreminder.core.escalation import (
    Action,
    ActionKind,
    CardSnapshot,
    EscalationState,
    Recipient,
    initial_state,
    state_after_claim,
    state_after_response,
    state_for_new_cycle,
)
from autoreminder.logging_config import get_logger
from autoreminder.models.card import MonitoredCard
from autoreminder.models.escalation_event import EscalationEvent, NotificationStatus
from autoreminder.schemas.escalation_event import (
    DeliveryRecord,
    EscalationEventResponse,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class CardObservation:
    """A card as the board currently reports it."""

    card_id: str
    name: str
    url: str = ""
    board_id: str = ""
    list_id: str = ""
    list_name: str = ""
    due_at: datetime | None = None
    recipients: tuple[Recipient, ...] = ()


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    new_cycles: int = 0
    archived: int = 0
    active: list[CardSnapshot] = field(default_factory=list)


@dataclass(frozen=True)
class Claim:
    """A reminder level reserved for sending.

    ``card`` is the state after the claim, ``previous`` the state it
    replaced, kept so the claim can be released.
    """

    event_id: uuid.UUID
    card: CardSnapshot
    previous: CardSnapshot
    action: Action


def merge_observation(
    existing: CardSnapshot | None,
    observation: CardObservation,
    now: datetime,
) -> tuple[CardSnapshot, bool, bool]:
    """Fold a board observation into the stored card.

    A reopened card always starts a new cycle; a reassigned card starts one
    only when its current cycle is already over.

    Returns:
        (snapshot, changed, new_cycle)
    """
    metadata = {
        "card_id": observation.card_id,
        "name": observation.name,
        "url": observation.url,
        "board_id": observation.board_id,
        "list_id": observation.list_id,
        "list_name": observation.list_name,
        "due_at": observation.due_at,
        "recipients": observation.recipients,
    }

    if existing is None:
        snapshot = CardSnapshot(**metadata, escalation_state=initial_state(now))
        return snapshot, True, False

    state = existing.escalation_state
    observed = frozenset(r.identity for r in observation.recipients)
    reopened = not existing.is_active
    reassigned = observed != existing.recipient_identities
    new_cycle = reopened or (reassigned and state.is_terminal)
    if new_cycle:
        state = state_for_new_cycle(state, now)

    candidate = CardSnapshot(
        **metadata,
        paused_until=existing.paused_until,
        is_active=True,
        version=existing.version,
        escalation_state=state,
    )
    changed = candidate != existing
    if changed:
        candidate = candidate.model_copy(update={"version": existing.version + 1})
    return candidate, changed, new_cycle


def _response_hours(state: EscalationState, responded_at: datetime) -> float | None:
    if state.last_contact_at is None:
        return None
    return round((responded_at - state.last_contact_at).total_seconds() / 3600, 2)


class CardStateStore(Protocol):
    async def get(self, card_id: str) -> CardSnapshot | None: ...

    async def list_active(self) -> list[CardSnapshot]: ...

    async def sync_observed(
        self,
        observations: list[CardObservation],
        now: datetime,
        *,
        archive_missing: bool = True,
    ) -> SyncResult: ...

    async def mark_responded(
        self, card: CardSnapshot, responded_at: datetime
    ) -> CardSnapshot: ...

    async def claim(
        self,
        card: CardSnapshot,
        action: Action,
        now: datetime,
        recipients: list[str],
    ) -> Claim: ...

    async def record_outcome(
        self,
        claim: Claim,
        deliveries: list[dict],
        *,
        needs_attention: bool,
    ) -> NotificationStatus: ...

    async def release_claim(self, claim: Claim, deliveries: list[dict]) -> None: ...

    async def set_paused_until(
        self, card_id: str, until: datetime | None
    ) -> CardSnapshot | None: ...

    async def list_events(self, card_id: str) -> list[EscalationEventResponse]: ...

    async def count_active(self) -> int: ...

    async def count_needing_attention(self) -> int: ...


def outcome_status(deliveries: list[dict]) -> NotificationStatus:
    if any(d.get("success") for d in deliveries):
        return NotificationStatus.SENT
    return NotificationStatus.FAILED


def _finish_attempt(
    event,
    deliveries: list[dict],
    *,
    needs_attention: bool,
    released: bool,
) -> NotificationStatus:
    """Append an attempt's deliveries to an event and set its outcome.

    Works on both the ORM row and the in-memory event.
    """
    event.deliveries = [
        *event.deliveries,
        *({**d, "attempt": event.attempts} for d in deliveries),
    ]
    event.notification_status = outcome_status(deliveries)
    event.needs_attention = needs_attention
    event.released = released
    return event.notification_status


def _reopen_attempt(
    event, action: Action, now: datetime, recipients: list[str]
) -> None:
    """Turn a released event into the pending claim of a new attempt."""
    event.kind = action.kind
    event.channels = [c.value for c in action.channels]
    event.recipients = recipients
    event.reason = action.reason
    event.triggered_at = now
    event.notification_status = NotificationStatus.PENDING
    event.needs_attention = False
    event.released = False
    event.attempts += 1


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


def _to_snapshot(row: MonitoredCard) -> CardSnapshot:
    return CardSnapshot(
        card_id=row.card_id,
        name=row.name,
        url=row.url,
        board_id=row.board_id,
        list_id=row.list_id,
        list_name=row.list_name,
        recipients=tuple(Recipient.model_validate(r) for r in row.recipients),
        due_at=row.due_at,
        paused_until=row.paused_until,
        is_active=row.is_active,
        version=row.version,
        escalation_state=EscalationState(
            cycle=row.cycle,
            cycle_opened_at=row.cycle_opened_at,
            last_contact_at=row.last_contact_at,
            reminder_level=row.reminder_level,
            has_responded=row.has_responded,
            responded_at=row.responded_at,
            status=row.status,
        ),
    )


def _state_columns(snapshot: CardSnapshot) -> dict:
    state = snapshot.escalation_state
    return {
        "cycle": state.cycle,
        "cycle_opened_at": state.cycle_opened_at,
        "last_contact_at": state.last_contact_at,
        "reminder_level": state.reminder_level,
        "has_responded": state.has_responded,
        "responded_at": state.responded_at,
        "status": state.status,
        "version": snapshot.version,
    }


def _card_columns(snapshot: CardSnapshot) -> dict:
    return {
        "name": snapshot.name,
        "url": snapshot.url,
        "board_id": snapshot.board_id,
        "list_id": snapshot.list_id,
        "list_name": snapshot.list_name,
        "recipients": [r.model_dump(mode="json") for r in snapshot.recipients],
        "due_at": snapshot.due_at,
        "paused_until": snapshot.paused_until,
        "is_active": snapshot.is_active,
        **_state_columns(snapshot),
    }


def _event_response(event: EscalationEvent) -> EscalationEventResponse:
    return EscalationEventResponse(
        id=event.id,
        card_id=event.card_id,
        cycle=event.cycle,
        level=event.level,
        kind=event.kind.value,
        channels=event.channels,
        recipients=event.recipients,
        reason=event.reason,
        triggered_at=event.triggered_at,
        notification_status=event.notification_status.value,
        deliveries=[DeliveryRecord.model_validate(d) for d in event.deliveries],
        needs_attention=event.needs_attention,
        attempts=event.attempts,
        released=event.released,
        created_at=event.created_at,
    )


class SqlCardStateStore:
    """Card state persisted with SQLAlchemy.

    Opens a fresh session per operation so that concurrent card pipelines
    never share a session.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, card_id: str) -> CardSnapshot | None:
        async with self._session_maker() as session:
            row = await session.get(MonitoredCard, card_id)
            return _to_snapshot(row) if row is not None else None

    async def list_active(self) -> list[CardSnapshot]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(MonitoredCard)
                .where(MonitoredCard.is_active.is_(True))
                .order_by(MonitoredCard.card_id)
            )
            return [_to_snapshot(row) for row in result.scalars().all()]

    async def sync_observed(
        self,
        observations: list[CardObservation],
        now: datetime,
        *,
        archive_missing: bool = True,
    ) -> SyncResult:
        """Create, refresh and archive cards to match the board.

        Args:
            observations: Cards currently on the board.
            now: Sync time, used as the start of any new cycle.
            archive_missing: Archive active cards absent from
                ``observations``. Disabled when the board listing was
                truncated.
        """
        sync = SyncResult()
        observed_ids = [o.card_id for o in observations]

        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(MonitoredCard).where(
                        or_(
                            MonitoredCard.is_active.is_(True),
                            MonitoredCard.card_id.in_(observed_ids),
                        )
                    )
                )
                rows = {row.card_id: row for row in result.scalars().all()}

                for observation in observations:
                    row = rows.pop(observation.card_id, None)
                    existing = _to_snapshot(row) if row is not None else None
                    snapshot, changed, new_cycle = merge_observation(
                        existing, observation, now
                    )
                    if row is None:
                        session.add(
                            MonitoredCard(
                                card_id=snapshot.card_id, **_card_columns(snapshot)
                            )
                        )
                        sync.created += 1
                    elif changed:
                        for column, value in _card_columns(snapshot).items():
                            setattr(row, column, value)
                        sync.updated += 1
                    if new_cycle:
                        sync.new_cycles += 1
                        logger.info(
                            "New escalation cycle",
                            card_id=snapshot.card_id,
                            cycle=snapshot.escalation_state.cycle,
                        )
                    sync.active.append(snapshot)

                if archive_missing:
                    for row in rows.values():
                        if not row.is_active:
                            continue
                        row.is_active = False
                        row.version += 1
                        sync.archived += 1
                        logger.info("Card archived", card_id=row.card_id)

        sync.active.sort(key=lambda card: card.card_id)
        return sync

    async def mark_responded(
        self, card: CardSnapshot, responded_at: datetime
    ) -> CardSnapshot:
        state = state_after_response(card.escalation_state, responded_at)
        updated = card.model_copy(
            update={"escalation_state": state, "version": card.version + 1}
        )

        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(MonitoredCard)
                    .where(
                        MonitoredCard.card_id == card.card_id,
                        MonitoredCard.version == card.version,
                    )
                    .values(
                        **_state_columns(updated),
                        total_responses=MonitoredCard.total_responses + 1,
                        last_response_hours=_response_hours(
                            card.escalation_state, responded_at
                        ),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise PersistenceConflict(
                        f"Card {card.card_id} changed since version {card.version}"
                    )

        return updated

    async def claim(
        self,
        card: CardSnapshot,
        action: Action,
        now: datetime,
        recipients: list[str],
    ) -> Claim:
        """Reserve ``action``'s level for ``card`` in one transaction.

        Inserts the pending EscalationEvent, or reopens the event of a
        released attempt at the same level, and applies the state
        transition together.

        Raises:
            PersistenceConflict: The level was already claimed for this
                cycle, or the card changed since ``card`` was read.
        """
        state = state_after_claim(card.escalation_state, action, now)
        claimed = card.model_copy(
            update={"escalation_state": state, "version": card.version + 1}
        )
        cycle = card.escalation_state.cycle

        async with self._session_maker() as session:
            try:
                async with session.begin():
                    event = await session.scalar(
                        select(EscalationEvent).where(
                            EscalationEvent.card_id == card.card_id,
                            EscalationEvent.cycle == cycle,
                            EscalationEvent.level == action.level,
                            EscalationEvent.released.is_(True),
                        )
                    )
                    if event is None:
                        event = EscalationEvent(
                            id=uuid.uuid4(),
                            card_id=card.card_id,
                            cycle=cycle,
                            level=action.level,
                            kind=action.kind,
                            channels=[c.value for c in action.channels],
                            recipients=recipients,
                            reason=action.reason,
                            triggered_at=now,
                            notification_status=NotificationStatus.PENDING,
                            deliveries=[],
                            needs_attention=False,
                            attempts=1,
                            released=False,
                            created_at=now,
                        )
                        session.add(event)
                    else:
                        _reopen_attempt(event, action, now, recipients)
                    await session.flush()
                    event_id = event.id

                    result = await session.execute(
                        update(MonitoredCard)
                        .where(
                            MonitoredCard.card_id == card.card_id,
                            MonitoredCard.version == card.version,
                        )
                        .values(
                            **_state_columns(claimed),
                            total_reminders=MonitoredCard.total_reminders + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise PersistenceConflict(
                            f"Card {card.card_id} changed since version {card.version}"
                        )
            except IntegrityError as e:
                raise PersistenceConflict(
                    f"Level {action.level} of cycle {cycle} "
                    f"already claimed for card {card.card_id}"
                ) from e

        return Claim(event_id=event_id, card=claimed, previous=card, action=action)

    async def _load_event(
        self, session: AsyncSession, event_id: uuid.UUID
    ) -> EscalationEvent:
        event = await session.get(EscalationEvent, event_id)
        if event is None:
            raise PersistenceConflict(f"Escalation event {event_id} no longer exists")
        return event

    async def record_outcome(
        self,
        claim: Claim,
        deliveries: list[dict],
        *,
        needs_attention: bool,
    ) -> NotificationStatus:
        async with self._session_maker() as session:
            async with session.begin():
                event = await self._load_event(session, claim.event_id)
                return _finish_attempt(
                    event, deliveries, needs_attention=needs_attention, released=False
                )

    async def release_claim(self, claim: Claim, deliveries: list[dict]) -> None:
        """Give back a claim whose sends all failed transiently.

        The card goes back to its pre-claim state with a new version, so the
        next cycle decides on it again. The event is kept as a failed,
        released attempt that the next claim of the same level reuses.
        """
        restored = claim.previous.model_copy(
            update={"version": claim.card.version + 1}
        )
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(MonitoredCard)
                    .where(
                        MonitoredCard.card_id == claim.card.card_id,
                        MonitoredCard.version == claim.card.version,
                    )
                    .values(
                        **_state_columns(restored),
                        total_reminders=MonitoredCard.total_reminders - 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise PersistenceConflict(
                        f"Card {claim.card.card_id} changed before release"
                    )
                event = await self._load_event(session, claim.event_id)
                _finish_attempt(event, deliveries, needs_attention=False, released=True)

    async def set_paused_until(
        self, card_id: str, until: datetime | None
    ) -> CardSnapshot | None:
        async with self._session_maker() as session:
            async with session.begin():
                row = await session.get(MonitoredCard, card_id)
                if row is None:
                    return None
                row.paused_until = until
                row.version += 1
                await session.flush()
                return _to_snapshot(row)

    async def list_events(self, card_id: str) -> list[EscalationEventResponse]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationEvent)
                .where(EscalationEvent.card_id == card_id)
                .order_by(EscalationEvent.cycle, EscalationEvent.level)
            )
            return [_event_response(event) for event in result.scalars().all()]

    async def count_active(self) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count())
                .select_from(MonitoredCard)
                .where(MonitoredCard.is_active.is_(True))
            )
            return result.scalar_one()

    async def count_needing_attention(self) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count(func.distinct(EscalationEvent.card_id))).where(
                    EscalationEvent.needs_attention.is_(True)
                )
            )
            return result.scalar_one()


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class _MemoryEvent:
    id: uuid.UUID
    card_id: str
    cycle: int
    level: int
    kind: ActionKind
    channels: list[str]
    recipients: list[str]
    reason: str
    triggered_at: datetime
    created_at: datetime
    notification_status: NotificationStatus = NotificationStatus.PENDING
    deliveries: list[dict] = field(default_factory=list)
    needs_attention: bool = False
    attempts: int = 1
    released: bool = False


@dataclass
class _MemoryStats:
    total_reminders: int = 0
    total_responses: int = 0
    last_response_hours: float | None = None


class MemoryCardStateStore:
    """Dict-backed CardStateStore for unit tests and dry runs.

    Operations contain no awaits between read and write, so each one is
    atomic on a single event loop.
    """

    def __init__(self) -> None:
        self._cards: dict[str, CardSnapshot] = {}
        self._events: dict[tuple[str, int, int], _MemoryEvent] = {}
        self.stats: dict[str, _MemoryStats] = {}

    def put(self, card: CardSnapshot) -> None:
        """Seed a card directly (tests)."""
        self._cards[card.card_id] = card
        self.stats.setdefault(card.card_id, _MemoryStats())

    def _check_version(self, card: CardSnapshot) -> None:
        current = self._cards.get(card.card_id)
        if current is None or current.version != card.version:
            raise PersistenceConflict(
                f"Card {card.card_id} changed since version {card.version}"
            )

    async def get(self, card_id: str) -> CardSnapshot | None:
        return self._cards.get(card_id)

    async def list_active(self) -> list[CardSnapshot]:
        return sorted(
            (card for card in self._cards.values() if card.is_active),
            key=lambda card: card.card_id,
        )

    async def sync_observed(
        self,
        observations: list[CardObservation],
        now: datetime,
        *,
        archive_missing: bool = True,
    ) -> SyncResult:
        sync = SyncResult()
        seen: set[str] = set()

        for observation in observations:
            seen.add(observation.card_id)
            existing = self._cards.get(observation.card_id)
            snapshot, changed, new_cycle = merge_observation(
                existing, observation, now
            )
            if existing is None:
                sync.created += 1
            elif changed:
                sync.updated += 1
            if new_cycle:
                sync.new_cycles += 1
            self.put(snapshot)
            sync.active.append(snapshot)

        if archive_missing:
            for card_id, card in list(self._cards.items()):
                if card_id in seen or not card.is_active:
                    continue
                self._cards[card_id] = card.model_copy(
                    update={"is_active": False, "version": card.version + 1}
                )
                sync.archived += 1

        sync.active.sort(key=lambda card: card.card_id)
        return sync

    async def mark_responded(
        self, card: CardSnapshot, responded_at: datetime
    ) -> CardSnapshot:
        self._check_version(card)
        updated = card.model_copy(
            update={
                "escalation_state": state_after_response(
                    card.escalation_state, responded_at
                ),
                "version": card.version + 1,
            }
        )
        self._cards[card.card_id] = updated
        stats = self.stats.setdefault(card.card_id, _MemoryStats())
        stats.total_responses += 1
        stats.last_response_hours = _response_hours(
            card.escalation_state, responded_at
        )
        return updated

    async def claim(
        self,
        card: CardSnapshot,
        action: Action,
        now: datetime,
        recipients: list[str],
    ) -> Claim:
        key = (card.card_id, card.escalation_state.cycle, action.level)
        event = self._events.get(key)
        if event is not None and not event.released:
            raise PersistenceConflict(
                f"Level {action.level} of cycle {card.escalation_state.cycle} "
                f"already claimed for card {card.card_id}"
            )
        self._check_version(card)

        claimed = card.model_copy(
            update={
                "escalation_state": state_after_claim(
                    card.escalation_state, action, now
                ),
                "version": card.version + 1,
            }
        )
        if event is None:
            event = _MemoryEvent(
                id=uuid.uuid4(),
                card_id=card.card_id,
                cycle=card.escalation_state.cycle,
                level=action.level,
                kind=action.kind,
                channels=[c.value for c in action.channels],
                recipients=recipients,
                reason=action.reason,
                triggered_at=now,
                created_at=now,
            )
            self._events[key] = event
        else:
            _reopen_attempt(event, action, now, recipients)
        self._cards[card.card_id] = claimed
        self.stats.setdefault(card.card_id, _MemoryStats()).total_reminders += 1
        return Claim(event_id=event.id, card=claimed, previous=card, action=action)

    def _event_by_id(self, event_id: uuid.UUID) -> _MemoryEvent:
        for event in self._events.values():
            if event.id == event_id:
                return event
        raise PersistenceConflict(f"Escalation event {event_id} no longer exists")

    async def record_outcome(
        self,
        claim: Claim,
        deliveries: list[dict],
        *,
        needs_attention: bool,
    ) -> NotificationStatus:
        return _finish_attempt(
            self._event_by_id(claim.event_id),
            deliveries,
            needs_attention=needs_attention,
            released=False,
        )

    async def release_claim(self, claim: Claim, deliveries: list[dict]) -> None:
        self._check_version(claim.card)
        event = self._event_by_id(claim.event_id)
        _finish_attempt(event, deliveries, needs_attention=False, released=True)
        self._cards[claim.card.card_id] = claim.previous.model_copy(
            update={"version": claim.card.version + 1}
        )
        self.stats[claim.card.card_id].total_reminders -= 1

    async def set_paused_until(
        self, card_id: str, until: datetime | None
    ) -> CardSnapshot | None:
        card = self._cards.get(card_id)
        if card is None:
            return None
        updated = card.model_copy(
            update={"paused_until": until, "version": card.version + 1}
        )
        self._cards[card_id] = updated
        return updated

    async def list_events(self, card_id: str) -> list[EscalationEventResponse]:
        events = sorted(
            (e for e in self._events.values() if e.card_id == card_id),
            key=lambda e: (e.cycle, e.level),
        )
        return [
            EscalationEventResponse(
                id=e.id,
                card_id=e.card_id,
                cycle=e.cycle,
                level=e.level,
                kind=e.kind.value,
                channels=e.channels,
                recipients=e.recipients,
                reason=e.reason,
                triggered_at=e.triggered_at,
                notification_status=e.notification_status.value,
                deliveries=[DeliveryRecord.model_validate(d) for d in e.deliveries],
                needs_attention=e.needs_attention,
                attempts=e.attempts,
                released=e.released,
                created_at=e.created_at,
            )
            for e in events
        ]

    async def count_active(self) -> int:
        return sum(1 for card in self._cards.values() if card.is_active)

    async def count_needing_attention(self) -> int:
        return len({e.card_id for e in self._events.values() if e.needs_attention})
