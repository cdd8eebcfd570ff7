"""Pytest configuration and shared fixtures.

Unit tests run against the in-memory stores and fake board/providers; the
SQL store tests get a private in-memory SQLite database per test.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set testing mode BEFORE importing app modules
os.environ["TESTING"] = "true"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from autoreminder.config import Settings, settings

settings.testing = True

from autoreminder.core.clock import FrozenClock
from autoreminder.core.escalation import (
    CardSnapshot,
    ConfigSnapshot,
    EscalationState,
    Recipient,
)
from autoreminder.models import Base
from autoreminder.services.card_store import MemoryCardStateStore
from autoreminder.services.channel_gateway import ChannelGateway
from autoreminder.services.config_store import MemoryConfigStore
from autoreminder.services.monitoring import MonitoringService
from autoreminder.services.trello_client import BoardCard, BoardMember

SYSTEM_MEMBER = "system-member"

# Monday 8 January 2024, 09:00 in Amsterdam
MONDAY_9AM = datetime(2024, 1, 8, 8, 0, tzinfo=UTC)


def make_settings(**overrides: Any) -> Settings:
    values = {
        "testing": True,
        "trello_system_member_id": SYSTEM_MEMBER,
        "trello_board_ids": ["board-1"],
        "delivery_max_attempts": 3,
        "delivery_backoff_seconds": 1.0,
        "worker_pool_size": 4,
        "cycle_deadline_seconds": 600,
        "max_cards_per_cycle": 500,
        "recipient_directory": {
            "alice": {"email": "alice@example.com", "phone": "5551234567", "chat_id": "111"},
            "bob": {"email": "bob@example.com", "phone": "+31 6 1234 5678"},
        },
    }
    values.update(overrides)
    return Settings(**values)


def make_recipient(identity: str = "m-alice", username: str = "alice", **kw) -> Recipient:
    return Recipient(identity=identity, username=username, full_name=username.title(), **kw)


def make_card(
    card_id: str = "card-1",
    *,
    opened_at: datetime = MONDAY_9AM,
    recipients: tuple[Recipient, ...] | None = None,
    **state: Any,
) -> CardSnapshot:
    """Card snapshot with an open cycle; extra kwargs go to the state."""
    extra = {k: state.pop(k) for k in ("due_at", "paused_until", "is_active", "version") if k in state}
    if recipients is None:
        recipients = (make_recipient(email="alice@example.com"),)
    return CardSnapshot(
        card_id=card_id,
        name=f"Card {card_id}",
        url=f"https://trello.com/c/{card_id}",
        recipients=recipients,
        escalation_state=EscalationState(cycle_opened_at=opened_at, **state),
        **extra,
    )


def board_card(card_id: str = "card-1", members: tuple[str, ...] = ("alice",)) -> BoardCard:
    return BoardCard(
        card_id=card_id,
        name=f"Card {card_id}",
        url=f"https://trello.com/c/{card_id}",
        board_id="board-1",
        list_id="list-doing",
        list_name="Doing",
        members=tuple(
            BoardMember(member_id=f"m-{name}", username=name, full_name=name.title())
            for name in members
        ),
    )


class FakeBoard:
    """In-memory stand-in for the Trello client."""

    def __init__(self, cards: list[BoardCard] | None = None):
        self.cards = list(cards or [])
        self.activity: dict[str, list[dict]] = {}
        self.comments: list[tuple[str, str]] = []
        self.list_error: Exception | None = None
        self.activity_errors: dict[str, Exception] = {}
        self.comment_errors: list[Exception] = []
        self.system_member_id = SYSTEM_MEMBER
        self.activity_calls: list[tuple[str, datetime]] = []

    async def list_monitored_cards(self) -> list[BoardCard]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.cards)

    async def get_card_activity(self, card_id: str, since: datetime) -> list[dict]:
        self.activity_calls.append((card_id, since))
        if card_id in self.activity_errors:
            raise self.activity_errors[card_id]
        return list(self.activity.get(card_id, []))

    async def post_comment(self, card_id: str, text: str) -> str:
        if self.comment_errors:
            raise self.comment_errors.pop(0)
        self.comments.append((card_id, text))
        return f"action-{len(self.comments)}"

    async def aclose(self) -> None:
        return None

    def respond(self, card_id: str, when: datetime, author: str = "m-alice") -> None:
        self.activity.setdefault(card_id, []).append(
            {
                "id": f"a-{len(self.activity.get(card_id, []))}",
                "type": "commentCard",
                "date": when.isoformat().replace("+00:00", "Z"),
                "idMemberCreator": author,
            }
        )


class FakeProvider:
    """Records sends; raises queued errors first."""

    def __init__(self, name: str):
        self.name = name
        self.sent: list[tuple[str, ...]] = []
        self.errors: list[Exception] = []

    async def _record(self, *args: str) -> str:
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append(args)
        return f"{self.name}-{len(self.sent)}"

    async def send(self, to: str, *parts: str) -> str:
        return await self._record(to, *parts)

    async def send_message(self, chat_id: str, text: str) -> str:
        return await self._record(chat_id, text)

    async def aclose(self) -> None:
        return None


class Harness:
    """A MonitoringService wired to fakes and in-memory stores."""

    def __init__(self, clock: FrozenClock, config: Settings | None = None, **config_values):
        self.clock = clock
        self.settings = config or make_settings()
        self.board = FakeBoard()
        self.email = FakeProvider("email")
        self.sms = FakeProvider("sms")
        self.chat = FakeProvider("chat")
        self.gateway = ChannelGateway(
            self.board,
            self.email,
            self.sms,
            self.chat,
            clock=clock,
            config=self.settings,
        )
        self.cards = MemoryCardStateStore()
        self.config_store = MemoryConfigStore(self.settings, **config_values)
        self.service = MonitoringService(
            board=self.board,
            gateway=self.gateway,
            card_store=self.cards,
            config_store=self.config_store,
            clock=clock,
            config=self.settings,
        )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(MONDAY_9AM)


@pytest.fixture
def config() -> ConfigSnapshot:
    return ConfigSnapshot(timezone="Europe/Amsterdam", weekend_days=frozenset({0, 6}))


@pytest.fixture
def harness(clock: FrozenClock) -> Harness:
    return Harness(clock)


@pytest_asyncio.fixture
async def session_maker() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Private in-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
