"""Tests for the Trello board client."""

from datetime import UTC, datetime

import httpx
import pytest

from autoreminder.core.errors import BoardAuthError, ExternalApiUnavailable
from autoreminder.services.trello_client import (
    TrelloApiError,
    TrelloClient,
    parse_trello_datetime,
)
from tests.conftest import SYSTEM_MEMBER, make_settings

LISTS = [
    {"id": "list-todo", "name": "To Do"},
    {"id": "list-doing", "name": "Doing"},
    {"id": "list-hold", "name": "On-Hold"},
]


def raw_card(card_id: str, list_id: str = "list-doing", members=None, **extra) -> dict:
    return {
        "id": card_id,
        "name": f"Card {card_id}",
        "url": f"https://trello.com/c/{card_id}/long-name",
        "shortUrl": f"https://trello.com/c/{card_id}",
        "idBoard": "board-1",
        "idList": list_id,
        "closed": False,
        "members": members
        if members is not None
        else [{"id": "m-alice", "username": "alice", "fullName": "Alice"}],
        **extra,
    }


def make_client(handler, **overrides) -> TrelloClient:
    config = make_settings(trello_api_key="key", trello_token="token", **overrides)
    return TrelloClient(
        config,
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://api.trello.com/1",
        ),
    )


def board_handler(cards: list[dict]):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/lists"):
            return httpx.Response(200, json=LISTS)
        return httpx.Response(200, json=cards)

    handler.requests = requests
    return handler


class TestListMonitoredCards:
    """Tests for listing cards under monitoring."""

    @pytest.mark.asyncio
    async def test_filters_to_monitored_lists(self):
        handler = board_handler(
            [
                raw_card("c1", "list-doing"),
                raw_card("c2", "list-todo"),
                raw_card("c3", "list-hold", due="2024-01-09T12:00:00.000Z"),
                raw_card("c4", "list-doing", closed=True),
            ]
        )
        client = make_client(handler)

        cards = await client.list_monitored_cards()

        assert [c.card_id for c in cards] == ["c1", "c3"]
        assert cards[0].list_name == "Doing"
        assert cards[0].url == "https://trello.com/c/c1"
        assert cards[1].due_at == datetime(2024, 1, 9, 12, 0, tzinfo=UTC)
        assert handler.requests[0].url.params["key"] == "key"
        assert handler.requests[0].url.params["token"] == "token"

    @pytest.mark.asyncio
    async def test_list_names_match_case_insensitively(self):
        handler = board_handler([raw_card("c1", "list-todo")])
        client = make_client(handler, trello_monitored_lists=["to do"])

        cards = await client.list_monitored_cards()

        assert [c.card_id for c in cards] == ["c1"]

    @pytest.mark.asyncio
    async def test_system_member_is_not_a_recipient(self):
        members = [
            {"id": SYSTEM_MEMBER, "username": "reminder-bot"},
            {"id": "m-bob", "username": "bob", "fullName": "Bob"},
        ]
        client = make_client(board_handler([raw_card("c1", members=members)]))

        (card,) = await client.list_monitored_cards()

        assert [m.member_id for m in card.members] == ["m-bob"]
        assert card.members[0].full_name == "Bob"

    @pytest.mark.asyncio
    async def test_respects_card_limit(self):
        cards = [raw_card(f"c{i}") for i in range(5)]
        client = make_client(board_handler(cards), max_cards_per_cycle=3)

        listed = await client.list_monitored_cards()

        assert len(listed) == 3

    @pytest.mark.asyncio
    async def test_unparsable_due_date_is_ignored(self):
        client = make_client(board_handler([raw_card("c1", due="soon")]))

        (card,) = await client.list_monitored_cards()

        assert card.due_at is None

    @pytest.mark.asyncio
    async def test_board_without_monitored_lists_yields_nothing(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/lists"):
                return httpx.Response(200, json=[{"id": "list-done", "name": "Done"}])
            raise AssertionError("cards should not be requested")

        client = make_client(handler)

        assert await client.list_monitored_cards() == []


class TestErrorMapping:
    """Tests for mapping HTTP failures onto the error taxonomy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failures(self, status_code):
        client = make_client(lambda request: httpx.Response(status_code))
        with pytest.raises(BoardAuthError):
            await client.list_monitored_cards()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_outages(self, status_code):
        client = make_client(lambda request: httpx.Response(status_code))
        with pytest.raises(ExternalApiUnavailable):
            await client.list_monitored_cards()

    @pytest.mark.asyncio
    async def test_connection_error_is_outage(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(ExternalApiUnavailable):
            await client.get_card_activity("c1", datetime(2024, 1, 8, tzinfo=UTC))

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = make_client(lambda request: httpx.Response(404, text="card not found"))
        with pytest.raises(TrelloApiError) as exc_info:
            await client.post_comment("missing", "hello")
        assert exc_info.value.status_code == 404

    def test_auth_error_is_an_outage(self):
        # Callers that abort a cycle on outages also abort on bad credentials
        assert issubclass(BoardAuthError, ExternalApiUnavailable)


class TestCardActions:
    @pytest.mark.asyncio
    async def test_get_card_activity(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[{"id": "a1"}])

        client = make_client(handler)
        actions = await client.get_card_activity("c1", datetime(2024, 1, 8, 8, 0, tzinfo=UTC))

        assert actions == [{"id": "a1"}]
        assert seen["path"] == "/1/cards/c1/actions"
        assert seen["params"]["since"] == "2024-01-08T08:00:00+00:00"
        assert "commentCard" in seen["params"]["filter"]

    @pytest.mark.asyncio
    async def test_post_comment_returns_action_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["text"] = request.url.params["text"]
            return httpx.Response(200, json={"id": "action-9"})

        client = make_client(handler)
        action_id = await client.post_comment("c1", "@alice please update")

        assert action_id == "action-9"
        assert seen == {
            "method": "POST",
            "path": "/1/cards/c1/actions/comments",
            "text": "@alice please update",
        }


class TestParseTrelloDatetime:
    def test_parses_zulu_time(self):
        assert parse_trello_datetime("2024-01-08T08:00:00.000Z") == datetime(
            2024, 1, 8, 8, 0, tzinfo=UTC
        )

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values(self, value):
        assert parse_trello_datetime(value) is None
