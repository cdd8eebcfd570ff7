"""Trello board API client.

Lists the cards under monitoring, reads a card's action history and posts
reminder comments. Authentication uses the API key and token as query
parameters, as the Trello REST API expects.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from autoreminder.config import Settings, settings
from autoreminder.core.errors import (
    AutoReminderError,
    BoardAuthError,
    ExternalApiUnavailable,
)
from autoreminder.logging_config import get_logger

logger = get_logger(__name__)

CARD_FIELDS = "id,name,url,shortUrl,due,idBoard,idList,idMembers,closed"
MEMBER_FIELDS = "id,username,fullName,email"
ACTIVITY_FILTER = "commentCard,updateCard,addMemberToCard,removeMemberFromCard"


class TrelloApiError(AutoReminderError):
    """The board API rejected a request for one card (e.g. 404)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class BoardMember:
    member_id: str
    username: str = ""
    full_name: str = ""
    email: str | None = None


@dataclass(frozen=True)
class BoardCard:
    """One open card as observed on the board."""

    card_id: str
    name: str
    url: str
    board_id: str
    list_id: str
    list_name: str
    due_at: datetime | None = None
    members: tuple[BoardMember, ...] = field(default_factory=tuple)


def parse_trello_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by Trello ("...Z")."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class TrelloClient:
    """Async client for the subset of the Trello API the poller needs.

    Args:
        config: Process settings; defaults to the module-level settings.
        client: Optional pre-built httpx client (tests pass one with a
            MockTransport).
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = config or settings
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.trello_base_url,
            timeout=self._settings.trello_timeout_seconds,
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TrelloClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def system_member_id(self) -> str:
        return self._settings.trello_system_member_id

    def _auth_params(self) -> dict[str, str]:
        return {
            "key": self._settings.trello_api_key,
            "token": self._settings.trello_token,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Issue one request and map failures onto the error taxonomy.

        Raises:
            BoardAuthError: On 401/403.
            ExternalApiUnavailable: On network errors, 429 and 5xx.
            TrelloApiError: On any other non-2xx response.
        """
        query = {**self._auth_params(), **(params or {})}
        try:
            response = await self._client.request(method, path, params=query)
        except httpx.TimeoutException as e:
            raise ExternalApiUnavailable(f"Trello request timed out: {path}") from e
        except httpx.TransportError as e:
            raise ExternalApiUnavailable(f"Trello unreachable: {e}") from e

        if response.status_code in (401, 403):
            raise BoardAuthError(
                f"Trello rejected credentials ({response.status_code})"
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise ExternalApiUnavailable(
                f"Trello API error: {response.status_code} on {path}"
            )
        if response.status_code >= 400:
            raise TrelloApiError(
                f"Trello API error: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        return response.json()

    async def get_board_lists(self, board_id: str) -> dict[str, str]:
        """Return ``{list_id: list_name}`` for the board's open lists."""
        lists = await self._request(
            "GET",
            f"/boards/{board_id}/lists",
            params={"filter": "open", "fields": "id,name"},
        )
        return {item["id"]: item.get("name", "") for item in lists}

    async def list_monitored_cards(self) -> list[BoardCard]:
        """List open cards in the monitored lists of every configured board.

        The system member is never reported as a card member. At most
        ``max_cards_per_cycle`` cards are returned.
        """
        monitored = {name.casefold() for name in self._settings.trello_monitored_lists}
        limit = self._settings.max_cards_per_cycle
        cards: list[BoardCard] = []

        for board_id in self._settings.trello_board_ids:
            lists = await self.get_board_lists(board_id)
            wanted = {
                list_id: name
                for list_id, name in lists.items()
                if not monitored or name.casefold() in monitored
            }
            if not wanted:
                logger.warning(
                    "No monitored lists found on board",
                    board_id=board_id,
                    lists=sorted(self._settings.trello_monitored_lists),
                )
                continue

            raw_cards = await self._request(
                "GET",
                f"/boards/{board_id}/cards",
                params={
                    "filter": "open",
                    "fields": CARD_FIELDS,
                    "members": "true",
                    "member_fields": MEMBER_FIELDS,
                },
            )

            for raw in raw_cards:
                if raw.get("closed") or raw.get("idList") not in wanted:
                    continue
                cards.append(self._to_board_card(raw, board_id, wanted))
                if len(cards) >= limit:
                    logger.warning(
                        "Card limit reached, remaining cards skipped",
                        limit=limit,
                        board_id=board_id,
                    )
                    return cards

        return cards

    def _to_board_card(
        self,
        raw: dict[str, Any],
        board_id: str,
        lists: dict[str, str],
    ) -> BoardCard:
        members = tuple(
            BoardMember(
                member_id=member["id"],
                username=member.get("username") or "",
                full_name=member.get("fullName") or "",
                email=member.get("email"),
            )
            for member in raw.get("members") or []
            if member.get("id") and member["id"] != self.system_member_id
        )
        try:
            due_at = parse_trello_datetime(raw.get("due"))
        except ValueError:
            logger.warning("Ignoring unparsable due date", card_id=raw.get("id"))
            due_at = None

        return BoardCard(
            card_id=raw["id"],
            name=raw.get("name", ""),
            url=raw.get("shortUrl") or raw.get("url") or "",
            board_id=raw.get("idBoard") or board_id,
            list_id=raw["idList"],
            list_name=lists.get(raw["idList"], ""),
            due_at=due_at,
            members=members,
        )

    async def get_card_activity(
        self,
        card_id: str,
        since: datetime,
    ) -> list[dict[str, Any]]:
        """Return raw card actions newer than ``since`` (newest first)."""
        return await self._request(
            "GET",
            f"/cards/{card_id}/actions",
            params={
                "filter": ACTIVITY_FILTER,
                "since": since.isoformat(),
                "limit": 1000,
            },
        )

    async def post_comment(self, card_id: str, text: str) -> str:
        """Post a comment on a card and return the new action id."""
        response = await self._request(
            "POST",
            f"/cards/{card_id}/actions/comments",
            params={"text": text},
        )
        logger.info("Posted Trello comment", card_id=card_id)
        return str(response.get("id", ""))
