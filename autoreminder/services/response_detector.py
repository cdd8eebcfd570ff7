"""Response detection.

Decides whether a human reacted to a card after our last reminder. Only
the author of each action is checked: anything not posted by the system
member counts, whoever the card is assigned to.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from autoreminder.core.errors import MalformedActivityError
from autoreminder.core.escalation import EPOCH, CardSnapshot
from autoreminder.logging_config import get_logger
from autoreminder.services.trello_client import parse_trello_datetime

logger = get_logger(__name__)


class ActivitySource(Protocol):
    system_member_id: str

    async def get_card_activity(
        self, card_id: str, since: datetime
    ) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class ResponseCheck:
    responded: bool
    responded_at: datetime | None = None


NO_RESPONSE = ResponseCheck(responded=False)


def _action_time(action: dict[str, Any]) -> datetime:
    raw = action.get("date")
    if raw is not None and not isinstance(raw, str):
        raise MalformedActivityError(f"Unparsable activity date: {raw!r}")
    try:
        moment = parse_trello_datetime(raw)
    except (TypeError, ValueError) as e:
        raise MalformedActivityError(f"Unparsable activity date: {raw!r}") from e
    if moment is None:
        raise MalformedActivityError(f"Activity {action.get('id')} has no date")
    if moment.tzinfo is None:
        raise MalformedActivityError(f"Activity date lacks a timezone: {raw!r}")
    return moment


def _author(action: dict[str, Any]) -> str | None:
    author = action.get("idMemberCreator")
    if author:
        return author
    creator = action.get("memberCreator") or {}
    return creator.get("id")


def earliest_response(
    actions: list[dict[str, Any]],
    since: datetime,
    system_member_id: str,
) -> ResponseCheck:
    """Find the earliest action strictly after ``since`` not by the system."""
    earliest: datetime | None = None
    for action in actions:
        moment = _action_time(action)
        if moment <= since:
            continue
        if _author(action) == system_member_id:
            continue
        if earliest is None or moment < earliest:
            earliest = moment

    if earliest is None:
        return NO_RESPONSE
    return ResponseCheck(responded=True, responded_at=earliest)


async def has_new_response(
    board: ActivitySource,
    card: CardSnapshot,
    since: datetime | None = None,
) -> ResponseCheck:
    """Check the board for a response on ``card``.

    Args:
        board: Board client providing the card's activity.
        card: Card snapshot.
        since: Lower bound (exclusive). Defaults to the card's last contact,
            or the epoch when it was never contacted.

    Raises:
        MalformedActivityError: If an activity entry cannot be interpreted.
        ExternalApiUnavailable: If the board cannot be reached.
    """
    if since is None:
        since = card.escalation_state.last_contact_at or EPOCH

    actions = await board.get_card_activity(card.card_id, since)
    check = earliest_response(actions, since, board.system_member_id)

    if check.responded:
        logger.info(
            "Response detected",
            card_id=card.card_id,
            responded_at=check.responded_at.isoformat(),
        )
    return check
