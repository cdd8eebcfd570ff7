"""Tests for response detection."""

from datetime import timedelta

import pytest

from autoreminder.core.errors import MalformedActivityError
from autoreminder.core.escalation import EPOCH, CycleStatus
from autoreminder.services.response_detector import earliest_response, has_new_response
from tests.conftest import MONDAY_9AM, SYSTEM_MEMBER, FakeBoard, make_card


def contacted_card():
    return make_card(
        last_contact_at=MONDAY_9AM,
        reminder_level=1,
        status=CycleStatus.awaiting_response,
    )


class TestEarliestResponse:
    """Tests for filtering board actions."""

    def test_no_actions(self):
        check = earliest_response([], MONDAY_9AM, SYSTEM_MEMBER)
        assert not check.responded
        assert check.responded_at is None

    def test_system_member_activity_ignored(self):
        actions = [
            {"id": "1", "date": "2024-01-08T10:00:00.000Z", "idMemberCreator": SYSTEM_MEMBER}
        ]
        assert not earliest_response(actions, MONDAY_9AM, SYSTEM_MEMBER).responded

    def test_activity_at_since_is_not_new(self):
        actions = [{"id": "1", "date": "2024-01-08T08:00:00.000Z", "idMemberCreator": "m-bob"}]
        assert not earliest_response(actions, MONDAY_9AM, SYSTEM_MEMBER).responded

    def test_returns_earliest_qualifying_timestamp(self):
        actions = [
            {"id": "3", "date": "2024-01-08T15:00:00.000Z", "idMemberCreator": "m-alice"},
            {"id": "2", "date": "2024-01-08T09:00:00.000Z", "idMemberCreator": SYSTEM_MEMBER},
            {"id": "1", "date": "2024-01-08T11:00:00.000Z", "idMemberCreator": "m-bob"},
        ]
        check = earliest_response(actions, MONDAY_9AM, SYSTEM_MEMBER)
        assert check.responded
        assert check.responded_at == MONDAY_9AM + timedelta(hours=3)

    def test_any_non_system_author_counts(self):
        # Authorship is checked against the system identity only
        actions = [
            {"id": "1", "date": "2024-01-08T12:00:00Z", "memberCreator": {"id": "m-stranger"}}
        ]
        assert earliest_response(actions, MONDAY_9AM, SYSTEM_MEMBER).responded

    @pytest.mark.parametrize("date", [None, "", "yesterday", 1704700800])
    def test_malformed_date_raises(self, date):
        actions = [{"id": "1", "date": date, "idMemberCreator": "m-bob"}]
        with pytest.raises(MalformedActivityError):
            earliest_response(actions, MONDAY_9AM, SYSTEM_MEMBER)


class TestHasNewResponse:
    """Tests for querying the board."""

    @pytest.mark.asyncio
    async def test_queries_since_last_contact(self):
        board = FakeBoard()
        board.respond("card-1", MONDAY_9AM + timedelta(hours=2))

        check = await has_new_response(board, contacted_card())

        assert check.responded
        assert board.activity_calls == [("card-1", MONDAY_9AM)]

    @pytest.mark.asyncio
    async def test_defaults_to_epoch_when_never_contacted(self):
        board = FakeBoard()
        await has_new_response(board, make_card())
        assert board.activity_calls == [("card-1", EPOCH)]

    @pytest.mark.asyncio
    async def test_reminder_comment_is_not_a_response(self):
        board = FakeBoard()
        board.respond("card-1", MONDAY_9AM + timedelta(minutes=1), author=SYSTEM_MEMBER)

        check = await has_new_response(board, contacted_card())

        assert not check.responded
