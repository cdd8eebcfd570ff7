"""Tests for the pure escalation policy."""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from autoreminder.core.escalation import (
    Action,
    ActionKind,
    Channel,
    ConfigSnapshot,
    CycleStatus,
    SkipReason,
    calendar_days_between,
    channels_for_level,
    decide,
    is_urgent,
    state_after_claim,
    state_after_response,
    state_for_new_cycle,
    weekday_number,
)
from tests.conftest import MONDAY_9AM, make_card, make_recipient

AMS = ZoneInfo("Europe/Amsterdam")
SATURDAY_9AM = MONDAY_9AM + timedelta(days=5)
SUNDAY_9AM = MONDAY_9AM + timedelta(days=6)
FRIDAY_9AM = MONDAY_9AM + timedelta(days=4)


def advance(card, action, now):
    """Apply a claimed action to a card, as the store would."""
    return card.model_copy(
        update={"escalation_state": state_after_claim(card.escalation_state, action, now)}
    )


class TestCalendarHelpers:
    """Tests for weekday numbering and calendar-day arithmetic."""

    def test_weekday_numbering_starts_on_sunday(self):
        assert weekday_number(SUNDAY_9AM, AMS) == 0
        assert weekday_number(MONDAY_9AM, AMS) == 1
        assert weekday_number(SATURDAY_9AM, AMS) == 6

    def test_weekday_uses_configured_timezone(self):
        # 23:30 UTC on Saturday is already Sunday in Amsterdam
        late_saturday = datetime(2024, 1, 13, 23, 30, tzinfo=UTC)
        assert weekday_number(late_saturday, UTC) == 6
        assert weekday_number(late_saturday, AMS) == 0

    def test_calendar_days_cross_midnight(self):
        before = datetime(2024, 1, 8, 22, 50, tzinfo=UTC)  # 23:50 local
        after = datetime(2024, 1, 8, 23, 10, tzinfo=UTC)  # 00:10 local
        assert calendar_days_between(before, after, AMS) == 1
        assert calendar_days_between(before, after, UTC) == 0

    def test_calendar_days_ignore_time_of_day(self):
        start = datetime(2024, 1, 8, 6, 0, tzinfo=UTC)
        end = datetime(2024, 1, 10, 5, 0, tzinfo=UTC)
        assert calendar_days_between(start, end, AMS) == 2

    def test_naive_datetimes_rejected(self):
        with pytest.raises(ValueError):
            weekday_number(datetime(2024, 1, 8, 9, 0), AMS)

    def test_channel_ladder(self):
        assert channels_for_level(0) == (Channel.comment,)
        assert channels_for_level(1) == (Channel.email,)
        assert channels_for_level(2) == (Channel.sms, Channel.chat, Channel.email)
        assert channels_for_level(9) == channels_for_level(2)

    def test_negative_level_rejected(self):
        with pytest.raises(ValueError):
            channels_for_level(-1)


class TestDecideNoOps:
    """Tests for the no-op branches, in evaluation order."""

    def test_responded_card_always_noop(self, config):
        for days in range(0, 15):
            card = make_card(
                has_responded=True,
                responded_at=MONDAY_9AM,
                status=CycleStatus.resolved,
            )
            action = decide(card, MONDAY_9AM + timedelta(days=days), config)
            assert action.kind == ActionKind.noop
            assert action.skip_reason == SkipReason.responded

    def test_exhausted_cycle_is_closed(self, config):
        card = make_card(status=CycleStatus.exhausted, reminder_level=4)
        action = decide(card, MONDAY_9AM + timedelta(days=1), config)
        assert action.skip_reason == SkipReason.cycle_closed

    def test_archived_card_is_inactive(self, config):
        card = make_card(is_active=False)
        assert decide(card, MONDAY_9AM, config).skip_reason == SkipReason.inactive

    def test_paused_card(self, config):
        card = make_card(paused_until=MONDAY_9AM + timedelta(days=2))
        action = decide(card, MONDAY_9AM + timedelta(days=1), config)
        assert action.skip_reason == SkipReason.paused

    def test_expired_pause_is_ignored(self, config):
        card = make_card(paused_until=MONDAY_9AM - timedelta(hours=1))
        assert decide(card, MONDAY_9AM, config).kind == ActionKind.remind

    @pytest.mark.parametrize("now", [SATURDAY_9AM, SUNDAY_9AM])
    def test_weekend_suppressed_without_override(self, now):
        config = ConfigSnapshot(weekend_days=frozenset({0, 6}), allow_urgent_override=False)
        card = make_card(due_at=now)
        action = decide(card, now, config)
        assert action.kind == ActionKind.noop
        assert action.skip_reason == SkipReason.weekend

    def test_weekend_not_urgent_card_suppressed(self, config):
        card = make_card(due_at=SATURDAY_9AM + timedelta(days=5))
        assert decide(card, SATURDAY_9AM, config).skip_reason == SkipReason.weekend

    def test_weekend_urgent_card_overrides(self, config):
        card = make_card(due_at=SATURDAY_9AM + timedelta(hours=6))
        action = decide(card, SATURDAY_9AM, config)
        assert action.kind == ActionKind.remind

    def test_overdue_card_is_urgent(self, config):
        card = make_card(due_at=MONDAY_9AM - timedelta(days=3))
        assert is_urgent(card, SUNDAY_9AM, config)

    def test_card_without_due_date_is_not_urgent(self, config):
        assert not is_urgent(make_card(), SUNDAY_9AM, config)

    def test_custom_weekend_days(self):
        config = ConfigSnapshot(weekend_days=frozenset({1}))  # Mondays off
        assert decide(make_card(), MONDAY_9AM, config).skip_reason == SkipReason.weekend
        assert decide(make_card(), SATURDAY_9AM, config).kind == ActionKind.remind

    def test_no_recipients(self, config):
        card = make_card(recipients=())
        assert decide(card, MONDAY_9AM, config).skip_reason == SkipReason.no_recipients

    def test_already_contacted_today(self, config):
        card = make_card(
            last_contact_at=MONDAY_9AM + timedelta(hours=1),
            reminder_level=1,
            status=CycleStatus.awaiting_response,
        )
        action = decide(card, MONDAY_9AM + timedelta(hours=8), config)
        assert action.skip_reason == SkipReason.contacted_today

    def test_contact_before_local_midnight_is_yesterday(self, config):
        contacted = datetime(2024, 1, 8, 22, 30, tzinfo=UTC)  # 23:30 local
        card = make_card(
            last_contact_at=contacted,
            reminder_level=1,
            status=CycleStatus.awaiting_response,
        )
        action = decide(card, contacted + timedelta(hours=1), config)
        assert action.kind == ActionKind.remind
        assert action.level == 1

    def test_naive_now_rejected(self, config):
        with pytest.raises(ValueError):
            decide(make_card(), datetime(2024, 1, 8, 9, 0), config)


class TestDecideEscalation:
    """Tests for reminder levels and the final escalation."""

    def test_first_day_posts_comment(self, config):
        action = decide(make_card(), MONDAY_9AM, config)
        assert action.kind == ActionKind.remind
        assert action.level == 0
        assert action.channels == (Channel.comment,)

    def test_level_follows_elapsed_days(self, config):
        card = make_card(
            reminder_level=1,
            last_contact_at=MONDAY_9AM,
            status=CycleStatus.awaiting_response,
        )
        action = decide(card, MONDAY_9AM + timedelta(days=4), config)
        assert action.level == 4
        assert action.channels == (Channel.sms, Channel.chat, Channel.email)

    def test_level_never_goes_below_reminder_level(self, config):
        card = make_card(
            reminder_level=3,
            last_contact_at=MONDAY_9AM + timedelta(days=1),
            status=CycleStatus.awaiting_response,
        )
        action = decide(card, MONDAY_9AM + timedelta(days=2), config)
        assert action.level == 3

    def test_final_escalation_at_max_days(self):
        config = ConfigSnapshot(max_reminder_days=3)
        card = make_card(
            reminder_level=3,
            last_contact_at=MONDAY_9AM + timedelta(days=2),
            status=CycleStatus.awaiting_response,
        )
        action = decide(card, MONDAY_9AM + timedelta(days=3), config)
        assert action.kind == ActionKind.final
        assert action.level == 3
        assert action.channels == (Channel.email,)

    def test_every_elapsed_day_maps_to_one_outcome(self):
        config = ConfigSnapshot(max_reminder_days=5, allow_urgent_override=False)
        seen = set()
        for days in range(0, 12):
            now = MONDAY_9AM + timedelta(days=days)
            action = decide(make_card(), now, config)
            weekday = weekday_number(now, AMS)
            if weekday in (0, 6):
                assert action.skip_reason == SkipReason.weekend
                outcome = "weekend"
            elif days >= 5:
                assert action.kind == ActionKind.final
                outcome = "final"
            else:
                assert action.kind == ActionKind.remind
                outcome = f"level{min(action.level, 2)}"
            seen.add(outcome)
        assert seen == {"level0", "level1", "level2", "final", "weekend"}

    def test_monday_open_scenario(self):
        """Mon comment, Tue email, Wed SMS+chat+email, Thu final."""
        config = ConfigSnapshot(max_reminder_days=3)
        card = make_card(
            recipients=(make_recipient(email="a@example.com", phone="5551234567"),)
        )
        expected = [
            (ActionKind.remind, (Channel.comment,)),
            (ActionKind.remind, (Channel.email,)),
            (ActionKind.remind, (Channel.sms, Channel.chat, Channel.email)),
            (ActionKind.final, (Channel.email,)),
        ]

        for day, (kind, channels) in enumerate(expected):
            now = MONDAY_9AM + timedelta(days=day)
            action = decide(card, now, config)
            assert (action.kind, action.channels) == (kind, channels)
            card = advance(card, action, now)

        assert card.escalation_state.status == CycleStatus.exhausted
        later = decide(card, MONDAY_9AM + timedelta(days=4), config)
        assert later.skip_reason == SkipReason.cycle_closed

    def test_friday_open_weekend_catch_up(self, config):
        """Poller down over the weekend: one send on Monday, no catch-up."""
        card = make_card(opened_at=FRIDAY_9AM)
        action = decide(card, FRIDAY_9AM, config)
        assert action.level == 0
        card = advance(card, action, FRIDAY_9AM)

        for offset in (1, 2):
            weekend = FRIDAY_9AM + timedelta(days=offset)
            assert decide(card, weekend, config).skip_reason == SkipReason.weekend

        monday = FRIDAY_9AM + timedelta(days=3)
        action = decide(card, monday, config)
        assert action.kind == ActionKind.remind
        assert action.level == 3
        card = advance(card, action, monday)

        # Second poll the same Monday sends nothing
        again = decide(card, monday + timedelta(hours=2), config)
        assert again.skip_reason == SkipReason.contacted_today


class TestStateTransitions:
    """Tests for state changes applied around a decision."""

    def test_claim_advances_level_and_contact(self):
        card = make_card()
        action = Action(
            kind=ActionKind.remind, level=0, channels=(Channel.comment,), reason="day 0"
        )
        state = state_after_claim(card.escalation_state, action, MONDAY_9AM)
        assert state.reminder_level == 1
        assert state.last_contact_at == MONDAY_9AM
        assert state.status == CycleStatus.awaiting_response

    def test_claiming_a_noop_is_rejected(self):
        card = make_card()
        with pytest.raises(ValueError):
            state_after_claim(
                card.escalation_state,
                Action.noop(SkipReason.weekend, "weekend"),
                MONDAY_9AM,
            )

    def test_response_resolves_cycle(self):
        state = state_after_response(make_card().escalation_state, MONDAY_9AM)
        assert state.has_responded
        assert state.status == CycleStatus.resolved
        assert state.is_terminal

    def test_new_cycle_resets_level(self):
        card = make_card(reminder_level=4, status=CycleStatus.exhausted)
        later = MONDAY_9AM + timedelta(days=10)
        state = state_for_new_cycle(card.escalation_state, later)
        assert state.cycle == 2
        assert state.reminder_level == 0
        assert state.status == CycleStatus.open
        assert state.cycle_opened_at == later

    def test_responded_requires_resolved_status(self):
        with pytest.raises(ValidationError):
            make_card(has_responded=True)


class TestModels:
    """Tests for snapshot validation."""

    def test_recipients_unique_by_identity(self):
        first = make_recipient("m-1", "alice")
        duplicate = make_recipient("m-1", "alice2")
        other = make_recipient("m-2", "bob")
        card = make_card(recipients=(first, other, duplicate))
        assert [r.username for r in card.recipients] == ["alice", "bob"]

    def test_invalid_weekday_rejected(self):
        with pytest.raises(ValidationError):
            ConfigSnapshot(weekend_days=frozenset({7}))

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            ConfigSnapshot(timezone="Mars/Olympus")

    def test_max_reminder_days_bounds(self):
        with pytest.raises(ValidationError):
            ConfigSnapshot(max_reminder_days=0)
        with pytest.raises(ValidationError):
            ConfigSnapshot(max_reminder_days=31)

    def test_noop_cannot_carry_channels(self):
        with pytest.raises(ValidationError):
            Action(kind=ActionKind.noop, channels=(Channel.email,), reason="x")
