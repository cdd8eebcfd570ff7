"""Tests for process settings validation."""

from unittest.mock import patch

import pytest

from autoreminder.config import settings_errors, validate_settings
from tests.conftest import make_settings


class TestSettingsErrors:
    def test_valid_settings(self):
        assert settings_errors(make_settings()) == []

    @pytest.mark.parametrize(
        ("overrides", "fragment"),
        [
            ({"worker_pool_size": 0}, "WORKER_POOL_SIZE"),
            ({"worker_pool_size": 33}, "WORKER_POOL_SIZE"),
            ({"poll_interval_minutes": 0}, "POLL_INTERVAL_MINUTES"),
            ({"cycle_deadline_seconds": 0}, "CYCLE_DEADLINE_SECONDS"),
            ({"delivery_max_attempts": 0}, "DELIVERY_MAX_ATTEMPTS"),
            ({"default_weekend_days": [0, 7]}, "DEFAULT_WEEKEND_DAYS"),
            ({"default_timezone": "Atlantis/Capital"}, "DEFAULT_TIMEZONE"),
        ],
    )
    def test_reports_problem(self, overrides, fragment):
        problems = settings_errors(make_settings(**overrides))
        assert len(problems) == 1
        assert fragment in problems[0]

    def test_credentials_required_outside_tests(self):
        problems = settings_errors(
            make_settings(testing=False, trello_api_key="", trello_token="")
        )
        assert problems == ["TRELLO_API_KEY and TRELLO_TOKEN are required."]

    def test_boards_required_outside_tests(self):
        problems = settings_errors(
            make_settings(
                testing=False,
                trello_api_key="key",
                trello_token="token",
                trello_board_ids=[],
            )
        )
        assert problems == ["TRELLO_BOARD_IDS must list at least one board."]

    def test_credentials_not_needed_when_monitoring_disabled(self):
        config = make_settings(testing=False, monitoring_enabled=False)
        assert settings_errors(config) == []


class TestValidateSettings:
    def test_exits_with_code_two(self, capsys):
        with (
            patch(
                "autoreminder.config.settings_errors",
                return_value=["POLL_INTERVAL_MINUTES must be at least 1."],
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            validate_settings()

        assert exc_info.value.code == 2
        assert "FATAL: POLL_INTERVAL_MINUTES" in capsys.readouterr().err

    def test_passes_silently(self):
        with patch("autoreminder.config.settings_errors", return_value=[]):
            validate_settings()
