"""Tests for the background poll scheduler."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from autoreminder.services import scheduler


@pytest_asyncio.fixture(autouse=True)
async def stopped_scheduler():
    yield
    scheduler.stop_scheduler()


class TestScheduler:
    @pytest.mark.asyncio
    async def test_start_registers_poll_job(self):
        started = scheduler.start_scheduler()

        assert scheduler.get_scheduler() is started
        job = started.get_job(scheduler.POLL_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert scheduler.next_run_time() is not None

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_instance(self):
        assert scheduler.start_scheduler() is scheduler.start_scheduler()

    @pytest.mark.asyncio
    async def test_stop(self):
        scheduler.start_scheduler()
        scheduler.stop_scheduler()

        assert scheduler.get_scheduler() is None
        assert scheduler.next_run_time() is None

    @pytest.mark.asyncio
    async def test_disabled_monitoring_schedules_nothing(self):
        with patch.object(scheduler.settings, "monitoring_enabled", False):
            started = scheduler.start_scheduler()

        assert started.get_job(scheduler.POLL_JOB_ID) is None


class TestRunMonitoringCycle:
    @pytest.mark.asyncio
    async def test_errors_do_not_escape(self):
        service = MagicMock()
        service.run_cycle = AsyncMock(side_effect=RuntimeError("database gone"))

        with patch(
            "autoreminder.services.scheduler.get_monitoring_service",
            return_value=service,
        ):
            await scheduler.run_monitoring_cycle()

        service.run_cycle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_runs_cycle(self, harness):
        with patch(
            "autoreminder.services.scheduler.get_monitoring_service",
            return_value=harness.service,
        ):
            await scheduler.run_monitoring_cycle()

        assert harness.service.last_report is not None
