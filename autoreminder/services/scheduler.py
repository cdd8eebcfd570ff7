"""Background poll scheduler.

APScheduler drives the monitoring poll cycle at a fixed interval. Only one
cycle runs at a time; a run that would overlap the previous one is skipped.
"""

from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from autoreminder.config import settings
from autoreminder.logging_config import get_logger
from autoreminder.services.monitoring import get_monitoring_service

logger = get_logger(__name__)

POLL_JOB_ID = "card_monitoring"

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def run_monitoring_cycle() -> None:
    """Run one poll cycle for all monitored cards.

    Errors never escape the job; the next interval tries again.
    """
    try:
        report = await get_monitoring_service().run_cycle()
    except Exception as e:
        logger.error(
            "Unexpected error in scheduled poll cycle",
            exc_info=True,
            error=str(e),
        )
        return

    if report.aborted:
        logger.warning("Scheduled poll cycle aborted", reason=report.abort_reason)


def start_scheduler() -> AsyncIOScheduler:
    """Start the background job scheduler.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    if settings.monitoring_enabled:
        scheduler.add_job(
            run_monitoring_cycle,
            trigger=IntervalTrigger(minutes=settings.poll_interval_minutes),
            id=POLL_JOB_ID,
            name="Card Monitoring Poll",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "Scheduled card monitoring job",
            interval_minutes=settings.poll_interval_minutes,
        )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance.

    Returns:
        The scheduler instance or None if not started
    """
    return scheduler


def next_run_time() -> datetime | None:
    """When the poll job fires next, if it is scheduled."""
    if scheduler is None:
        return None
    job = scheduler.get_job(POLL_JOB_ID)
    return job.next_run_time if job is not None else None
