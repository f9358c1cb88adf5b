"""Background scheduler that resumes scan runs left unfinished by a crash."""

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from bodyscan_api.core.config import Settings, get_settings
from bodyscan_api.services.pipeline import ScanPipeline

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def run_resume_sweep(pipeline: ScanPipeline, stale_after_minutes: int) -> None:
    """
    Hand stalled scans back to the pipeline.

    This is called by APScheduler on the configured interval.
    """
    logger.info("Starting scheduled resume sweep...")

    try:
        resumed = await pipeline.resume_stalled(timedelta(minutes=stale_after_minutes))
        logger.info(f"Resume sweep completed: {resumed} scans resumed")
    except Exception as e:
        logger.exception(f"Resume sweep error: {e}")


def start_scheduler(
    pipeline: ScanPipeline,
    settings: Settings | None = None,
) -> AsyncIOScheduler | None:
    """
    Start the background scheduler if enabled.

    Args:
        pipeline: Pipeline the sweeper re-invokes
        settings: Optional settings instance

    Returns:
        Scheduler instance if started, None otherwise
    """
    global _scheduler

    settings = settings or get_settings()

    if not settings.resume_schedule_enabled:
        logger.info("Resume sweeper is disabled")
        return None

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        run_resume_sweep,
        trigger=IntervalTrigger(minutes=settings.resume_interval_minutes),
        args=[pipeline, settings.stale_after_minutes],
        id="scan_resume_sweep",
        name="Resume stalled scan runs",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    _scheduler.start()

    logger.info(
        f"Scheduler started: resume sweep every {settings.resume_interval_minutes} min "
        f"(stale after {settings.stale_after_minutes} min)"
    )

    return _scheduler


def stop_scheduler() -> None:
    """Stop the background scheduler if running."""
    global _scheduler

    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    _scheduler = None


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler
