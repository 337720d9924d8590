"""Background cleanup jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..workflows.pipeline import get_engine


logger = logging.getLogger(__name__)


# Global scheduler instance
scheduler = AsyncIOScheduler()


@scheduler.scheduled_job('interval', minutes=30, id='purge_expired_cache')
async def purge_expired_cache():
    """
    Drop cache entries past their horizon.

    Runs every 30 minutes.
    """
    try:
        cache = get_engine().cache
        if cache is None:
            return
        removed = await cache.cleanup()
        if any(removed.values()):
            logger.info(f"Purged expired cache entries: {removed}")
        else:
            logger.debug("No expired cache entries to purge")

    except Exception as e:
        logger.error(f"Error in purge_expired_cache job: {e}", exc_info=True)


def start_background_jobs():
    """Start all background jobs."""
    logger.info("Starting background jobs scheduler...")
    scheduler.start()
    logger.info(f"Background jobs started: {[job.id for job in scheduler.get_jobs()]}")


def stop_background_jobs():
    """Stop all background jobs."""
    if not scheduler.running:
        return
    logger.info("Stopping background jobs scheduler...")
    scheduler.shutdown(wait=False)
    logger.info("Background jobs stopped")


def get_job_status():
    """Get status of all background jobs."""
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
