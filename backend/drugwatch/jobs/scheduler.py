"""
APScheduler configuration.

One in-process scheduler, started from the application lifespan when
``ENABLE_SCHEDULER`` is set. Run a single API instance with the scheduler
enabled; the reminder guard is per process.
"""

import logging

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one sweep at a time
    'misfire_grace_time': 300,
}

scheduler = AsyncIOScheduler(
    jobstores={'default': MemoryJobStore()},
    executors={'default': AsyncIOExecutor()},
    job_defaults=job_defaults,
    timezone='Africa/Kampala',
)


def start_scheduler():
    """Register jobs and start the scheduler."""
    if scheduler.running:
        return
    from drugwatch.jobs.reminders import register_reminder_job

    register_reminder_job(scheduler)
    scheduler.start()
    logger.info("[SCHEDULER] Started")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[SCHEDULER] Stopped")
