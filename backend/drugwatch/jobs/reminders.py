"""
Overdue-in-store reminder job.

Boxes held in store longer than ``REMINDER_AFTER_DAYS`` trigger one SMS to
the facility contacts. The sweep itself lives in the lifecycle controller;
this module only schedules it.
"""

import logging

from drugwatch.core.config import settings
from drugwatch.core.exceptions import DrugWatchError
from drugwatch.services.lifecycle import ReminderReport

logger = logging.getLogger(__name__)


async def run_reminder_sweep() -> ReminderReport | None:
    from drugwatch.dependencies import get_gateway, get_store, shared_lifecycle

    lifecycle = shared_lifecycle(get_store(), get_gateway())
    try:
        report = await lifecycle.remind_overdue()
    except DrugWatchError as e:
        logger.error(f"[REMINDER] Sweep failed: {e.message}")
        return None
    logger.info(
        f"[REMINDER] Sweep done: checked={report.checked} sent={len(report.sent)} "
        f"failed={len(report.failed)} skipped={len(report.skipped)}"
    )
    return report


def register_reminder_job(scheduler):
    """Register the reminder sweep every ``REMINDER_SWEEP_MINUTES``."""
    scheduler.add_job(
        run_reminder_sweep,
        'interval',
        minutes=settings.REMINDER_SWEEP_MINUTES,
        id='overdue_in_store_reminders',
        name='Overdue in-store reminders',
        replace_existing=True,
    )
    logger.info(f"[REMINDER] Job registered every {settings.REMINDER_SWEEP_MINUTES} min")
