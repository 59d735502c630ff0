"""
Recurring Events — Periodic driver.

Fires the reconciler for every active template at a fixed interval. Each
tick is idempotent, so a missed or aborted tick is simply caught up by the
next one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings

if TYPE_CHECKING:
    from src.core.reconciler import BatchReport, Reconciler

logger = logging.getLogger(__name__)

JOB_ID = "process_recurring_events"

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def process_recurring_events(reconciler: Reconciler) -> BatchReport:
    """One driver tick: reconcile all active templates."""
    logger.info("Processing recurring events...")
    report = await reconciler.process_all()
    for template_id, error in report.failures.items():
        logger.warning("Template #%d will be retried next tick: %s", template_id, error)
    return report


def start_scheduler(
    reconciler: Reconciler,
    interval_minutes: int | None = None,
) -> AsyncIOScheduler:
    """Register the recurring-events job and start the scheduler.

    Must be called with a running asyncio event loop. The first tick fires
    immediately; later ticks every `interval_minutes`.
    """
    global _scheduler

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return _scheduler

    minutes = interval_minutes or settings.PROCESS_INTERVAL_MINUTES
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        process_recurring_events,
        IntervalTrigger(minutes=minutes),
        args=[reconciler],
        id=JOB_ID,
        name="Process recurring event templates",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info("Recurring events scheduled every %d minutes", minutes)
    return scheduler


def stop_scheduler(wait: bool = False) -> None:
    """Shut the scheduler down; templates not yet reached wait for the next run."""
    global _scheduler

    if _scheduler is None:
        logger.warning("No scheduler running")
        return

    _scheduler.shutdown(wait=wait)
    _scheduler = None
    logger.info("Recurring events scheduler stopped")
