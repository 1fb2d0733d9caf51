"""
Scheduler module using APScheduler.
Periodically recomputes every lookup row from the stores and sweeps orphans,
repairing anything a crashed or partially failed write left behind.
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from asset_geo.config import get_settings
from asset_geo.models import BatchSyncReport
from asset_geo.sync import ConsistencySynchronizer

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _reconcile_job(synchronizer: ConsistencySynchronizer) -> Optional[BatchSyncReport]:
    """Wrapper that catches exceptions so the scheduler doesn't die on failure."""
    try:
        logger.info("Scheduled reconcile starting...")
        report = await synchronizer.reconcile_all()
        logger.info("Scheduled reconcile completed: %s", report.model_dump())
        return report
    except Exception as e:
        logger.error("Scheduled reconcile failed: %s", e, exc_info=True)
        return None


def create_scheduler(synchronizer: ConsistencySynchronizer) -> AsyncIOScheduler:
    """Create and configure the APScheduler instance."""
    global _scheduler
    settings = get_settings().scheduler

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _reconcile_job,
        trigger=IntervalTrigger(minutes=settings.interval_minutes),
        args=[synchronizer],
        id="asset_geo_reconcile",
        name="Report unit reconcile",
        replace_existing=True,
        max_instances=1,  # prevent overlapping runs
    )

    logger.info("Scheduler configured: reconcile runs every %d minutes", settings.interval_minutes)
    return _scheduler


def start_scheduler(synchronizer: ConsistencySynchronizer) -> bool:
    """Start the scheduler (non-blocking). Needs a running event loop."""
    settings = get_settings().scheduler
    if not settings.enabled:
        logger.info("Scheduler disabled via config")
        return False

    scheduler = create_scheduler(synchronizer)
    scheduler.start()
    logger.info("Scheduler started")
    return True


def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
        _scheduler = None
