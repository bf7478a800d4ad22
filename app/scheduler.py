"""
Scheduled tasks for the back office.

Runs inside the FastAPI process when SCHEDULER_ENABLED is set:
- a nightly OLX taxonomy refresh (categories, attributes, locations)
- a watchdog that logs imports which stopped making progress
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from app.core.config import get_settings
from app.core.exceptions import OLXAuthenticationError, TaxonomySyncError
from app.database import async_session
from app.models.shop import OlxCredential
from app.services import import_tracker
from app.services.olx.auth import OLXAuthManager
from app.services.olx.taxonomy_sync import TaxonomySyncService

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def taxonomy_sync_task(session_factory=async_session):
    """
    Refresh the shared OLX taxonomy.

    The taxonomy is the same for every shop, so the first shop whose account
    can log in is used; the rest are only tried if that one is rejected.
    """
    logger.info("=== SCHEDULED TAXONOMY SYNC STARTING ===")
    async with session_factory() as db:
        stmt = (
            select(OlxCredential.shop_id)
            .where(OlxCredential.username.isnot(None))
            .where(OlxCredential.password.isnot(None))
            .order_by(OlxCredential.shop_id)
        )
        shop_ids = (await db.execute(stmt)).scalars().all()
        if not shop_ids:
            logger.warning("No shop has OLX credentials; skipping taxonomy sync")
            return None

        auth = OLXAuthManager(session_factory=session_factory)
        for shop_id in shop_ids:
            try:
                result = await TaxonomySyncService(db, auth.client_for(shop_id)).sync_all()
            except (OLXAuthenticationError, TaxonomySyncError) as e:
                logger.warning(f"Taxonomy sync with shop {shop_id} failed: {e}")
                await db.rollback()
                continue
            logger.info(
                f"Taxonomy sync finished: {result.categories.synced} categories, "
                f"{result.attributes.synced} attributes, {result.locations.synced} locations"
            )
            return result

    logger.error("Taxonomy sync failed for every shop with credentials")
    return None


async def stale_import_watchdog_task(session_factory=async_session):
    """Log imports that are not finished and have not moved for IMPORT_STALE_MINUTES."""
    settings = get_settings()
    async with session_factory() as db:
        stale = await import_tracker.find_stale_imports(db, settings.IMPORT_STALE_MINUTES)

    for log in stale:
        logger.warning(
            f"Import {log.id} (shop {log.shop_id}, {log.source}) looks stale: status {log.status}, "
            f"phase {log.current_phase}, {log.processed_rows}/{log.total_rows} rows, last update {log.updated_at}"
        )
    return len(stale)


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        taxonomy_sync_task,
        CronTrigger(hour=settings.TAXONOMY_SYNC_CRON_HOUR, minute=0),
        id="olx_taxonomy_sync",
        name="OLX Taxonomy Sync",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=3600,
    )
    logger.info(f"Taxonomy sync scheduled daily at {settings.TAXONOMY_SYNC_CRON_HOUR:02d}:00")

    scheduler.add_job(
        stale_import_watchdog_task,
        IntervalTrigger(minutes=settings.STALE_IMPORT_CHECK_MINUTES),
        id="stale_import_watchdog",
        name="Stale Import Watchdog",
        replace_existing=True,
        max_instances=1,
    )

    return scheduler


async def start_scheduler():
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler()

    if not scheduler.running:
        scheduler.start()
        jobs = scheduler.get_jobs()
        logger.info(f"Scheduler started with {len(jobs)} jobs")
        for job in jobs:
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")
    scheduler = None


def get_scheduler_status():
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in scheduler.get_jobs()
        ],
    }
