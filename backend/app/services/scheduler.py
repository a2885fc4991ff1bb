"""Scheduler service for housekeeping jobs using APScheduler.

Both jobs are conditional forward transitions (pending -> expired,
active -> expired), so a run that overlaps with a webhook delivery cannot
undo a payment: whichever update matches the row's current status wins.
"""
import logging
import os
import multiprocessing
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.database import AsyncSessionLocal
from app.services.entitlement_store import EntitlementStore

logger = logging.getLogger(__name__)

# Initialize scheduler
scheduler = AsyncIOScheduler()

MASTER_PROCESS_NAMES = ("MainProcess", "SpawnProcess-1")


async def expire_stale_sessions(
    session_factory=AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> int:
    """Expire pending checkout sessions past their window plus the grace period."""
    try:
        logger.info("Running expire_stale_sessions job")
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=settings.SESSION_EXPIRY_GRACE_SECONDS)

        async with session_factory() as session:
            store = EntitlementStore(session)
            expired = await store.expire_stale_sessions(cutoff)
            await store.commit()

        logger.info(f"Expired {expired} stale checkout sessions")
        return expired

    except Exception as e:
        logger.error(f"Error in expire_stale_sessions: {e}", exc_info=True)
        return 0


async def expire_lapsed_rentals(
    session_factory=AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> int:
    """Flip active rentals whose window has closed to expired."""
    try:
        logger.info("Running expire_lapsed_rentals job")
        now = now or datetime.utcnow()

        async with session_factory() as session:
            store = EntitlementStore(session)
            expired = await store.expire_lapsed_rentals(now)
            await store.commit()

        logger.info(f"Expired {expired} lapsed rentals")
        return expired

    except Exception as e:
        logger.error(f"Error in expire_lapsed_rentals: {e}", exc_info=True)
        return 0


def is_master_process() -> bool:
    """Only one process runs the jobs when uvicorn is started with --workers."""
    return multiprocessing.current_process().name in MASTER_PROCESS_NAMES


def start_scheduler():
    """Start the APScheduler with the housekeeping jobs."""
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name

    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled by configuration")
        return

    if not is_master_process():
        logger.info(f"Skipping scheduler on {current_process_name} (PID: {current_pid})")
        return

    logger.info(f"Starting scheduler on {current_process_name} (PID: {current_pid})...")

    # Job 1: Expire stale checkout sessions every 5 minutes
    scheduler.add_job(
        expire_stale_sessions,
        trigger=IntervalTrigger(minutes=5),
        id="expire_stale_sessions",
        name="Expire stale checkout sessions",
        replace_existing=True
    )

    # Job 2: Expire lapsed rentals every 15 minutes (staggered: starts at :02)
    scheduler.add_job(
        expire_lapsed_rentals,
        trigger=IntervalTrigger(minutes=15, start_date=datetime.utcnow() + timedelta(minutes=2)),
        id="expire_lapsed_rentals",
        name="Expire lapsed rentals",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler if it is running."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
