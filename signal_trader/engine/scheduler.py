"""APScheduler integration for FastAPI.

Runs the periodic status snapshot broadcast.
"""

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

SNAPSHOT_JOB_ID = "status_snapshot"


def add_snapshot_job(callback: Callable[[], Awaitable[None]], interval_seconds: int):
    """Add or replace the snapshot broadcast job."""
    scheduler.add_job(
        callback,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=SNAPSHOT_JOB_ID,
        name="Status snapshot",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=interval_seconds,
    )
    logger.info(f"Scheduled status snapshot every {interval_seconds}s")


def start_scheduler():
    if not scheduler.running:
        scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
