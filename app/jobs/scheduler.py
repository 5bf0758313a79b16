"""APScheduler setup and job registration."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.jobs.publish_results import publish_ended_elections

scheduler = AsyncIOScheduler(timezone=settings.timezone)


def register_jobs() -> None:
    """Register all periodic jobs if not already present."""
    if scheduler.get_job("publish_ended_elections") is None:
        interval = max(1, min(59, settings.publish_interval_minutes))
        scheduler.add_job(
            publish_ended_elections,
            CronTrigger(minute=f"*/{interval}", timezone=settings.timezone),
            id="publish_ended_elections",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
