"""Background job modules for periodic ballot tasks."""

from app.jobs.publish_results import publish_ended_elections

__all__ = ["publish_ended_elections"]
