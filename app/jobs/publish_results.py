"""Scheduled publication of ended elections."""

from __future__ import annotations

import logging

from app.services.auth_service import AuthService
from app.services.election_directory import ElectionDirectory
from app.utils.supabase_client import get_service_client

logger = logging.getLogger(__name__)


async def publish_ended_elections() -> None:
    """Mark every election whose voting window has closed as published."""
    client = get_service_client()
    directory = ElectionDirectory(client, AuthService(client))

    published = directory.publish_ended()
    logger.info("publish_ended_elections completed with %s elections", len(published))
