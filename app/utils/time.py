"""Time utility helpers."""

from __future__ import annotations

from datetime import UTC, datetime


def now_utc() -> datetime:
    """Return current timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


def parse_timestamp(value: str | datetime | None) -> datetime:
    """Parse an ISO timestamp from the backend into an aware UTC datetime."""
    if value is None or value == "":
        raise ValueError("Missing required timestamp value")

    if isinstance(value, str):
        normalized = value.replace("Z", "+00:00")
        parsed = datetime.fromisoformat(normalized)
    else:
        parsed = value

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def in_window(start: datetime, end: datetime, now: datetime | None = None) -> bool:
    """Return True when ``now`` falls in the half-open window ``[start, end)``."""
    moment = now or now_utc()
    return start <= moment < end
