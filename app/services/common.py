"""Supabase access for election rows, rosters and community roles."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from typing import Any

import httpx
from postgrest import APIError

from app.config import settings
from app.utils.errors import (
    BackendUnavailableError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from supabase import Client

logger = logging.getLogger(__name__)

# Role looked up per (user_id, community_id); "" marks a non-member.
_role_cache: dict[tuple[str, str], tuple[float, str]] = {}
_role_lock = threading.Lock()


def _cached_role(key: tuple[str, str]) -> str | None:
    with _role_lock:
        entry = _role_cache.get(key)
        if entry is None:
            return None
        expires_at, role = entry
        if expires_at <= time.monotonic():
            del _role_cache[key]
            return None
        return role


def _remember_role(key: tuple[str, str], role: str) -> None:
    ttl = settings.membership_cache_ttl_seconds
    if ttl <= 0:
        return
    with _role_lock:
        if len(_role_cache) >= max(100, settings.data_cache_max_entries):
            _role_cache.pop(next(iter(_role_cache)), None)
        _role_cache[key] = (time.monotonic() + ttl, role)


class SupabaseService:
    """Query helpers over the backend tables the ballot API reads."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def execute(self, query, default: Any = None) -> Any:
        """Run a PostgREST query, mapping API and transport errors to app errors."""
        started = time.perf_counter()
        try:
            response = query.execute()
        except APIError as exc:
            raise InvalidInputError(str(getattr(exc, "message", None) or exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("Supabase request failed: %s", exc)
            raise BackendUnavailableError() from exc

        elapsed_ms = (time.perf_counter() - started) * 1000
        if 0 < settings.slow_query_log_threshold_ms <= elapsed_ms:
            logger.warning("Slow Supabase query %.1fms", elapsed_ms)
        if response.data is None:
            return default
        return response.data

    def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        columns: str = "*",
        not_found_label: str | None = None,
    ) -> dict[str, Any]:
        query = self.client.table(table).select(columns)
        for key, value in filters.items():
            query = query.eq(key, value)
        rows = self.execute(query.limit(1), default=[])
        if not rows:
            raise NotFoundError(not_found_label or table)
        return rows[0]

    def select_many(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: str = "*",
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        query = self.client.table(table).select(columns)
        for key, value in (filters or {}).items():
            query = query.eq(key, value)
        if order_by:
            query = query.order(order_by)
        return self.execute(query, default=[])

    def update(
        self, table: str, filters: dict[str, Any], payload: dict[str, Any]
    ) -> list[dict[str, Any]]:
        query = self.client.table(table).update(payload)
        for key, value in filters.items():
            query = query.eq(key, value)
        return self.execute(query, default=[])

    def get_users_map(self, user_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Fetch candidate user rows (username and display name) keyed by id."""
        ids = sorted({str(uid) for uid in user_ids})
        if not ids:
            return {}
        rows = self.execute(
            self.client.table("users").select("id,username,display_name").in_("id", ids),
            default=[],
        )
        return {str(row["id"]): row for row in rows}

    def community_role(self, user_id: str, community_id: str) -> str | None:
        """Return ``"admin"``, ``"user"`` or None when the user is not a member."""
        key = (str(user_id), str(community_id))
        cached = _cached_role(key)
        if cached is not None:
            return cached or None

        rows = self.execute(
            self.client.table("community_members")
            .select("role")
            .eq("user_id", user_id)
            .eq("community_id", community_id),
            default=[],
        )
        roles = {row.get("role") for row in rows}
        role = "admin" if "admin" in roles else ("user" if rows else "")
        _remember_role(key, role)
        return role or None

    def ensure_community_member(self, user_id: str, community_id: str) -> None:
        if self.community_role(user_id, community_id) is None:
            raise ForbiddenError("You are not a member of this community")

    def ensure_admin(self, user_id: str, community_id: str, reason: str) -> None:
        if self.community_role(user_id, community_id) != "admin":
            raise ForbiddenError(reason)


def clear_membership_cache() -> None:
    """Drop cached community roles."""
    with _role_lock:
        _role_cache.clear()
