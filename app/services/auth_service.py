"""Bearer credential verification and voter identity resolution."""

from __future__ import annotations

import threading
import time
from typing import Any

from app.config import settings
from app.schemas.voting import VoterIdentity
from app.utils.errors import ForbiddenError, UnauthorizedError
from supabase import Client

_token_cache: dict[str, tuple[float, Any]] = {}
_cache_lock = threading.Lock()


def _cache_get(key: str) -> Any | None:
    """Return a cached user when present and not expired."""
    now = time.monotonic()
    with _cache_lock:
        entry = _token_cache.get(key)
        if not entry:
            return None
        expires_at, value = entry
        if expires_at <= now:
            _token_cache.pop(key, None)
            return None
        return value


def _cache_set(key: str, value: Any) -> None:
    """Store a bounded cache value with TTL."""
    ttl_seconds = settings.auth_token_cache_ttl_seconds
    if ttl_seconds <= 0:
        return

    with _cache_lock:
        max_entries = max(1, settings.auth_token_cache_max_entries)
        if len(_token_cache) >= max_entries:
            oldest_key = next(iter(_token_cache))
            _token_cache.pop(oldest_key, None)
        _token_cache[key] = (time.monotonic() + ttl_seconds, value)


def clear_token_cache() -> None:
    """Forget every verified credential."""
    with _cache_lock:
        _token_cache.clear()


def get_user_id(user: Any) -> str:
    """Extract a stable backend user id string from the Supabase user object."""
    return str(user.id)


def get_voter_id(user: Any) -> str:
    """Return the ledger-level voter id linked to a backend user.

    The voter id is stored in the user's metadata and is distinct from the
    backend user id.
    """
    metadata = getattr(user, "user_metadata", None) or {}
    voter_id = metadata.get("voter_id")
    if not isinstance(voter_id, str) or not voter_id.strip():
        raise ForbiddenError("No voter id is linked to this account")
    return voter_id.strip()


class AuthService:
    """Validate bearer credentials against Supabase auth."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def resolve_user(self, credential: str) -> Any:
        """Return the Supabase user for a bearer credential.

        Raises:
            UnauthorizedError: the credential is missing, invalid or expired.
        """
        if not credential:
            raise UnauthorizedError("Missing credential")

        cached_user = _cache_get(credential)
        if cached_user is not None:
            return cached_user

        try:
            response = self.client.auth.get_user(credential)
            if not response or not response.user:
                raise UnauthorizedError("Invalid token")
        except UnauthorizedError:
            raise
        except Exception as exc:
            raise UnauthorizedError("Invalid or expired token") from exc

        _cache_set(credential, response.user)
        return response.user

    def voter_identity(self, credential: str) -> VoterIdentity:
        """Resolve the voter identity that a session threads through its calls."""
        user = self.resolve_user(credential)
        return VoterIdentity(voter_id=get_voter_id(user), credential=credential)
