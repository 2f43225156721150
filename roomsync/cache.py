"""
In-memory access token cache keyed by integration.

Each entry stores the decrypted access token together with the absolute expiry
reported by the marketplace. A token is served only while it is more than
``buffer_seconds`` away from expiry, so callers never start a request with a
token that can expire mid-flight.

The cache is best-effort: it does not survive cold starts and is not shared
between instances. The integrations table is always the source of truth.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any

from roomsync.utils.datetime import utc_now


class TokenCache:
    """
    Per-process token cache with an expiry buffer.

    Attributes:
        buffer: Time before expiry at which a cached token stops being served
        _cache: Internal storage mapping integration id to (token, expires_at) tuples

    Example:
        >>> cache = TokenCache(buffer_seconds=60)
        >>> cache.set("6d1f...", "token-abc-123", expires_at)
        >>> token = cache.get("6d1f...")
        >>> cache.invalidate("6d1f...")
    """

    def __init__(self, buffer_seconds: int = 60):
        """
        Initialize token cache.

        Args:
            buffer_seconds: Seconds before expiry at which a token counts as stale
        """
        self.buffer = timedelta(seconds=buffer_seconds)
        self._cache: dict[str, tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, integration_id: Any) -> str | None:
        """
        Get cached token if it is not within the expiry buffer.

        Args:
            integration_id: Integration primary key

        Returns:
            Cached token string if found and fresh, None otherwise
        """
        key = str(integration_id)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            token, expires_at = entry
            if utc_now() < expires_at - self.buffer:
                return token
            # Stale - drop it so the caller refreshes
            del self._cache[key]
        return None

    def set(self, integration_id: Any, token: str, expires_at: datetime) -> None:
        """
        Cache a token until its absolute expiry.

        Args:
            integration_id: Integration primary key
            token: Decrypted access token
            expires_at: Timezone-aware expiry reported by the marketplace
        """
        with self._lock:
            self._cache[str(integration_id)] = (token, expires_at)

    def invalidate(self, integration_id: Any) -> None:
        """
        Remove token from cache.

        Called after a 401 or a refresh so a rejected token is never served again.

        Args:
            integration_id: Integration primary key
        """
        with self._lock:
            self._cache.pop(str(integration_id), None)

    def clear(self) -> None:
        """Clear all cached tokens."""
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        """Number of tokens currently cached."""
        return len(self._cache)


# Process-wide instance injected into TokenManager
token_cache = TokenCache(buffer_seconds=60)
