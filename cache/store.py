"""
cache/store.py -- In-memory cache of verified identities keyed by bearer token.

Skips the identity-provider round trip for tokens seen within the TTL
(default 5 minutes). Process-local: every worker keeps its own cache.

Eviction:
  - get() evicts an expired entry the moment it is looked up.
  - put() runs a full sweep once the cache holds more than max_entries.
  - cleanup() is also called by the background loop in api/main.py.

Usage:
    cache = TokenCache()
    identity = cache.get(token)        # returns Identity or None
    cache.put(token, identity)
    cache.invalidate(token)            # on logout
"""

import threading
import time
from typing import Callable, Optional

from auth.models import Identity

_DEFAULT_TTL = 5 * 60  # 5 minutes in seconds
_DEFAULT_MAX_ENTRIES = 1000


class TokenCache:
    def __init__(
        self,
        ttl: int = _DEFAULT_TTL,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[Identity, float]] = {}
        self._lock = threading.Lock()

    def get(self, token: str) -> Optional[Identity]:
        """Return the cached identity for token if present and younger than TTL."""
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            identity, cached_at = entry
            if self._clock() - cached_at >= self.ttl:
                del self._entries[token]
                return None
            return identity

    def put(self, token: str, identity: Identity) -> None:
        """Store identity for token, replacing any existing entry."""
        with self._lock:
            self._entries[token] = (identity, self._clock())
            if len(self._entries) > self.max_entries:
                self._sweep()

    def cleanup(self) -> int:
        """Delete all entries older than TTL. Returns number of entries removed."""
        with self._lock:
            return self._sweep()

    def invalidate(self, token: str) -> None:
        with self._lock:
            self._entries.pop(token, None)

    def _sweep(self) -> int:
        now = self._clock()
        expired = [t for t, (_, cached_at) in self._entries.items() if now - cached_at >= self.ttl]
        for token in expired:
            del self._entries[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
