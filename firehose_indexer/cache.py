"""
TTL Cache Service

Process-scoped key/value cache with per-entry expiry. Constructed by the
supervisor and passed to the components that need it, so every test (and
every indexer instance) gets an independent cache.

Usage:
    cache = TTLCache(default_ttl=300)
    cache.set("community:at://...", row)
    row = cache.get("community:at://...")
"""

import fnmatch
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Dictionary cache whose entries expire after a time-to-live."""

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            default_ttl: Seconds an entry lives when set() is called without ttl
            clock: Monotonic time source (injectable for tests)
        """
        self._default_ttl = default_ttl
        self._clock = clock
        self._store: Dict[str, _CacheEntry] = {}

        # Stats
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            self.misses += 1
            return None

        if entry.expires_at <= self._clock():
            del self._store[key]
            self.misses += 1
            return None

        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        self._store[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (e.g. "community:*"). Returns count removed."""
        matched = [key for key in self._store if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            del self._store[key]
        return len(matched)

    def purge_expired(self) -> int:
        """Drop expired entries. Returns count removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.expires_at <= now]
        for key in expired:
            del self._store[key]
        return len(expired)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
