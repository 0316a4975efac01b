"""
Bounded, time-expiring cache for geocoding and routed-distance results.

* ``get`` re-checks expiry, so an entry is never served past its TTL even
  if the sweeper has not run yet.
* ``put`` evicts on write: while the cache is over capacity, entries nearest
  to expiry go first.
* ``sweep`` purges expired entries; the cache sweep worker calls it on a
  fixed interval.

Reads and writes hold a ``threading.Lock`` so the instance can be shared by
request handlers and the sweep worker.

Complexity: O(1) ``get``; O(n log n) ``put`` only when over capacity.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoCacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float


class GeoCache:
    def __init__(
        self,
        default_ttl: float = 3600.0,
        max_entries: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, GeoCacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` on a miss or expired entry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                logger.debug("Geo cache miss: %s", key)
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                self.misses += 1
                logger.debug("Geo cache expired: %s", key)
                return None
            self.hits += 1
            logger.debug("Geo cache hit: %s", key)
            return entry.value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = GeoCacheEntry(key, value, now, now + ttl)
            if len(self._entries) > self.max_entries:
                self._evict(len(self._entries) - self.max_entries)

    def sweep(self) -> int:
        """Drop expired entries and enforce capacity.  Returns entries removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
            removed = len(expired)
            overflow = len(self._entries) - self.max_entries
            if overflow > 0:
                self._evict(overflow)
                removed += overflow
        if removed:
            logger.debug("Geo cache sweep removed %d entries", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    # Caller holds the lock.
    def _evict(self, count: int) -> None:
        victims = heapq.nsmallest(
            count, self._entries.values(), key=lambda e: (e.expires_at, e.created_at)
        )
        for entry in victims:
            del self._entries[entry.key]
