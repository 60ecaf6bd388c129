"""
TTL Cache

Small process-lifetime cache used for query embeddings and search summaries.
Entries expire on read once ``ttl_seconds`` have passed since insertion.
When the cache grows past ``max_entries`` the oldest *inserted* key is evicted
(FIFO, not LRU: reads do not refresh an entry's position).
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Generic, Optional, TypeVar

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A single cached value with its insertion time."""

    key: str
    value: V
    inserted_at: float


class TTLCache(Generic[V]):
    """Thread-safe FIFO cache with read-time expiry.

    Example:
        >>> cache = TTLCache(ttl_seconds=60)
        >>> cache.set("cozy coffee shop", [0.1, 0.2])
        >>> cache.get("cozy coffee shop")
        [0.1, 0.2]
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[V]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() - entry.inserted_at >= self._ttl_seconds:
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        """Insert or refresh a value. Refreshing keeps the key's FIFO position."""
        with self._lock:
            now = self._clock()
            existing = self._entries.get(key)
            if existing is not None:
                existing.value = value
                existing.inserted_at = now
                return

            self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def get_stats(self) -> dict:
        """Hit/miss counters and current size."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self._max_entries,
                "ttl_seconds": self._ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }
