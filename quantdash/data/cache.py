"""Bounded TTL cache for upstream payloads.

Entries expire lazily on read.  When the entry count exceeds the capacity,
the oldest fraction of entries (by creation time) is evicted.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

logger = logging.getLogger("quantdash")

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached payload with its creation time and lifetime (seconds)."""

    payload: T
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class TTLCache(Generic[T]):
    """Capacity-bounded TTL cache.

    Args:
        max_entries: Entry count above which eviction runs.
        evict_fraction: Share of entries dropped per eviction (oldest first).
        clock: Time source in epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        max_entries: int = 100,
        evict_fraction: float = 0.2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        if not 0 < evict_fraction <= 1:
            raise ValueError(f"evict_fraction must be in (0, 1], got {evict_fraction}")
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._max_entries = max_entries
        self._evict_fraction = evict_fraction
        self._clock = clock

    # ── Queries ──────────────────────────────────────────────────────────

    def get_entry(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the live entry for *key*, evicting it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: Hashable) -> Optional[T]:
        entry = self.get_entry(key)
        return entry.payload if entry is not None else None

    def __contains__(self, key: Hashable) -> bool:
        return self.get_entry(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    # ── Mutation ─────────────────────────────────────────────────────────

    def set(self, key: Hashable, payload: T, ttl: float) -> CacheEntry[T]:
        """Store *payload* under *key* for *ttl* seconds."""
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        entry = CacheEntry(payload=payload, created_at=self._clock(), ttl=ttl)
        # Re-inserting moves the key to the end so creation order is kept.
        self._entries.pop(key, None)
        self._entries[key] = entry
        if len(self._entries) > self._max_entries:
            self._evict()
        return entry

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        count = math.ceil(len(self._entries) * self._evict_fraction)
        oldest = sorted(self._entries.items(), key=lambda kv: kv[1].created_at)
        for key, _ in oldest[:count]:
            del self._entries[key]
        logger.debug("Cache evicted %d oldest entries (%d left)", count, len(self._entries))
