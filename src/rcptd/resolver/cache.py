"""
Query Cache: bounded, expiring memoization of verdicts.

Entries are keyed by the normalized ``(local_part, domain, hint)`` tuple and
tagged with the Config Store generation they were computed against. A
lookup misses (and drops the entry) when the entry has expired, or when its
generation differs from the caller's, so a configuration reload invalidates
the whole cache without an explicit flush.

Deliverable verdicts live for ``ttl`` seconds and Undeliverable ones for
``negative_ttl``. Deferred verdicts are never stored. Capacity overflow
evicts the least recently used entry.

The cache is shared by the event loop and worker threads and is guarded
by a ``threading.Lock``.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass

from rcptd.models import Verdict, VerdictStatus

from .configs import CacheConfig


@dataclass(slots=True)
class CacheEntry:
    verdict: Verdict
    created_at: float
    generation: int


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Point-in-time cache counters."""

    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    invalidations: int

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class QueryCache:
    """LRU + TTL + generation-tagged verdict cache.

    Args:
        capacity: Maximum number of entries.
        ttl: Lifetime of Deliverable verdicts, in seconds.
        negative_ttl: Lifetime of Undeliverable verdicts, in seconds.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        capacity: int = 10_000,
        ttl: float = 300.0,
        negative_ttl: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._ttl = ttl
        self._negative_ttl = negative_ttl
        self._clock = clock
        self._entries: OrderedDict[Hashable, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._invalidations = 0

    @classmethod
    def from_config(cls, config: CacheConfig) -> QueryCache:
        return cls(config.capacity, config.ttl, config.negative_ttl)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lifetime(self, verdict: Verdict) -> float:
        return self._ttl if verdict.status == VerdictStatus.DELIVERABLE else self._negative_ttl

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self._lifetime(entry.verdict)

    def get(self, key: Hashable, generation: int) -> Verdict | None:
        """Return the cached verdict for ``key``, or ``None`` on a miss."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.generation != generation:
                del self._entries[key]
                self._invalidations += 1
                self._misses += 1
                return None
            if self._expired(entry, now):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.verdict

    def put(self, key: Hashable, verdict: Verdict, generation: int) -> None:
        """Store ``verdict`` unless it is Deferred."""
        if not verdict.is_definitive:
            return
        entry = CacheEntry(verdict=verdict, created_at=self._clock(), generation=generation)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

    def purge_expired(self, generation: int | None = None) -> int:
        """Drop expired entries (and, if given, entries of other generations).

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if self._expired(entry, now)
                or (generation is not None and entry.generation != generation)
            ]
            for key in stale:
                del self._entries[key]
            self._expirations += len(stale)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                capacity=self._capacity,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                invalidations=self._invalidations,
            )
