from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_MAX_ENTRIES = 200


class ColorAssignmentCache:
    """Bounded event id -> color memo with time-to-live expiry and LRU eviction.

    Every read and write runs under one lock, so overlapping resolution passes
    may share an instance. Eviction is lazy and touches only the looked-up
    entry and the least recently used end: expired entries there go first,
    then LRU entries while the cache is over `max_entries`. `snapshot` and
    `ages` sweep the whole map, since they run once per persisted pass.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, event_id: object) -> bool:
        with self._lock:
            entry = self._entries.get(event_id)  # type: ignore[arg-type]
            return entry is not None and not self._is_expired(entry[1], self._clock())

    def get(self, event_id: str) -> Optional[str]:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(event_id)
            if entry is not None and self._is_expired(entry[1], now):
                del self._entries[event_id]
                self.expirations += 1
                entry = None
            if entry is None:
                self.misses += 1
                self._evict(now)
                return None
            self._entries.move_to_end(event_id)
            self._evict(now)
            self.hits += 1
            return entry[0]

    def set(self, event_id: str, color: str) -> None:
        with self._lock:
            now = self._clock()
            self._entries[event_id] = (color, now)
            self._entries.move_to_end(event_id)
            self._evict(now)

    def invalidate(self, event_id: str) -> bool:
        with self._lock:
            return self._entries.pop(event_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> Dict[str, str]:
        """Live entries, least recently used first."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._evict(now)
            return {event_id: color for event_id, (color, _) in self._entries.items()}

    def ages(self) -> Dict[str, float]:
        """Seconds since each live entry was stored."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            return {event_id: now - inserted_at for event_id, (_, inserted_at) in self._entries.items()}

    def load(self, assignments: Mapping[str, str], ages: Optional[Mapping[str, float]] = None) -> None:
        """Seed entries in the given order, each `ages[id]` seconds old (default 0)."""
        ages = ages or {}
        with self._lock:
            now = self._clock()
            for event_id, color in assignments.items():
                self._entries[event_id] = (color, now - max(0.0, float(ages.get(event_id, 0.0))))
                self._entries.move_to_end(event_id)
            self._purge_expired(now)
            self._evict(now)

    def stats(self) -> Dict[str, float]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "expirations": self.expirations,
                "hit_ratio": self.hits / total if total else 0.0,
            }

    def _is_expired(self, inserted_at: float, now: float) -> bool:
        return now - inserted_at >= self.ttl_seconds

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (_, inserted_at) in self._entries.items() if self._is_expired(inserted_at, now)]
        for key in expired:
            del self._entries[key]
        self.expirations += len(expired)

    def _evict(self, now: float) -> None:
        # Only the LRU end is inspected; other stale entries expire when looked up.
        while self._entries:
            key, (_, inserted_at) = next(iter(self._entries.items()))
            if self._is_expired(inserted_at, now):
                del self._entries[key]
                self.expirations += 1
            elif len(self._entries) > self.max_entries:
                del self._entries[key]
                self.evictions += 1
                logger.debug("Evicted color assignment for %s", key)
            else:
                break
