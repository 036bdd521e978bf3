"""Short-lived memoization of note and folder listings.

Listing the combined local + space universe is the hot path for search and
resolution, so results are cached for a few seconds. Any successful write
calls ``invalidate_all`` before returning, which keeps reads after a write
consistent at the cost of hit rate.
"""
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from noteplan_mcp.utils import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: datetime


class ListingCache:
    """Thread-safe TTL cache keyed by canonical filter descriptions.

    Args:
        clock: Returns the current time; injected so tests can advance it.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        # Bumped by invalidate_all; loads that straddle a bump are not stored
        self._generation = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(kind: str, **filters: Any) -> str:
        """Deterministic key for a listing kind plus its filter parameters."""
        normalized = {k: v for k, v in filters.items() if v is not None}
        return json.dumps({"kind": kind, **normalized}, sort_keys=True, default=str)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl: float) -> T:
        """Store ``value`` for ``ttl`` seconds and return it."""
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock() + timedelta(seconds=ttl))
        return value

    def get_or_load(self, key: str, ttl: float, loader: Callable[[], T]) -> T:
        """Return the cached value or compute, store and return a fresh one.

        The loader runs outside the lock. Its result is only stored when no
        ``invalidate_all`` happened while it ran, so a listing taken before
        a write is never served after it.
        """
        with self._lock:
            generation = self._generation
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        with self._lock:
            if generation == self._generation:
                self._entries[key] = CacheEntry(value, self._clock() + timedelta(seconds=ttl))
            else:
                logger.debug(f"Discarded listing for {key}: invalidated while loading")
        return value

    def invalidate_all(self) -> None:
        """Drop every entry. Called after any successful note/folder write."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1
        if count:
            logger.debug(f"Listing cache invalidated ({count} entries)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
