"""Bounded TTL memoization and the access-blocked backoff guard.

Both are owned by a :class:`LookupState` that services receive at
construction time, so tests can drive expiry with a fake clock instead of
sleeping.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from contractes.config import (
    ACCESS_BLOCKED_COOLDOWN_SECONDS,
    MAX_CACHE_ITEMS,
)
from contractes.services.errors import AccessBlocked

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    """Wall-clock independent seconds."""

    def now(self) -> float:
        return time.monotonic()


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Insertion-ordered cache with per-entry expiry.

    Expired entries are dropped when read. When the table grows past
    ``max_items`` the oldest inserted entry is evicted; reads do not
    refresh an entry's position, so this is not an LRU.
    """

    def __init__(self, clock: Clock, max_items: int = MAX_CACHE_ITEMS) -> None:
        self._clock = clock
        self._max_items = max_items
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> T | None:
        """Return the cached value, or None on a miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock.now():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: T, ttl: float) -> None:
        with self._lock:
            # Re-inserting moves the key to the end of the insertion order
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock.now() + ttl)
            if len(self._entries) > self._max_items:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class BackoffGuard:
    """Suppresses store reads for a cooldown after an access-blocked error.

    Logs one warning each time the guard engages; repeated failures inside
    an active window stay silent.
    """

    def __init__(
        self,
        clock: Clock,
        cooldown: float = ACCESS_BLOCKED_COOLDOWN_SECONDS,
        name: str = "store",
    ) -> None:
        self._clock = clock
        self._cooldown = cooldown
        self._name = name
        self._blocked_until = 0.0
        self._lock = threading.Lock()

    @property
    def blocked_until(self) -> float:
        return self._blocked_until

    def allows_reads(self) -> bool:
        with self._lock:
            return self._clock.now() >= self._blocked_until

    def record_failure(self, error: BaseException) -> bool:
        """Engage the guard if ``error`` is an access-blocked failure.

        Returns:
            True if the error was an access-blocked failure.
        """
        if not isinstance(error, AccessBlocked):
            return False

        with self._lock:
            now = self._clock.now()
            already_blocked = now < self._blocked_until
            self._blocked_until = now + self._cooldown

        if not already_blocked:
            logger.warning(
                f"{self._name} reads blocked; backing off reads for {int(self._cooldown)} seconds"
            )
        return True


class LookupState:
    """Process-wide mutable state of one lookup service.

    Holds a short-lived cache for search pages, a longer-lived cache for
    assembled profiles, and the backoff guard of the service's store.
    """

    def __init__(self, clock: Clock | None = None, name: str = "store") -> None:
        self.clock: Clock = clock or MonotonicClock()
        self.name = name
        self.search_cache: TTLCache = TTLCache(self.clock)
        self.profile_cache: TTLCache = TTLCache(self.clock)
        self.guard = BackoffGuard(self.clock, name=name)
