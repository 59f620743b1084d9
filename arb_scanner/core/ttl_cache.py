"""Thread-safe in-memory cache with per-entry time-to-live.

Expiry is **lazy**: an entry is logically absent once
``now − stored_at > ttl_seconds``, and it is physically removed the next
time :meth:`TTLCache.get` looks it up.  There is no background sweeper.

The cache is an explicit component.  Construct one per process (or per
test) and inject it into whatever needs it; nothing in the core reaches for
a module-level instance.

Usage::

    cache = TTLCache(default_ttl_seconds=60)
    cache.set("odds:basketball_nba:us:h2h", events)
    events = cache.get("odds:basketball_nba:us:h2h")   # None once expired
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """One stored value and the time it was written (clock seconds)."""

    key: str
    value: T
    stored_at: float
    ttl_seconds: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds


class TTLCache:
    """Expiring key/value store guarded by a single coarse lock.

    Args:
        default_ttl_seconds: TTL used when :meth:`set` is called without one.
        clock: Monotonic seconds source.  Tests inject a fake clock.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl_seconds <= 0:
            raise ValueError(f"default_ttl_seconds must be > 0, got {default_ttl_seconds!r}")
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        """Current reading of the cache clock."""
        return self._clock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl!r}")
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl_seconds=ttl)
        with self._lock:
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, key: str) -> Optional[CacheEntry[Any]]:
        """Return the live entry for ``key``, evicting it if it has expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def has(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def age_seconds(self, key: str) -> Optional[float]:
        """Seconds since ``key`` was stored, or ``None`` if absent/expired."""
        entry = self.get_entry(key)
        return entry.age(self._clock()) if entry is not None else None

    def stats(self) -> Dict[str, int]:
        """Count entries without evicting anything.

        Returns:
            ``{"total", "active", "expired"}`` where expired entries are
            those past their TTL but not yet looked up.
        """
        with self._lock:
            now = self._clock()
            total = len(self._entries)
            expired = sum(1 for e in self._entries.values() if e.is_expired(now))
        return {"total": total, "active": total - expired, "expired": expired}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
