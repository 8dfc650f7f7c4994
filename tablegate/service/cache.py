"""
Dashboard metrics cache.

Short-lived in-memory store for expensive aggregate dashboard results,
keyed by ``(dashboard kind, database, period type, period id, zones)``.

  - TTL is chosen by the caller: the still-accumulating current period
    lives 1 hour, a closed historical period lives 1 week.
  - Expired entries are invisible to ``get`` (lazy expiry) and are swept
    before every ``set``.
  - Capacity is fixed; inserting a new key into a full cache evicts the
    entry that was *read* least recently, not the oldest insertion.

All state sits behind one lock; ``get`` / ``set`` / ``invalidate`` are the
only mutation points.  Entries are re-derivable aggregates, never
authoritative data.
"""
from __future__ import annotations

import datetime
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Iterable

from tablegate.core.config import get_settings
from tablegate.core.logging import get_logger
from tablegate.query.dates import pacific_today

logger = get_logger(__name__)


# ── Configuration ───────────────────────────────────────

ONE_HOUR_SECONDS = 60 * 60
ONE_WEEK_SECONDS = 7 * 24 * 60 * 60
DEFAULT_CAPACITY = 100


# ── Cache entry ─────────────────────────────────────────


@dataclass
class CacheEntry:
    """A single cached dashboard result."""
    key: str
    value: Any
    timestamp: float
    expires_at: float
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


# ── Cache implementation ────────────────────────────────


class MetricsCache:
    """Thread-safe TTL cache with least-recently-accessed eviction.

    Parameters
    ----------
    capacity : int
        Maximum number of entries.
    clock : callable
        Returns the current time in seconds; injectable for tests.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock: Callable[[], float] = time.time):
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._capacity = capacity
        self._clock = clock
        self._hits = 0
        self._misses = 0

    # ── Public API ──────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on miss / expiry."""
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._store[key]
                self._misses += 1
                return None
            entry.last_accessed = now
            self._hits += 1
            logger.debug("Cache HIT key=%s", key)
            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store *value* for *ttl* seconds."""
        with self._lock:
            now = self._clock()
            self._sweep_expired(now)
            if key not in self._store and len(self._store) >= self._capacity:
                self._evict_least_recently_accessed()
            self._store[key] = CacheEntry(
                key=key, value=value, timestamp=now, expires_at=now + ttl, last_accessed=now,
            )
        logger.debug("Cache SET key=%s size=%d", key, len(self._store))

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop keys containing *pattern*, or everything. Returns count removed."""
        with self._lock:
            if pattern is None:
                count = len(self._store)
                self._store.clear()
                return count
            doomed = [k for k in self._store if pattern in k]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._store),
                "capacity": self._capacity,
                "keys": list(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    # ── Internals (lock held) ───────────────────────────

    def _sweep_expired(self, now: float) -> None:
        expired = [k for k, v in self._store.items() if v.is_expired(now)]
        for k in expired:
            del self._store[k]

    def _evict_least_recently_accessed(self) -> None:
        if not self._store:
            return
        victim = min(self._store, key=lambda k: self._store[k].last_accessed)
        del self._store[victim]
        logger.debug("Cache EVICT key=%s", victim)


# ── Keys & TTL policy ───────────────────────────────────


def cache_key(
    kind: str,
    database: str,
    period_type: str,
    period_id: str | None = None,
    zones: Iterable[str] | None = None,
) -> str:
    """Deterministic key; zone order does not matter."""
    zone_list = sorted(zones or [])
    zones_key = ",".join(zone_list) if zone_list else "all"
    return f"{kind}:{database}:{period_type}:{period_id or 'all'}:{zones_key}"


def is_current_period(period_start: datetime.date, period_type: str, today: datetime.date | None = None) -> bool:
    """Whether the period starting at *period_start* is still accumulating.

    *today* defaults to the current Pacific calendar day.
    """
    today = today or pacific_today()
    if period_type == "monthly":
        return period_start.year == today.year and period_start.month == today.month
    return period_start >= today - datetime.timedelta(days=7)


def cache_ttl(current_period: bool) -> int:
    return ONE_HOUR_SECONDS if current_period else ONE_WEEK_SECONDS


def get_or_compute(cache: MetricsCache, key: str, compute: Callable[[], Any], ttl: float) -> tuple[Any, bool]:
    """Return ``(value, cached)``; computes and stores on a miss."""
    value = cache.get(key)
    if value is not None:
        return value, True
    value = compute()
    cache.set(key, value, ttl)
    return value, False


# ── Module-level singleton ──────────────────────────────


@lru_cache
def get_cache() -> MetricsCache:
    """Return the process-wide metrics cache."""
    return MetricsCache(capacity=get_settings().metrics_cache_capacity)
