"""
Cached dashboard aggregates.

The business formulas behind each dashboard live in providers registered
by kind (``"operations"``, ``"marketing"`` ...).  A provider receives a
read-only connection and the request parameters and returns a
JSON-serialisable payload.  This module only decides when to call it:

  key = cache_key(kind, database, period_type, period_id, zones)
  hit and not refresh  -> cached payload
  otherwise            -> provider(conn, request), stored with a TTL of
                          1 hour (current period) or 1 week (closed period)
"""
from __future__ import annotations

import datetime
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable

from sqlalchemy.engine import Connection

from tablegate.core.errors import NotFound
from tablegate.core.logging import get_logger
from tablegate.core.utils import timer
from tablegate.db.connection import PoolRegistry
from tablegate.service.cache import MetricsCache, cache_key, cache_ttl, is_current_period

logger = get_logger(__name__)

PERIOD_TYPES = ("weekly", "monthly")


@dataclass(frozen=True)
class DashboardRequest:
    database: str
    period_type: str = "weekly"
    period_id: str | None = None
    period_start: datetime.date | None = None
    zones: list[str] = field(default_factory=list)


DashboardProvider = Callable[[Connection, DashboardRequest], Any]


class DashboardRegistry:
    """Kind -> provider map."""

    def __init__(self) -> None:
        self._providers: dict[str, DashboardProvider] = {}
        self._lock = threading.Lock()

    def register(self, kind: str, provider: DashboardProvider) -> None:
        with self._lock:
            self._providers[kind] = provider
        logger.info("Dashboard provider registered kind=%s", kind)

    def kinds(self) -> list[str]:
        with self._lock:
            return sorted(self._providers)

    def get(self, kind: str) -> DashboardProvider:
        with self._lock:
            provider = self._providers.get(kind)
        if provider is None:
            raise NotFound(f"Dashboard not found: {kind}", suggestions=self.kinds())
        return provider


class DashboardService:
    def __init__(self, providers: DashboardRegistry, registry: PoolRegistry, cache: MetricsCache):
        self.providers = providers
        self.registry = registry
        self.cache = cache

    def fetch(self, kind: str, request: DashboardRequest, refresh: bool = False) -> dict[str, Any]:
        """Return ``{"data": ..., "fromCache": bool}`` for one dashboard."""
        provider = self.providers.get(kind)
        key = cache_key(kind, request.database, request.period_type, request.period_id, request.zones)

        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Dashboard cache HIT key=%s", key)
                return {"data": cached, "fromCache": True}
        logger.info("Dashboard cache MISS key=%s%s", key, " (forced refresh)" if refresh else "")

        with timer() as t:
            with self.registry.readonly_connection(request.database) as conn:
                data = provider(conn, request)

        current = request.period_start is None or is_current_period(request.period_start, request.period_type)
        self.cache.set(key, data, cache_ttl(current))
        logger.info("Dashboard computed kind=%s db=%s in %dms", kind, request.database, t["elapsed_ms"])
        return {"data": data, "fromCache": False}


@lru_cache
def get_dashboard_registry() -> DashboardRegistry:
    return DashboardRegistry()
