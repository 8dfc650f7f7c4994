"""
GET /dashboards/{kind}/{database} -- cached dashboard aggregates.
GET /cache/stats, POST /admin/cache/clear -- cache maintenance.
"""
from __future__ import annotations

import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from tablegate.api.deps import current_context, dashboard_service, metrics_cache, require_admin
from tablegate.core.errors import InvalidValue
from tablegate.core.logging import get_logger
from tablegate.service.browser import RequestContext
from tablegate.service.cache import MetricsCache
from tablegate.service.dashboards import PERIOD_TYPES, DashboardRequest, DashboardService

logger = get_logger(__name__)
router = APIRouter()


class ClearCacheRequest(BaseModel):
    pattern: Optional[str] = None


@router.get("/dashboards/{kind}/{database}")
def get_dashboard(
    kind: str,
    database: str,
    period_type: str = Query("weekly", alias="periodType"),
    period_id: Optional[str] = Query(None, alias="periodId"),
    period_start: Optional[datetime.date] = Query(None, alias="periodStart"),
    zones: Optional[str] = Query(None, description="Comma-separated zone codes"),
    refresh: bool = Query(False),
    ctx: RequestContext = Depends(current_context),
    service: DashboardService = Depends(dashboard_service),
) -> dict:
    if period_type not in PERIOD_TYPES:
        raise InvalidValue(f"Invalid periodType '{period_type}'. Allowed: {', '.join(PERIOD_TYPES)}")
    request = DashboardRequest(
        database=database,
        period_type=period_type,
        period_id=period_id,
        period_start=period_start,
        zones=[z.strip() for z in (zones or "").split(",") if z.strip()],
    )
    return service.fetch(kind, request, refresh=refresh)


@router.get("/cache/stats")
def cache_stats(
    ctx: RequestContext = Depends(current_context),
    cache: MetricsCache = Depends(metrics_cache),
) -> dict:
    return cache.stats()


@router.post("/admin/cache/clear")
def clear_cache(
    req: Optional[ClearCacheRequest] = None,
    ctx: RequestContext = Depends(require_admin),
    cache: MetricsCache = Depends(metrics_cache),
) -> dict:
    pattern = req.pattern if req else None
    removed = cache.invalidate(pattern)
    logger.info("Cache cleared by user=%s pattern=%s removed=%d", ctx.user.id, pattern or "*", removed)
    return {"success": True, "removed": removed}
