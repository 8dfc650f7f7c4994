"""
FastAPI dependencies: requester resolution and service wiring.

Tests override these with ``app.dependency_overrides``.
"""
from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from tablegate.core.config import get_settings
from tablegate.core.logging import get_logger
from tablegate.db.audit_log import AuditLog, get_audit_log
from tablegate.db.connection import PoolRegistry, get_registry
from tablegate.governance.access import TIER_ELEVATED, AccessPolicy, load_access_policy
from tablegate.service.browser import RequestContext, TableBrowser
from tablegate.service.cache import MetricsCache, get_cache
from tablegate.service.dashboards import DashboardService, get_dashboard_registry
from tablegate.service.reports import ReportRunner
from tablegate.service.stores import (
    FilterDefinitionStore,
    FilterHistoryStore,
    ReportBlockStore,
    TableSettingsStore,
    get_filter_definitions,
    get_filter_history,
    get_report_blocks,
    get_table_settings,
)
from tablegate.service.users import UserDirectory, get_user_directory

logger = get_logger(__name__)


# ── Collaborators ───────────────────────────────────────


def pool_registry() -> PoolRegistry:
    return get_registry()


def access_policy() -> AccessPolicy:
    return load_access_policy()


def user_directory() -> UserDirectory:
    return get_user_directory()


def audit() -> AuditLog:
    return get_audit_log()


def metrics_cache() -> MetricsCache:
    return get_cache()


def table_settings_store() -> TableSettingsStore:
    return get_table_settings()


def filter_definition_store() -> FilterDefinitionStore:
    return get_filter_definitions()


def filter_history_store() -> FilterHistoryStore:
    return get_filter_history()


def report_block_store() -> ReportBlockStore:
    return get_report_blocks()


# ── Requester ───────────────────────────────────────────


def current_context(
    request: Request,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    directory: UserDirectory = Depends(user_directory),
) -> RequestContext:
    """Resolve the caller and load their grants for this request."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = directory.get_user(x_user_id)
    if user is None:
        logger.warning("Unknown user id=%s", x_user_id)
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not user.is_active:
        logger.warning("Inactive user id=%s", user.id)
        raise HTTPException(status_code=403, detail="Account is deactivated")
    ip = request.client.host if request.client else None
    return RequestContext(user=user, grants=directory.grants_for(user.id), ip=ip)


def require_admin(
    ctx: RequestContext = Depends(current_context),
    policy: AccessPolicy = Depends(access_policy),
) -> RequestContext:
    if policy.role(ctx.user.role).tier != TIER_ELEVATED:
        logger.warning("Admin endpoint refused user=%s role=%s", ctx.user.id, ctx.user.role)
        raise HTTPException(status_code=403, detail="Admin access required")
    return ctx


# ── Services ────────────────────────────────────────────


def table_browser(
    registry: PoolRegistry = Depends(pool_registry),
    policy: AccessPolicy = Depends(access_policy),
    settings_store: TableSettingsStore = Depends(table_settings_store),
    audit_log: AuditLog = Depends(audit),
) -> TableBrowser:
    settings = get_settings()
    return TableBrowser(
        registry, policy, settings_store, audit_log,
        page_size=settings.page_size, batch_size=settings.export_batch_size,
    )


def report_runner(
    registry: PoolRegistry = Depends(pool_registry),
    policy: AccessPolicy = Depends(access_policy),
    blocks: ReportBlockStore = Depends(report_block_store),
    audit_log: AuditLog = Depends(audit),
) -> ReportRunner:
    return ReportRunner(registry, policy, blocks, audit_log, page_size=get_settings().page_size)


def dashboard_service(
    registry: PoolRegistry = Depends(pool_registry),
    cache: MetricsCache = Depends(metrics_cache),
) -> DashboardService:
    return DashboardService(get_dashboard_registry(), registry, cache)
