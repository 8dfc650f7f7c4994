"""
Table browsing service -- the request flow behind the rows and export APIs.

  resolve database -> catalog lookup -> access gate -> compile filters
    -> COUNT + page   (rows, single-page export)
    -> COUNT + ceiling check -> server-side cursor   (export all)

Every operation takes a ``RequestContext`` carrying the requester and the
grants loaded for this request.  Nothing about a user is remembered between
calls.  Reads run through ``PoolRegistry.readonly_connection``; the full
export opens its own connection on the same pool and holds it until the
stream finishes or is closed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from sqlalchemy.engine import Connection

from tablegate.core.logging import get_logger
from tablegate.core.utils import timer
from tablegate.db import audit_log
from tablegate.db.audit_log import AuditLog
from tablegate.db.catalog import Catalog, ColumnInfo
from tablegate.db.connection import PoolRegistry
from tablegate.db.executor import PAGE_SIZE, PageResult, count_rows, fetch_page
from tablegate.export.csv_stream import (
    DEFAULT_BATCH_SIZE,
    ExportCheck,
    check_export,
    enforce_role_ceiling,
    rows_to_csv,
    stream_csv,
)
from tablegate.governance.access import AccessPolicy, User, authorize, visible_tables
from tablegate.governance.identifiers import TableRef
from tablegate.query.builder import SortSpec, TableQuery, build_order_by, default_order
from tablegate.query.filters import FilterSpec, compile_filters
from tablegate.query.joins import build_join
from tablegate.service.stores import TableSettingsStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Who is asking, what they are granted, and from where."""
    user: User
    grants: list[tuple[str, str]] = field(default_factory=list)
    ip: str | None = None


@dataclass
class ExportStream:
    filename: str
    chunks: Iterator[str]


@dataclass(frozen=True)
class _Prepared:
    ref: TableRef
    columns: list[str]
    query: TableQuery


def _describe_filters(filters: list[FilterSpec]) -> str:
    return ", ".join(f"{f.column} {f.operator} {f.value}" for f in filters) or "none"


class TableBrowser:
    """Governed read access to the configured databases."""

    def __init__(
        self,
        registry: PoolRegistry,
        policy: AccessPolicy,
        table_settings: TableSettingsStore,
        audit: AuditLog,
        *,
        page_size: int = PAGE_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.registry = registry
        self.policy = policy
        self.table_settings = table_settings
        self.audit = audit
        self.page_size = page_size
        self.batch_size = batch_size

    # ── Catalog ─────────────────────────────────────────

    def list_databases(self) -> list[str]:
        """Configured database names; connection URLs never leave the server."""
        return self.registry.names()

    def list_tables(self, ctx: RequestContext, database: str) -> list[dict[str, Any]]:
        with self.registry.readonly_connection(database) as conn:
            tables = Catalog(conn).list_tables()

        allowed = visible_tables(
            ctx.user, database, tables,
            grants=ctx.grants, policy=self.policy, is_visible=self.table_settings.is_visible,
        )
        result = []
        for ref in allowed:
            settings = self.table_settings.get(database, ref.full_name)
            result.append({
                "schema": ref.schema,
                "name": ref.table,
                "fullName": ref.full_name,
                "displayName": settings.display_name if settings else None,
                "isVisible": settings.is_visible if settings else True,
            })
        return result

    def list_columns(self, ctx: RequestContext, database: str, table: str) -> list[ColumnInfo]:
        with self.registry.readonly_connection(database) as conn:
            catalog = Catalog(conn)
            ref = self._authorize(ctx, catalog, database, table)
            return catalog.column_info(ref)

    # ── Rows ────────────────────────────────────────────

    def _authorize(self, ctx: RequestContext, catalog: Catalog, database: str, table: str) -> TableRef:
        return authorize(
            ctx.user, database, table,
            catalog=catalog, grants=ctx.grants, policy=self.policy,
            is_visible=self.table_settings.is_visible,
        )

    def _prepare(
        self,
        conn: Connection,
        ctx: RequestContext,
        database: str,
        table: str,
        filters: list[FilterSpec],
        sort: list[SortSpec] | None = None,
    ) -> _Prepared:
        catalog = Catalog(conn)
        ref = self._authorize(ctx, catalog, database, table)
        columns = catalog.columns(ref)

        plan = build_join(ref, columns, None, authorize_table=lambda t: ref, columns_of=catalog.columns)
        where = compile_filters(filters, resolve_column=plan.resolve)
        order_by = build_order_by(sort, plan.resolve, default_order(plan, catalog.primary_key(ref)))
        query = TableQuery(from_sql=plan.from_sql, where=where, select_list=plan.main_star(), order_by=order_by)
        return _Prepared(ref=ref, columns=columns, query=query)

    def fetch_rows(
        self,
        ctx: RequestContext,
        database: str,
        table: str,
        page: Any = 1,
        filters: list[FilterSpec] | None = None,
        sort: list[SortSpec] | None = None,
    ) -> PageResult:
        """One page of *table*; out-of-range pages are clamped."""
        filters = list(filters or [])
        with timer() as t:
            with self.registry.readonly_connection(database) as conn:
                prepared = self._prepare(conn, ctx, database, table, filters, sort)
                result = fetch_page(conn, prepared.query, page, self.page_size)

        logger.info(
            "Rows  user=%s db=%s table=%s page=%d/%d  %dms",
            ctx.user.id, database, prepared.ref.full_name, result.page, result.total_pages, t["elapsed_ms"],
        )
        self.audit.log(
            ctx.user.id, ctx.user.email, audit_log.VIEW_DATA, database, prepared.ref.full_name,
            f"Viewed page {result.page} of {result.total_pages} ({len(result.rows)} rows); "
            f"filters: {_describe_filters(filters)}",
            ctx.ip,
        )
        return result

    # ── Export ──────────────────────────────────────────

    def export_check(
        self,
        ctx: RequestContext,
        database: str,
        table: str,
        filters: list[FilterSpec] | None = None,
    ) -> ExportCheck:
        """Count matching rows and compare against the requester's ceilings."""
        with self.registry.readonly_connection(database) as conn:
            prepared = self._prepare(conn, ctx, database, table, list(filters or []))
            total = count_rows(conn, prepared.query)
        return check_export(total, ctx.user.role, self.policy)

    def open_export(
        self,
        ctx: RequestContext,
        database: str,
        table: str,
        filters: list[FilterSpec] | None = None,
        sort: list[SortSpec] | None = None,
        page: Any = 1,
        export_all: bool = False,
    ) -> ExportStream:
        """Prepare a CSV download.

        Without *export_all* the requested page is fetched and rendered in
        memory.  With it, the ceilings are enforced here -- ``ExportTooLarge``
        propagates before any byte is produced -- and the returned chunks
        stream from a server-side cursor.
        """
        filters = list(filters or [])

        if not export_all:
            with self.registry.readonly_connection(database) as conn:
                prepared = self._prepare(conn, ctx, database, table, filters, sort)
                result = fetch_page(conn, prepared.query, page, self.page_size)
            self.audit.log(
                ctx.user.id, ctx.user.email, audit_log.EXPORT_PAGE, database, prepared.ref.full_name,
                f"Exported page {result.page} ({len(result.rows)} rows); filters: {_describe_filters(filters)}",
                ctx.ip,
            )
            return ExportStream(
                filename=f"{prepared.ref.table}_page{result.page}.csv",
                chunks=rows_to_csv(prepared.columns, result.rows),
            )

        with self.registry.readonly_connection(database) as conn:
            prepared = self._prepare(conn, ctx, database, table, filters, sort)
            total = count_rows(conn, prepared.query)
        enforce_role_ceiling(total, ctx.user.role, self.policy)

        def on_complete(written: int) -> None:
            self.audit.log(
                ctx.user.id, ctx.user.email, audit_log.EXPORT_ALL, database, prepared.ref.full_name,
                f"Exported all {written} rows; filters: {_describe_filters(filters)}",
                ctx.ip,
            )

        chunks = stream_csv(
            self.registry.get_engine(database),
            prepared.query,
            prepared.columns,
            total_count=total,
            absolute_ceiling=self.policy.absolute_ceiling,
            batch_size=self.batch_size,
            on_complete=on_complete,
        )
        logger.info("Export started user=%s db=%s table=%s rows=%d", ctx.user.id, database, prepared.ref.full_name, total)
        return ExportStream(filename=f"{prepared.ref.table}_export.csv", chunks=chunks)
