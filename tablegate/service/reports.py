"""
Report block execution.

A block is a saved, owner-scoped query description.  Running one re-checks
everything at run time: ownership, the access gate (with the visibility
bypass -- hidden tables are a browsing convenience, grants still apply),
the join chain, every column against the live catalog and every filter.

  table   columns + filters + orderBy + join chain, paged like the rows API
  chart   label/value pairs, optionally aggregated and grouped, <= 500 points
  metric  a single aggregate value
  text    returned verbatim, no database access
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Connection

from tablegate.core.errors import BlockNotFound, InvalidValue
from tablegate.core.logging import get_logger
from tablegate.core.utils import serialise_row
from tablegate.db import audit_log
from tablegate.db.audit_log import AuditLog
from tablegate.db.catalog import Catalog
from tablegate.db.connection import PoolRegistry
from tablegate.db.executor import PAGE_SIZE, fetch_page
from tablegate.governance.access import AccessPolicy, authorize
from tablegate.query.builder import SortSpec, TableQuery, build_order_by, default_order
from tablegate.query.filters import FilterSpec, compile_filters
from tablegate.query.joins import ALIAS_MAIN, JoinPlan, JoinSpec, build_join
from tablegate.service.browser import RequestContext
from tablegate.service.stores import ReportBlock, ReportBlockStore

logger = get_logger(__name__)

AGGREGATES = ("COUNT", "SUM", "AVG", "MIN", "MAX")
CHART_TYPES = ("bar", "line", "pie", "area")
METRIC_FORMATS = ("number", "currency", "percentage")
MAX_CHART_POINTS = 500

# groupBy keyword -> TO_CHAR pattern, applied to the x column in Pacific time
DATE_GROUPS = {
    "day": "YYYY-MM-DD",
    "week": "IYYY-IW",
    "month": "YYYY-MM",
    "quarter": 'YYYY-"Q"Q',
    "year": "YYYY",
}


# ── Block configs ───────────────────────────────────────


class _QueryBlockConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    database: str
    table: str
    filters: list[FilterSpec] = Field(default_factory=list)
    join: Optional[JoinSpec] = None


class TableBlockConfig(_QueryBlockConfig):
    columns: list[str] = Field(default_factory=list)
    order_by: Optional[SortSpec] = Field(None, alias="orderBy")


class ChartBlockConfig(_QueryBlockConfig):
    chart_type: str = Field("bar", alias="chartType")
    x_column: str = Field(..., alias="xColumn")
    y_column: str = Field(..., alias="yColumn")
    aggregate_function: Optional[str] = Field(None, alias="aggregateFunction")
    group_by: Optional[str] = Field(None, alias="groupBy")


class MetricBlockConfig(_QueryBlockConfig):
    column: str
    aggregate_function: str = Field(..., alias="aggregateFunction")
    label: Optional[str] = None
    format: str = "number"


class TextBlockConfig(BaseModel):
    content: str = ""


_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "table": TableBlockConfig,
    "chart": ChartBlockConfig,
    "metric": MetricBlockConfig,
    "text": TextBlockConfig,
}


def parse_block_config(kind: str, config: dict[str, Any]) -> BaseModel:
    """Validate a stored block config against the model for *kind*."""
    model = _CONFIG_MODELS.get(kind)
    if model is None:
        raise InvalidValue(f"Unknown block kind '{kind}'")
    try:
        parsed = model.model_validate(config)
    except ValidationError as exc:
        raise InvalidValue(f"Invalid {kind} block configuration: {exc.errors()[0]['msg']}") from None

    if isinstance(parsed, ChartBlockConfig) and parsed.chart_type not in CHART_TYPES:
        raise InvalidValue(f"Invalid chart type '{parsed.chart_type}'. Allowed: {', '.join(CHART_TYPES)}")
    if isinstance(parsed, MetricBlockConfig) and parsed.format not in METRIC_FORMATS:
        raise InvalidValue(f"Invalid metric format '{parsed.format}'. Allowed: {', '.join(METRIC_FORMATS)}")
    return parsed


def _aggregate(name: str | None) -> str:
    agg = (name or "").upper()
    if agg not in AGGREGATES:
        raise InvalidValue(f"Invalid aggregate function '{name}'. Allowed: {', '.join(AGGREGATES)}")
    return agg


def pacific_bucket(expr: str, group_by: str) -> str:
    pattern = DATE_GROUPS[group_by]
    return f"TO_CHAR(({expr} AT TIME ZONE 'UTC' AT TIME ZONE 'America/Los_Angeles'), '{pattern}')"


# ── Runner ──────────────────────────────────────────────


class ReportRunner:
    def __init__(
        self,
        registry: PoolRegistry,
        policy: AccessPolicy,
        blocks: ReportBlockStore,
        audit: AuditLog,
        *,
        page_size: int = PAGE_SIZE,
    ):
        self.registry = registry
        self.policy = policy
        self.blocks = blocks
        self.audit = audit
        self.page_size = page_size

    def create_block(self, ctx: RequestContext, kind: str, config: dict[str, Any], title: str | None = None) -> ReportBlock:
        parse_block_config(kind, config)
        block = self.blocks.create(ctx.user.id, kind, config, title)
        logger.info("Block created id=%s kind=%s owner=%s", block.id, kind, ctx.user.id)
        return block

    def owned_block(self, ctx: RequestContext, block_id: str) -> ReportBlock:
        block = self.blocks.get(block_id)
        if block is None or block.owner_id != ctx.user.id:
            raise BlockNotFound()
        return block

    def run_block(self, ctx: RequestContext, block_id: str, page: Any = 1) -> dict[str, Any]:
        """Execute a block owned by the requester and return its payload."""
        block = self.owned_block(ctx, block_id)
        config = parse_block_config(block.kind, block.config)

        if isinstance(config, TextBlockConfig):
            return {"type": "text", "content": config.content}

        with self.registry.readonly_connection(config.database) as conn:
            plan = self._plan(conn, ctx, config)
            if isinstance(config, TableBlockConfig):
                payload, details = self._run_table(conn, plan, config, page)
            elif isinstance(config, ChartBlockConfig):
                payload, details = self._run_chart(conn, plan, config)
            else:
                payload, details = self._run_metric(conn, plan, config)

        if config.join is not None:
            details += f" (joined with {config.join.table})"
        self.audit.log(
            ctx.user.id, ctx.user.email, audit_log.REPORT_QUERY,
            config.database, plan.tables[ALIAS_MAIN].ref.full_name, details, ctx.ip,
        )
        return payload

    # ── Internals ───────────────────────────────────────

    def _plan(self, conn: Connection, ctx: RequestContext, config: _QueryBlockConfig) -> JoinPlan:
        catalog = Catalog(conn)

        def gate(table: str):
            return authorize(
                ctx.user, config.database, table,
                catalog=catalog, grants=ctx.grants, policy=self.policy, bypass_visibility=True,
            )

        ref = gate(config.table)
        return build_join(ref, catalog.columns(ref), config.join, authorize_table=gate, columns_of=catalog.columns)

    def _primary_key(self, conn: Connection, plan: JoinPlan) -> list[str]:
        return Catalog(conn).primary_key(plan.tables[ALIAS_MAIN].ref)

    def _run_table(self, conn: Connection, plan: JoinPlan, config: TableBlockConfig, page: Any):
        select_list = ", ".join(plan.select_expr(c) for c in config.columns) or plan.main_star()
        where = compile_filters(config.filters, resolve_column=plan.resolve)
        sort = [config.order_by] if config.order_by else []
        order_by = build_order_by(sort, plan.resolve, default_order(plan, self._primary_key(conn, plan)))
        query = TableQuery(from_sql=plan.from_sql, where=where, select_list=select_list, order_by=order_by)

        result = fetch_page(conn, query, page, self.page_size)
        payload = {"type": "table", "rowCount": len(result.rows), **result.to_dict()}
        details = f"Table block query: page {result.page} of {result.total_pages} ({len(result.rows)} rows)"
        return payload, details

    def _run_chart(self, conn: Connection, plan: JoinPlan, config: ChartBlockConfig):
        x_expr = plan.resolve(config.x_column)
        y_expr = plan.resolve(config.y_column)
        where = compile_filters(config.filters, resolve_column=plan.resolve)

        if config.aggregate_function and config.group_by:
            agg = _aggregate(config.aggregate_function)
            group_key = config.group_by.lower()
            if group_key in DATE_GROUPS:
                label = pacific_bucket(x_expr, group_key)
            else:
                label = plan.resolve(config.group_by)
            select = f"{label} AS label, {agg}({y_expr}) AS value"
            tail = f"GROUP BY {label} ORDER BY {label}"
        else:
            select = f"{x_expr} AS label, {y_expr} AS value"
            tail = f"ORDER BY {', '.join(default_order(plan, self._primary_key(conn, plan)))}"

        sql = " ".join(p for p in (f"SELECT {select} FROM {plan.from_sql}", where.clause, tail) if p)
        sql += f" LIMIT {MAX_CHART_POINTS}"
        rows = [serialise_row(dict(r)) for r in conn.execute(text(sql), where.params).mappings().all()]

        payload = {"type": "chart", "chartType": config.chart_type, "data": rows}
        return payload, f"Chart block query: {len(rows)} data points"

    def _run_metric(self, conn: Connection, plan: JoinPlan, config: MetricBlockConfig):
        agg = _aggregate(config.aggregate_function)
        col_expr = plan.resolve(config.column)
        where = compile_filters(config.filters, resolve_column=plan.resolve)

        sql = " ".join(p for p in (f"SELECT {agg}({col_expr}) AS value FROM {plan.from_sql}", where.clause) if p)
        row = conn.execute(text(sql), where.params).mappings().first()
        value = serialise_row(dict(row))["value"] if row is not None else None

        payload = {
            "type": "metric",
            "value": value,
            "label": config.label or f"{agg} of {config.column}",
            "format": config.format,
        }
        return payload, f"Metric block query: {agg}({config.column})"
