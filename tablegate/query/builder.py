"""
Assembles COUNT / page / cursor SELECT statements from validated parts.

All identifiers arrive already quoted through ``JoinPlan``; all values are
in ``CompiledWhere.params``.  LIMIT and OFFSET are integers formatted here.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from tablegate.query.filters import ColumnResolver, CompiledWhere
from tablegate.query.joins import ALIAS_MAIN, JoinPlan
from tablegate.governance.identifiers import quote_ident

# Physical row id, used for ordering when a table has no primary key
STABLE_ROW_ID = "ctid"


class SortSpec(BaseModel):
    column: str = Field(..., description="Column to sort by")
    direction: str = Field("asc", description="asc | desc")


def default_order(plan: JoinPlan, primary_key: list[str]) -> list[str]:
    """Primary-key columns of the main table, else its ``ctid``."""
    alias = plan.tables[ALIAS_MAIN].alias
    if primary_key:
        return [f"{alias}.{quote_ident(col)}" for col in primary_key]
    return [f"{alias}.{STABLE_ROW_ID}"]


def build_order_by(
    sort: list[SortSpec] | None,
    resolve: ColumnResolver,
    tie_breakers: list[str],
) -> str:
    """Render ORDER BY terms; tie-breakers keep paging deterministic."""
    terms: list[str] = []
    used: set[str] = set()
    for item in sort or []:
        expr = resolve(item.column)
        direction = "DESC" if str(item.direction).lower() == "desc" else "ASC"
        if expr in used:
            continue
        used.add(expr)
        terms.append(f"{expr} {direction}")
    for expr in tie_breakers:
        if expr not in used:
            used.add(expr)
            terms.append(f"{expr} ASC")
    return ", ".join(terms)


@dataclass(frozen=True)
class TableQuery:
    """A compiled query shape shared by COUNT, page and export cursor."""

    from_sql: str
    where: CompiledWhere = field(default_factory=CompiledWhere)
    select_list: str = "*"
    order_by: str = ""

    @property
    def params(self) -> dict:
        return self.where.params

    def count_sql(self) -> str:
        return " ".join(p for p in ("SELECT COUNT(*) AS count FROM", self.from_sql, self.where.clause) if p)

    def select_sql(self, limit: int | None = None, offset: int | None = None) -> str:
        parts = [f"SELECT {self.select_list} FROM {self.from_sql}"]
        if self.where.sql:
            parts.append(self.where.clause)
        if self.order_by:
            parts.append(f"ORDER BY {self.order_by}")
        if limit is not None:
            parts.append(f"LIMIT {int(limit)}")
        if offset:
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)
