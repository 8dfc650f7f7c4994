"""
Join chain builder for report queries.

A join is a linear chain of at most two hops:

    main  --join-->  joined  --subJoin-->  subjoined

Each hop is validated top-down before any SQL is produced: the table must
pass the access gate, ``on[0]`` must be a column of the left-hand table and
``on[1]`` a column of the right-hand table.

Column references elsewhere in the query name their table with one of three
fixed alias tokens -- ``main.col``, ``joined.col``, ``subjoined.col`` (a bare
``col`` means ``main``).  Any other prefix is rejected; nothing is inferred
from the prefix text.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from tablegate.core.errors import InvalidJoin
from tablegate.core.logging import get_logger
from tablegate.governance.identifiers import TableRef, quote_ident, validate_column, validate_identifier

logger = get_logger(__name__)

ALIAS_MAIN = "main"
ALIAS_JOINED = "joined"
ALIAS_SUBJOINED = "subjoined"
ALIAS_TOKENS = (ALIAS_MAIN, ALIAS_JOINED, ALIAS_SUBJOINED)

# SQL aliases are fixed; tokens never reach the SQL text
_SQL_ALIAS = {ALIAS_MAIN: "t1", ALIAS_JOINED: "t2", ALIAS_SUBJOINED: "t3"}

MAX_JOIN_DEPTH = 2

_JOIN_KEYWORD = {"left": "LEFT JOIN", "inner": "INNER JOIN"}


class JoinSpec(BaseModel):
    """One hop of a join chain, optionally followed by a sub-join."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table: str = Field(..., description="Table to join, 'schema.table' or 'table'")
    on: list[str] = Field(..., description="[fromColumn, toColumn]")
    type: str = Field("left", description="inner | left")
    sub_join: Optional["JoinSpec"] = Field(None, alias="subJoin")


JoinSpec.model_rebuild()


def join_depth(join: JoinSpec | None) -> int:
    depth = 0
    while join is not None:
        depth += 1
        join = join.sub_join
    return depth


@dataclass(frozen=True)
class PlannedTable:
    token: str
    ref: TableRef
    columns: list[str]

    @property
    def alias(self) -> str:
        return _SQL_ALIAS[self.token]


@dataclass(frozen=True)
class JoinPlan:
    """FROM clause for a validated join chain plus its column resolver."""

    from_sql: str
    tables: dict[str, PlannedTable] = field(default_factory=dict)

    @property
    def has_join(self) -> bool:
        return ALIAS_JOINED in self.tables

    def _split(self, column_ref: str) -> tuple[PlannedTable, str]:
        if not isinstance(column_ref, str) or not column_ref:
            raise InvalidJoin(f"Invalid column reference: {column_ref!r}")
        parts = column_ref.split(".")
        if len(parts) == 1:
            return self.tables[ALIAS_MAIN], parts[0]
        if len(parts) != 2:
            raise InvalidJoin(f"Invalid column reference '{column_ref}': must be 'alias.column'")
        token, col = parts
        if token not in ALIAS_TOKENS:
            raise InvalidJoin(
                f"Unknown table alias '{token}' in '{column_ref}'. Use one of: {', '.join(ALIAS_TOKENS)}"
            )
        table = self.tables.get(token)
        if table is None:
            raise InvalidJoin(f"Column reference '{column_ref}' needs a '{token}' table in the join configuration")
        return table, col

    def resolve(self, column_ref: str) -> str:
        """Map ``[token.]column`` to a qualified SQL column expression."""
        table, col = self._split(column_ref)
        validate_column(col, table.columns, f"{table.token} table {table.ref}")
        return f"{table.alias}.{quote_ident(col)}"

    def output_name(self, column_ref: str) -> str:
        table, col = self._split(column_ref)
        return col if table.token == ALIAS_MAIN else f"{table.token}_{col}"

    def select_expr(self, column_ref: str) -> str:
        expr = self.resolve(column_ref)
        table, _ = self._split(column_ref)
        if table.token == ALIAS_MAIN:
            return expr
        return f"{expr} AS {quote_ident(self.output_name(column_ref))}"

    def main_star(self) -> str:
        return f"{self.tables[ALIAS_MAIN].alias}.*"


def _validate_hop(join: JoinSpec, label: str) -> tuple[str, str, str]:
    join_type = (join.type or "left").lower()
    if join_type not in _JOIN_KEYWORD:
        raise InvalidJoin(f"{label} type must be 'inner' or 'left', got '{join.type}'")
    if len(join.on) != 2:
        raise InvalidJoin(f"{label} 'on' must specify two columns [fromColumn, toColumn]")
    from_col = validate_identifier(join.on[0], "column")
    to_col = validate_identifier(join.on[1], "column")
    return join_type, from_col, to_col


def build_join(
    main: TableRef,
    main_columns: list[str],
    join: JoinSpec | None,
    *,
    authorize_table: Callable[[str], TableRef],
    columns_of: Callable[[TableRef], list[str]],
) -> JoinPlan:
    """Validate *join* against live metadata and render the FROM clause.

    Parameters
    ----------
    authorize_table:
        Access-gate callback for joined tables (raises ``AccessDenied``).
    columns_of:
        Live catalog column lookup.

    Raises
    ------
    InvalidJoin
        Depth above two, bad join type, malformed ``on`` or a join column
        missing from its table.
    """
    depth = join_depth(join)
    if depth > MAX_JOIN_DEPTH:
        raise InvalidJoin(f"Join depth {depth} exceeds the maximum of {MAX_JOIN_DEPTH}")

    left = PlannedTable(ALIAS_MAIN, main, list(main_columns))
    tables = {ALIAS_MAIN: left}
    from_sql = f"{main.sql} AS {left.alias}"

    hop = join
    for token, label in ((ALIAS_JOINED, "Join"), (ALIAS_SUBJOINED, "SubJoin")):
        if hop is None:
            break
        join_type, from_col, to_col = _validate_hop(hop, label)
        ref = authorize_table(hop.table)
        right = PlannedTable(token, ref, list(columns_of(ref)))

        if from_col not in left.columns:
            raise InvalidJoin(f"{label} column '{from_col}' not found in {left.token} table {left.ref}")
        if to_col not in right.columns:
            raise InvalidJoin(f"{label} column '{to_col}' not found in {token} table {ref}")

        from_sql += (
            f" {_JOIN_KEYWORD[join_type]} {ref.sql} AS {right.alias}"
            f" ON {left.alias}.{quote_ident(from_col)} = {right.alias}.{quote_ident(to_col)}"
        )
        tables[token] = right
        left = right
        hop = hop.sub_join

    if depth:
        logger.debug("Built join chain depth=%d from %s", depth, main)
    return JoinPlan(from_sql=from_sql, tables=tables)
