"""
Filter compiler: (column, operator, value) triples -> parameterised WHERE.

Column names come from the live catalog (or a join-aware resolver) and are
quoted by the identifier module; operator keywords come from the fixed
table below.  Every value is a bound parameter (``:p1``, ``:p2`` ...), and
each operator binds a fixed number of them:

  eq, gt, gte, lt, lte   col <op> :pN               1 scalar
  contains               CAST(col AS TEXT) ILIKE :pN 1 scalar, wrapped in %...%
  between                col BETWEEN :pN AND :pN+1  2 scalars
  in                     col = ANY(:pN)             1 array

Date-looking strings on comparison operators are Pacific calendar bounds
and are converted to UTC instants (see ``tablegate.query.dates``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

from tablegate.core.errors import InvalidOperator, InvalidValue
from tablegate.core.logging import get_logger
from tablegate.governance.identifiers import quote_ident, validate_column
from tablegate.query.dates import is_date_like, pacific_bound_to_utc

logger = get_logger(__name__)

Scalar = Union[str, int, float, bool]
ColumnResolver = Callable[[str], str]


class OperatorKind(str, Enum):
    EQ = "eq"
    CONTAINS = "contains"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    IN = "in"


_COMPARISON_SQL = {
    OperatorKind.EQ: "=",
    OperatorKind.GT: ">",
    OperatorKind.GTE: ">=",
    OperatorKind.LT: "<",
    OperatorKind.LTE: "<=",
}

# Upper-bound operators map a calendar date to the start of the next day
_UPPER_BOUND_OPS = {OperatorKind.LT, OperatorKind.LTE}


class FilterSpec(BaseModel):
    """One filter as received from a client or a stored definition."""

    model_config = ConfigDict(frozen=True)

    column: str = Field(..., description="Column name, or 'joined.col' / 'subjoined.col' on the report path")
    operator: str = Field(..., description="eq | contains | gt | gte | lt | lte | between | in")
    value: Any = Field(None, description="Scalar, or a list for between / in")


@dataclass(frozen=True)
class CompiledWhere:
    """WHERE body (without the keyword) and its bound parameters."""

    sql: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def clause(self) -> str:
        return f"WHERE {self.sql}" if self.sql else ""


def parse_operator(op: object) -> OperatorKind:
    try:
        return OperatorKind(op)
    except ValueError:
        raise InvalidOperator(f"Invalid filter operator: {op}") from None


def _is_scalar(value: object) -> bool:
    return isinstance(value, (str, int, float, bool))


def _require_scalar(spec: FilterSpec) -> Scalar:
    if not _is_scalar(spec.value):
        raise InvalidValue(f"Operator '{spec.operator}' on '{spec.column}' requires exactly one value")
    return spec.value


def _require_list(spec: FilterSpec) -> list[Scalar]:
    value = spec.value
    if not isinstance(value, (list, tuple)) or not all(_is_scalar(v) for v in value):
        raise InvalidValue(f"Operator '{spec.operator}' on '{spec.column}' requires a list of values")
    return list(value)


def _normalise_bound(value: Scalar, end_of_range: bool) -> Any:
    if is_date_like(value):
        return pacific_bound_to_utc(value, end_of_range=end_of_range)  # type: ignore[arg-type]
    return value


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def column_resolver(known_columns: Iterable[str], table: str = "table") -> ColumnResolver:
    """Resolver for single-table queries: bare catalog column names only."""
    known = list(known_columns)

    def resolve(name: str) -> str:
        return quote_ident(validate_column(name, known, table))

    return resolve


def compile_filters(
    filters: Iterable[FilterSpec | Mapping[str, Any]],
    known_columns: Iterable[str] | None = None,
    *,
    resolve_column: ColumnResolver | None = None,
    param_offset: int = 0,
) -> CompiledWhere:
    """Compile *filters* into a ``CompiledWhere``.

    Either *known_columns* (single table) or *resolve_column* (join-aware)
    must be supplied.  Filters are ANDed together in the given order.

    Raises
    ------
    InvalidIdentifier, InvalidColumn
        Bad or unknown column name.
    InvalidOperator
        Operator outside the eight recognised kinds.
    InvalidValue
        Arity does not match the operator, or a malformed date.
    """
    if resolve_column is None:
        if known_columns is None:
            raise ValueError("compile_filters needs known_columns or resolve_column")
        resolve_column = column_resolver(known_columns)

    clauses: list[str] = []
    params: dict[str, Any] = {}

    def bind(value: Any) -> str:
        name = f"p{param_offset + len(params) + 1}"
        params[name] = value
        return f":{name}"

    for raw in filters:
        spec = raw if isinstance(raw, FilterSpec) else FilterSpec.model_validate(raw)
        op = parse_operator(spec.operator)
        col = resolve_column(spec.column)

        if op is OperatorKind.BETWEEN:
            values = _require_list(spec)
            if len(values) != 2:
                raise InvalidValue(f"Operator 'between' on '{spec.column}' requires exactly 2 values, got {len(values)}")
            low = bind(_normalise_bound(values[0], end_of_range=False))
            high = bind(_normalise_bound(values[1], end_of_range=True))
            clauses.append(f"{col} BETWEEN {low} AND {high}")
        elif op is OperatorKind.IN:
            values = _require_list(spec)
            if not values:
                raise InvalidValue(f"Operator 'in' on '{spec.column}' requires a non-empty list")
            clauses.append(f"{col} = ANY({bind(values)})")
        elif op is OperatorKind.CONTAINS:
            value = _require_scalar(spec)
            clauses.append(f"CAST({col} AS TEXT) ILIKE {bind('%' + _escape_like(str(value)) + '%')}")
        else:
            value = _require_scalar(spec)
            bound = _normalise_bound(value, end_of_range=op in _UPPER_BOUND_OPS)
            clauses.append(f"{col} {_COMPARISON_SQL[op]} {bind(bound)}")

    if clauses:
        logger.debug("Compiled %d filters (%d params)", len(clauses), len(params))
    return CompiledWhere(sql=" AND ".join(clauses), params=params)
