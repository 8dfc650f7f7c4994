"""
Unit tests -- filter compilation to parameterised WHERE clauses.
"""
import datetime

import pytest

from tablegate.core.errors import InvalidColumn, InvalidIdentifier, InvalidOperator, InvalidValue
from tablegate.query.dates import UTC
from tablegate.query.filters import CompiledWhere, FilterSpec, OperatorKind, compile_filters

COLUMNS = ["id", "status", "total", "created_at", "region"]


def _compile(*filters):
    return compile_filters([FilterSpec(**f) for f in filters], COLUMNS)


def test_no_filters_is_empty():
    where = compile_filters([], COLUMNS)
    assert where == CompiledWhere()
    assert where.clause == ""


def test_eq_binds_value():
    where = _compile({"column": "status", "operator": "eq", "value": "paid"})
    assert where.sql == '"status" = :p1'
    assert where.params == {"p1": "paid"}
    assert where.clause == 'WHERE "status" = :p1'


@pytest.mark.parametrize("op,sql_op", [("gt", ">"), ("gte", ">="), ("lt", "<"), ("lte", "<=")])
def test_comparison_operators(op, sql_op):
    where = _compile({"column": "total", "operator": op, "value": 100})
    assert where.sql == f'"total" {sql_op} :p1'
    assert where.params["p1"] == 100


def test_contains_is_escaped_ilike():
    where = _compile({"column": "region", "operator": "contains", "value": "50%_off"})
    assert where.sql == 'CAST("region" AS TEXT) ILIKE :p1'
    assert where.params["p1"] == "%50\\%\\_off%"


def test_in_binds_one_array():
    where = _compile({"column": "status", "operator": "in", "value": ["paid", "refunded"]})
    assert where.sql == '"status" = ANY(:p1)'
    assert where.params == {"p1": ["paid", "refunded"]}


def test_between_binds_two_values():
    where = _compile({"column": "total", "operator": "between", "value": [10, 20]})
    assert where.sql == '"total" BETWEEN :p1 AND :p2'
    assert where.params == {"p1": 10, "p2": 20}


def test_between_dates_cover_whole_pacific_days():
    where = _compile({"column": "created_at", "operator": "between", "value": ["2025-03-09", "2025-03-09"]})
    low, high = where.params["p1"], where.params["p2"]
    assert low == datetime.datetime(2025, 3, 9, 8, tzinfo=UTC)
    assert high == datetime.datetime(2025, 3, 10, 7, tzinfo=UTC)
    assert high - low == datetime.timedelta(hours=23)


def test_lte_date_is_exclusive_next_day_bound():
    where = _compile({"column": "created_at", "operator": "lte", "value": "2025-01-15"})
    assert where.params["p1"] == datetime.datetime(2025, 1, 16, 8, tzinfo=UTC)


def test_gte_date_is_start_of_day():
    where = _compile({"column": "created_at", "operator": "gte", "value": "2025-01-15"})
    assert where.params["p1"] == datetime.datetime(2025, 1, 15, 8, tzinfo=UTC)


def test_multiple_filters_anded_with_sequential_params():
    where = _compile(
        {"column": "status", "operator": "eq", "value": "paid"},
        {"column": "total", "operator": "between", "value": [1, 5]},
        {"column": "region", "operator": "in", "value": ["west"]},
    )
    assert where.sql == '"status" = :p1 AND "total" BETWEEN :p2 AND :p3 AND "region" = ANY(:p4)'
    assert list(where.params) == ["p1", "p2", "p3", "p4"]


def test_param_offset():
    where = compile_filters([FilterSpec(column="id", operator="eq", value=1)], COLUMNS, param_offset=3)
    assert where.params == {"p4": 1}


def test_values_never_appear_in_sql():
    payload = "x'; DROP TABLE orders; --"
    where = _compile({"column": "status", "operator": "eq", "value": payload})
    assert payload not in where.sql
    assert where.params["p1"] == payload


def test_accepts_plain_dicts():
    where = compile_filters([{"column": "id", "operator": "eq", "value": 7}], COLUMNS)
    assert where.params == {"p1": 7}


def test_unknown_operator():
    with pytest.raises(InvalidOperator):
        _compile({"column": "id", "operator": "like", "value": "x"})


def test_unknown_column_has_suggestions():
    with pytest.raises(InvalidColumn) as exc_info:
        _compile({"column": "create_at", "operator": "eq", "value": "x"})
    assert "created_at" in exc_info.value.suggestions


def test_malformed_column_rejected():
    with pytest.raises(InvalidIdentifier):
        _compile({"column": "status OR 1=1", "operator": "eq", "value": "x"})


def test_trailing_newline_column_is_invalid_identifier():
    with pytest.raises(InvalidIdentifier):
        _compile({"column": "id\n", "operator": "eq", "value": 1})


@pytest.mark.parametrize("value", [[1], [1, 2, 3], [], "1,2", None])
def test_between_arity(value):
    with pytest.raises(InvalidValue):
        _compile({"column": "total", "operator": "between", "value": value})


@pytest.mark.parametrize("value", [[], "paid", None])
def test_in_requires_non_empty_list(value):
    with pytest.raises(InvalidValue):
        _compile({"column": "status", "operator": "in", "value": value})


@pytest.mark.parametrize("op", ["eq", "contains", "gt", "lte"])
def test_scalar_operators_reject_lists(op):
    with pytest.raises(InvalidValue):
        _compile({"column": "status", "operator": op, "value": ["a", "b"]})


def test_invalid_date_value_rejected():
    with pytest.raises(InvalidValue):
        _compile({"column": "created_at", "operator": "gte", "value": "2025-02-30"})


def test_operator_kinds_are_fixed():
    assert {k.value for k in OperatorKind} == {"eq", "contains", "gt", "gte", "lt", "lte", "between", "in"}
