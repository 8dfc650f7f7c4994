"""
Unit tests -- pagination arithmetic and the paged fetch.
"""
import pytest

from tablegate.db.executor import PAGE_SIZE, clamp_page, fetch_page, total_pages
from tablegate.query.builder import TableQuery
from tests.fakes import FakeConnection, FakeDatabase, FakeTable


@pytest.mark.parametrize("total,pages", [(0, 1), (1, 1), (50, 1), (51, 2), (100, 2), (101, 3)])
def test_total_pages(total, pages):
    assert total_pages(total, 50) == pages


@pytest.mark.parametrize("requested,expected", [(0, 1), (-3, 1), (1, 1), (3, 3), (4, 3), (999, 3), ("2", 2), ("abc", 1), (None, 1)])
def test_clamp_page(requested, expected):
    assert clamp_page(requested, 3) == expected


def _orders(n):
    return FakeTable(columns=["id", "status"], rows=[{"id": i, "status": "paid"} for i in range(1, n + 1)], primary_key=["id"])


def test_fetch_page_clamps_out_of_range():
    db = FakeDatabase({"public.orders": _orders(120)})
    query = TableQuery(from_sql='"public"."orders" AS t1', select_list="t1.*", order_by='t1."id" ASC')

    result = fetch_page(FakeConnection(db), query, page=99)

    assert result.total_count == 120
    assert result.total_pages == 3
    assert result.page == 3
    assert [r["id"] for r in result.rows] == list(range(101, 121))
    assert db.sql_containing("LIMIT 50 OFFSET 100")


def test_fetch_page_empty_table_is_page_one():
    db = FakeDatabase({"public.orders": _orders(0)})
    query = TableQuery(from_sql='"public"."orders" AS t1')
    result = fetch_page(FakeConnection(db), query, page=5)
    assert result.to_dict() == {"rows": [], "totalCount": 0, "page": 1, "pageSize": PAGE_SIZE, "totalPages": 1}
