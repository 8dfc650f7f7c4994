"""
Paginated query executor.

`fetch_page`:
  1. Runs ``SELECT COUNT(*)`` with the compiled WHERE and its parameters
  2. Computes ``total_pages = max(1, ceil(total / page_size))``
  3. Clamps the requested page into ``[1, total_pages]`` -- out-of-range
     pages never error
  4. Runs the bounded SELECT with a deterministic ORDER BY
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from tablegate.core.logging import get_logger
from tablegate.core.utils import serialise_row
from tablegate.query.builder import TableQuery

logger = get_logger(__name__)

PAGE_SIZE = 50


def total_pages(total_count: int, page_size: int = PAGE_SIZE) -> int:
    return max(1, math.ceil(max(0, total_count) / page_size))


def clamp_page(page: Any, pages: int) -> int:
    """Clamp *page* into ``[1, pages]``; unparsable input means page 1."""
    try:
        requested = int(page)
    except (TypeError, ValueError):
        requested = 1
    return min(max(1, requested), max(1, pages))


@dataclass
class PageResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = PAGE_SIZE
    total_pages: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "totalCount": self.total_count,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


def count_rows(conn: Connection, query: TableQuery) -> int:
    value = conn.execute(text(query.count_sql()), query.params).scalar()
    return int(value or 0)


def fetch_page(conn: Connection, query: TableQuery, page: Any = 1, page_size: int = PAGE_SIZE) -> PageResult:
    """Count, clamp and fetch one page of *query*."""
    total = count_rows(conn, query)
    pages = total_pages(total, page_size)
    safe_page = clamp_page(page, pages)
    offset = (safe_page - 1) * page_size

    result = conn.execute(text(query.select_sql(limit=page_size, offset=offset)), query.params)
    rows = [serialise_row(dict(r)) for r in result.mappings().all()]

    logger.info("Fetched page %d/%d (%d rows of %d)", safe_page, pages, len(rows), total)
    return PageResult(rows=rows, total_count=total, page=safe_page, page_size=page_size, total_pages=pages)
