"""POST /rows -- one filtered, sorted page of a table."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from tablegate.api.deps import current_context, table_browser
from tablegate.query.builder import SortSpec
from tablegate.query.filters import FilterSpec
from tablegate.service.browser import RequestContext, TableBrowser

router = APIRouter()


class RowsRequest(BaseModel):
    database: str = Field(..., description="Configured database name")
    table: str = Field(..., description="'schema.table' or 'table' (public schema)")
    page: int = Field(1, description="1-based page; clamped into range")
    filters: list[FilterSpec] = Field(default_factory=list)
    sort: list[SortSpec] = Field(default_factory=list)


class RowsResponse(BaseModel):
    rows: list[dict]
    totalCount: int
    page: int
    pageSize: int
    totalPages: int


@router.post("/rows", response_model=RowsResponse)
def get_rows(
    req: RowsRequest,
    ctx: RequestContext = Depends(current_context),
    browser: TableBrowser = Depends(table_browser),
) -> dict:
    result = browser.fetch_rows(ctx, req.database, req.table, req.page, req.filters, req.sort)
    return result.to_dict()
