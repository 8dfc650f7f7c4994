"""
POST /export/check, GET /export -- CSV downloads.

``GET /export`` without ``exportAll`` returns the requested page; with it,
the whole filtered result streams from a server-side cursor.  A refused
export is a plain 403 JSON error: the ceiling is checked before the
streaming response starts.
"""
from __future__ import annotations

import json
from typing import AsyncIterator, Iterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from tablegate.api.deps import current_context, table_browser
from tablegate.core.errors import InvalidValue, StreamInterrupted
from tablegate.core.logging import get_logger
from tablegate.query.builder import SortSpec
from tablegate.query.filters import FilterSpec
from tablegate.service.browser import RequestContext, TableBrowser

logger = get_logger(__name__)
router = APIRouter()


class ExportCheckRequest(BaseModel):
    database: str
    table: str
    filters: list[FilterSpec] = Field(default_factory=list)


def _parse_json_list(raw: str | None, model, name: str) -> list:
    if not raw:
        return []
    try:
        items = json.loads(raw)
        if not isinstance(items, list):
            raise InvalidValue(f"'{name}' must be a JSON array")
        return [model.model_validate(item) for item in items]
    except (json.JSONDecodeError, ValidationError):
        raise InvalidValue(f"Malformed '{name}' parameter") from None


async def _guarded(request: Request, chunks: Iterator[str]) -> AsyncIterator[str]:
    """Relay *chunks*, closing the source when the client goes away.

    The source is closed in the threadpool: closing a cursor stream rolls
    back its transaction and returns the connection, both blocking calls.
    """
    try:
        async for chunk in iterate_in_threadpool(chunks):
            if await request.is_disconnected():
                raise StreamInterrupted("Client disconnected during export")
            yield chunk
    except StreamInterrupted as exc:
        logger.warning("Export stream stopped: %s", exc.message)
    finally:
        close = getattr(chunks, "close", None)
        if close is not None:
            await run_in_threadpool(close)


@router.post("/export/check")
def export_check(
    req: ExportCheckRequest,
    ctx: RequestContext = Depends(current_context),
    browser: TableBrowser = Depends(table_browser),
) -> dict:
    """Row count plus the requester's limits, for the pre-export dialog."""
    return browser.export_check(ctx, req.database, req.table, req.filters).to_dict()


@router.get("/export")
def export_csv(
    request: Request,
    database: str = Query(...),
    table: str = Query(...),
    page: int = Query(1),
    export_all: bool = Query(False, alias="exportAll"),
    filters: str | None = Query(None, description="JSON array of {column, operator, value}"),
    sort: str | None = Query(None, description="JSON array of {column, direction}"),
    ctx: RequestContext = Depends(current_context),
    browser: TableBrowser = Depends(table_browser),
) -> StreamingResponse:
    filter_specs = _parse_json_list(filters, FilterSpec, "filters")
    sort_specs = _parse_json_list(sort, SortSpec, "sort")

    stream = browser.open_export(
        ctx, database, table, filter_specs, sort_specs, page=page, export_all=export_all,
    )
    return StreamingResponse(
        _guarded(request, stream.chunks),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{stream.filename}"'},
    )
