"""
Filter definitions (admin-curated) and per-user filter history.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from tablegate.api.deps import current_context, filter_definition_store, filter_history_store, require_admin
from tablegate.query.filters import FilterSpec, parse_operator
from tablegate.service.browser import RequestContext
from tablegate.service.stores import FilterDefinition, FilterDefinitionStore, FilterHistoryStore

router = APIRouter()


class SetFiltersRequest(BaseModel):
    table: str
    filters: list[FilterDefinition]


class SaveHistoryRequest(BaseModel):
    database: str
    table: str
    filters: list[FilterSpec] = Field(..., min_length=1)


# ── History (declared first: more specific paths) ───────


@router.get("/filters/history/{database}/{table}")
def get_filter_history(
    database: str,
    table: str,
    ctx: RequestContext = Depends(current_context),
    store: FilterHistoryStore = Depends(filter_history_store),
) -> list[dict]:
    return [e.model_dump(by_alias=True) for e in store.recent(ctx.user.id, database, table)]


@router.post("/filters/history")
def save_filter_history(
    req: SaveHistoryRequest,
    ctx: RequestContext = Depends(current_context),
    store: FilterHistoryStore = Depends(filter_history_store),
) -> dict:
    for f in req.filters:
        parse_operator(f.operator)
    entry = store.save(ctx.user.id, req.database, req.table, req.filters)
    return entry.model_dump(by_alias=True)


@router.delete("/filters/history/{entry_id}")
def delete_filter_history(
    entry_id: str,
    ctx: RequestContext = Depends(current_context),
    store: FilterHistoryStore = Depends(filter_history_store),
) -> dict:
    if not store.delete(entry_id, ctx.user.id):
        raise HTTPException(status_code=404, detail="History entry not found")
    return {"success": True}


# ── Definitions ─────────────────────────────────────────


@router.get("/filters/{table}")
def get_filters(
    table: str,
    ctx: RequestContext = Depends(current_context),
    store: FilterDefinitionStore = Depends(filter_definition_store),
) -> list[dict]:
    return [d.model_dump() for d in store.get(table)]


@router.post("/filters")
def set_filters(
    req: SetFiltersRequest,
    ctx: RequestContext = Depends(require_admin),
    store: FilterDefinitionStore = Depends(filter_definition_store),
) -> dict:
    for d in req.filters:
        parse_operator(d.operator)
    store.set(req.table, req.filters)
    return {"success": True}
