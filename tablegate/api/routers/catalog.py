"""
GET /databases, GET /tables/{database}, GET /columns/{database}/{table},
table-settings endpoints -- metadata about what may be browsed.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from tablegate.api.deps import current_context, require_admin, table_browser, table_settings_store
from tablegate.governance.identifiers import parse_table_name
from tablegate.service.browser import RequestContext, TableBrowser
from tablegate.service.stores import TableSettings, TableSettingsStore

router = APIRouter()


class ColumnItem(BaseModel):
    name: str
    dataType: str
    isNullable: bool
    isPrimaryKey: bool


class TableSettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    database: str
    table_name: str = Field(..., alias="tableName")
    is_visible: bool = Field(True, alias="isVisible")
    display_name: Optional[str] = Field(None, alias="displayName")
    hidden_columns: list[str] = Field(default_factory=list, alias="hiddenColumns")


@router.get("/databases")
def list_databases(
    ctx: RequestContext = Depends(current_context),
    browser: TableBrowser = Depends(table_browser),
) -> dict:
    """Configured database names (never their connection strings)."""
    return {"databases": [{"name": name} for name in browser.list_databases()]}


@router.get("/tables/{database}")
def list_tables(
    database: str,
    ctx: RequestContext = Depends(current_context),
    browser: TableBrowser = Depends(table_browser),
) -> dict:
    return {"tables": browser.list_tables(ctx, database)}


@router.get("/columns/{database}/{table}", response_model=list[ColumnItem])
def list_columns(
    database: str,
    table: str,
    ctx: RequestContext = Depends(current_context),
    browser: TableBrowser = Depends(table_browser),
) -> list[ColumnItem]:
    return [
        ColumnItem(name=c.name, dataType=c.data_type, isNullable=c.is_nullable, isPrimaryKey=c.is_primary_key)
        for c in browser.list_columns(ctx, database, table)
    ]


@router.get("/table-settings")
def get_table_settings(
    ctx: RequestContext = Depends(current_context),
    store: TableSettingsStore = Depends(table_settings_store),
) -> dict:
    return {key: value.model_dump(by_alias=True) for key, value in store.all().items()}


@router.post("/admin/table-settings")
def set_table_settings(
    body: TableSettingsRequest,
    ctx: RequestContext = Depends(require_admin),
    store: TableSettingsStore = Depends(table_settings_store),
) -> dict:
    table = parse_table_name(body.table_name).full_name
    settings = TableSettings(
        is_visible=body.is_visible, display_name=body.display_name, hidden_columns=body.hidden_columns,
    )
    store.set(body.database, table, settings)
    return {"success": True, "key": f"{body.database}:{table}", "settings": settings.model_dump(by_alias=True)}
