"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tablegate.api.routers import catalog, dashboards, export, filters, reports, rows
from tablegate.core.errors import TableGateError
from tablegate.core.logging import get_logger
from tablegate.db.audit_log import get_audit_log
from tablegate.db.connection import get_registry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        get_audit_log().ensure_table()
    except SQLAlchemyError:
        logger.exception("Could not ensure audit table -- audit writes will be retried per request")
    yield
    get_registry().dispose()


app = FastAPI(
    title="TableGate",
    version="0.1.0",
    description="Governed read-only table browser with filtered paging and streaming CSV export",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TableGateError)
async def tablegate_error_handler(request: Request, exc: TableGateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(catalog.router, prefix="/api", tags=["Catalog"])
app.include_router(rows.router, prefix="/api", tags=["Rows"])
app.include_router(export.router, prefix="/api", tags=["Export"])
app.include_router(filters.router, prefix="/api", tags=["Filters"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])
app.include_router(dashboards.router, prefix="/api", tags=["Dashboards"])


@app.get("/health")
def health():
    return {"status": "ok"}
