"""Report blocks: create, list, delete, run (owner only)."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from tablegate.api.deps import current_context, report_runner
from tablegate.service.browser import RequestContext
from tablegate.service.reports import ReportRunner

router = APIRouter()


class CreateBlockRequest(BaseModel):
    kind: str = Field(..., description="table | chart | metric | text")
    title: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)


class RunBlockRequest(BaseModel):
    page: int = 1


@router.get("/blocks")
def list_blocks(
    ctx: RequestContext = Depends(current_context),
    runner: ReportRunner = Depends(report_runner),
) -> list[dict]:
    return [b.model_dump(by_alias=True) for b in runner.blocks.list_for(ctx.user.id)]


@router.post("/blocks")
def create_block(
    req: CreateBlockRequest,
    ctx: RequestContext = Depends(current_context),
    runner: ReportRunner = Depends(report_runner),
) -> dict:
    return runner.create_block(ctx, req.kind, req.config, req.title).model_dump(by_alias=True)


@router.delete("/blocks/{block_id}")
def delete_block(
    block_id: str,
    ctx: RequestContext = Depends(current_context),
    runner: ReportRunner = Depends(report_runner),
) -> dict:
    if not runner.blocks.delete(block_id, ctx.user.id):
        raise HTTPException(status_code=404, detail="Block not found")
    return {"success": True}


@router.post("/blocks/{block_id}/run")
def run_block(
    block_id: str,
    req: Optional[RunBlockRequest] = None,
    ctx: RequestContext = Depends(current_context),
    runner: ReportRunner = Depends(report_runner),
) -> dict:
    return runner.run_block(ctx, block_id, (req or RunBlockRequest()).page)
