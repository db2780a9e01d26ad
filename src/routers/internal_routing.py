from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from src.auth import require_internal_scheduler
from src.domain.dispatch import drain_routing_jobs
from src.domain.ingress import request_id_of
from src.observability import metrics_snapshot


router = APIRouter(prefix="/api/internal", tags=["internal"])


@router.post("/routing/drain")
async def drain_routing_queue(
    request: Request,
    limit: int | None = Query(default=None, ge=1, le=1000),
    _: None = Depends(require_internal_scheduler),
):
    return drain_routing_jobs(limit, request_id=request_id_of(request))


@router.get("/metrics")
async def get_metrics(_: None = Depends(require_internal_scheduler)):
    return {"counters": metrics_snapshot()}
