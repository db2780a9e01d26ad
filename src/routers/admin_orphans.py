from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.auth import SuperAdminContext, get_current_super_admin
from src.domain.ingress import request_id_of
from src.domain.orphans import OrphanAssignmentError, assign_orphaned_event, list_orphaned_events
from src.models.admin import OrphanAssignRequest, OrphanAssignResponse, OrphanedEventItem
from src.observability import log_event


router = APIRouter(prefix="/api/admin/orphaned-events", tags=["admin"])


@router.get("", response_model=list[OrphanedEventItem])
async def list_orphans(
    source: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    admin: SuperAdminContext = Depends(get_current_super_admin),
):
    return list_orphaned_events(source=source, limit=limit)


@router.post("/{event_id}/assign", response_model=OrphanAssignResponse)
async def assign_orphan(
    event_id: str,
    data: OrphanAssignRequest,
    request: Request,
    admin: SuperAdminContext = Depends(get_current_super_admin),
):
    request_id = request_id_of(request)
    try:
        outcome = assign_orphaned_event(event_id, data.workspace_id, request_id=request_id)
    except OrphanAssignmentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    log_event(
        "orphaned_event_assigned",
        request_id=request_id,
        super_admin_id=admin.super_admin_id,
        event_id=event_id,
        workspace_id=data.workspace_id,
        lead_id=outcome.lead_id,
    )
    return OrphanAssignResponse(
        event_id=event_id,
        workspace_id=data.workspace_id,
        lead_id=outcome.lead_id,
        processed=outcome.processed,
        matched=outcome.matched,
    )
