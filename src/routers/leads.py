from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.auth import AuthContext, require_permission
from src.auth.permissions import LEADS_WRITE
from src.domain.ingestion import persist_normalized
from src.domain.ingress import request_id_of
from src.domain.normalization import normalize_event
from src.domain.routing import LeadNotFound, route_lead
from src.models.leads import (
    LeadIngestRequest,
    LeadIngestResponse,
    LeadIngestResult,
    LeadInput,
    LeadRouteResponse,
)
from src.observability import incr_metric, log_event, sanitize_error


router = APIRouter(prefix="/api/leads", tags=["leads"])


def _ingest_one(auth: AuthContext, lead: LeadInput, data: LeadIngestRequest, request_id: str | None) -> LeadIngestResult:
    fields = normalize_event(lead.model_dump(mode="json", exclude_none=True, exclude={"extra"}))
    if fields.shape == "unparsed":
        return LeadIngestResult(error="Lead has no recognizable fields")
    fields.extra.update(lead.extra)
    outcome = persist_normalized(
        auth.workspace_id,
        fields,
        source=data.source_type,
        auto_route=data.auto_route,
        request_id=request_id,
    )
    return LeadIngestResult(
        lead_id=outcome.lead_id,
        matched=outcome.matched,
        assigned_to=outcome.assigned_to,
        created=outcome.created,
    )


@router.post("/ingest", response_model=LeadIngestResponse)
async def ingest_leads(
    data: LeadIngestRequest,
    request: Request,
    auth: AuthContext = Depends(require_permission(LEADS_WRITE)),
):
    request_id = request_id_of(request)
    results: list[LeadIngestResult] = []
    for index, lead in enumerate(data.all_leads()):
        try:
            results.append(_ingest_one(auth, lead, data, request_id))
        except Exception as exc:
            incr_metric("leads.ingest_failed", source=data.source_type)
            log_event(
                "lead_ingest_failed",
                level=logging.ERROR,
                request_id=request_id,
                workspace_id=auth.workspace_id,
                index=index,
                error=sanitize_error(exc),
            )
            results.append(LeadIngestResult(error="Failed to store lead"))

    stored = sum(1 for result in results if result.lead_id)
    log_event(
        "leads_ingested",
        request_id=request_id,
        workspace_id=auth.workspace_id,
        source_type=data.source_type,
        total=len(results),
        stored=stored,
    )
    return LeadIngestResponse(results=results, total=len(results), stored=stored)


@router.post("/{lead_id}/route", response_model=LeadRouteResponse)
async def reroute_lead(
    lead_id: str,
    request: Request,
    auth: AuthContext = Depends(require_permission(LEADS_WRITE)),
):
    try:
        result = route_lead(auth.workspace_id, lead_id, request_id=request_id_of(request))
    except LeadNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    return result.as_dict()
