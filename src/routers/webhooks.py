from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from src.config import settings
from src.domain.idempotency import (
    compute_event_id,
    duplicate_response,
    find_processed_event,
    record_processed_event,
)
from src.domain.ingestion import ingest_event
from src.domain.ingress import (
    captured_headers,
    parse_json_body,
    read_bounded_body,
    request_id_of,
    require_configured_secret,
    require_json_content_type,
    split_events,
    verify_sender_or_raise,
)
from src.domain.leads import store_orphaned_events
from src.domain.tenancy import TenantResolutionError, resolve_workspace
from src.models.webhooks import WebhookIngestResponse
from src.observability import incr_metric, log_event, sanitize_error


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SUPERPIXEL_SOURCE = "superpixel"
ENRICHMENT_SOURCE = "enrichment"


def _nested_value(event: dict[str, Any], *keys: str) -> Any:
    nested_event = event.get("event") if isinstance(event.get("event"), dict) else {}
    for container in (event, event.get("event_data"), nested_event.get("data")):
        if not isinstance(container, dict):
            continue
        for key in keys:
            if container.get(key) not in (None, ""):
                return container[key]
    return None


def _pixel_id(event: dict[str, Any]) -> str | None:
    value = _nested_value(event, "pixel_id", "pixelId", "PIXEL_ID")
    return str(value) if value is not None else None


def _resolve_superpixel_workspace(events: list[dict[str, Any]]) -> str:
    pixels = {pixel for pixel in (_pixel_id(event) for event in events) if pixel}
    if len(pixels) > 1:
        raise TenantResolutionError("ambiguous_mapping", "Delivery mixes events from different pixels")
    return resolve_workspace(pixel_ids=pixels)


def _resolve_enrichment_workspace(events: list[dict[str, Any]]) -> str:
    job_ids = {str(e["enrichment_job_id"]) for e in events if e.get("enrichment_job_id")}
    audience_ids = {str(e["audience_id"]) for e in events if e.get("audience_id")}
    claimed = {str(e["workspace_id"]) for e in events if e.get("workspace_id")}
    if len(claimed) > 1:
        raise TenantResolutionError("ambiguous_mapping", "Delivery claims more than one workspace")
    return resolve_workspace(
        enrichment_job_ids=job_ids,
        audience_ids=audience_ids,
        claimed_workspace_id=next(iter(claimed), None),
    )


async def _handle_delivery(
    request: Request,
    *,
    source: str,
    secret: str | None,
    shared_secret_header: str,
    signature_headers: tuple[str, ...],
    resolver,
) -> dict[str, Any]:
    request_id = request_id_of(request)
    configured_secret = require_configured_secret(secret, source)
    require_json_content_type(request, source)
    raw_body = await read_bounded_body(request, settings.webhook_max_body_bytes, source)
    signature = next((request.headers[h] for h in signature_headers if request.headers.get(h)), None)
    verify_sender_or_raise(
        raw_body,
        configured_secret,
        source=source,
        shared_secret_header=request.headers.get(shared_secret_header),
        signature_header=signature,
        request_id=request_id,
    )
    payload = parse_json_body(raw_body, source)

    event_id = compute_event_id(raw_body, source)
    existing = find_processed_event(event_id, source)
    if existing:
        incr_metric("webhook.duplicate", source=source, stage="lookup")
        log_event("webhook_duplicate", request_id=request_id, source=source, event_id=event_id)
        return duplicate_response(existing)

    events = split_events(payload, settings.webhook_max_events_per_delivery, source)
    headers = captured_headers(request)

    try:
        workspace_id = resolver(events)
    except TenantResolutionError as exc:
        stored = store_orphaned_events(
            source=source,
            delivery_event_id=event_id,
            headers=headers,
            events=events,
            reason=exc.reason,
        )
        incr_metric("webhook.tenant_unresolved", source=source, reason=exc.reason)
        log_event(
            "webhook_tenant_unresolved",
            level=logging.WARNING,
            request_id=request_id,
            source=source,
            event_id=event_id,
            reason=exc.reason,
            orphaned=stored,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"type": "tenant_resolution_failed", "reason": exc.reason, "message": exc.message},
        )

    stored = 0
    processed = 0
    failures = 0
    for index, event in enumerate(events):
        try:
            outcome = ingest_event(
                workspace_id,
                event,
                source=source,
                delivery_event_id=event_id,
                event_index=index,
                headers=headers,
                request_id=request_id,
            )
        except Exception as exc:
            failures += 1
            incr_metric("webhook.event_failed", source=source)
            log_event(
                "webhook_event_failed",
                level=logging.ERROR,
                request_id=request_id,
                source=source,
                event_id=event_id,
                event_index=index,
                workspace_id=workspace_id,
                error=sanitize_error(exc),
            )
            continue
        stored += int(outcome.stored)
        processed += int(outcome.processed)

    summary = {"success": True, "stored": stored, "processed": processed, "total": len(events)}
    incr_metric("webhook.processed", source=source)
    log_event(
        "webhook_processed",
        request_id=request_id,
        source=source,
        event_id=event_id,
        workspace_id=workspace_id,
        failures=failures,
        **summary,
    )
    if failures:
        # Without a ledger entry the sender's retry reprocesses; lead and assignment writes are idempotent.
        return summary
    response, _ = record_processed_event(
        event_id, source, summary, workspace_id=workspace_id, request_id=request_id
    )
    return response


@router.post("/superpixel", response_model=WebhookIngestResponse)
async def superpixel_webhook(request: Request):
    return await _handle_delivery(
        request,
        source=SUPERPIXEL_SOURCE,
        secret=settings.superpixel_webhook_secret,
        shared_secret_header="x-superpixel-secret",
        signature_headers=("x-superpixel-signature", "x-webhook-signature"),
        resolver=_resolve_superpixel_workspace,
    )


@router.post("/enrichment", response_model=WebhookIngestResponse)
async def enrichment_webhook(request: Request):
    return await _handle_delivery(
        request,
        source=ENRICHMENT_SOURCE,
        secret=settings.enrichment_webhook_secret,
        shared_secret_header="x-enrichment-secret",
        signature_headers=("x-enrichment-signature",),
        resolver=_resolve_enrichment_workspace,
    )
