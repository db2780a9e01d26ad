from __future__ import annotations

from typing import Any

from src.db import supabase
from src.domain.ingestion import IngestOutcome, persist_normalized
from src.domain.leads import mark_raw_event
from src.domain.normalization import normalize_event
from src.observability import incr_metric


class OrphanAssignmentError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def list_orphaned_events(*, source: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
    query = supabase.table("raw_events").select(
        "id, source, delivery_event_id, event_index, headers, status, received_at"
    ).eq("status", "orphaned").is_("workspace_id", "null")
    if source:
        query = query.eq("source", source)
    result = query.order("received_at", desc=True).limit(limit).execute()
    return result.data or []


def assign_orphaned_event(event_id: str, workspace_id: str, *, request_id: str | None = None) -> IngestOutcome:
    workspace = supabase.table("workspaces").select("id").eq(
        "id", workspace_id
    ).is_("deleted_at", "null").execute()
    if not workspace.data:
        raise OrphanAssignmentError(404, "Workspace not found")

    claimed = supabase.table("raw_events").update({
        "workspace_id": workspace_id,
        "status": "received",
    }).eq("id", event_id).eq("status", "orphaned").is_("workspace_id", "null").execute()
    if not claimed.data:
        raise OrphanAssignmentError(409, "Event is not orphaned")
    raw_event = claimed.data[0]

    body = raw_event.get("body")
    fields = normalize_event(body) if isinstance(body, dict) else None
    if fields is None or fields.shape == "unparsed":
        mark_raw_event(event_id, "unparsed")
        return IngestOutcome(stored=True, processed=False, raw_event_id=event_id)

    outcome = persist_normalized(
        workspace_id,
        fields,
        source=raw_event.get("source") or "webhook",
        request_id=request_id,
    )
    mark_raw_event(event_id, "normalized", lead_id=outcome.lead_id)
    outcome.raw_event_id = event_id
    incr_metric("raw_events.orphan_assigned", source=raw_event.get("source"))
    return outcome
