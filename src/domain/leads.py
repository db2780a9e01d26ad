from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from src.db import is_unique_violation, supabase
from src.domain.events import LEAD_CREATED, LEAD_UPDATED, publish_event
from src.domain.normalization import NormalizedLeadFields
from src.observability import incr_metric


LEAD_COLUMNS = (
    "id, workspace_id, email, first_name, last_name, full_name, phone, linkedin_url, job_title, "
    "company_name, company_domain, company_industry, company_size, city, state, postal_code, country, "
    "source, partner_id, extra, routing_eligible, routing_status, enrichment_status, delivery_status, "
    "verification_score, created_at, updated_at"
)


@dataclass
class LeadWriteResult:
    lead: dict[str, Any]
    created: bool

    @property
    def lead_id(self) -> str:
        return self.lead["id"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def store_raw_event(
    *,
    source: str,
    workspace_id: str | None,
    delivery_event_id: str | None,
    event_index: int,
    headers: dict[str, str],
    body: Any,
    status: str,
) -> dict[str, Any]:
    result = supabase.table("raw_events").insert({
        "source": source,
        "workspace_id": workspace_id,
        "delivery_event_id": delivery_event_id,
        "event_index": event_index,
        "headers": headers,
        "body": body,
        "status": status,
        "received_at": _now_iso(),
    }).execute()
    return result.data[0]


def mark_raw_event(raw_event_id: str, status: str, *, lead_id: str | None = None) -> None:
    # Only processing metadata changes; the captured body is never rewritten.
    values: dict[str, Any] = {"status": status}
    if lead_id:
        values["lead_id"] = lead_id
    supabase.table("raw_events").update(values).eq("id", raw_event_id).execute()


def store_orphaned_events(
    *,
    source: str,
    delivery_event_id: str,
    headers: dict[str, str],
    events: list[Any],
    reason: str,
) -> int:
    """Park a delivery whose tenant could not be resolved. Retries do not duplicate rows."""
    existing = supabase.table("raw_events").select("id").eq(
        "delivery_event_id", delivery_event_id
    ).eq("source", source).execute()
    if existing.data:
        return 0
    for index, event in enumerate(events):
        store_raw_event(
            source=source,
            workspace_id=None,
            delivery_event_id=delivery_event_id,
            event_index=index,
            headers={**headers, "x-orphan-reason": reason},
            body=event,
            status="orphaned",
        )
    incr_metric("raw_events.orphaned", value=len(events), source=source, reason=reason)
    return len(events)


def get_lead(workspace_id: str, lead_id: str) -> dict[str, Any] | None:
    result = supabase.table("leads").select(LEAD_COLUMNS).eq(
        "id", lead_id
    ).eq("workspace_id", workspace_id).is_("deleted_at", "null").execute()
    return result.data[0] if result.data else None


def find_lead_by_email(workspace_id: str, email: str) -> dict[str, Any] | None:
    result = supabase.table("leads").select(LEAD_COLUMNS).eq(
        "workspace_id", workspace_id
    ).eq("email", email).is_("deleted_at", "null").execute()
    return result.data[0] if result.data else None


def _update_existing(
    existing: dict[str, Any],
    fields: NormalizedLeadFields,
    verification_score: float | None,
) -> dict[str, Any]:
    values: dict[str, Any] = fields.present_fields()
    values.pop("email", None)
    merged_extra = dict(existing.get("extra") or {})
    merged_extra.update(fields.extra)
    values["extra"] = merged_extra
    if verification_score is not None:
        values["verification_score"] = verification_score
    values["updated_at"] = _now_iso()
    eligible = bool(
        existing.get("email")
        or values.get("phone") or existing.get("phone")
        or values.get("company_domain") or existing.get("company_domain")
    )
    values["routing_eligible"] = eligible

    result = supabase.table("leads").update(values).eq(
        "id", existing["id"]
    ).eq("workspace_id", existing["workspace_id"]).execute()
    return result.data[0] if result.data else {**existing, **values}


def upsert_lead(
    workspace_id: str,
    fields: NormalizedLeadFields,
    *,
    source: str,
    partner_id: str | None = None,
    verification_score: float | None = None,
) -> LeadWriteResult:
    """
    Insert a lead or fold the event into the workspace's existing lead with the same email.

    Non-null fields from the newer event overwrite stored values; ownership
    (``partner_id``, ``source``) stays with whoever created the lead.
    """
    if not workspace_id:
        raise ValueError("workspace_id is required to persist a lead")

    if fields.email:
        existing = find_lead_by_email(workspace_id, fields.email)
        if existing:
            lead = _update_existing(existing, fields, verification_score)
            incr_metric("leads.updated", source=source)
            publish_event(LEAD_UPDATED, workspace_id, {"lead_id": lead["id"], "source": source})
            return LeadWriteResult(lead=lead, created=False)

    now = _now_iso()
    row = {
        **fields.canonical(),
        "workspace_id": workspace_id,
        "source": source,
        "partner_id": partner_id,
        "extra": fields.extra,
        "routing_eligible": fields.routing_eligible,
        "routing_status": "pending",
        "enrichment_status": "pending",
        "delivery_status": "pending",
        "verification_score": verification_score,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = supabase.table("leads").insert(row).execute()
    except Exception as exc:
        if not fields.email or not is_unique_violation(exc):
            raise
        # Lost an insert race on (workspace_id, email); fold into the winner.
        existing = find_lead_by_email(workspace_id, fields.email)
        if not existing:
            raise
        lead = _update_existing(existing, fields, verification_score)
        incr_metric("leads.updated", source=source)
        publish_event(LEAD_UPDATED, workspace_id, {"lead_id": lead["id"], "source": source})
        return LeadWriteResult(lead=lead, created=False)

    lead = result.data[0]
    incr_metric("leads.created", source=source)
    publish_event(LEAD_CREATED, workspace_id, {"lead_id": lead["id"], "source": source, "partner_id": partner_id})
    return LeadWriteResult(lead=lead, created=True)
