from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.domain.dispatch import dispatch_routing
from src.domain.leads import mark_raw_event, store_raw_event, upsert_lead
from src.domain.normalization import NormalizedLeadFields, normalize_event
from src.domain.routing import RoutingResult
from src.observability import incr_metric


@dataclass
class IngestOutcome:
    stored: bool
    processed: bool
    lead_id: str | None = None
    created: bool = False
    raw_event_id: str | None = None
    routing: RoutingResult | None = None

    @property
    def matched(self) -> bool:
        return bool(self.routing and self.routing.matched)

    @property
    def assigned_to(self) -> list[dict[str, str]]:
        return list(self.routing.assigned_to) if self.routing else []


def persist_normalized(
    workspace_id: str,
    fields: NormalizedLeadFields,
    *,
    source: str,
    auto_route: bool = True,
    partner_id: str | None = None,
    verification_score: float | None = None,
    request_id: str | None = None,
) -> IngestOutcome:
    write = upsert_lead(
        workspace_id,
        fields,
        source=source,
        partner_id=partner_id,
        verification_score=verification_score,
    )
    routing = None
    if auto_route and write.lead.get("routing_eligible", fields.routing_eligible):
        routing = dispatch_routing(workspace_id, write.lead_id, request_id=request_id)
    return IngestOutcome(
        stored=True,
        processed=True,
        lead_id=write.lead_id,
        created=write.created,
        routing=routing,
    )


def ingest_event(
    workspace_id: str,
    event: dict[str, Any],
    *,
    source: str,
    delivery_event_id: str | None,
    event_index: int,
    headers: dict[str, str],
    auto_route: bool = True,
    request_id: str | None = None,
) -> IngestOutcome:
    """Store one raw event, normalize it, persist the lead and hand it to routing."""
    raw_event = store_raw_event(
        source=source,
        workspace_id=workspace_id,
        delivery_event_id=delivery_event_id,
        event_index=event_index,
        headers=headers,
        body=event,
        status="received",
    )
    fields = normalize_event(event)
    if fields.shape == "unparsed":
        mark_raw_event(raw_event["id"], "unparsed")
        incr_metric("normalization.unparsed", source=source)
        return IngestOutcome(stored=True, processed=False, raw_event_id=raw_event["id"])

    incr_metric("normalization.shape", source=source, shape=fields.shape)
    outcome = persist_normalized(
        workspace_id,
        fields,
        source=source,
        auto_route=auto_route,
        request_id=request_id,
    )
    mark_raw_event(raw_event["id"], "normalized", lead_id=outcome.lead_id)
    outcome.raw_event_id = raw_event["id"]
    return outcome
