from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from src.config import settings
from src.db import supabase
from src.observability import incr_metric, log_event, sanitize_error


LEAD_CREATED = "lead.created"
LEAD_UPDATED = "lead.updated"
LEAD_ROUTED = "lead.routed"
IMPORT_COMPLETED = "import.completed"
PARTNER_COMMISSION_RECORDED = "partner.commission_recorded"


class EventPublisher(Protocol):
    def publish(self, name: str, workspace_id: str | None, payload: dict[str, Any]) -> None:
        ...


class OutboxEventPublisher:
    """Appends domain events to the ``domain_events`` table for an external consumer."""

    def publish(self, name: str, workspace_id: str | None, payload: dict[str, Any]) -> None:
        supabase.table("domain_events").insert({
            "name": name,
            "workspace_id": workspace_id,
            "payload": payload,
            "status": "pending",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }).execute()


class LogEventPublisher:
    def publish(self, name: str, workspace_id: str | None, payload: dict[str, Any]) -> None:
        log_event("domain_event", name=name, workspace_id=workspace_id, payload=payload)


def get_publisher() -> EventPublisher:
    if settings.event_publisher_mode == "log":
        return LogEventPublisher()
    return OutboxEventPublisher()


def publish_event(name: str, workspace_id: str | None, payload: dict[str, Any]) -> None:
    try:
        get_publisher().publish(name, workspace_id, payload)
    except Exception as exc:
        incr_metric("domain_event.publish_failed", event_name=name)
        log_event(
            "domain_event_publish_failed",
            level=logging.WARNING,
            name=name,
            workspace_id=workspace_id,
            error=sanitize_error(exc),
        )
        return
    incr_metric("domain_event.published", event_name=name)
