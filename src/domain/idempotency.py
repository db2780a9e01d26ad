from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

from src.db import is_unique_violation, supabase
from src.observability import incr_metric, log_event


_LEDGER_TABLE = "processed_webhook_events"


def compute_event_id(raw_body: bytes, source: str) -> str:
    digest = hashlib.sha256()
    digest.update(raw_body)
    digest.update(b"|")
    digest.update(source.encode())
    return digest.hexdigest()


def find_processed_event(event_id: str, source: str) -> dict[str, Any] | None:
    result = supabase.table(_LEDGER_TABLE).select(
        "event_id, source, summary, first_seen_at"
    ).eq("event_id", event_id).eq("source", source).execute()
    return result.data[0] if result.data else None


def duplicate_response(record: dict[str, Any]) -> dict[str, Any]:
    summary = dict(record.get("summary") or {})
    summary["duplicate"] = True
    return summary


def record_processed_event(
    event_id: str,
    source: str,
    summary: dict[str, Any],
    *,
    workspace_id: str | None = None,
    request_id: str | None = None,
) -> tuple[dict[str, Any], bool]:
    """
    Write the ledger entry after processing succeeded.

    Returns ``(response, recorded)``. When a concurrent delivery of the same bytes
    already wrote its entry, the unique constraint on ``(event_id, source)`` rejects
    this insert and the earlier summary is returned with ``duplicate`` set.
    """
    try:
        supabase.table(_LEDGER_TABLE).insert({
            "event_id": event_id,
            "source": source,
            "workspace_id": workspace_id,
            "summary": summary,
            "first_seen_at": datetime.now(timezone.utc).isoformat(),
        }).execute()
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        existing = find_processed_event(event_id, source)
        incr_metric("webhook.duplicate", source=source, stage="ledger_conflict")
        log_event("webhook_ledger_conflict", request_id=request_id, source=source, event_id=event_id)
        if existing is None:
            return {**summary, "duplicate": True}, False
        return duplicate_response(existing), False
    return summary, True
