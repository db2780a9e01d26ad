from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class OrphanedEventItem(BaseModel):
    id: str
    source: str
    delivery_event_id: str | None = None
    event_index: int | None = None
    headers: dict[str, Any] | None = None
    status: str
    received_at: str | None = None


class OrphanAssignRequest(BaseModel):
    workspace_id: str


class OrphanAssignResponse(BaseModel):
    event_id: str
    workspace_id: str
    lead_id: str | None = None
    processed: bool
    matched: bool
