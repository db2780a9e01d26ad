from __future__ import annotations

from pydantic import BaseModel


class WebhookIngestResponse(BaseModel):
    success: bool
    stored: int
    processed: int
    total: int
    duplicate: bool = False
