from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ImportCreateRequest(BaseModel):
    file_url: str = Field(min_length=1, max_length=2048)
    audience_id: str | None = None
    workspace_id: str | None = None


class ImportJobResponse(BaseModel):
    job_id: str
    status: Literal["processing", "completed", "failed"]
    total_rows: int
    stored: int
    failed_rows: int
    error: str | None = None
    duplicate: bool = False
