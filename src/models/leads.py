from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field, model_validator


class LeadInput(BaseModel):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    full_name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=50)
    linkedin_url: str | None = Field(default=None, max_length=500)
    job_title: str | None = Field(default=None, max_length=200)
    company_name: str | None = Field(default=None, max_length=200)
    company_domain: str | None = Field(default=None, max_length=200)
    industry: str | None = Field(default=None, max_length=100)
    company_size: str | None = Field(default=None, max_length=50)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=50)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=60)
    extra: dict[str, Any] = Field(default_factory=dict)


class LeadIngestRequest(BaseModel):
    lead: LeadInput | None = None
    leads: list[LeadInput] = Field(default_factory=list, max_length=1000)
    source_type: Literal["manual_api", "partner", "batch_export", "webhook"] = "manual_api"
    auto_route: bool = True

    @model_validator(mode="after")
    def _require_leads(self) -> "LeadIngestRequest":
        if self.lead is None and not self.leads:
            raise ValueError("Provide lead or leads")
        if self.lead is not None and self.leads:
            raise ValueError("Provide either lead or leads, not both")
        return self

    def all_leads(self) -> list[LeadInput]:
        return [self.lead] if self.lead is not None else list(self.leads)

    model_config = {
        "json_schema_extra": {
            "example": {
                "lead": {
                    "email": "alice@deltacorp.com",
                    "first_name": "Alice",
                    "industry": "solar",
                    "state": "CA",
                },
                "source_type": "manual_api",
                "auto_route": True,
            }
        }
    }


class RecipientRef(BaseModel):
    recipient_kind: Literal["client_profile", "user"]
    recipient_id: str


class LeadIngestResult(BaseModel):
    lead_id: str | None = None
    matched: bool = False
    assigned_to: list[RecipientRef] = Field(default_factory=list)
    created: bool = False
    error: str | None = None


class LeadIngestResponse(BaseModel):
    results: list[LeadIngestResult]
    total: int
    stored: int


class LeadRouteResponse(BaseModel):
    lead_id: str
    matched: bool
    assigned_to: list[RecipientRef]
    new_assignments: int
    unroutable_reason: str | None = None
    errors: dict[str, str] = Field(default_factory=dict)
