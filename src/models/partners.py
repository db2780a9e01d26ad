from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.domain.normalization import US_STATE_CODES, normalize_state


class PartnerLeadRow(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)
    company_name: str | None = Field(default=None, max_length=200)
    company_domain: str | None = Field(default=None, max_length=200)
    job_title: str | None = Field(default=None, max_length=200)
    city: str | None = Field(default=None, max_length=100)
    state: str = Field(max_length=50)
    postal_code: str | None = Field(default=None, max_length=20)
    industry: str = Field(min_length=1, max_length=100)
    company_size: str | None = Field(default=None, max_length=50)
    verification_score: float | None = Field(default=None, ge=0, le=100)

    @field_validator("state")
    @classmethod
    def _us_state(cls, value: str) -> str:
        code = normalize_state(value)
        if code not in US_STATE_CODES:
            raise ValueError(f"Invalid state: {value}")
        return code


class PartnerUploadError(BaseModel):
    row: int
    field: str | None = None
    message: str
    reason: Literal["validation_error", "duplicate_cross_partner", "platform_owned", "storage_error"]


class PartnerUploadResponse(BaseModel):
    batch_id: str
    total: int
    successful: int
    updated: int
    failed: int
    errors: list[PartnerUploadError]


class DeliveryRecordRequest(BaseModel):
    delivery_event_id: str = Field(min_length=1, max_length=200)
    sale_amount: float = Field(ge=0)


class CommissionRecord(BaseModel):
    id: str
    partner_id: str
    lead_id: str
    delivery_event_id: str | None = None
    entry_type: Literal["original", "correction"]
    sale_amount: float | None = None
    commission_rate: float | None = None
    commission_amount: float
    computed_at: str | None = None
    payable_at: str | None = None
    reason: str | None = None


class DeliveryRecordResponse(BaseModel):
    recorded: bool
    duplicate: bool = False
    commission: CommissionRecord | None = None


class CommissionCorrectionRequest(BaseModel):
    amount: float
    reason: str = Field(min_length=1, max_length=500)


class PartnerCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    commission_rate: float | None = Field(default=None, ge=0, le=1)
    bonus_commission_rate: float = Field(default=0, ge=0, le=1)


class PartnerCreateResponse(BaseModel):
    partner_id: str
    name: str
    api_key: str  # raw key, only returned on creation
