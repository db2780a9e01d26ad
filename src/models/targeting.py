from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

from src.domain.normalization import US_STATE_CODES, normalize_industry


_ZIP_PATTERN = re.compile(r"^\d{5}$")


class TargetingPreferences(BaseModel):
    industries: list[str] = Field(default_factory=list, max_length=50)
    states: list[str] = Field(default_factory=list, max_length=60)
    cities: list[str] = Field(default_factory=list, max_length=100)
    postal_codes: list[str] = Field(default_factory=list, max_length=200)
    daily_cap: int | None = Field(default=None, ge=0, le=10_000)
    weekly_cap: int | None = Field(default=None, ge=0, le=10_000)
    monthly_cap: int | None = Field(default=None, ge=0, le=10_000)
    is_active: bool = True

    @field_validator("industries")
    @classmethod
    def _industries(cls, values: list[str]) -> list[str]:
        cleaned = []
        for value in values:
            industry = normalize_industry(value)
            if not industry or len(industry) > 100:
                raise ValueError("Industries must be 1-100 characters")
            if industry not in cleaned:
                cleaned.append(industry)
        return cleaned

    @field_validator("states")
    @classmethod
    def _states(cls, values: list[str]) -> list[str]:
        cleaned = []
        for value in values:
            code = value.strip().upper()
            if code not in US_STATE_CODES:
                raise ValueError(f"Invalid state code: {value}")
            if code not in cleaned:
                cleaned.append(code)
        return cleaned

    @field_validator("cities")
    @classmethod
    def _cities(cls, values: list[str]) -> list[str]:
        cleaned = []
        for value in values:
            city = value.strip()
            if not city or len(city) > 100:
                raise ValueError("Cities must be 1-100 characters")
            if city not in cleaned:
                cleaned.append(city)
        return cleaned

    @field_validator("postal_codes")
    @classmethod
    def _postal_codes(cls, values: list[str]) -> list[str]:
        cleaned = []
        for value in values:
            code = value.strip()
            if not _ZIP_PATTERN.match(code):
                raise ValueError(f"Invalid postal code: {value}")
            if code not in cleaned:
                cleaned.append(code)
        return cleaned


class UserTargetingRequest(TargetingPreferences):
    pass


class ClientProfileTargetingRequest(TargetingPreferences):
    is_exclusive: bool = False
    routing_priority: int = Field(default=100, ge=0, le=1_000)
    require_email: bool = False
    require_phone: bool = False
    excluded_domains: list[str] = Field(default_factory=list, max_length=100)

    @field_validator("excluded_domains")
    @classmethod
    def _domains(cls, values: list[str]) -> list[str]:
        cleaned = []
        for value in values:
            domain = value.strip().lower()
            if not domain or "." not in domain or len(domain) > 253:
                raise ValueError(f"Invalid domain: {value}")
            if domain not in cleaned:
                cleaned.append(domain)
        return cleaned


class UserTargetingResponse(TargetingPreferences):
    user_id: str
    workspace_id: str


class ClientProfileTargetingResponse(ClientProfileTargetingRequest):
    profile_id: str
    workspace_id: str
    name: str | None = None
