from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlparse


PayloadShape = Literal["envelope", "cloud_mailer", "flat", "generic", "unparsed"]

CANONICAL_FIELDS: tuple[str, ...] = (
    "first_name",
    "last_name",
    "full_name",
    "email",
    "phone",
    "linkedin_url",
    "job_title",
    "company_name",
    "company_domain",
    "company_industry",
    "company_size",
    "city",
    "state",
    "postal_code",
    "country",
)

_EMAIL_PATTERN = re.compile(r"^[a-z0-9._%+'-]+@[a-z0-9-]+(\.[a-z0-9-]+)*\.[a-z]{2,}$")
_ZIP_PATTERN = re.compile(r"^(\d{5})(?:-?\d{4})?$")

FREE_MAIL_DOMAINS: frozenset[str] = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "aol.com",
        "icloud.com",
        "me.com",
        "msn.com",
        "proton.me",
        "protonmail.com",
    }
)

US_STATES: dict[str, str] = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "district of columbia": "DC",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID", "illinois": "IL",
    "indiana": "IN", "iowa": "IA", "kansas": "KS", "kentucky": "KY", "louisiana": "LA",
    "maine": "ME", "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK", "oregon": "OR",
    "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC", "south dakota": "SD",
    "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT", "virginia": "VA",
    "washington": "WA", "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
    "puerto rico": "PR",
}
US_STATE_CODES: frozenset[str] = frozenset(US_STATES.values())

# Email validation statuses reported by identity vendors, best first.
_VALIDATION_STATUS_SCORES: dict[str, int] = {
    "valid (esp)": 40,
    "valid(esp)": 40,
    "valid_esp": 40,
    "valid": 30,
    "catch-all": 15,
    "catch_all": 15,
    "catchall": 15,
    "unknown": 5,
    "risky": 5,
    "invalid": 0,
    "bounce": 0,
    "disposable": 0,
}

_FLAT_MARKER_KEYS = {
    "FIRST_NAME",
    "LAST_NAME",
    "BUSINESS_EMAIL",
    "BUSINESS_EMAILS",
    "PERSONAL_EMAIL",
    "PERSONAL_EMAILS",
    "PERSONAL_PHONE",
    "MOBILE_PHONE",
    "COMPANY_NAME",
    "COMPANY_DOMAIN",
    "PERSONAL_STATE",
}

# Keys that describe the delivery itself rather than the person; never copied into extra.
_TRANSPORT_KEYS = {"pixel_id", "event", "event_type", "type", "event_id", "id", "timestamp", "created_at"}


@dataclass
class NormalizedLeadFields:
    shape: PayloadShape
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    job_title: str | None = None
    company_name: str | None = None
    company_domain: str | None = None
    company_industry: str | None = None
    company_size: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def canonical(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in CANONICAL_FIELDS}

    def present_fields(self) -> dict[str, Any]:
        return {name: value for name, value in self.canonical().items() if value is not None}

    @property
    def is_empty(self) -> bool:
        return not self.present_fields()

    @property
    def routing_eligible(self) -> bool:
        return bool(self.email or self.phone or self.company_domain)


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _first(source: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def normalize_email(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    candidate = text.lower()
    if candidate.startswith("mailto:"):
        candidate = candidate[len("mailto:"):]
    return candidate if _EMAIL_PATTERN.match(candidate) else None


def split_email_list(value: Any) -> list[str]:
    if isinstance(value, list):
        items = value
    else:
        text = _text(value)
        items = text.split(",") if text else []
    emails: list[str] = []
    for item in items:
        email = normalize_email(item)
        if email and email not in emails:
            emails.append(email)
    return emails


def normalize_phone(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    digits = re.sub(r"\D", "", text.split(",")[0])
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits if len(digits) >= 7 else None


def normalize_domain(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    candidate = text.lower()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        # Unclosed IPv6 brackets such as "http://[broken".
        return None
    if host.startswith("www."):
        host = host[4:]
    return host if "." in host else None


def domain_from_email(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    domain = email.split("@", 1)[1]
    return None if domain in FREE_MAIL_DOMAINS else domain


def normalize_state(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    upper = text.upper()
    if upper in US_STATE_CODES:
        return upper
    mapped = US_STATES.get(text.lower())
    if mapped:
        return mapped
    return text


def normalize_postal_code(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    match = _ZIP_PATTERN.match(text.replace(" ", ""))
    if match:
        return match.group(1)
    return text.upper()


def normalize_industry(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    return re.sub(r"\s+", " ", text).lower()


def normalize_linkedin_url(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    if "linkedin.com" not in text.lower():
        return None
    if text.startswith("http://"):
        text = "https://" + text[len("http://"):]
    elif not text.startswith("https://"):
        text = f"https://{text.lstrip('/')}"
    return text.rstrip("/")


def normalize_country(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    if text.lower() in {"us", "usa", "united states", "united states of america"}:
        return "US"
    return text.upper() if len(text) == 2 else text


def _split_full_name(full_name: str | None) -> tuple[str | None, str | None]:
    if not full_name:
        return None, None
    parts = full_name.split()
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


def _validation_score(status: Any) -> int:
    text = _text(status)
    if not text:
        return 5
    return _VALIDATION_STATUS_SCORES.get(text.lower(), 5)


def _select_primary_email(flat: dict[str, Any]) -> str | None:
    personal = split_email_list(_first(flat, "PERSONAL_EMAILS", "PERSONAL_EMAIL", "personal_emails", "email"))
    business = split_email_list(_first(flat, "BUSINESS_EMAILS", "BUSINESS_EMAIL", "business_emails", "business_email"))
    personal_score = _validation_score(_first(flat, "PERSONAL_EMAIL_VALIDATION_STATUS", "personal_email_validation_status"))
    business_score = _validation_score(_first(flat, "BUSINESS_EMAIL_VALIDATION_STATUS", "business_email_validation_status"))
    candidates = [(business_score, 1, email) for email in business]
    candidates += [(personal_score, 0, email) for email in personal]
    if not candidates:
        return None
    # Highest validation score wins; business address breaks ties.
    candidates.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return candidates[0][2]


def _flatten_nested(event: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    nested_event = event.get("event") if isinstance(event.get("event"), dict) else {}
    for source in (nested_event.get("data"), event.get("event_data"), event.get("resolution")):
        if isinstance(source, dict):
            merged.update(source)
    merged.update({k: v for k, v in event.items() if not isinstance(v, dict)})
    return merged


def detect_shape(event: dict[str, Any]) -> PayloadShape:
    person = event.get("person") or event.get("contact")
    if isinstance(person, dict):
        return "envelope"
    data = event.get("data")
    if isinstance(data, dict) and (event.get("type") or event.get("event_type")):
        if any(key in data for key in ("email", "to", "contact", "recipient")):
            return "cloud_mailer"
    flat = _flatten_nested(event)
    if _FLAT_MARKER_KEYS.intersection(flat):
        return "flat"
    return "generic"


def _from_envelope(event: dict[str, Any]) -> dict[str, Any]:
    person = event.get("person") or event.get("contact") or {}
    company = event.get("company") or event.get("organization") or {}
    if not isinstance(company, dict):
        company = {"name": company}
    location = person.get("location") if isinstance(person.get("location"), dict) else {}
    company_location = company.get("location")
    fields = {
        "first_name": _first(person, "first_name", "firstName"),
        "last_name": _first(person, "last_name", "lastName"),
        "full_name": _first(person, "full_name", "name"),
        "email": _first(person, "email", "work_email", "personal_email"),
        "phone": _first(person, "phone", "mobile_phone", "phone_number"),
        "linkedin_url": _first(person, "linkedin_url", "linkedin"),
        "job_title": _first(person, "job_title", "title"),
        "company_name": _first(company, "name", "company_name"),
        "company_domain": _first(company, "domain", "website"),
        "company_industry": _first(company, "industry", "industry_code"),
        "company_size": _first(company, "employee_count", "size", "company_size"),
        "city": _first(location, "city") or _first(person, "city"),
        "state": _first(location, "state", "region") or _first(person, "state"),
        "postal_code": _first(location, "postal_code", "zip") or _first(person, "postal_code", "zip"),
        "country": _first(location, "country") or _first(person, "country"),
    }
    if isinstance(company_location, str) and not fields["state"]:
        # "Austin, TX" style strings from enrichment vendors.
        parts = [part.strip() for part in company_location.split(",") if part.strip()]
        if len(parts) >= 2:
            fields["city"] = fields["city"] or parts[0]
            fields["state"] = parts[1]
    used_person = {"first_name", "firstName", "last_name", "lastName", "full_name", "name", "email", "work_email",
                   "personal_email", "phone", "mobile_phone", "phone_number", "linkedin_url", "linkedin",
                   "job_title", "title", "location", "city", "state", "postal_code", "zip", "country"}
    used_company = {"name", "company_name", "domain", "website", "industry", "industry_code", "employee_count",
                    "size", "company_size", "location"}
    extra = {f"person.{k}": v for k, v in person.items() if k not in used_person}
    extra.update({f"company.{k}": v for k, v in company.items() if k not in used_company})
    extra.update({k: v for k, v in event.items() if k not in {"person", "contact", "company", "organization"}})
    fields["_extra"] = extra
    return fields


def _from_cloud_mailer(event: dict[str, Any]) -> dict[str, Any]:
    data = event["data"]
    contact = data.get("contact") if isinstance(data.get("contact"), dict) else {}
    recipient = data.get("to") or data.get("recipient")
    if isinstance(recipient, list):
        recipient = recipient[0] if recipient else None
    if isinstance(recipient, dict):
        recipient = recipient.get("email")
    fields = {
        "first_name": _first(contact, "first_name", "firstName"),
        "last_name": _first(contact, "last_name", "lastName"),
        "full_name": _first(contact, "name", "full_name"),
        "email": _first(data, "email") or _first(contact, "email") or recipient,
        "phone": _first(contact, "phone"),
        "linkedin_url": _first(contact, "linkedin_url"),
        "job_title": _first(contact, "title", "job_title"),
        "company_name": _first(contact, "company", "company_name"),
        "company_domain": _first(contact, "company_domain", "website"),
        "company_industry": _first(contact, "industry"),
        "company_size": _first(contact, "company_size"),
        "city": _first(contact, "city"),
        "state": _first(contact, "state"),
        "postal_code": _first(contact, "postal_code", "zip"),
        "country": _first(contact, "country"),
    }
    extra = {k: v for k, v in data.items() if k not in {"email", "to", "recipient", "contact"}}
    extra["mailer_event_type"] = event.get("type") or event.get("event_type")
    fields["_extra"] = extra
    return fields


def _from_flat(event: dict[str, Any]) -> dict[str, Any]:
    flat = _flatten_nested(event)
    fields = {
        "first_name": _first(flat, "FIRST_NAME", "first_name"),
        "last_name": _first(flat, "LAST_NAME", "last_name"),
        "full_name": _first(flat, "FULL_NAME", "full_name"),
        "email": _select_primary_email(flat),
        "phone": _first(flat, "MOBILE_PHONE", "PERSONAL_PHONE", "DIRECT_NUMBER", "phone"),
        "linkedin_url": _first(flat, "LINKEDIN_URL", "linkedin_url"),
        "job_title": _first(flat, "JOB_TITLE", "job_title"),
        "company_name": _first(flat, "COMPANY_NAME", "company_name"),
        "company_domain": _first(flat, "COMPANY_DOMAIN", "company_domain"),
        "company_industry": _first(flat, "COMPANY_INDUSTRY", "company_industry", "industry"),
        "company_size": _first(flat, "COMPANY_EMPLOYEE_COUNT", "company_size"),
        "city": _first(flat, "PERSONAL_CITY", "COMPANY_CITY", "city"),
        "state": _first(flat, "PERSONAL_STATE", "STATE", "COMPANY_STATE", "state"),
        "postal_code": _first(flat, "PERSONAL_ZIP", "ZIP", "COMPANY_ZIP", "zip"),
        "country": _first(flat, "COUNTRY", "country"),
    }
    fields["_extra"] = {
        k: v for k, v in flat.items() if not k.isupper() and k not in _TRANSPORT_KEYS and k not in {
            "first_name", "last_name", "full_name", "email", "phone", "linkedin_url", "job_title",
            "company_name", "company_domain", "company_industry", "industry", "company_size",
            "city", "state", "zip", "country", "personal_emails", "business_emails", "business_email",
        }
    }
    return fields


_GENERIC_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("first_name", "firstName", "firstname", "given_name"),
    "last_name": ("last_name", "lastName", "lastname", "family_name", "surname"),
    "full_name": ("full_name", "fullName", "name"),
    "email": ("email", "email_address", "emailAddress", "work_email", "business_email"),
    "phone": ("phone", "phone_number", "phoneNumber", "mobile", "mobile_phone"),
    "linkedin_url": ("linkedin_url", "linkedinUrl", "linkedin"),
    "job_title": ("job_title", "jobTitle", "title"),
    "company_name": ("company_name", "companyName", "company", "organization"),
    "company_domain": ("company_domain", "companyDomain", "domain", "website", "company_website"),
    "company_industry": ("company_industry", "industry", "industry_code", "industryCode"),
    "company_size": ("company_size", "companySize", "employee_count", "employees"),
    "city": ("city", "locality"),
    "state": ("state", "state_code", "region", "province"),
    "postal_code": ("postal_code", "postalCode", "zip", "zip_code", "zipcode"),
    "country": ("country", "country_code"),
}


def _from_generic(event: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    used: set[str] = set()
    for canonical_name, aliases in _GENERIC_ALIASES.items():
        for alias in aliases:
            value = event.get(alias)
            if value not in (None, "", [], {}) and not isinstance(value, (dict, list)):
                fields[canonical_name] = value
                used.add(alias)
                break
    fields["_extra"] = {k: v for k, v in event.items() if k not in used and k not in _TRANSPORT_KEYS}
    return fields


_SHAPE_EXTRACTORS = {
    "envelope": _from_envelope,
    "cloud_mailer": _from_cloud_mailer,
    "flat": _from_flat,
    "generic": _from_generic,
}


def normalize_event(event: dict[str, Any]) -> NormalizedLeadFields:
    """Map one inbound event object onto the canonical lead fields.

    Shape detection is ordered: envelope, cloud mailer, flat vendor export, then
    generic key sniffing. An event that yields no canonical value at all comes
    back with shape ``unparsed`` so callers can park it for manual review.
    """
    shape = detect_shape(event)
    raw = _SHAPE_EXTRACTORS[shape](event)
    extra = raw.pop("_extra", {}) or {}

    full_name = _text(raw.get("full_name"))
    first_name = _text(raw.get("first_name"))
    last_name = _text(raw.get("last_name"))
    if full_name and not (first_name or last_name):
        first_name, last_name = _split_full_name(full_name)
    if not full_name and (first_name or last_name):
        full_name = " ".join(part for part in (first_name, last_name) if part)

    email = normalize_email(raw.get("email"))
    if email is None and _text(raw.get("email")):
        extra["invalid_email"] = _text(raw.get("email"))

    normalized = NormalizedLeadFields(
        shape=shape,
        first_name=first_name,
        last_name=last_name,
        full_name=full_name,
        email=email,
        phone=normalize_phone(raw.get("phone")),
        linkedin_url=normalize_linkedin_url(raw.get("linkedin_url")),
        job_title=_text(raw.get("job_title")),
        company_name=_text(raw.get("company_name")),
        company_domain=normalize_domain(raw.get("company_domain")) or domain_from_email(email),
        company_industry=normalize_industry(raw.get("company_industry")),
        company_size=_text(raw.get("company_size")),
        city=_text(raw.get("city")),
        state=normalize_state(raw.get("state")),
        postal_code=normalize_postal_code(raw.get("postal_code")),
        country=normalize_country(raw.get("country")),
        extra={str(k): v for k, v in extra.items()},
    )
    if normalized.is_empty:
        normalized.shape = "unparsed"
    return normalized


def unwrap_events(payload: Any) -> list[Any]:
    """Split a delivery body into its individual event objects."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("events", "result", "records"):
            if isinstance(payload.get(key), list):
                return payload[key]
        if isinstance(payload.get("data"), list):
            return payload["data"]
        return [payload]
    return []
