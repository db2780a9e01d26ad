from __future__ import annotations

import csv
import hashlib
import io
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from src.auth.context import PartnerContext
from src.config import settings
from src.db import is_unique_violation, supabase
from src.domain.events import PARTNER_COMMISSION_RECORDED, publish_event
from src.domain.ingestion import persist_normalized
from src.domain.leads import find_lead_by_email, get_lead
from src.domain.normalization import normalize_event
from src.models.partners import PartnerLeadRow
from src.observability import incr_metric, log_event, sanitize_error


PARTNER_SOURCE = "partner"


class PartnerUploadRejected(Exception):
    pass


class CommissionError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def get_partner(partner_id: str) -> dict[str, Any] | None:
    result = supabase.table("partners").select(
        "id, workspace_id, name, is_active, commission_rate, bonus_commission_rate, "
        "total_leads_uploaded, total_commission_amount"
    ).eq("id", partner_id).execute()
    return result.data[0] if result.data else None


def upload_too_large() -> PartnerUploadRejected:
    return PartnerUploadRejected(
        f"File size exceeds the {settings.partner_upload_max_bytes // (1024 * 1024)} MB limit"
    )


def read_partner_csv(content: bytes) -> list[dict[str, str]]:
    if not content:
        raise PartnerUploadRejected("CSV file is empty")
    if len(content) > settings.partner_upload_max_bytes:
        raise upload_too_large()
    try:
        text = content.decode("utf-8-sig")
        reader = csv.DictReader(io.StringIO(text))
        records = []
        for record in reader:
            cleaned = {
                str(key).strip().lower(): (value or "").strip()
                for key, value in record.items()
                if key is not None and not isinstance(value, list)
            }
            if any(cleaned.values()):
                records.append(cleaned)
    except (UnicodeDecodeError, csv.Error) as exc:
        raise PartnerUploadRejected(f"CSV parsing error: {exc.__class__.__name__}") from exc

    if not records:
        raise PartnerUploadRejected("CSV file is empty")
    if len(records) > settings.partner_upload_max_rows:
        raise PartnerUploadRejected(
            f"File contains {len(records)} rows, which exceeds the {settings.partner_upload_max_rows} row limit"
        )
    return records


def _increment_partner_totals(partner_id: str, *, leads: int = 0, commission: float = 0.0) -> None:
    # PostgREST has no atomic increment without an RPC; read-modify-write per partner.
    partner = get_partner(partner_id)
    if not partner:
        return
    values: dict[str, Any] = {"updated_at": _now().isoformat()}
    if leads:
        values["total_leads_uploaded"] = int(partner.get("total_leads_uploaded") or 0) + leads
    if commission:
        values["total_commission_amount"] = round(float(partner.get("total_commission_amount") or 0) + commission, 4)
    supabase.table("partners").update(values).eq("id", partner_id).execute()


def _validation_errors(row_number: int, exc: ValidationError) -> list[dict[str, Any]]:
    errors = []
    for issue in exc.errors():
        location = issue.get("loc") or ()
        errors.append({
            "row": row_number,
            "field": str(location[0]) if location else None,
            "message": str(issue.get("msg", "validation failed")).removeprefix("Value error, "),
            "reason": "validation_error",
        })
    return errors[:1]


def process_partner_upload(
    partner: PartnerContext,
    *,
    file_name: str | None,
    content: bytes,
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Validate and ingest a partner CSV.

    Rows are numbered from 1 for the first data row. A lead already owned by the
    platform or by another partner in the workspace is rejected; the same
    partner re-uploading a lead updates it instead.
    """
    if not partner.workspace_id:
        raise PartnerUploadRejected("Partner is not linked to a workspace")
    records = read_partner_csv(content)

    batch = supabase.table("partner_upload_batches").insert({
        "partner_id": partner.partner_id,
        "workspace_id": partner.workspace_id,
        "file_name": file_name,
        "file_size_bytes": len(content),
        "total_rows": len(records),
        "status": "processing",
        "created_at": _now().isoformat(),
    }).execute().data[0]

    successful = 0
    updated = 0
    errors: list[dict[str, Any]] = []

    for row_number, record in enumerate(records, start=1):
        try:
            validated = PartnerLeadRow.model_validate({k: v for k, v in record.items() if v != ""})
        except ValidationError as exc:
            errors.extend(_validation_errors(row_number, exc))
            continue

        existing = find_lead_by_email(partner.workspace_id, str(validated.email).lower())
        if existing and existing.get("partner_id") != partner.partner_id:
            if existing.get("partner_id"):
                reason, message = "duplicate_cross_partner", "This lead was already uploaded by another partner"
            else:
                reason, message = "platform_owned", "This lead already exists as a platform-owned lead"
            errors.append({"row": row_number, "field": "email", "message": message, "reason": reason})
            incr_metric("partner_upload.rejected", reason=reason)
            continue

        fields = normalize_event(validated.model_dump(exclude_none=True, exclude={"verification_score"}))
        fields.extra["upload_batch_id"] = batch["id"]
        try:
            outcome = persist_normalized(
                partner.workspace_id,
                fields,
                source=PARTNER_SOURCE,
                partner_id=partner.partner_id,
                verification_score=validated.verification_score,
                request_id=request_id,
            )
        except Exception as exc:
            errors.append({
                "row": row_number,
                "field": None,
                "message": "Failed to store lead",
                "reason": "storage_error",
            })
            log_event(
                "partner_upload_row_failed",
                level=logging.ERROR,
                request_id=request_id,
                partner_id=partner.partner_id,
                row=row_number,
                error=sanitize_error(exc),
            )
            continue
        if outcome.created:
            successful += 1
        else:
            updated += 1

    if successful:
        _increment_partner_totals(partner.partner_id, leads=successful)

    failed = len({error["row"] for error in errors})
    supabase.table("partner_upload_batches").update({
        "status": "completed",
        "successful_rows": successful,
        "updated_rows": updated,
        "failed_rows": failed,
        "rejections": errors[:500],
        "completed_at": _now().isoformat(),
    }).eq("id", batch["id"]).execute()

    incr_metric("partner_upload.completed")
    log_event(
        "partner_upload_completed",
        request_id=request_id,
        partner_id=partner.partner_id,
        batch_id=batch["id"],
        total=len(records),
        successful=successful,
        updated=updated,
        failed=failed,
    )
    return {
        "batch_id": batch["id"],
        "total": len(records),
        "successful": successful,
        "updated": updated,
        "failed": failed,
        "errors": errors,
    }


def calculate_commission(
    sale_amount: float,
    partner: dict[str, Any],
    lead: dict[str, Any],
    sold_at: datetime | None = None,
) -> tuple[float, float, dict[str, float]]:
    """Return ``(rate, amount, breakdown)`` for one delivery of a partner lead."""
    sold_at = sold_at or _now()
    base_rate = partner.get("commission_rate")
    base_rate = settings.partner_default_commission_rate if base_rate is None else float(base_rate)
    breakdown = {"base": base_rate}

    created_at = _parse_ts(lead.get("created_at"))
    if created_at and sold_at - created_at <= timedelta(days=settings.partner_fresh_sale_days):
        breakdown["fresh_sale"] = settings.partner_fresh_sale_bonus

    score = lead.get("verification_score")
    if score is not None and float(score) >= settings.partner_high_verification_threshold:
        breakdown["high_verification"] = settings.partner_high_verification_bonus

    bonus = float(partner.get("bonus_commission_rate") or 0)
    if bonus:
        breakdown["partner_bonus"] = bonus

    rate = min(round(sum(breakdown.values()), 4), settings.partner_max_commission_rate)
    amount = round(rate * float(sale_amount), 4)
    return rate, amount, breakdown


def _find_original_commission(workspace_id: str, delivery_event_id: str) -> dict[str, Any] | None:
    result = supabase.table("partner_commissions").select("*").eq(
        "workspace_id", workspace_id
    ).eq("delivery_event_id", delivery_event_id).eq("entry_type", "original").execute()
    return result.data[0] if result.data else None


def record_delivery_commission(
    workspace_id: str,
    lead_id: str,
    *,
    delivery_event_id: str,
    sale_amount: float,
    request_id: str | None = None,
) -> dict[str, Any]:
    lead = get_lead(workspace_id, lead_id)
    if not lead:
        raise CommissionError(404, "Lead not found")

    now = _now()
    supabase.table("leads").update({
        "delivery_status": "delivered",
        "updated_at": now.isoformat(),
    }).eq("id", lead_id).eq("workspace_id", workspace_id).execute()

    if not lead.get("partner_id"):
        return {"recorded": False}

    existing = _find_original_commission(workspace_id, delivery_event_id)
    if existing:
        if existing.get("lead_id") != lead_id:
            raise CommissionError(409, "Delivery event already recorded for a different lead")
        return {"recorded": True, "duplicate": True, "commission": existing}

    partner = get_partner(lead["partner_id"])
    if not partner:
        raise CommissionError(404, "Partner not found")

    rate, amount, breakdown = calculate_commission(sale_amount, partner, lead, now)
    row = {
        "workspace_id": workspace_id,
        "partner_id": lead["partner_id"],
        "lead_id": lead_id,
        "delivery_event_id": delivery_event_id,
        "entry_type": "original",
        "sale_amount": sale_amount,
        "commission_rate": rate,
        "commission_amount": amount,
        "rate_breakdown": breakdown,
        "computed_at": now.isoformat(),
        "payable_at": (now + timedelta(days=settings.partner_commission_holdback_days)).isoformat(),
    }
    try:
        created = supabase.table("partner_commissions").insert(row).execute().data[0]
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        existing = _find_original_commission(workspace_id, delivery_event_id)
        if not existing:
            raise
        return {"recorded": True, "duplicate": True, "commission": existing}

    _increment_partner_totals(lead["partner_id"], commission=amount)
    incr_metric("partner_commission.recorded")
    log_event(
        "partner_commission_recorded",
        request_id=request_id,
        workspace_id=workspace_id,
        partner_id=lead["partner_id"],
        lead_id=lead_id,
        commission_rate=rate,
        commission_amount=amount,
    )
    publish_event(PARTNER_COMMISSION_RECORDED, workspace_id, {
        "commission_id": created["id"],
        "partner_id": lead["partner_id"],
        "lead_id": lead_id,
        "commission_amount": amount,
    })
    return {"recorded": True, "duplicate": False, "commission": created}


def append_correction(
    workspace_id: str,
    commission_id: str,
    *,
    amount: float,
    reason: str,
    created_by: str | None = None,
) -> dict[str, Any]:
    """Append a compensating entry; the original commission row is never edited."""
    original = supabase.table("partner_commissions").select("*").eq(
        "id", commission_id
    ).eq("workspace_id", workspace_id).execute()
    if not original.data:
        raise CommissionError(404, "Commission not found")
    source_row = original.data[0]
    if source_row.get("entry_type") != "original":
        raise CommissionError(400, "Corrections must reference an original commission")

    correction = supabase.table("partner_commissions").insert({
        "workspace_id": workspace_id,
        "partner_id": source_row["partner_id"],
        "lead_id": source_row["lead_id"],
        "delivery_event_id": source_row.get("delivery_event_id"),
        "entry_type": "correction",
        "corrects_commission_id": commission_id,
        "commission_amount": round(amount, 4),
        "reason": reason,
        "created_by": created_by,
        "computed_at": _now().isoformat(),
    }).execute().data[0]

    _increment_partner_totals(source_row["partner_id"], commission=round(amount, 4))
    incr_metric("partner_commission.corrected")
    return correction


def create_partner(
    workspace_id: str,
    *,
    name: str,
    commission_rate: float | None,
    bonus_commission_rate: float,
) -> tuple[dict[str, Any], str]:
    """Register a partner in the workspace and issue its API key."""
    raw_key = secrets.token_urlsafe(32)
    partner = supabase.table("partners").insert({
        "workspace_id": workspace_id,
        "name": name,
        "api_key_hash": hashlib.sha256(raw_key.encode()).hexdigest(),
        "is_active": True,
        "commission_rate": commission_rate,
        "bonus_commission_rate": bonus_commission_rate,
        "total_leads_uploaded": 0,
        "total_commission_amount": 0,
        "created_at": _now().isoformat(),
    }).execute().data[0]
    return partner, raw_key
