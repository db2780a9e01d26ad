from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status

from src.auth import AuthContext, PartnerContext, get_current_partner, require_permission
from src.auth.permissions import LEADS_WRITE, PARTNERS_MANAGE
from src.config import settings
from src.domain.ingress import request_id_of
from src.domain.partners import (
    CommissionError,
    PartnerUploadRejected,
    append_correction,
    create_partner,
    process_partner_upload,
    record_delivery_commission,
    upload_too_large,
)
from src.models.partners import (
    CommissionCorrectionRequest,
    CommissionRecord,
    DeliveryRecordRequest,
    DeliveryRecordResponse,
    PartnerCreateRequest,
    PartnerCreateResponse,
    PartnerUploadResponse,
)


router = APIRouter(prefix="/api", tags=["partners"])

_CSV_CONTENT_TYPES = {"text/csv", "application/csv", "text/plain", "application/vnd.ms-excel"}
_UPLOAD_CHUNK_BYTES = 64 * 1024


async def _read_upload(file: UploadFile) -> bytes:
    max_bytes = settings.partner_upload_max_bytes
    if file.size is not None and file.size > max_bytes:
        raise upload_too_large()
    chunks: list[bytes] = []
    received = 0
    while True:
        chunk = await file.read(_UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        received += len(chunk)
        if received > max_bytes:
            raise upload_too_large()
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/partners", response_model=PartnerCreateResponse, status_code=status.HTTP_201_CREATED)
async def register_partner(
    data: PartnerCreateRequest,
    auth: AuthContext = Depends(require_permission(PARTNERS_MANAGE)),
):
    partner, api_key = create_partner(
        auth.workspace_id,
        name=data.name,
        commission_rate=data.commission_rate,
        bonus_commission_rate=data.bonus_commission_rate,
    )
    return PartnerCreateResponse(partner_id=partner["id"], name=partner["name"], api_key=api_key)


@router.post("/partner/upload", response_model=PartnerUploadResponse)
async def partner_upload(
    request: Request,
    file: UploadFile = File(...),
    partner: PartnerContext = Depends(get_current_partner),
):
    file_name = file.filename or ""
    if file.content_type not in _CSV_CONTENT_TYPES and not file_name.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Please upload a CSV file (.csv)",
        )
    try:
        content = await _read_upload(file)
        return process_partner_upload(
            partner,
            file_name=file_name,
            content=content,
            request_id=request_id_of(request),
        )
    except PartnerUploadRejected as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("/leads/{lead_id}/deliveries", response_model=DeliveryRecordResponse)
async def record_delivery(
    lead_id: str,
    data: DeliveryRecordRequest,
    request: Request,
    auth: AuthContext = Depends(require_permission(LEADS_WRITE)),
):
    try:
        return record_delivery_commission(
            auth.workspace_id,
            lead_id,
            delivery_event_id=data.delivery_event_id,
            sale_amount=data.sale_amount,
            request_id=request_id_of(request),
        )
    except CommissionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/partner-commissions/{commission_id}/corrections", response_model=CommissionRecord)
async def correct_commission(
    commission_id: str,
    data: CommissionCorrectionRequest,
    auth: AuthContext = Depends(require_permission(PARTNERS_MANAGE)),
):
    try:
        return append_correction(
            auth.workspace_id,
            commission_id,
            amount=data.amount,
            reason=data.reason,
            created_by=auth.user_id,
        )
    except CommissionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
