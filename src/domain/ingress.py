from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from fastapi import HTTPException, Request, status

from src.domain.normalization import unwrap_events
from src.observability import incr_metric, log_event


CAPTURED_HEADERS = ("content-type", "user-agent", "x-forwarded-for", "x-request-id")
_JSON_CONTENT_TYPES = {"application/json"}


def request_id_of(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def require_configured_secret(secret: str | None, source: str) -> str:
    if not secret:
        incr_metric("webhook.rejected", source=source, reason="not_configured")
        log_event("webhook_secret_not_configured", source=source)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured",
        )
    return secret


def require_json_content_type(request: Request, source: str) -> None:
    raw = request.headers.get("content-type") or ""
    media_type = raw.split(";", 1)[0].strip().lower()
    if media_type in _JSON_CONTENT_TYPES or media_type.endswith("+json"):
        return
    incr_metric("webhook.rejected", source=source, reason="content_type")
    raise HTTPException(
        status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        detail="Content-Type must be application/json",
    )


def _too_large(source: str) -> HTTPException:
    incr_metric("webhook.rejected", source=source, reason="too_large")
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail="Payload too large",
    )


async def read_bounded_body(request: Request, max_bytes: int, source: str) -> bytes:
    """Read the raw body, refusing to buffer more than ``max_bytes``."""
    declared = request.headers.get("content-length")
    if declared:
        try:
            declared_bytes = int(declared)
        except ValueError:
            incr_metric("webhook.rejected", source=source, reason="bad_content_length")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid Content-Length header",
            )
        if declared_bytes > max_bytes:
            raise _too_large(source)

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise _too_large(source)
        chunks.append(chunk)
    return b"".join(chunks)


def _strip_signature_prefix(value: str) -> str:
    value = value.strip()
    if value.lower().startswith("sha256="):
        return value[len("sha256="):]
    return value


def is_authentic(
    raw_body: bytes,
    secret: str,
    *,
    shared_secret_header: str | None,
    signature_header: str | None,
) -> bool:
    """Shared-secret header first, then HMAC-SHA256 over the raw body."""
    if shared_secret_header and hmac.compare_digest(
        shared_secret_header.encode(), secret.encode()
    ):
        return True
    if signature_header:
        expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
        provided = _strip_signature_prefix(signature_header).lower()
        if hmac.compare_digest(expected.encode(), provided.encode()):
            return True
    return False


def verify_sender_or_raise(
    raw_body: bytes,
    secret: str,
    *,
    source: str,
    shared_secret_header: str | None,
    signature_header: str | None,
    request_id: str | None = None,
) -> None:
    if is_authentic(
        raw_body,
        secret,
        shared_secret_header=shared_secret_header,
        signature_header=signature_header,
    ):
        return
    incr_metric("webhook.rejected", source=source, reason="unauthorized")
    log_event("webhook_unauthorized", request_id=request_id, source=source)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def parse_json_body(raw_body: bytes, source: str) -> Any:
    try:
        return json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        incr_metric("webhook.rejected", source=source, reason="invalid_json")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from exc


def captured_headers(request: Request) -> dict[str, str]:
    return {name: request.headers[name] for name in CAPTURED_HEADERS if name in request.headers}


def split_events(payload: Any, max_events: int, source: str) -> list[dict[str, Any]]:
    events = unwrap_events(payload)
    if not events:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No events in payload")
    if len(events) > max_events:
        incr_metric("webhook.rejected", source=source, reason="too_many_events")
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Too many events in one delivery (max {max_events})",
        )
    if not all(isinstance(event, dict) for event in events):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Events must be JSON objects")
    return events
