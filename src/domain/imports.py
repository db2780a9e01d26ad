from __future__ import annotations

import csv
import hashlib
import io
import json
import logging
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import httpx

from src.config import settings
from src.db import is_unique_violation, supabase
from src.domain.dispatch import dispatch_routing
from src.domain.events import IMPORT_COMPLETED, publish_event
from src.domain.ingestion import persist_normalized
from src.domain.normalization import normalize_event
from src.observability import incr_metric, log_event, sanitize_error


IMPORT_SOURCE = "batch_export"
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_RETRY_BASE_DELAY_SECONDS = 0.5
_RETRY_MAX_DELAY_SECONDS = 4.0
_JSON_WRAPPER_KEYS = ("data", "records", "rows", "leads")
_MAX_RECORDED_ERRORS = 50


class ImportJobConflict(Exception):
    def __init__(self, job: dict[str, Any]):
        super().__init__("Import already in progress")
        self.job = job


class ImportJobRejected(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ImportDownloadError(Exception):
    pass


@dataclass
class ParsedRow:
    number: int
    data: dict[str, Any] | None
    error: str | None = None


@dataclass
class ImportProgress:
    total_rows: int = 0
    stored: int = 0
    failed_rows: int = 0
    routing_failures: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def record_error(self, row: int, message: str) -> None:
        if len(self.errors) < _MAX_RECORDED_ERRORS:
            self.errors.append({"row": row, "message": message})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def compute_import_hash(file_url: str, audience_id: str | None, workspace_id: str) -> str:
    material = "|".join([file_url.strip(), audience_id or "", workspace_id])
    return hashlib.sha256(material.encode()).hexdigest()


def validate_file_url(file_url: str) -> None:
    parsed = urlparse(file_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ImportJobRejected(400, "file_url must be an http(s) URL")


def job_response(job: dict[str, Any], *, duplicate: bool = False) -> dict[str, Any]:
    response = {
        "job_id": job["id"],
        "status": job.get("status"),
        "total_rows": job.get("total_rows") or 0,
        "stored": job.get("stored_rows") or 0,
        "failed_rows": job.get("failed_rows") or 0,
        "error": job.get("error"),
    }
    if duplicate:
        response["duplicate"] = True
    return response


def get_job(workspace_id: str, job_id: str) -> dict[str, Any] | None:
    result = supabase.table("import_jobs").select("*").eq("id", job_id).eq("workspace_id", workspace_id).execute()
    return result.data[0] if result.data else None


def _find_job_by_hash(idempotency_hash: str) -> dict[str, Any] | None:
    result = supabase.table("import_jobs").select("*").eq("idempotency_hash", idempotency_hash).execute()
    return result.data[0] if result.data else None


def _resolve_existing(job: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    if job.get("status") == "completed":
        return job, True
    if job.get("status") == "failed":
        # Compare-and-set so two retries of a failed job cannot both run.
        reopened = supabase.table("import_jobs").update({
            "status": "processing",
            "error": None,
            "total_rows": 0,
            "processed_rows": 0,
            "stored_rows": 0,
            "failed_rows": 0,
            "updated_at": _now_iso(),
        }).eq("id", job["id"]).eq("status", "failed").execute()
        if reopened.data:
            return reopened.data[0], False
    raise ImportJobConflict(job)


def start_job(
    *,
    workspace_id: str,
    file_url: str,
    audience_id: str | None,
    created_by: str | None,
) -> tuple[dict[str, Any], bool]:
    """
    Claim the import identified by its idempotency hash.

    Returns ``(job, replay)``; ``replay`` is true when the job already completed and
    its stored counts should be returned as-is. Raises ``ImportJobConflict`` while
    another run holds the job.
    """
    idempotency_hash = compute_import_hash(file_url, audience_id, workspace_id)
    existing = _find_job_by_hash(idempotency_hash)
    if existing:
        return _resolve_existing(existing)

    now = _now_iso()
    try:
        created = supabase.table("import_jobs").insert({
            "workspace_id": workspace_id,
            "idempotency_hash": idempotency_hash,
            "file_url": file_url,
            "audience_id": audience_id,
            "status": "processing",
            "total_rows": 0,
            "processed_rows": 0,
            "stored_rows": 0,
            "failed_rows": 0,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }).execute()
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        existing = _find_job_by_hash(idempotency_hash)
        if not existing:
            raise
        return _resolve_existing(existing)
    return created.data[0], False


def _file_too_large() -> ImportJobRejected:
    return ImportJobRejected(400, "Import file exceeds the maximum size")


def _read_bounded(response: httpx.Response, max_bytes: int) -> bytes:
    declared = response.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise _file_too_large()
    chunks: list[bytes] = []
    received = 0
    for chunk in response.iter_bytes():
        received += len(chunk)
        if received > max_bytes:
            raise _file_too_large()
        chunks.append(chunk)
    return b"".join(chunks)


def _retry_delay(attempt: int) -> None:
    delay = min(_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)), _RETRY_MAX_DELAY_SECONDS)
    time.sleep(delay + random.uniform(0, delay * 0.2))


def _request_with_retry(
    *,
    url: str,
    timeout_seconds: float,
    max_attempts: int,
    max_bytes: int,
) -> httpx.Response:
    """GET ``url`` with backoff, streaming the body so no more than ``max_bytes`` is held."""
    for attempt in range(1, max_attempts + 1):
        try:
            with httpx.Client(timeout=timeout_seconds, follow_redirects=True) as client:
                with client.stream("GET", url) as streamed:
                    retryable = streamed.status_code in _RETRYABLE_STATUS_CODES and attempt < max_attempts
                    if not retryable:
                        content = b"" if streamed.status_code >= 400 else _read_bounded(streamed, max_bytes)
                        return httpx.Response(
                            streamed.status_code,
                            headers={"content-type": streamed.headers.get("content-type", "")},
                            content=content,
                            request=streamed.request,
                        )
        except httpx.HTTPError:
            if attempt >= max_attempts:
                raise
        _retry_delay(attempt)
    raise ImportDownloadError("Import file download exhausted its retries")


def download_file(file_url: str) -> tuple[bytes, str]:
    try:
        response = _request_with_retry(
            url=file_url,
            timeout_seconds=settings.import_download_timeout_seconds,
            max_attempts=settings.import_download_max_attempts,
            max_bytes=settings.import_download_max_bytes,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise ImportDownloadError(f"Could not download import file: {exc.__class__.__name__}") from exc

    if response.status_code >= 400:
        raise ImportDownloadError(f"Import file download returned HTTP {response.status_code}")
    content = response.content
    if len(content) > settings.import_download_max_bytes:
        raise _file_too_large()
    return content, response.headers.get("content-type", "")


def _looks_like_json(content_type: str, file_url: str, text: str) -> bool:
    if "json" in content_type.lower():
        return True
    if urlparse(file_url).path.lower().endswith(".json"):
        return True
    return text.lstrip()[:1] in {"[", "{"}


def _parse_json_rows(text: str) -> list[ParsedRow]:
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise ImportJobRejected(422, "Import file is not valid JSON") from exc
    if isinstance(payload, dict):
        records = next((payload[key] for key in _JSON_WRAPPER_KEYS if isinstance(payload.get(key), list)), None)
        if records is None:
            raise ImportJobRejected(422, "JSON import must be an array or wrap one under data/records/rows/leads")
    elif isinstance(payload, list):
        records = payload
    else:
        raise ImportJobRejected(422, "JSON import must be an array of objects")

    rows: list[ParsedRow] = []
    for number, record in enumerate(records, start=1):
        if isinstance(record, dict):
            rows.append(ParsedRow(number=number, data=record))
        else:
            rows.append(ParsedRow(number=number, data=None, error="Row is not an object"))
    return rows


def _parse_csv_rows(text: str) -> list[ParsedRow]:
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader)
    except StopIteration:
        return []
    except csv.Error as exc:
        raise ImportJobRejected(422, "Import file is not valid CSV") from exc
    columns = [column.strip() for column in header]
    if not any(columns):
        raise ImportJobRejected(422, "CSV import is missing a header row")

    rows: list[ParsedRow] = []
    number = 0
    try:
        for cells in reader:
            if not any(cell.strip() for cell in cells):
                continue
            number += 1
            if len(cells) > len(columns):
                rows.append(ParsedRow(number=number, data=None, error="Row has more cells than the header"))
                continue
            padded = cells + [""] * (len(columns) - len(cells))
            rows.append(ParsedRow(
                number=number,
                data={column: value.strip() for column, value in zip(columns, padded) if column and value.strip()},
            ))
    except csv.Error as exc:
        raise ImportJobRejected(422, f"Import file is not valid CSV near row {number + 1}") from exc
    return rows


def parse_rows(content: bytes, content_type: str, file_url: str) -> list[ParsedRow]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportJobRejected(422, "Import file is not UTF-8 text") from exc
    if _looks_like_json(content_type, file_url, text):
        return _parse_json_rows(text)
    return _parse_csv_rows(text)


def _update_job(job_id: str, values: dict[str, Any]) -> None:
    supabase.table("import_jobs").update({**values, "updated_at": _now_iso()}).eq("id", job_id).execute()


def fail_job(job: dict[str, Any], message: str, *, request_id: str | None = None) -> None:
    _update_job(job["id"], {"status": "failed", "error": message})
    incr_metric("imports.failed")
    log_event("import_failed", level=logging.WARNING, request_id=request_id, job_id=job["id"], error=message)


def _store_batch(
    workspace_id: str,
    rows: list[ParsedRow],
    audience_id: str | None,
    progress: ImportProgress,
    request_id: str | None,
) -> list[str]:
    lead_ids: list[str] = []
    for row in rows:
        if row.data is None:
            progress.failed_rows += 1
            progress.record_error(row.number, row.error or "Malformed row")
            continue
        fields = normalize_event(row.data)
        if "invalid_email" in fields.extra:
            progress.failed_rows += 1
            progress.record_error(row.number, "Invalid email address")
            continue
        if fields.shape == "unparsed":
            progress.failed_rows += 1
            progress.record_error(row.number, "Row has no recognizable lead fields")
            continue
        if audience_id:
            fields.extra["audience_id"] = audience_id
        try:
            outcome = persist_normalized(
                workspace_id, fields, source=IMPORT_SOURCE, auto_route=False, request_id=request_id
            )
        except Exception as exc:
            progress.failed_rows += 1
            progress.record_error(row.number, sanitize_error(exc))
            continue
        progress.stored += 1
        if fields.routing_eligible and outcome.lead_id:
            lead_ids.append(outcome.lead_id)
    return lead_ids


def _route_batch(workspace_id: str, lead_ids: list[str], progress: ImportProgress, request_id: str | None) -> None:
    if not lead_ids:
        return
    max_workers = max(1, min(settings.import_routing_concurrency, len(lead_ids)))
    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures: list[Future] = [
            executor.submit(dispatch_routing, workspace_id, lead_id, request_id=request_id)
            for lead_id in lead_ids
        ]
        done, not_done = wait(futures, timeout=settings.import_batch_timeout_seconds)
        progress.routing_failures += len(not_done)
        for future in not_done:
            future.cancel()
        for future in done:
            if future.exception() is not None:
                progress.routing_failures += 1
    finally:
        # Do not block on stragglers past the batch deadline.
        executor.shutdown(wait=False, cancel_futures=True)


def run_import(
    job: dict[str, Any],
    *,
    workspace_id: str,
    file_url: str,
    audience_id: str | None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Download, parse and ingest one import file; any failure leaves the job ``failed``."""
    try:
        return _execute_import(
            job,
            workspace_id=workspace_id,
            file_url=file_url,
            audience_id=audience_id,
            request_id=request_id,
        )
    except (ImportJobRejected, ImportDownloadError) as exc:
        fail_job(job, str(exc), request_id=request_id)
        raise
    except Exception as exc:
        fail_job(job, f"Import failed: {sanitize_error(exc)}", request_id=request_id)
        raise


def _execute_import(
    job: dict[str, Any],
    *,
    workspace_id: str,
    file_url: str,
    audience_id: str | None,
    request_id: str | None,
) -> dict[str, Any]:
    content, content_type = download_file(file_url)
    rows = parse_rows(content, content_type, file_url)
    if not rows:
        raise ImportJobRejected(400, "Import file contains no rows")
    if len(rows) > settings.import_max_rows:
        raise ImportJobRejected(400, f"Import file has {len(rows)} rows; the maximum is {settings.import_max_rows}")

    progress = ImportProgress(total_rows=len(rows))
    _update_job(job["id"], {"total_rows": progress.total_rows})
    batch_size = max(1, settings.import_batch_size)

    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        try:
            lead_ids = _store_batch(workspace_id, batch, audience_id, progress, request_id)
            _route_batch(workspace_id, lead_ids, progress, request_id)
        except Exception as exc:
            log_event(
                "import_batch_failed",
                level=logging.ERROR,
                request_id=request_id,
                job_id=job["id"],
                batch_start=start,
                error=sanitize_error(exc),
            )
        _update_job(job["id"], {
            "processed_rows": progress.stored + progress.failed_rows,
            "stored_rows": progress.stored,
            "failed_rows": progress.failed_rows,
        })

    final = {
        "status": "completed",
        "total_rows": progress.total_rows,
        "processed_rows": progress.stored + progress.failed_rows,
        "stored_rows": progress.stored,
        "failed_rows": progress.failed_rows,
        "row_errors": progress.errors,
        "completed_at": _now_iso(),
    }
    _update_job(job["id"], final)
    incr_metric("imports.completed")
    log_event(
        "import_completed",
        request_id=request_id,
        job_id=job["id"],
        workspace_id=workspace_id,
        total_rows=progress.total_rows,
        stored=progress.stored,
        failed_rows=progress.failed_rows,
        routing_failures=progress.routing_failures,
    )
    publish_event(IMPORT_COMPLETED, workspace_id, {
        "job_id": job["id"],
        "total_rows": progress.total_rows,
        "stored": progress.stored,
        "failed_rows": progress.failed_rows,
    })
    return job_response({**job, **final})
