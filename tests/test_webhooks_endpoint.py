import asyncio
import json

import pytest
from fastapi import HTTPException, Request
from fastapi.testclient import TestClient

from conftest import sign
from src.config import settings
from src.domain import idempotency
from src.domain.ingress import read_bounded_body
from src.main import app


PIXEL_SECRET = "pixel-secret"


def _seed_routing(fake_db, *, daily_cap=5):
    fake_db.tables["pixel_mappings"] = [
        {"id": "pm-1", "pixel_id": "px-1", "workspace_id": "ws-1", "is_active": True},
        {"id": "pm-2", "pixel_id": "px-2", "workspace_id": "ws-2", "is_active": True},
    ]
    fake_db.tables["client_profiles"] = [
        {
            "id": "cp-1",
            "workspace_id": "ws-1",
            "industries": ["solar"],
            "states": ["CA"],
            "daily_cap": daily_cap,
            "is_active": True,
            "deleted_at": None,
        }
    ]


def _post(client, body: bytes, headers: dict | None = None, path="/api/webhooks/superpixel"):
    merged = {"Content-Type": "application/json"}
    merged.update(headers or {})
    return client.post(path, content=body, headers=merged)


def test_webhook_fails_closed_when_secret_not_configured(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "superpixel_webhook_secret", None)
    client = TestClient(app)

    response = _post(client, b"{}", {"X-Superpixel-Secret": "anything"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Webhook not configured"


def test_webhook_rejects_non_json_content_type(fake_db):
    client = TestClient(app)

    response = client.post(
        "/api/webhooks/superpixel",
        content=b"email=a@x.com",
        headers={"Content-Type": "text/plain", "X-Superpixel-Secret": PIXEL_SECRET},
    )

    assert response.status_code == 415


def test_webhook_rejects_oversized_body(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "webhook_max_body_bytes", 64)
    client = TestClient(app)
    body = json.dumps({"email": "a@x.com", "padding": "x" * 200}).encode()

    response = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})

    assert response.status_code == 413
    assert fake_db.rows("raw_events") == []


def test_webhook_rejects_bad_credentials_without_detail(fake_db):
    client = TestClient(app)
    body = b'{"email": "a@x.com"}'

    missing = _post(client, body)
    wrong_secret = _post(client, body, {"X-Superpixel-Secret": "nope"})
    wrong_signature = _post(client, body, {"X-Superpixel-Signature": sign(body, "other")})

    assert missing.status_code == 401
    assert wrong_secret.status_code == 401
    assert wrong_signature.status_code == 401
    assert missing.json() == wrong_secret.json() == wrong_signature.json() == {"detail": "Unauthorized"}


def test_webhook_rejects_invalid_json(fake_db):
    client = TestClient(app)
    body = b"{not json"

    response = _post(client, body, {"X-Superpixel-Signature": sign(body, PIXEL_SECRET)})

    assert response.status_code == 400


def test_example_scenario_routes_once_and_replays_duplicate(fake_db):
    _seed_routing(fake_db)
    client = TestClient(app)
    body = json.dumps({"pixel_id": "px-1", "email": "a@x.com", "industry": "solar", "state": "CA"}).encode()

    first = _post(client, body, {"X-Superpixel-Signature": sign(body, PIXEL_SECRET)})
    second = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})

    assert first.status_code == 200
    assert first.json() == {"success": True, "stored": 1, "processed": 1, "total": 1, "duplicate": False}
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["processed"] == 1

    assignments = fake_db.rows("routing_assignments")
    assert len(assignments) == 1
    assert assignments[0]["recipient_id"] == "cp-1"
    assert len(fake_db.rows("leads")) == 1
    assert fake_db.rows("leads")[0]["workspace_id"] == "ws-1"
    assert len(fake_db.rows("processed_webhook_events")) == 1
    assert len(fake_db.rows("raw_events")) == 1


def test_webhook_accepts_array_and_counts_unparsed_events(fake_db):
    _seed_routing(fake_db)
    client = TestClient(app)
    body = json.dumps({
        "result": [
            {"pixel_id": "px-1", "FIRST_NAME": "Ann", "BUSINESS_EMAIL": "ann@acme.io", "PERSONAL_STATE": "CA"},
            {"pixel_id": "px-1", "mystery": {"nested": True}},
        ]
    }).encode()

    response = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})

    assert response.status_code == 200
    assert response.json()["stored"] == 2
    assert response.json()["processed"] == 1
    assert response.json()["total"] == 2
    statuses = sorted(row["status"] for row in fake_db.rows("raw_events"))
    assert statuses == ["normalized", "unparsed"]


def test_unmapped_pixel_is_orphaned_and_never_routed(fake_db):
    _seed_routing(fake_db)
    client = TestClient(app)
    body = json.dumps({"pixel_id": "px-unknown", "email": "a@x.com", "industry": "solar", "state": "CA"}).encode()

    first = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})
    retry = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})

    assert first.status_code == 400
    assert first.json()["detail"]["reason"] == "unknown_mapping"
    assert retry.status_code == 400
    orphans = fake_db.rows("raw_events")
    assert len(orphans) == 1
    assert orphans[0]["workspace_id"] is None
    assert orphans[0]["status"] == "orphaned"
    assert fake_db.rows("leads") == []
    assert fake_db.rows("routing_assignments") == []
    assert fake_db.rows("processed_webhook_events") == []


def test_delivery_mixing_pixels_from_two_workspaces_is_rejected(fake_db):
    _seed_routing(fake_db)
    client = TestClient(app)
    body = json.dumps([
        {"pixel_id": "px-1", "email": "a@x.com"},
        {"pixel_id": "px-2", "email": "b@y.com"},
    ]).encode()

    response = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "ambiguous_mapping"
    assert fake_db.rows("leads") == []
    assert all(row["workspace_id"] is None for row in fake_db.rows("raw_events"))


def test_delivery_without_pixel_is_rejected(fake_db):
    client = TestClient(app)
    body = json.dumps({"email": "a@x.com"}).encode()

    response = _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET})

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "missing_identifier"


def test_enrichment_webhook_rejects_workspace_claim_that_disagrees_with_job(fake_db):
    fake_db.tables["enrichment_jobs"] = [{"id": "job-1", "workspace_id": "ws-1"}]
    client = TestClient(app)
    body = json.dumps({
        "enrichment_job_id": "job-1",
        "workspace_id": "ws-2",
        "person": {"email": "lead@corp.com"},
        "company": {"domain": "corp.com"},
    }).encode()

    response = _post(
        client,
        body,
        {"X-Enrichment-Signature": sign(body, "enrich-secret")},
        path="/api/webhooks/enrichment",
    )

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "workspace_mismatch"
    assert fake_db.rows("leads") == []


def test_enrichment_webhook_stores_envelope_lead(fake_db):
    fake_db.tables["enrichment_jobs"] = [{"id": "job-1", "workspace_id": "ws-1"}]
    client = TestClient(app)
    body = json.dumps({
        "enrichment_job_id": "job-1",
        "person": {"email": "lead@corp.com", "first_name": "Lee"},
        "company": {"domain": "corp.com", "industry": "Roofing"},
    }).encode()

    response = _post(
        client,
        body,
        {"X-Enrichment-Secret": "enrich-secret"},
        path="/api/webhooks/enrichment",
    )

    assert response.status_code == 200
    lead = fake_db.rows("leads")[0]
    assert lead["workspace_id"] == "ws-1"
    assert lead["company_industry"] == "roofing"
    assert lead["routing_status"] == "unroutable"
    assert fake_db.rows("unroutable_leads")[0]["reason"] == "no_active_rules"


def test_captured_headers_exclude_secrets(fake_db):
    _seed_routing(fake_db)
    client = TestClient(app)
    body = json.dumps({"pixel_id": "px-1", "email": "a@x.com"}).encode()

    _post(client, body, {"X-Superpixel-Secret": PIXEL_SECRET, "User-Agent": "pixel-agent"})

    headers = fake_db.rows("raw_events")[0]["headers"]
    assert headers["user-agent"] == "pixel-agent"
    assert "x-superpixel-secret" not in headers


def test_concurrent_ledger_writer_falls_back_to_duplicate(fake_db):
    first, recorded = idempotency.record_processed_event("evt-1", "superpixel", {"success": True, "stored": 1})
    second, recorded_again = idempotency.record_processed_event("evt-1", "superpixel", {"success": True, "stored": 9})

    assert recorded is True
    assert first == {"success": True, "stored": 1}
    assert recorded_again is False
    assert second == {"success": True, "stored": 1, "duplicate": True}
    assert len(fake_db.rows("processed_webhook_events")) == 1


def test_event_id_depends_on_source():
    assert idempotency.compute_event_id(b"{}", "superpixel") != idempotency.compute_event_id(b"{}", "enrichment")


def test_malformed_content_length_is_rejected():
    scope = {"type": "http", "method": "POST", "path": "/", "headers": [(b"content-length", b"lots")]}

    async def _receive():
        return {"type": "http.request", "body": b"{}", "more_body": False}

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(read_bounded_body(Request(scope, _receive), 1024, "superpixel"))

    assert exc_info.value.status_code == 400
