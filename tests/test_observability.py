import json
import logging

from fastapi.testclient import TestClient

from src.main import app
from src.observability import incr_metric, log_event, metric_key, metrics_snapshot, sanitize_error


def test_log_event_emits_json_and_redacts_secrets(caplog):
    with caplog.at_level(logging.INFO, logger="lead_intake"):
        log_event("webhook_rejected", request_id="req-1", signature="sha256=abc", source="superpixel")

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "webhook_rejected"
    assert payload["request_id"] == "req-1"
    assert payload["signature"] == "[redacted]"
    assert payload["source"] == "superpixel"


def test_sanitize_error_masks_emails_and_truncates():
    text = sanitize_error(ValueError("lead a.person@example.com failed " + "x" * 400))

    assert "a.person@example.com" not in text
    assert "[email]" in text
    assert text.endswith("...")


def test_metric_labels_are_ordered():
    incr_metric("leads.created", source="partner")
    incr_metric("leads.created", value=2, source="partner")

    assert metric_key("routing.assigned", kind="user", b="1") == "routing.assigned|b=1,kind=user"
    assert metrics_snapshot()["leads.created|source=partner"] == 3


def test_request_id_header_is_echoed(fake_db):
    client = TestClient(app)

    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    generated = client.get("/health")

    assert response.headers["X-Request-ID"] == "req-42"
    assert generated.headers["X-Request-ID"]


def test_publish_event_counts_by_event_name(fake_db):
    from src.domain.events import LEAD_CREATED, publish_event

    publish_event(LEAD_CREATED, "ws-1", {"lead_id": "lead-1"})

    assert [row["name"] for row in fake_db.rows("domain_events")] == [LEAD_CREATED]
    assert metrics_snapshot()["domain_event.published|event_name=lead.created"] == 1
