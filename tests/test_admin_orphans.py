import json

from fastapi.testclient import TestClient

from src.auth.context import SuperAdminContext
from src.auth.dependencies import get_current_super_admin
from src.main import app


def _set_super_admin():
    async def _override():
        return SuperAdminContext(super_admin_id="sa-1", email="ops@example.com")

    app.dependency_overrides[get_current_super_admin] = _override


def _orphan_delivery(client, body: dict):
    return client.post(
        "/api/webhooks/superpixel",
        content=json.dumps(body).encode(),
        headers={"Content-Type": "application/json", "X-Superpixel-Secret": "pixel-secret"},
    )


def test_orphaned_events_are_listed_and_assignable(fake_db):
    fake_db.tables["client_profiles"] = [
        {"id": "cp-1", "workspace_id": "ws-1", "states": ["CA"], "is_active": True, "deleted_at": None}
    ]
    client = TestClient(app)
    rejected = _orphan_delivery(client, {"pixel_id": "px-new", "email": "a@x.com", "state": "CA"})
    assert rejected.status_code == 400

    _set_super_admin()
    listed = client.get("/api/admin/orphaned-events")
    event_id = listed.json()[0]["id"]
    assigned = client.post(f"/api/admin/orphaned-events/{event_id}/assign", json={"workspace_id": "ws-1"})
    again = client.post(f"/api/admin/orphaned-events/{event_id}/assign", json={"workspace_id": "ws-1"})

    assert listed.status_code == 200
    assert listed.json()[0]["headers"]["x-orphan-reason"] == "unknown_mapping"
    assert assigned.status_code == 200
    assert assigned.json()["processed"] is True
    assert assigned.json()["matched"] is True
    assert again.status_code == 409

    raw_event = fake_db.rows("raw_events")[0]
    assert raw_event["workspace_id"] == "ws-1"
    assert raw_event["status"] == "normalized"
    assert raw_event["lead_id"] == assigned.json()["lead_id"]
    assert client.get("/api/admin/orphaned-events").json() == []


def test_assigning_to_unknown_workspace_fails(fake_db):
    client = TestClient(app)
    _orphan_delivery(client, {"pixel_id": "px-new", "email": "a@x.com"})
    _set_super_admin()
    event_id = fake_db.rows("raw_events")[0]["id"]

    response = client.post(f"/api/admin/orphaned-events/{event_id}/assign", json={"workspace_id": "ws-missing"})

    assert response.status_code == 404
    assert fake_db.rows("raw_events")[0]["status"] == "orphaned"


def test_orphan_endpoints_require_super_admin(fake_db):
    client = TestClient(app)

    response = client.get("/api/admin/orphaned-events")

    assert response.status_code == 401
