from fastapi.testclient import TestClient

from src.auth.context import AuthContext
from src.auth.dependencies import get_current_auth
from src.config import settings
from src.main import app


def _set_auth(role="workspace_admin", user_id="user-1", workspace_id="ws-1"):
    async def _override():
        return AuthContext(workspace_id=workspace_id, user_id=user_id, role=role, auth_method="session")

    app.dependency_overrides[get_current_auth] = _override


def _seed_profile(fake_db):
    fake_db.tables["client_profiles"] = [
        {
            "id": "cp-1",
            "workspace_id": "ws-1",
            "industries": ["solar"],
            "states": ["CA"],
            "daily_cap": 5,
            "is_active": True,
            "deleted_at": None,
        }
    ]


def test_ingest_single_lead_routes_inline(fake_db):
    _seed_profile(fake_db)
    _set_auth()
    client = TestClient(app)

    response = client.post(
        "/api/leads/ingest",
        json={"lead": {"email": "A@X.com", "industry": "Solar", "state": "CA"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["stored"] == 1
    result = body["results"][0]
    assert result["created"] is True
    assert result["matched"] is True
    assert result["assigned_to"] == [{"recipient_kind": "client_profile", "recipient_id": "cp-1"}]
    assert fake_db.rows("leads")[0]["email"] == "a@x.com"
    assert fake_db.rows("leads")[0]["source"] == "manual_api"


def test_same_email_twice_updates_one_lead_with_latest_fields(fake_db):
    _set_auth()
    client = TestClient(app)

    first = client.post(
        "/api/leads/ingest",
        json={"lead": {"email": "a@x.com", "job_title": "Engineer", "city": "Fresno"}, "auto_route": False},
    )
    second = client.post(
        "/api/leads/ingest",
        json={"lead": {"email": "a@x.com", "job_title": "Director"}, "auto_route": False},
    )

    leads = fake_db.rows("leads")
    assert len(leads) == 1
    assert first.json()["results"][0]["lead_id"] == second.json()["results"][0]["lead_id"]
    assert second.json()["results"][0]["created"] is False
    assert leads[0]["job_title"] == "Director"
    assert leads[0]["city"] == "Fresno"
    event_names = [row["name"] for row in fake_db.rows("domain_events")]
    assert event_names == ["lead.created", "lead.updated"]


def test_same_email_in_two_workspaces_creates_two_leads(fake_db):
    client = TestClient(app)

    _set_auth(workspace_id="ws-1")
    client.post("/api/leads/ingest", json={"lead": {"email": "a@x.com"}, "auto_route": False})
    _set_auth(workspace_id="ws-2", user_id="user-9")
    client.post("/api/leads/ingest", json={"lead": {"email": "a@x.com"}, "auto_route": False})

    assert sorted(row["workspace_id"] for row in fake_db.rows("leads")) == ["ws-1", "ws-2"]


def test_ingest_batch_reports_per_lead_results(fake_db):
    _set_auth()
    client = TestClient(app)

    response = client.post(
        "/api/leads/ingest",
        json={"leads": [{"email": "a@x.com"}, {"phone": "4155550100"}, {"extra": {"note": "empty"}}]},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 3
    assert body["stored"] == 2
    assert body["results"][2]["lead_id"] is None
    assert body["results"][2]["error"]


def test_ingest_requires_lead_or_leads(fake_db):
    _set_auth()
    client = TestClient(app)

    assert client.post("/api/leads/ingest", json={}).status_code == 422
    assert client.post("/api/leads/ingest", json={"leads": [{"email": "bad"}]}).status_code == 422


def test_ingest_requires_authentication(fake_db):
    client = TestClient(app)

    response = client.post("/api/leads/ingest", json={"lead": {"email": "a@x.com"}})

    assert response.status_code == 401


def test_queued_dispatch_defers_routing_until_drained(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "routing_dispatch_mode", "queued")
    _seed_profile(fake_db)
    _set_auth()
    client = TestClient(app)

    ingest = client.post("/api/leads/ingest", json={"lead": {"email": "a@x.com", "industry": "solar", "state": "CA"}})
    assert ingest.json()["results"][0]["matched"] is False
    assert fake_db.rows("routing_assignments") == []
    assert fake_db.rows("routing_jobs")[0]["status"] == "pending"

    unauthorized = client.post("/api/internal/routing/drain")
    drained = client.post("/api/internal/routing/drain", headers={"X-Internal-Scheduler-Secret": "scheduler-secret"})

    assert unauthorized.status_code == 401
    assert drained.status_code == 200
    assert drained.json()["completed"] == 1
    assert fake_db.rows("routing_jobs")[0]["status"] == "completed"
    assert len(fake_db.rows("routing_assignments")) == 1


def test_reroute_endpoint_is_idempotent_and_scoped(fake_db):
    _seed_profile(fake_db)
    _set_auth()
    client = TestClient(app)
    lead_id = client.post(
        "/api/leads/ingest",
        json={"lead": {"email": "a@x.com", "industry": "solar", "state": "CA"}},
    ).json()["results"][0]["lead_id"]

    again = client.post(f"/api/leads/{lead_id}/route")
    _set_auth(workspace_id="ws-2", user_id="user-9")
    foreign = client.post(f"/api/leads/{lead_id}/route")

    assert again.status_code == 200
    assert again.json()["matched"] is True
    assert again.json()["new_assignments"] == 0
    assert foreign.status_code == 404
    assert len(fake_db.rows("routing_assignments")) == 1
