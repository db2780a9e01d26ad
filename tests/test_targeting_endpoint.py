from fastapi.testclient import TestClient

from src.auth.context import AuthContext
from src.auth.dependencies import get_current_auth
from src.domain import routing
from src.domain.leads import upsert_lead
from src.domain.normalization import normalize_event
from src.main import app


def _set_auth(role="workspace_admin", user_id="user-1", workspace_id="ws-1"):
    async def _override():
        return AuthContext(workspace_id=workspace_id, user_id=user_id, role=role, auth_method="session")

    app.dependency_overrides[get_current_auth] = _override


def test_member_saves_own_targeting_and_reads_it_back(fake_db):
    _set_auth(role="workspace_member", user_id="user-2")
    client = TestClient(app)

    saved = client.post(
        "/api/targeting/users/user-2",
        json={"industries": ["Solar ", "solar"], "states": ["ca"], "postal_codes": ["94105"], "daily_cap": 3},
    )
    fetched = client.get("/api/targeting/users/user-2")

    assert saved.status_code == 200
    assert saved.json()["industries"] == ["solar"]
    assert saved.json()["states"] == ["CA"]
    assert fetched.json()["daily_cap"] == 3
    assert len(fake_db.rows("user_targeting")) == 1


def test_saving_twice_replaces_single_row(fake_db):
    _set_auth(role="workspace_member", user_id="user-2")
    client = TestClient(app)

    client.post("/api/targeting/users/user-2", json={"states": ["CA"]})
    client.post("/api/targeting/users/user-2", json={"states": ["NV"], "is_active": False})

    rows = fake_db.rows("user_targeting")
    assert len(rows) == 1
    assert rows[0]["states"] == ["NV"]
    assert rows[0]["is_active"] is False


def test_targeting_bounds_are_validated(fake_db):
    _set_auth(role="workspace_member", user_id="user-2")
    client = TestClient(app)

    too_many_industries = client.post(
        "/api/targeting/users/user-2", json={"industries": [f"industry-{i}" for i in range(51)]}
    )
    bad_state = client.post("/api/targeting/users/user-2", json={"states": ["XX"]})
    bad_zip = client.post("/api/targeting/users/user-2", json={"postal_codes": ["9410"]})
    negative_cap = client.post("/api/targeting/users/user-2", json={"daily_cap": -1})

    assert too_many_industries.status_code == 422
    assert bad_state.status_code == 422
    assert bad_zip.status_code == 422
    assert negative_cap.status_code == 422
    assert fake_db.rows("user_targeting") == []


def test_member_cannot_edit_another_users_targeting(fake_db):
    _set_auth(role="workspace_member", user_id="user-2")
    client = TestClient(app)

    response = client.post("/api/targeting/users/user-1", json={"states": ["CA"]})

    assert response.status_code == 403


def test_admin_edits_member_but_not_foreign_user(fake_db):
    _set_auth()
    client = TestClient(app)

    member = client.post("/api/targeting/users/user-2", json={"states": ["CA"]})
    foreign = client.post("/api/targeting/users/user-9", json={"states": ["CA"]})

    assert member.status_code == 200
    assert foreign.status_code == 404


def test_saved_user_targeting_is_used_by_routing(fake_db):
    _set_auth(role="workspace_member", user_id="user-2")
    client = TestClient(app)
    client.post("/api/targeting/users/user-2", json={"states": ["CA"]})
    lead_id = upsert_lead("ws-1", normalize_event({"email": "a@x.com", "state": "CA"}), source="manual_api").lead_id

    result = routing.route_lead("ws-1", lead_id)

    assert result.assigned_to == [{"recipient_kind": "user", "recipient_id": "user-2"}]


def test_client_profile_targeting_requires_admin_and_existing_profile(fake_db):
    fake_db.tables["client_profiles"] = [
        {"id": "cp-1", "workspace_id": "ws-1", "name": "Sunrise Solar", "is_active": True, "deleted_at": None},
        {"id": "cp-9", "workspace_id": "ws-2", "name": "Elsewhere", "is_active": True, "deleted_at": None},
    ]
    client = TestClient(app)

    _set_auth(role="workspace_member", user_id="user-2")
    forbidden = client.post("/api/targeting/client-profiles/cp-1", json={"states": ["CA"]})

    _set_auth()
    saved = client.post(
        "/api/targeting/client-profiles/cp-1",
        json={"states": ["CA"], "is_exclusive": True, "routing_priority": 5, "excluded_domains": ["Rival.com"]},
    )
    foreign = client.post("/api/targeting/client-profiles/cp-9", json={"states": ["CA"]})
    fetched = client.get("/api/targeting/client-profiles/cp-1")

    assert forbidden.status_code == 403
    assert saved.status_code == 200
    assert saved.json()["excluded_domains"] == ["rival.com"]
    assert foreign.status_code == 404
    assert fetched.json()["name"] == "Sunrise Solar"
    assert fetched.json()["is_exclusive"] is True
    assert fetched.json()["routing_priority"] == 5
    assert fake_db.rows("client_profiles")[1].get("states") is None
