from datetime import datetime, timedelta, timezone

import pytest

from src.domain import routing
from src.domain.leads import upsert_lead
from src.domain.normalization import normalize_event


def _store_lead(email, **fields):
    payload = {"email": email, "industry": "solar", "state": "CA"}
    payload.update(fields)
    return upsert_lead("ws-1", normalize_event(payload), source="manual_api").lead_id


def _client_profile(profile_id, **overrides):
    row = {
        "id": profile_id,
        "workspace_id": "ws-1",
        "industries": ["solar"],
        "states": ["CA"],
        "is_active": True,
        "deleted_at": None,
    }
    row.update(overrides)
    return row


def _user_rule(user_id, **overrides):
    row = {
        "id": f"ut-{user_id}",
        "workspace_id": "ws-1",
        "user_id": user_id,
        "industries": [],
        "states": ["CA"],
        "is_active": True,
        "deleted_at": None,
    }
    row.update(overrides)
    return row


def test_routing_twice_creates_no_duplicate_assignments(fake_db):
    fake_db.tables["client_profiles"] = [_client_profile("cp-1")]
    fake_db.tables["user_targeting"] = [_user_rule("user-2")]
    lead_id = _store_lead("a@x.com")

    first = routing.route_lead("ws-1", lead_id)
    second = routing.route_lead("ws-1", lead_id)

    assert first.new_assignments == 2
    assert second.new_assignments == 0
    assert sorted(a["recipient_id"] for a in second.assigned_to) == ["cp-1", "user-2"]
    assert len(fake_db.rows("routing_assignments")) == 2


def test_daily_cap_limits_assignments_and_leaves_the_rest_unassigned(fake_db):
    cap = 3
    fake_db.tables["client_profiles"] = [_client_profile("cp-capped", daily_cap=cap)]
    results = [routing.route_lead("ws-1", _store_lead(f"lead{i}@x.com")) for i in range(cap + 5)]

    assigned = [r for r in results if r.matched]
    skipped = [r for r in results if not r.matched]
    assert len(assigned) == cap
    assert len(skipped) == 5
    assert all(r.unroutable_reason == "all_recipients_capped" for r in skipped)
    assert len(fake_db.rows("routing_assignments")) == cap


def test_capped_recipient_does_not_block_other_recipients(fake_db):
    fake_db.tables["client_profiles"] = [
        _client_profile("cp-capped", daily_cap=1),
        _client_profile("cp-open"),
    ]
    routing.route_lead("ws-1", _store_lead("one@x.com"))
    second = routing.route_lead("ws-1", _store_lead("two@x.com"))

    assert [a["recipient_id"] for a in second.assigned_to] == ["cp-open"]


def test_assignments_outside_the_window_do_not_count(fake_db):
    fake_db.tables["client_profiles"] = [_client_profile("cp-1", daily_cap=1, weekly_cap=2)]
    old = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
    fake_db.tables["routing_assignments"] = [
        {
            "id": "ra-old",
            "workspace_id": "ws-1",
            "lead_id": "lead-old",
            "recipient_kind": "client_profile",
            "recipient_id": "cp-1",
            "matched_at": old,
        }
    ]

    allowed = routing.route_lead("ws-1", _store_lead("fresh@x.com"))
    blocked = routing.route_lead("ws-1", _store_lead("later@x.com"))

    assert allowed.matched is True
    assert blocked.matched is False


def test_rerouting_an_assigned_lead_at_cap_keeps_its_assignment(fake_db):
    fake_db.tables["client_profiles"] = [_client_profile("cp-1", daily_cap=1)]
    lead_id = _store_lead("a@x.com")

    routing.route_lead("ws-1", lead_id)
    again = routing.route_lead("ws-1", lead_id)

    assert again.matched is True
    assert again.unroutable_reason is None


def test_client_profile_failure_does_not_stop_user_routing(fake_db, monkeypatch):
    fake_db.tables["user_targeting"] = [_user_rule("user-2")]
    original = routing.load_rules

    def _flaky(workspace_id, recipient_kind):
        if recipient_kind == "client_profile":
            raise RuntimeError("profiles unavailable")
        return original(workspace_id, recipient_kind)

    monkeypatch.setattr(routing, "load_rules", _flaky)
    result = routing.route_lead("ws-1", _store_lead("a@x.com"))

    assert [a["recipient_id"] for a in result.assigned_to] == ["user-2"]
    assert "client_profile" in result.errors


def test_rules_from_other_workspaces_are_ignored(fake_db):
    fake_db.tables["client_profiles"] = [_client_profile("cp-foreign", workspace_id="ws-2")]

    result = routing.route_lead("ws-1", _store_lead("a@x.com"))

    assert result.matched is False
    assert result.unroutable_reason == "no_active_rules"


def test_unmatched_lead_is_recorded_as_unroutable_then_cleared(fake_db):
    fake_db.tables["client_profiles"] = [_client_profile("cp-1", states=["NV"])]
    lead_id = _store_lead("a@x.com")

    first = routing.route_lead("ws-1", lead_id)
    assert first.unroutable_reason == "no_matching_rule"
    assert fake_db.rows("unroutable_leads")[0]["lead_id"] == lead_id

    fake_db.tables["client_profiles"][0]["states"] = ["CA"]
    second = routing.route_lead("ws-1", lead_id)

    assert second.matched is True
    assert fake_db.rows("unroutable_leads") == []
    lead = next(row for row in fake_db.rows("leads") if row["id"] == lead_id)
    assert lead["routing_status"] == "routed"


def test_ineligible_lead_is_never_routed(fake_db):
    fake_db.tables["client_profiles"] = [_client_profile("cp-1", industries=[], states=[])]
    lead_id = upsert_lead("ws-1", normalize_event({"first_name": "No", "city": "Austin"}), source="manual_api").lead_id

    result = routing.route_lead("ws-1", lead_id)

    assert result.matched is False
    assert result.unroutable_reason == "ineligible"
    assert fake_db.rows("routing_assignments") == []


def test_unknown_lead_raises(fake_db):
    with pytest.raises(routing.LeadNotFound):
        routing.route_lead("ws-1", "missing")


def test_lead_from_another_workspace_is_not_found(fake_db):
    lead_id = _store_lead("a@x.com")

    with pytest.raises(routing.LeadNotFound):
        routing.route_lead("ws-2", lead_id)
