from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from src.db import is_unique_violation, supabase
from src.domain.events import LEAD_ROUTED, publish_event
from src.domain.leads import get_lead
from src.domain.matching import (
    CAP_WINDOWS,
    MatchCandidate,
    RecipientKind,
    TargetingRule,
    apply_exclusivity,
    match_rules,
    rule_from_row,
)
from src.observability import incr_metric, log_event, sanitize_error


_RULE_TABLES: dict[RecipientKind, str] = {
    "client_profile": "client_profiles",
    "user": "user_targeting",
}


class LeadNotFound(Exception):
    pass


@dataclass
class RoutingResult:
    lead_id: str
    assigned_to: list[dict[str, str]] = field(default_factory=list)
    new_assignments: int = 0
    unroutable_reason: str | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return bool(self.assigned_to)

    def as_dict(self) -> dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "matched": self.matched,
            "assigned_to": self.assigned_to,
            "new_assignments": self.new_assignments,
            "unroutable_reason": self.unroutable_reason,
            "errors": self.errors,
        }


@dataclass
class _SubsystemOutcome:
    rules: int = 0
    matched: int = 0
    capped: int = 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


def load_rules(workspace_id: str, recipient_kind: RecipientKind) -> list[TargetingRule]:
    result = supabase.table(_RULE_TABLES[recipient_kind]).select("*").eq(
        "workspace_id", workspace_id
    ).eq("is_active", True).is_("deleted_at", "null").execute()
    return [rule_from_row(row, recipient_kind) for row in result.data or []]


def _existing_pairs(workspace_id: str, lead_id: str) -> set[tuple[str, str]]:
    result = supabase.table("routing_assignments").select("recipient_kind, recipient_id").eq(
        "workspace_id", workspace_id
    ).eq("lead_id", lead_id).execute()
    return {(row["recipient_kind"], str(row["recipient_id"])) for row in result.data or []}


def count_assignments_since(rule: TargetingRule, since: datetime) -> int:
    result = supabase.table("routing_assignments").select("id", count="exact").eq(
        "workspace_id", rule.workspace_id
    ).eq("recipient_kind", rule.recipient_kind).eq(
        "recipient_id", rule.recipient_id
    ).gte("matched_at", since.isoformat()).execute()
    if result.count is not None:
        return result.count
    return len(result.data or [])


def is_capped(rule: TargetingRule, now: datetime | None = None) -> bool:
    now = now or _now()
    for cap_name, limit in rule.caps().items():
        window_start = now - timedelta(days=CAP_WINDOWS[cap_name])
        if count_assignments_since(rule, window_start) >= limit:
            return True
    return False


def _insert_assignment(lead: dict[str, Any], candidate: MatchCandidate) -> bool:
    try:
        supabase.table("routing_assignments").insert({
            "workspace_id": lead["workspace_id"],
            "lead_id": lead["id"],
            "recipient_kind": candidate.rule.recipient_kind,
            "recipient_id": candidate.recipient_id,
            "score": candidate.score,
            "matched_on": candidate.matched_on,
            "matched_at": _now().isoformat(),
        }).execute()
    except Exception as exc:
        if is_unique_violation(exc):
            return False
        raise
    return True


def _route_subsystem(
    lead: dict[str, Any],
    recipient_kind: RecipientKind,
    existing: set[tuple[str, str]],
    result: RoutingResult,
) -> _SubsystemOutcome:
    rules = load_rules(lead["workspace_id"], recipient_kind)
    outcome = _SubsystemOutcome(rules=len(rules))
    candidates = match_rules(rules, lead)
    outcome.matched = len(candidates)

    eligible: list[MatchCandidate] = []
    for candidate in candidates:
        # A pair already on record keeps its slot and does not count against the cap again.
        if (recipient_kind, candidate.recipient_id) in existing:
            eligible.append(candidate)
            continue
        if is_capped(candidate.rule):
            outcome.capped += 1
            incr_metric("routing.capped", recipient_kind=recipient_kind)
            continue
        eligible.append(candidate)

    if recipient_kind == "client_profile":
        eligible = apply_exclusivity(eligible)

    for candidate in eligible:
        pair = (recipient_kind, candidate.recipient_id)
        if pair not in existing and _insert_assignment(lead, candidate):
            result.new_assignments += 1
            existing.add(pair)
        result.assigned_to.append({"recipient_kind": recipient_kind, "recipient_id": candidate.recipient_id})
    return outcome


def _unroutable_reason(lead: dict[str, Any], outcomes: list[_SubsystemOutcome]) -> str:
    if not lead.get("routing_eligible", True):
        return "ineligible"
    if not any(o.rules for o in outcomes):
        return "no_active_rules"
    if not any(o.matched for o in outcomes):
        return "no_matching_rule"
    return "all_recipients_capped"


def _record_unroutable(lead: dict[str, Any], reason: str, outcomes: list[_SubsystemOutcome]) -> None:
    supabase.table("unroutable_leads").upsert({
        "lead_id": lead["id"],
        "workspace_id": lead["workspace_id"],
        "reason": reason,
        "details": {
            "rules_evaluated": sum(o.rules for o in outcomes),
            "matched": sum(o.matched for o in outcomes),
            "capped": sum(o.capped for o in outcomes),
        },
        "recorded_at": _now().isoformat(),
    }, on_conflict="lead_id").execute()


def route_lead(workspace_id: str, lead_id: str, *, request_id: str | None = None) -> RoutingResult:
    """
    Assign one lead to every matching recipient in its workspace.

    Client profiles and user targeting are evaluated independently; a failure in
    one does not stop the other. Safe to call repeatedly for the same lead.
    """
    lead = get_lead(workspace_id, lead_id)
    if not lead:
        raise LeadNotFound(lead_id)

    result = RoutingResult(lead_id=lead_id)
    outcomes: list[_SubsystemOutcome] = []

    if lead.get("routing_eligible", True):
        existing = _existing_pairs(workspace_id, lead_id)
        for recipient_kind in ("client_profile", "user"):
            try:
                outcomes.append(_route_subsystem(lead, recipient_kind, existing, result))
            except Exception as exc:
                result.errors[recipient_kind] = sanitize_error(exc)
                incr_metric("routing.subsystem_failed", recipient_kind=recipient_kind)
                log_event(
                    "routing_subsystem_failed",
                    level=logging.ERROR,
                    request_id=request_id,
                    workspace_id=workspace_id,
                    lead_id=lead_id,
                    recipient_kind=recipient_kind,
                    error=sanitize_error(exc),
                )

    now_iso = _now().isoformat()
    if result.matched:
        routing_status = "routed"
        supabase.table("unroutable_leads").delete().eq("lead_id", lead_id).execute()
    elif result.errors:
        # Leave the lead retryable rather than parking it as unroutable.
        routing_status = "failed"
    else:
        routing_status = "unroutable"
        result.unroutable_reason = _unroutable_reason(lead, outcomes)
        _record_unroutable(lead, result.unroutable_reason, outcomes)

    supabase.table("leads").update({
        "routing_status": routing_status,
        "routed_at": now_iso,
        "updated_at": now_iso,
    }).eq("id", lead_id).eq("workspace_id", workspace_id).execute()

    incr_metric("routing.completed", status=routing_status)
    log_event(
        "lead_routed",
        request_id=request_id,
        workspace_id=workspace_id,
        lead_id=lead_id,
        routing_status=routing_status,
        assigned=len(result.assigned_to),
        new_assignments=result.new_assignments,
        reason=result.unroutable_reason,
    )
    publish_event(LEAD_ROUTED, workspace_id, {
        "lead_id": lead_id,
        "routing_status": routing_status,
        "assigned_to": result.assigned_to,
        "reason": result.unroutable_reason,
    })
    return result
