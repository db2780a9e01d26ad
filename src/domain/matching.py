from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

from src.domain.normalization import normalize_industry, normalize_postal_code, normalize_state


RecipientKind = Literal["client_profile", "user"]

CAP_WINDOWS: dict[str, int] = {
    "daily_cap": 1,
    "weekly_cap": 7,
    "monthly_cap": 30,
}

_GEO_SCORES = {"postal_code": 50, "city": 40, "state": 10}
_INDUSTRY_SCORE = 10
_MAX_PRIORITY_BONUS = 100


@dataclass(frozen=True)
class TargetingRule:
    recipient_kind: RecipientKind
    recipient_id: str
    workspace_id: str
    industries: frozenset[str] = frozenset()
    states: frozenset[str] = frozenset()
    cities: frozenset[str] = frozenset()
    postal_codes: frozenset[str] = frozenset()
    daily_cap: int | None = None
    weekly_cap: int | None = None
    monthly_cap: int | None = None
    is_active: bool = True
    is_exclusive: bool = False
    routing_priority: int = 100
    require_email: bool = False
    require_phone: bool = False
    excluded_domains: frozenset[str] = frozenset()

    @property
    def has_geography(self) -> bool:
        return bool(self.states or self.cities or self.postal_codes)

    def caps(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in CAP_WINDOWS if getattr(self, name) is not None}


@dataclass
class MatchCandidate:
    rule: TargetingRule
    score: int
    matched_on: list[str] = field(default_factory=list)

    @property
    def recipient_id(self) -> str:
        return self.rule.recipient_id


def _clean_set(values: Iterable[Any] | None, normalizer) -> frozenset[str]:
    cleaned: set[str] = set()
    for value in values or []:
        normalized = normalizer(value)
        if normalized:
            cleaned.add(normalized)
    return frozenset(cleaned)


def _lower(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def _cap(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return max(0, int(value))


def rule_from_row(row: dict[str, Any], recipient_kind: RecipientKind) -> TargetingRule:
    """Build a rule from a ``client_profiles`` or ``user_targeting`` row."""
    recipient_id = row["id"] if recipient_kind == "client_profile" else row["user_id"]
    return TargetingRule(
        recipient_kind=recipient_kind,
        recipient_id=str(recipient_id),
        workspace_id=str(row["workspace_id"]),
        industries=_clean_set(row.get("industries"), normalize_industry),
        states=_clean_set(row.get("states"), normalize_state),
        cities=_clean_set(row.get("cities"), _lower),
        postal_codes=_clean_set(row.get("postal_codes"), normalize_postal_code),
        daily_cap=_cap(row.get("daily_cap")),
        weekly_cap=_cap(row.get("weekly_cap")),
        monthly_cap=_cap(row.get("monthly_cap")),
        is_active=bool(row.get("is_active", True)),
        is_exclusive=bool(row.get("is_exclusive")) if recipient_kind == "client_profile" else False,
        routing_priority=100 if row.get("routing_priority") is None else int(row["routing_priority"]),
        require_email=bool(row.get("require_email")),
        require_phone=bool(row.get("require_phone")),
        excluded_domains=_clean_set(row.get("excluded_domains"), _lower),
    )


def _lead_domains(lead: dict[str, Any]) -> set[str]:
    domains: set[str] = set()
    email = lead.get("email")
    if email and "@" in email:
        domains.add(email.split("@", 1)[1].lower())
    if lead.get("company_domain"):
        domains.add(str(lead["company_domain"]).lower())
    return domains


def evaluate_rule(rule: TargetingRule, lead: dict[str, Any]) -> MatchCandidate | None:
    """Return a scored candidate when the lead satisfies the rule, else None. Caps are not checked here."""
    if not rule.is_active or str(lead.get("workspace_id")) != rule.workspace_id:
        return None
    if rule.require_email and not lead.get("email"):
        return None
    if rule.require_phone and not lead.get("phone"):
        return None
    if rule.excluded_domains and _lead_domains(lead) & rule.excluded_domains:
        return None

    score = 0
    matched_on: list[str] = []

    if rule.industries:
        industry = normalize_industry(lead.get("company_industry"))
        if not industry or industry not in rule.industries:
            return None
        score += _INDUSTRY_SCORE
        matched_on.append("industry")

    if rule.has_geography:
        postal = normalize_postal_code(lead.get("postal_code"))
        city = _lower(lead.get("city"))
        state = normalize_state(lead.get("state"))
        if postal and postal in rule.postal_codes:
            geo = "postal_code"
        elif city and city in rule.cities:
            geo = "city"
        elif state and state in rule.states:
            geo = "state"
        else:
            return None
        score += _GEO_SCORES[geo]
        matched_on.append(geo)

    score += max(0, _MAX_PRIORITY_BONUS - rule.routing_priority)
    return MatchCandidate(rule=rule, score=score, matched_on=matched_on)


def rank_candidates(candidates: list[MatchCandidate]) -> list[MatchCandidate]:
    return sorted(candidates, key=lambda c: (-c.score, c.recipient_id))


def match_rules(rules: Iterable[TargetingRule], lead: dict[str, Any]) -> list[MatchCandidate]:
    candidates = [c for c in (evaluate_rule(rule, lead) for rule in rules) if c is not None]
    return rank_candidates(candidates)


def apply_exclusivity(candidates: list[MatchCandidate]) -> list[MatchCandidate]:
    """If any ranked candidate is exclusive, the best exclusive one takes the lead alone."""
    for candidate in candidates:
        if candidate.rule.is_exclusive:
            return [candidate]
    return candidates
