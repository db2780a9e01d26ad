from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from src.db import supabase


_RULE_FIELDS = ("industries", "states", "cities", "postal_codes", "daily_cap", "weekly_cap", "monthly_cap", "is_active")
_PROFILE_FIELDS = _RULE_FIELDS + (
    "is_exclusive",
    "routing_priority",
    "require_email",
    "require_phone",
    "excluded_domains",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def user_in_workspace(workspace_id: str, user_id: str) -> bool:
    result = supabase.table("users").select("id").eq("id", user_id).eq(
        "workspace_id", workspace_id
    ).is_("deleted_at", "null").execute()
    return bool(result.data)


def get_user_targeting(workspace_id: str, user_id: str) -> dict[str, Any] | None:
    result = supabase.table("user_targeting").select("*").eq(
        "workspace_id", workspace_id
    ).eq("user_id", user_id).is_("deleted_at", "null").execute()
    return result.data[0] if result.data else None


def save_user_targeting(workspace_id: str, user_id: str, values: dict[str, Any]) -> dict[str, Any]:
    row = {key: values[key] for key in _RULE_FIELDS if key in values}
    row.update({"workspace_id": workspace_id, "user_id": user_id, "updated_at": _now_iso()})
    result = supabase.table("user_targeting").upsert(row, on_conflict="workspace_id,user_id").execute()
    return result.data[0]


def get_client_profile(workspace_id: str, profile_id: str) -> dict[str, Any] | None:
    result = supabase.table("client_profiles").select("*").eq(
        "id", profile_id
    ).eq("workspace_id", workspace_id).is_("deleted_at", "null").execute()
    return result.data[0] if result.data else None


def save_client_profile_targeting(workspace_id: str, profile_id: str, values: dict[str, Any]) -> dict[str, Any] | None:
    row = {key: values[key] for key in _PROFILE_FIELDS if key in values}
    row["updated_at"] = _now_iso()
    result = supabase.table("client_profiles").update(row).eq(
        "id", profile_id
    ).eq("workspace_id", workspace_id).is_("deleted_at", "null").execute()
    return result.data[0] if result.data else None
