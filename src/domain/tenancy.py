from __future__ import annotations

from typing import Iterable

from src.db import supabase


class TenantResolutionError(Exception):
    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def _distinct(values: Iterable[str | None]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def _lookup_pixel(pixel_id: str) -> str | None:
    result = supabase.table("pixel_mappings").select("workspace_id").eq(
        "pixel_id", pixel_id
    ).eq("is_active", True).execute()
    workspaces = _distinct(row.get("workspace_id") for row in result.data or [])
    if len(workspaces) > 1:
        raise TenantResolutionError("ambiguous_mapping", f"Pixel {pixel_id} maps to more than one workspace")
    return workspaces[0] if workspaces else None


def _lookup_audience(audience_id: str) -> str | None:
    result = supabase.table("audience_mappings").select("workspace_id").eq(
        "audience_id", audience_id
    ).eq("is_active", True).execute()
    workspaces = _distinct(row.get("workspace_id") for row in result.data or [])
    if len(workspaces) > 1:
        raise TenantResolutionError("ambiguous_mapping", f"Audience {audience_id} maps to more than one workspace")
    return workspaces[0] if workspaces else None


def _lookup_enrichment_job(job_id: str) -> str | None:
    result = supabase.table("enrichment_jobs").select("workspace_id").eq("id", job_id).execute()
    if not result.data:
        return None
    return result.data[0].get("workspace_id")


def _workspace_is_active(workspace_id: str) -> bool:
    result = supabase.table("workspaces").select("id").eq(
        "id", workspace_id
    ).is_("deleted_at", "null").execute()
    return bool(result.data)


def audience_workspace(audience_id: str) -> str | None:
    return _lookup_audience(audience_id)


def resolve_workspace(
    *,
    pixel_ids: Iterable[str | None] = (),
    audience_ids: Iterable[str | None] = (),
    enrichment_job_ids: Iterable[str | None] = (),
    caller_workspace_id: str | None = None,
    claimed_workspace_id: str | None = None,
) -> str:
    """
    Map an inbound delivery to exactly one workspace or raise.

    External identifiers are tried first; every one of them must resolve and all
    must agree. Only when the delivery carries no identifier at all does an
    already tenant-scoped caller supply the workspace. A workspace id claimed in
    the body is never trusted alone, only checked against the resolved one.
    """
    pixels = _distinct(pixel_ids)
    audiences = _distinct(audience_ids)
    jobs = _distinct(enrichment_job_ids)

    candidates: set[str] = set()
    lookups = (
        [(_lookup_pixel, "pixel", value) for value in pixels]
        + [(_lookup_audience, "audience", value) for value in audiences]
        + [(_lookup_enrichment_job, "enrichment job", value) for value in jobs]
    )
    for lookup, label, value in lookups:
        workspace_id = lookup(value)
        if not workspace_id:
            raise TenantResolutionError("unknown_mapping", f"No active workspace mapping for {label} {value}")
        candidates.add(workspace_id)

    if len(candidates) > 1:
        raise TenantResolutionError("ambiguous_mapping", "Delivery identifiers map to different workspaces")

    if candidates:
        resolved = candidates.pop()
        if caller_workspace_id and caller_workspace_id != resolved:
            raise TenantResolutionError("workspace_mismatch", "Mapping does not belong to the caller's workspace")
    elif caller_workspace_id:
        resolved = caller_workspace_id
    else:
        raise TenantResolutionError("missing_identifier", "Delivery carries no tenant identifier")

    if claimed_workspace_id and str(claimed_workspace_id) != resolved:
        raise TenantResolutionError("workspace_mismatch", "Claimed workspace does not match the mapping")
    if not _workspace_is_active(resolved):
        raise TenantResolutionError("inactive_workspace", "Resolved workspace is not active")
    return resolved
