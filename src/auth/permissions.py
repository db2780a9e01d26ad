from __future__ import annotations

from typing import Final

LEGACY_ROLE_ALIASES: Final[dict[str, str]] = {
    "admin": "workspace_admin",
    "owner": "workspace_admin",
    "user": "workspace_member",
    "member": "workspace_member",
}

CANONICAL_ROLES: Final[set[str]] = {"workspace_admin", "workspace_member"}

LEADS_READ: Final[str] = "leads.read"
LEADS_WRITE: Final[str] = "leads.write"
IMPORTS_WRITE: Final[str] = "imports.write"
TARGETING_WRITE_ANY: Final[str] = "targeting.write_any"
PARTNERS_MANAGE: Final[str] = "partners.manage"

ROLE_PERMISSION_BUNDLES: Final[dict[str, set[str]]] = {
    "workspace_admin": {
        LEADS_READ,
        LEADS_WRITE,
        IMPORTS_WRITE,
        TARGETING_WRITE_ANY,
        PARTNERS_MANAGE,
    },
    "workspace_member": {
        LEADS_READ,
        LEADS_WRITE,
        IMPORTS_WRITE,
    },
}


def normalize_role(role: str) -> str:
    raw = (role or "").strip()
    normalized = LEGACY_ROLE_ALIASES.get(raw, raw)
    if normalized not in CANONICAL_ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def permissions_for_role(role: str) -> set[str]:
    normalized = normalize_role(role)
    return set(ROLE_PERMISSION_BUNDLES[normalized])


def role_has_permission(role: str, permission_key: str) -> bool:
    return permission_key in permissions_for_role(role)


def is_workspace_admin_role(role: str) -> bool:
    return normalize_role(role) == "workspace_admin"
