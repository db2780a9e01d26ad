import hashlib
import hmac
from datetime import datetime, timezone
from fastapi import Depends, Header, HTTPException, status
from src.auth.context import AuthContext, PartnerContext, SuperAdminContext
from src.auth.jwt import decode_access_token, decode_super_admin_token
from src.auth.permissions import role_has_permission
from src.config import settings
from src.db import supabase


def _hash_token(token: str) -> str:
    """SHA-256 hash a token for lookup."""
    return hashlib.sha256(token.encode()).hexdigest()


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def _get_active_user(user_id: str, workspace_id: str) -> dict | None:
    """Load active user and enforce workspace is active."""
    workspace_result = supabase.table("workspaces").select("id").eq(
        "id", workspace_id
    ).is_("deleted_at", "null").execute()
    if not workspace_result.data:
        return None

    user_result = supabase.table("users").select(
        "id, workspace_id, role"
    ).eq("id", user_id).eq("workspace_id", workspace_id).is_("deleted_at", "null").execute()
    if not user_result.data:
        return None
    return user_result.data[0]


async def _validate_api_token(token: str) -> AuthContext | None:
    """Validate API token against database. Returns AuthContext or None."""
    token_hash = _hash_token(token)

    result = supabase.table("api_tokens").select(
        "id, workspace_id, user_id, expires_at"
    ).eq("token_hash", token_hash).execute()

    if not result.data:
        return None

    token_record = result.data[0]

    if token_record.get("expires_at"):
        expires_at = datetime.fromisoformat(token_record["expires_at"].replace("Z", "+00:00"))
        if expires_at < datetime.now(timezone.utc):
            return None

    supabase.table("api_tokens").update({
        "last_used_at": datetime.now(timezone.utc).isoformat()
    }).eq("id", token_record["id"]).execute()

    user = _get_active_user(token_record["user_id"], token_record["workspace_id"])
    if not user:
        return None

    return AuthContext(
        workspace_id=token_record["workspace_id"],
        user_id=token_record["user_id"],
        role=user["role"],
        token_id=token_record["id"],
        auth_method="api_token",
    )


async def _validate_jwt(token: str) -> AuthContext | None:
    """Validate JWT session token. Returns AuthContext or None."""
    payload = decode_access_token(token)
    if not payload:
        return None

    user = _get_active_user(payload["sub"], payload["workspace_id"])
    if not user:
        return None

    return AuthContext(
        workspace_id=payload["workspace_id"],
        user_id=payload["sub"],
        role=user["role"],
        auth_method="session",
    )


async def get_current_auth(authorization: str | None = Header(None)) -> AuthContext:
    """
    Dual auth: tries JWT first (no token table lookup), falls back to API token.
    Every caller resolved here is already scoped to exactly one workspace.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    auth = await _validate_jwt(token)
    if auth:
        return auth

    auth = await _validate_api_token(token)
    if auth:
        return auth

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
    )


async def get_current_partner(x_api_key: str | None = Header(None)) -> PartnerContext:
    """Partner API-key auth. Keys are stored hashed; only active partners pass."""
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    result = supabase.table("partners").select(
        "id, workspace_id, name, is_active"
    ).eq("api_key_hash", _hash_token(x_api_key)).execute()

    if not result.data or not result.data[0].get("is_active"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    partner = result.data[0]
    return PartnerContext(
        partner_id=partner["id"],
        workspace_id=partner.get("workspace_id"),
        name=partner.get("name"),
    )


async def get_current_super_admin(authorization: str | None = Header(None)) -> SuperAdminContext:
    """
    Super-admin JWT auth. Validates token type is 'super_admin' and user exists in super_admins table.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_super_admin_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired super-admin token",
        )

    result = supabase.table("super_admins").select("id, email").eq(
        "id", payload["sub"]
    ).execute()

    if not result.data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Super-admin not found",
        )

    super_admin = result.data[0]
    return SuperAdminContext(
        super_admin_id=super_admin["id"],
        email=super_admin["email"],
    )


async def require_internal_scheduler(
    x_internal_scheduler_secret: str | None = Header(default=None),
) -> None:
    """Shared-secret guard for scheduler-driven maintenance endpoints."""
    configured_secret = settings.internal_scheduler_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal scheduler secret is not configured",
        )
    if not x_internal_scheduler_secret or not hmac.compare_digest(
        x_internal_scheduler_secret,
        configured_secret,
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal scheduler secret",
        )


def require_permission(permission_key: str):
    async def _require(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
        if permission_key not in auth.permissions:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission required: {permission_key}",
            )
        return auth

    return _require


def has_permission(auth: AuthContext, permission_key: str) -> bool:
    if permission_key in auth.permissions:
        return True
    return role_has_permission(auth.role, permission_key)
