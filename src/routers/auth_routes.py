import hashlib
import logging
import secrets

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, status

from src.auth import AuthContext, create_access_token, create_super_admin_token, get_current_auth
from src.db import supabase
from src.models.auth import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    TokenCreate,
    TokenCreateResponse,
    TokenResponse,
)
from src.observability import log_event, sanitize_error


router = APIRouter(prefix="/api/auth", tags=["auth"])


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError as exc:
        log_event("password_hash_invalid", level=logging.WARNING, error=sanitize_error(exc))
        return False


def _invalid_credentials() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")


@router.post("/login", response_model=LoginResponse)
async def login(data: LoginRequest):
    """Login with email and password; the session token is bound to one workspace."""
    query = supabase.table("users").select(
        "id, workspace_id, email, password_hash"
    ).eq("email", str(data.email).lower()).is_("deleted_at", "null")
    if data.workspace_id:
        query = query.eq("workspace_id", data.workspace_id)
    result = query.execute()

    if not result.data:
        raise _invalid_credentials()
    if len(result.data) > 1:
        # Same email in several workspaces: the caller must say which one.
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="workspace_id is required for this account")

    user = result.data[0]
    if not verify_password(data.password, user.get("password_hash")):
        raise _invalid_credentials()

    return LoginResponse(access_token=create_access_token(user_id=user["id"], workspace_id=user["workspace_id"]))


@router.post("/super-admin/login", response_model=LoginResponse)
async def super_admin_login(data: LoginRequest):
    result = supabase.table("super_admins").select("id, email, password_hash").eq(
        "email", str(data.email).lower()
    ).execute()
    if not result.data or not verify_password(data.password, result.data[0].get("password_hash")):
        raise _invalid_credentials()
    return LoginResponse(access_token=create_super_admin_token(result.data[0]["id"]))


@router.post("/tokens", response_model=TokenCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_token(data: TokenCreate, auth: AuthContext = Depends(get_current_auth)):
    """Create an API token. The raw value is only returned here."""
    raw_token = secrets.token_urlsafe(32)
    result = supabase.table("api_tokens").insert({
        "workspace_id": auth.workspace_id,
        "user_id": auth.user_id,
        "token_hash": hashlib.sha256(raw_token.encode()).hexdigest(),
        "name": data.name,
        "expires_at": data.expires_at.isoformat() if data.expires_at else None,
    }).execute()
    token_record = result.data[0]

    return TokenCreateResponse(
        id=token_record["id"],
        token=raw_token,
        name=token_record.get("name"),
        expires_at=token_record.get("expires_at"),
        created_at=token_record["created_at"],
    )


@router.get("/tokens", response_model=list[TokenResponse])
async def list_tokens(auth: AuthContext = Depends(get_current_auth)):
    result = supabase.table("api_tokens").select(
        "id, name, expires_at, last_used_at, created_at"
    ).eq("workspace_id", auth.workspace_id).eq("user_id", auth.user_id).execute()
    return result.data


@router.delete("/tokens/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_token(token_id: str, auth: AuthContext = Depends(get_current_auth)):
    result = supabase.table("api_tokens").delete().eq(
        "id", token_id
    ).eq("workspace_id", auth.workspace_id).eq("user_id", auth.user_id).execute()
    if not result.data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")
    return None


@router.get("/me", response_model=MeResponse)
async def get_me(auth: AuthContext = Depends(get_current_auth)):
    return MeResponse(
        user_id=auth.user_id,
        workspace_id=auth.workspace_id,
        role=auth.role,
        permissions=list(auth.permissions),
        auth_method=auth.auth_method,
    )
