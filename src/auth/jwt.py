from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt, JWTError
from src.config import settings


_SESSION_TOKEN_TYPE = "session"
_SUPER_ADMIN_TOKEN_TYPE = "super_admin"


def _encode(subject: str, token_type: str, **claims: Any) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "type": token_type,
        "exp": issued_at + timedelta(minutes=settings.jwt_expiration_minutes),
        "iat": issued_at,
        **claims,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode(token: str, token_type: str) -> dict | None:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def create_access_token(user_id: str, workspace_id: str) -> str:
    """Session token bound to exactly one workspace."""
    return _encode(user_id, _SESSION_TOKEN_TYPE, workspace_id=workspace_id)


def decode_access_token(token: str) -> dict | None:
    payload = _decode(token, _SESSION_TOKEN_TYPE)
    if payload is None or not payload.get("workspace_id"):
        return None
    return payload


def create_super_admin_token(super_admin_id: str) -> str:
    """Super-admin token. Carries no workspace_id; operates above the tenant layer."""
    return _encode(super_admin_id, _SUPER_ADMIN_TOKEN_TYPE)


def decode_super_admin_token(token: str) -> dict | None:
    return _decode(token, _SUPER_ADMIN_TOKEN_TYPE)
