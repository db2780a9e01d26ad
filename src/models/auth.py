from datetime import datetime

from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    workspace_id: str | None = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenCreate(BaseModel):
    name: str | None = None
    expires_at: datetime | None = None


class TokenResponse(BaseModel):
    id: str
    name: str | None
    expires_at: datetime | None
    last_used_at: datetime | None
    created_at: datetime


class TokenCreateResponse(BaseModel):
    id: str
    token: str  # raw token, only returned on creation
    name: str | None
    expires_at: datetime | None
    created_at: datetime


class MeResponse(BaseModel):
    user_id: str
    workspace_id: str
    role: str
    permissions: list[str]
    auth_method: str
