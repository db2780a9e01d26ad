from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from src.auth import AuthContext, get_current_auth, has_permission
from src.auth.permissions import TARGETING_WRITE_ANY
from src.domain.targeting import (
    get_client_profile,
    get_user_targeting,
    save_client_profile_targeting,
    save_user_targeting,
    user_in_workspace,
)
from src.models.targeting import (
    ClientProfileTargetingRequest,
    ClientProfileTargetingResponse,
    UserTargetingRequest,
    UserTargetingResponse,
)


router = APIRouter(prefix="/api/targeting", tags=["targeting"])


def _require_user_access(auth: AuthContext, user_id: str) -> None:
    if user_id != auth.user_id and not has_permission(auth, TARGETING_WRITE_ANY):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot manage another user's targeting")
    if not user_in_workspace(auth.workspace_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


def _user_response(workspace_id: str, user_id: str, row: dict | None) -> UserTargetingResponse:
    values = {key: value for key, value in (row or {}).items() if key in UserTargetingRequest.model_fields}
    values = {key: value for key, value in values.items() if value is not None or key.endswith("_cap")}
    return UserTargetingResponse(user_id=user_id, workspace_id=workspace_id, **values)


def _profile_response(row: dict) -> ClientProfileTargetingResponse:
    values = {
        key: value
        for key, value in row.items()
        if key in ClientProfileTargetingRequest.model_fields and (value is not None or key.endswith("_cap"))
    }
    return ClientProfileTargetingResponse(
        profile_id=row["id"],
        workspace_id=row["workspace_id"],
        name=row.get("name"),
        **values,
    )


@router.get("/users/{user_id}", response_model=UserTargetingResponse)
async def get_user_preferences(user_id: str, auth: AuthContext = Depends(get_current_auth)):
    _require_user_access(auth, user_id)
    return _user_response(auth.workspace_id, user_id, get_user_targeting(auth.workspace_id, user_id))


@router.post("/users/{user_id}", response_model=UserTargetingResponse)
async def save_user_preferences(
    user_id: str,
    data: UserTargetingRequest,
    auth: AuthContext = Depends(get_current_auth),
):
    _require_user_access(auth, user_id)
    row = save_user_targeting(auth.workspace_id, user_id, data.model_dump())
    return _user_response(auth.workspace_id, user_id, row)


@router.get("/client-profiles/{profile_id}", response_model=ClientProfileTargetingResponse)
async def get_profile_preferences(profile_id: str, auth: AuthContext = Depends(get_current_auth)):
    profile = get_client_profile(auth.workspace_id, profile_id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client profile not found")
    return _profile_response(profile)


@router.post("/client-profiles/{profile_id}", response_model=ClientProfileTargetingResponse)
async def save_profile_preferences(
    profile_id: str,
    data: ClientProfileTargetingRequest,
    auth: AuthContext = Depends(get_current_auth),
):
    if not has_permission(auth, TARGETING_WRITE_ANY):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Permission required: {TARGETING_WRITE_ANY}")
    profile = save_client_profile_targeting(auth.workspace_id, profile_id, data.model_dump())
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client profile not found")
    return _profile_response(profile)
