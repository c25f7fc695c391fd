"""Admin Router - user roles and permission overrides."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.dependencies import ApiUser, require_permission
from cpa_hub.logs import log_activity
from cpa_hub.permissions import (
    PermissionOverride,
    UserRole,
    is_admin,
    is_owner,
    list_profiles,
    load_api_user,
    save_profile,
)

router = APIRouter()


class PermissionOverrideModel(BaseModel):
    permission: str
    granted: bool
    expires_at: Optional[str] = None


class UserUpdateRequest(BaseModel):
    role: str
    full_name: Optional[str] = None
    permission_overrides: Optional[List[PermissionOverrideModel]] = Field(None)


def _check_role_change(actor: ApiUser, target: ApiUser, role: str) -> None:
    """Only owners touch the owner role; only admins hand out admin."""
    if (role == UserRole.OWNER.value or is_owner(target)) and not is_owner(actor):
        raise HTTPException(status_code=403, detail="Only an owner can change owner roles")
    if (role == UserRole.ADMIN.value or is_admin(target)) and not is_admin(actor):
        raise HTTPException(status_code=403, detail="Only an admin can change admin roles")


@router.get("/users")
def list_users(user: ApiUser = Depends(require_permission("manage:users"))) -> dict:
    profiles = list_profiles()
    return {"users": profiles, "count": len(profiles)}


@router.put("/users/{email}")
def update_user(
    email: str,
    request: UserUpdateRequest,
    user: ApiUser = Depends(require_permission("manage:users")),
) -> dict:
    """Set a user's role and (optionally) replace their overrides."""
    email = email.strip().lower()
    _check_role_change(user, load_api_user(email), request.role)

    overrides = None
    if request.permission_overrides is not None:
        try:
            overrides = [PermissionOverride.from_dict(o.model_dump()) for o in request.permission_overrides]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid expires_at: {exc}")

    try:
        profile = save_profile(
            email,
            role=request.role,
            full_name=request.full_name,
            permission_overrides=overrides,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    log_activity(
        action="updated",
        resource_type="user",
        resource_id=profile["id"],
        resource_name=email,
        user_email=user.email,
        details={"role": request.role},
    )
    return {"user": profile}
