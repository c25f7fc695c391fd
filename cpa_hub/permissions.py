"""Role-based access control.

Roles come from the ``user_profiles`` collection (keyed by email). Users
without a profile are treated as staff. Per-user permission overrides can
grant or revoke a single permission, optionally until ``expires_at``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, HTTPException

from .api.auth import get_current_user
from .documents import DocumentStore


class UserRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


ADMIN_PERMISSIONS = [
    "manage:users",
    "manage:clients",
    "manage:tasks",
    "manage:settings",
    "view:all",
    "delete:any",
    "export:data",
    "view:audit-logs",
    "manage:vapi",
]

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    UserRole.OWNER.value: list(ADMIN_PERMISSIONS),
    UserRole.ADMIN.value: list(ADMIN_PERMISSIONS),
    UserRole.MANAGER.value: [
        "manage:clients",
        "manage:tasks",
        "view:all",
        "delete:own",
        "export:data",
        "view:audit-logs",
    ],
    UserRole.STAFF.value: [
        "view:assigned-clients",
        "manage:own-tasks",
        "view:own",
    ],
}

VALID_ROLES = [role.value for role in UserRole]

PROFILES_COLLECTION = "user_profiles"


def _profiles() -> DocumentStore:
    return DocumentStore(PROFILES_COLLECTION)


@dataclass(slots=True)
class PermissionOverride:
    permission: str
    granted: bool
    expires_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionOverride":
        expires = data.get("expires_at")
        if isinstance(expires, str):
            expires = datetime.fromisoformat(expires.replace("Z", "+00:00"))
        if isinstance(expires, datetime) and expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return cls(
            permission=str(data.get("permission", "")),
            granted=bool(data.get("granted", False)),
            expires_at=expires,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "permission": self.permission,
            "granted": self.granted,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(slots=True)
class ApiUser:
    """The authenticated caller with their role and active overrides."""

    id: str
    email: str
    role: str = UserRole.STAFF.value
    full_name: Optional[str] = None
    permission_overrides: List[PermissionOverride] = field(default_factory=list)


def load_api_user(email: str) -> ApiUser:
    """Build an ApiUser from the user's profile."""
    profile = _profiles().get(email) or {}
    role = profile.get("role") or UserRole.STAFF.value
    if role not in ROLE_PERMISSIONS:
        role = UserRole.STAFF.value

    now = datetime.now(timezone.utc)
    overrides = [
        PermissionOverride.from_dict(item)
        for item in profile.get("permission_overrides") or []
    ]
    return ApiUser(
        id=email,
        email=email,
        role=role,
        full_name=profile.get("full_name"),
        permission_overrides=[o for o in overrides if o.is_active(now)],
    )


def get_api_user(user: str = Depends(get_current_user)) -> ApiUser:
    """FastAPI dependency returning the caller's ApiUser."""
    return load_api_user(user)


def role_has_permission(role: str, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, [])


def user_has_permission(user: ApiUser, permission: str) -> bool:
    """Check an override first, then the role."""
    for override in user.permission_overrides:
        if override.permission == permission and override.is_active():
            return override.granted
    return role_has_permission(user.role, permission)


def can_view_all(user: ApiUser) -> bool:
    return user.role in (UserRole.ADMIN.value, UserRole.MANAGER.value, UserRole.OWNER.value)


def is_admin(user: ApiUser) -> bool:
    return user.role in (UserRole.ADMIN.value, UserRole.OWNER.value)


def is_owner(user: ApiUser) -> bool:
    return user.role == UserRole.OWNER.value


def require_permission(permission: str) -> Callable[..., ApiUser]:
    """Build a dependency that rejects callers lacking ``permission``."""

    def _dependency(user: ApiUser = Depends(get_api_user)) -> ApiUser:
        if not user_has_permission(user, permission):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _dependency


# =============================================================================
# Profile management
# =============================================================================

def list_profiles() -> List[Dict[str, Any]]:
    profiles = _profiles().list()
    profiles.sort(key=lambda p: p.get("id", ""))
    return profiles


def save_profile(
    email: str,
    *,
    role: str,
    full_name: Optional[str] = None,
    permission_overrides: Optional[List[PermissionOverride]] = None,
) -> Dict[str, Any]:
    """Create or update a user profile.

    Raises:
        ValueError: if the role is not recognized.
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role: {role}")

    store = _profiles()
    existing = store.get(email) or {}
    record = {
        **existing,
        "email": email,
        "role": role,
        "full_name": full_name if full_name is not None else existing.get("full_name"),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    if permission_overrides is not None:
        record["permission_overrides"] = [o.to_dict() for o in permission_overrides]
    return store.save(email, record)
