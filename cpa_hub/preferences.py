"""User profile, company and notification settings.

Profile fields sit on the caller's ``user_profiles`` document next to their
role. Company settings are one ``organization_settings`` document and
notification preferences are one ``notification_preferences`` document per
user. The API speaks camelCase; documents are stored snake_case.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict

from .documents import DocumentStore
from .permissions import PROFILES_COLLECTION, UserRole

ORGANIZATION_COLLECTION = "organization_settings"
NOTIFICATIONS_COLLECTION = "notification_preferences"
ORGANIZATION_ID = "default"
DEFAULT_COMPANY_NAME = "CPA Firm"
DEFAULT_TIMEZONE = "cst"

PROFILE_FIELDS = ("full_name", "phone", "department", "job_title", "avatar_url", "bio")
COMPANY_FIELDS = (
    "company_name",
    "company_email",
    "company_phone",
    "timezone",
    "address",
    "website",
    "tax_id",
)

DEFAULT_NOTIFICATION_PREFERENCES: Dict[str, Any] = {
    "email_new_task": True,
    "email_task_assigned": True,
    "email_task_due_soon": True,
    "email_task_overdue": True,
    "email_task_completed": False,
    "email_client_activity": True,
    "email_weekly_summary": True,
    "inapp_new_task": True,
    "inapp_task_assigned": True,
    "inapp_task_due_soon": True,
    "inapp_task_overdue": True,
    "inapp_task_completed": True,
    "inapp_mentions": True,
    "inapp_client_activity": True,
    "sms_enabled": False,
    "sms_urgent_only": True,
    "sms_task_overdue": False,
    "ai_email_processed": True,
    "ai_high_priority_detected": True,
    "ai_action_items_extracted": True,
    "quiet_hours_enabled": False,
    "quiet_hours_start": "22:00",
    "quiet_hours_end": "07:00",
}

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class PreferencesError(ValueError):
    """Raised for a settings payload with unknown fields or bad values."""


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _to_snake(payload: Dict[str, Any], allowed) -> Dict[str, Any]:
    converted = {_snake(key): value for key, value in payload.items()}
    unknown = sorted(key for key in converted if key not in allowed)
    if unknown:
        raise PreferencesError(f"Unknown fields: {', '.join(_camel(k) for k in unknown)}")
    return converted


def _check_strings(values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if value is not None and not isinstance(value, str):
            raise PreferencesError(f"{_camel(key)} must be a string")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Profile
# =============================================================================

def get_profile_settings(email: str) -> Dict[str, str]:
    profile = DocumentStore(PROFILES_COLLECTION).get(email) or {}
    result = {_camel(field): profile.get(field) or "" for field in PROFILE_FIELDS}
    result["email"] = profile.get("email") or email
    return result


def update_profile_settings(email: str, payload: Dict[str, Any]) -> Dict[str, str]:
    """Merge profile fields into the user's profile; role is never touched here.

    Raises:
        PreferencesError: on unknown or non-string fields.
    """
    updates = _to_snake(payload, PROFILE_FIELDS)
    _check_strings(updates)

    store = DocumentStore(PROFILES_COLLECTION)
    existing = store.get(email)
    if existing is None:
        store.save(email, {"email": email, "role": UserRole.STAFF.value, **updates, "updated_at": _now()})
    else:
        store.update(email, {**updates, "updated_at": _now()})
    return get_profile_settings(email)


# =============================================================================
# Company
# =============================================================================

def get_company_settings() -> Dict[str, str]:
    settings = DocumentStore(ORGANIZATION_COLLECTION).get(ORGANIZATION_ID) or {}
    result = {_camel(field): settings.get(field) or "" for field in COMPANY_FIELDS}
    result["companyName"] = settings.get("company_name") or DEFAULT_COMPANY_NAME
    result["timezone"] = settings.get("timezone") or DEFAULT_TIMEZONE
    return result


def update_company_settings(payload: Dict[str, Any], updated_by: str) -> Dict[str, str]:
    """Upsert the firm's settings document.

    Raises:
        PreferencesError: on unknown or non-string fields.
    """
    updates = _to_snake(payload, COMPANY_FIELDS)
    _check_strings(updates)

    store = DocumentStore(ORGANIZATION_COLLECTION)
    existing = store.get(ORGANIZATION_ID) or {}
    store.save(ORGANIZATION_ID, {**existing, **updates, "updated_at": _now(), "updated_by": updated_by})
    return get_company_settings()


# =============================================================================
# Notifications
# =============================================================================

def get_notification_preferences(email: str) -> Dict[str, Any]:
    stored = DocumentStore(NOTIFICATIONS_COLLECTION).get(email) or {}
    return {
        _camel(key): stored[key] if stored.get(key) is not None else default
        for key, default in DEFAULT_NOTIFICATION_PREFERENCES.items()
    }


def update_notification_preferences(email: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Merge preference changes for the user.

    Raises:
        PreferencesError: on unknown keys, non-boolean flags, or quiet hours
            that are not ``HH:MM``.
    """
    updates = _to_snake(payload, DEFAULT_NOTIFICATION_PREFERENCES)
    for key, value in updates.items():
        if key.startswith("quiet_hours_") and key != "quiet_hours_enabled":
            if not isinstance(value, str) or not _CLOCK_RE.match(value):
                raise PreferencesError(f"{_camel(key)} must be HH:MM")
        elif not isinstance(value, bool):
            raise PreferencesError(f"{_camel(key)} must be true or false")

    store = DocumentStore(NOTIFICATIONS_COLLECTION)
    existing = store.get(email) or {}
    store.save(email, {**existing, **updates, "user_id": email, "updated_at": _now()})
    return get_notification_preferences(email)

