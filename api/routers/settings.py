"""Settings Router - profile, company and notification preferences.

Handles:
- GET/PUT /profile (the caller's own profile fields)
- GET/PUT /company (firm-wide; admins only may change it)
- GET/PUT /notifications (the caller's notification preferences)
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from api.dependencies import ApiUser, get_api_user
from cpa_hub.logs import log_activity
from cpa_hub.permissions import is_admin
from cpa_hub.preferences import (
    PreferencesError,
    get_company_settings,
    get_notification_preferences,
    get_profile_settings,
    update_company_settings,
    update_notification_preferences,
    update_profile_settings,
)


router = APIRouter()


@router.get("/profile")
def read_profile(user: ApiUser = Depends(get_api_user)) -> dict:
    return get_profile_settings(user.email)


@router.put("/profile")
def write_profile(
    payload: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    try:
        profile = update_profile_settings(user.email, payload)
    except PreferencesError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": True, "message": "Profile updated successfully", "profile": profile}


@router.get("/company")
def read_company(user: ApiUser = Depends(get_api_user)) -> dict:
    return get_company_settings()


@router.put("/company")
def write_company(
    payload: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Only admins can update company settings")
    try:
        company = update_company_settings(payload, user.email)
    except PreferencesError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    log_activity(
        action="updated",
        resource_type="settings",
        resource_id="company",
        resource_name=company["companyName"],
        user_email=user.email,
        details={"fields": sorted(payload)},
    )
    return {"success": True, "message": "Company settings updated successfully", "company": company}


@router.get("/notifications")
def read_notifications(user: ApiUser = Depends(get_api_user)) -> dict:
    return get_notification_preferences(user.email)


@router.put("/notifications")
def write_notifications(
    payload: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    try:
        preferences = update_notification_preferences(user.email, payload)
    except PreferencesError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": True, "message": "Notification preferences updated", "preferences": preferences}
