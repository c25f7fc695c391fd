"""Activity Router - audit trail of user and webhook actions."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.dependencies import ApiUser, get_api_user
from cpa_hub.logs import fetch_activity_entries, log_activity

router = APIRouter()


class ActivityCreateRequest(BaseModel):
    action: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    description: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


@router.get("")
def list_activity(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    resource_type: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    user_filter: Optional[str] = Query(None, alias="user"),
    search: Optional[str] = Query(None),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    """Recent activity, newest first."""
    entries = fetch_activity_entries(
        limit,
        offset=offset,
        resource_type=resource_type,
        action=action,
        user_email=user_filter,
        search=search,
    )
    return {"activities": entries, "count": len(entries)}


@router.post("", status_code=201)
def create_activity(
    request: ActivityCreateRequest,
    user: ApiUser = Depends(get_api_user),
) -> dict:
    if not request.action or not request.resource_type:
        raise HTTPException(status_code=400, detail="action and resource_type are required")

    entry = log_activity(
        action=request.action,
        resource_type=request.resource_type,
        resource_id=request.resource_id,
        resource_name=request.resource_name,
        user_email=user.email,
        details=request.details,
        description=request.description,
    )
    return {"activity": entry}
