"""Calls Router - call records produced by the phone and form webhooks."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import ApiUser, get_api_user
from cpa_hub.calls import get_call, list_calls

router = APIRouter()


@router.get("")
def list_calls_endpoint(
    direction: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    calls = list_calls(direction=direction, search=search, limit=limit, offset=offset)
    return {"calls": [c.to_api_dict() for c in calls], "count": len(calls)}


@router.get("/{call_id}")
def get_call_endpoint(call_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    call = get_call(call_id)
    if not call:
        raise HTTPException(status_code=404, detail="Call not found")
    return {"call": call.to_api_dict()}
