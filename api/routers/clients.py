"""Clients Router - CRM client records."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.dependencies import ApiUser, get_api_user, require_permission
from cpa_hub.clients import (
    ClientValidationError,
    create_client,
    delete_client,
    get_client,
    list_clients,
    update_client,
)
from cpa_hub.clients.store import ALLOWED_UPDATE_FIELDS
from cpa_hub.logs import log_activity

logger = logging.getLogger(__name__)

router = APIRouter()


def _allowed(body: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in body.items() if k in ALLOWED_UPDATE_FIELDS}


@router.get("")
def list_clients_endpoint(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    """List clients ordered by name."""
    clients = list_clients(search=search, status=status, limit=limit, offset=offset)
    return {"clients": [c.to_api_dict() for c in clients], "count": len(clients)}


@router.post("", status_code=201)
def create_client_endpoint(
    body: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    fields = _allowed(body)
    name = fields.pop("name", None)
    if not (name or "").strip():
        raise HTTPException(status_code=400, detail="Client name is required")

    try:
        client = create_client(name, created_by=user.email, **fields)
    except ClientValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    log_activity(
        action="created",
        resource_type="client",
        resource_id=client.id,
        resource_name=client.name,
        user_email=user.email,
    )
    return {"client": client.to_api_dict()}


@router.get("/{client_id}")
def get_client_endpoint(client_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    client = get_client(client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return {"client": client.to_api_dict()}


@router.put("/{client_id}")
def update_client_endpoint(
    client_id: str,
    body: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    """Update a client. Only the allowed CRM fields are applied."""
    updates = _allowed(body)
    try:
        client = update_client(client_id, updates)
    except ClientValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")

    log_activity(
        action="updated",
        resource_type="client",
        resource_id=client.id,
        resource_name=client.name,
        user_email=user.email,
        details={"fields": sorted(updates)},
    )
    return {"client": client.to_api_dict()}


@router.delete("/{client_id}")
def delete_client_endpoint(
    client_id: str,
    user: ApiUser = Depends(require_permission("manage:clients")),
) -> dict:
    client = get_client(client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")

    delete_client(client_id)
    log_activity(
        action="deleted",
        resource_type="client",
        resource_id=client.id,
        resource_name=client.name,
        user_email=user.email,
    )
    return {"success": True, "deleted": client_id}
