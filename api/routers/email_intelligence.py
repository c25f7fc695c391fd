"""Email Intelligence Router - AI-classified inbox review.

Handles:
- Listing classified emails with their suggested action items
- Approve (create tasks), dismiss and complete review actions
- Inbox sync from connected Microsoft mailboxes
- On-demand task extraction for a single message
- Assignment rules

Mounted twice: ``router`` at /api/email-intelligence and ``emails_router``
at /api/emails.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from api.dependencies import ApiUser, clamp_limit, clamp_offset, get_api_user
from cpa_hub.email import (
    ClassificationNotFound,
    NoEmailConnection,
    approve_classification,
    complete_classification,
    dismiss_classification,
    list_intelligence,
    sync_inbox,
)
from cpa_hub.email.assignment import AssignmentRuleError, create_assignment_rule, load_assignment_rules
from cpa_hub.email.intelligence import extract_tasks_for_message
from cpa_hub.integrations.microsoft import GraphError
from cpa_hub.llm import AnthropicError

logger = logging.getLogger(__name__)

router = APIRouter()

# /api/emails/* endpoints
emails_router = APIRouter()


def _needs_connection() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "No email accounts connected", "needsConnection": True},
    )


# =============================================================================
# Review
# =============================================================================

@router.get("")
def list_email_intelligence(
    status: str = Query("pending"),
    category: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    """Classified emails newest first. ``status=all`` disables the status filter."""
    items = list_intelligence(
        status=status,
        category=category,
        limit=clamp_limit(limit, 50, 200),
        offset=clamp_offset(offset),
    )
    return {"emails": items, "count": len(items)}


@router.post("/{classification_id}/approve")
def approve_email(classification_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    """Turn every pending action item into a task."""
    try:
        tasks = approve_classification(classification_id, user.email)
    except ClassificationNotFound:
        raise HTTPException(status_code=404, detail="Classification not found")
    return {
        "success": True,
        "tasksCreated": len(tasks),
        "tasks": [t.to_api_dict() for t in tasks],
    }


@router.post("/{classification_id}/dismiss")
def dismiss_email(classification_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    try:
        count = dismiss_classification(classification_id, user.email)
    except ClassificationNotFound:
        raise HTTPException(status_code=404, detail="Classification not found")
    return {"success": True, "itemsDismissed": count}


@router.post("/{classification_id}/complete")
def complete_email(classification_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    try:
        count = complete_classification(classification_id, user.email)
    except ClassificationNotFound:
        raise HTTPException(status_code=404, detail="Classification not found")
    return {"success": True, "itemsSkipped": count}


# =============================================================================
# Sync
# =============================================================================

@router.post("/sync")
def sync_email_intelligence(user: ApiUser = Depends(get_api_user)):
    """Classify new messages from every connected mailbox."""
    try:
        processed, failed = sync_inbox(user.email)
    except NoEmailConnection:
        return _needs_connection()
    logger.info("Email sync for %s: %s processed, %s failed", user.email, processed, failed)
    return {"success": True, "processed": processed, "failed": failed}


# =============================================================================
# Assignment Rules
# =============================================================================

@router.get("/assignment-rules")
def list_assignment_rules(user: ApiUser = Depends(get_api_user)) -> dict:
    rules = load_assignment_rules()
    return {"rules": [r.to_dict() for r in rules], "count": len(rules)}


@router.post("/assignment-rules", status_code=201)
def create_rule(
    body: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    try:
        rule = create_assignment_rule(body, user.email)
    except AssignmentRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"rule": rule.to_dict()}


# =============================================================================
# Task Extraction
# =============================================================================

@emails_router.post("/{message_id}/extract-tasks")
def extract_email_tasks(message_id: str, user: ApiUser = Depends(get_api_user)):
    """Suggest tasks for one mailbox message without storing anything."""
    try:
        message, tasks = extract_tasks_for_message(user.email, message_id)
    except NoEmailConnection:
        return _needs_connection()
    except GraphError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to fetch email: {exc}")
    except AnthropicError as exc:
        raise HTTPException(status_code=500, detail=f"Task extraction failed: {exc}")

    return {
        "tasks": [t.to_dict() for t in tasks],
        "emailId": message_id,
        "emailSubject": message.get("subject"),
    }
