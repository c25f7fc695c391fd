"""Email Webhooks Router - Microsoft Graph change notifications."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from cpa_hub.webhooks.graph import handle_notifications

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/notifications")
def validate_subscription(validation_token: Optional[str] = Query(None, alias="validationToken")):
    """Graph subscription validation: echo the token as plain text."""
    if not validation_token:
        raise HTTPException(status_code=400, detail="Missing validationToken")
    return PlainTextResponse(validation_token)


@router.post("/notifications")
async def receive_notifications(
    request: Request,
    validation_token: Optional[str] = Query(None, alias="validationToken"),
):
    """Record mailbox change notifications. Always answers 202 so Graph does not retry."""
    if validation_token:
        return PlainTextResponse(validation_token)

    try:
        body = await request.json()
        notifications = body.get("value") or []
        matched = await run_in_threadpool(handle_notifications, notifications)
    except Exception as exc:
        logger.error("Error processing Graph notifications: %s", exc)
        return JSONResponse(status_code=202, content={"status": "error"})

    logger.info("Graph notifications: %s received, %s matched", len(notifications), matched)
    return JSONResponse(status_code=202, content={"status": "accepted"})
