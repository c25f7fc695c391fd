"""Webhooks Router - inbound phone, form and call-report webhooks.

Handles:
- GoTo Connect call events and call reports (/goto)
- VAPI end-of-call reports and agent function calls (/vapi)
- Generic call/form payloads parsed by AI (/calls)
- Twilio inbound SMS and delivery receipts (/sms)
- The webhook monitor for admins (/monitor)

Every receiver is rate limited per client IP, skips replays through its own
processed-id cache and records each request in ``webhook_logs``.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from api.dependencies import ApiUser, get_settings, require_permission
from cpa_hub.calls import get_call
from cpa_hub.llm.webhook_parser import detect_source_type, is_ai_parsing_available
from cpa_hub.sms import update_message_status
from cpa_hub.vapi import handle_function_call
from cpa_hub.webhooks import calls as calls_hooks
from cpa_hub.webhooks import goto as goto_hooks
from cpa_hub.webhooks import sms as sms_hooks
from cpa_hub.webhooks import vapi as vapi_hooks
from cpa_hub.webhooks.log_store import (
    WebhookLog,
    WebhookLogStatus,
    create_webhook_log,
    get_webhook_log,
    list_webhook_logs,
    update_webhook_log,
    webhook_log_stats,
)
from cpa_hub.webhooks.processing import ProcessingResult, client_ip
from cpa_hub.webhooks.security import (
    ProcessedWebhookCache,
    RateLimiter,
    generate_idempotency_key,
    is_timestamp_valid,
    verify_call_webhook_signature,
    verify_hmac_signature,
    verify_twilio_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter()

goto_processed = ProcessedWebhookCache()
vapi_processed = ProcessedWebhookCache()
calls_processed = ProcessedWebhookCache()
sms_processed = ProcessedWebhookCache()
rate_limiter = RateLimiter()

# Headers never copied into webhook_logs
REDACTED_HEADERS = {"authorization", "cookie"}


# =============================================================================
# Helpers
# =============================================================================

def _check_rate_limit(request: Request) -> None:
    result = rate_limiter.check(client_ip(request.headers))
    if not result.success:
        logger.warning("Webhook rate limit exceeded for %s", client_ip(request.headers))
        raise HTTPException(status_code=429, detail="Too many requests")


def _duplicate_response() -> dict:
    return {"success": True, "message": "Webhook already processed", "duplicate": True}


def _health(endpoint: str, description: str, usage: str) -> dict:
    return {
        "status": "healthy",
        "endpoint": endpoint,
        "description": description,
        "supportedMethods": ["POST"],
        "usage": usage,
        "aiParsingAvailable": is_ai_parsing_available(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _open_log(request: Request, endpoint: str, source: str, payload: Any) -> WebhookLog:
    headers = {k: v for k, v in request.headers.items() if k.lower() not in REDACTED_HEADERS}
    log = create_webhook_log(
        endpoint,
        source,
        raw_payload=payload,
        headers=headers,
        ip_address=client_ip(request.headers),
        user_agent=request.headers.get("user-agent"),
        http_method=request.method,
    )
    update_webhook_log(log.id, status=WebhookLogStatus.PARSING.value)
    return log


def _close_log(log_id: str, result: ProcessingResult, started: float) -> int:
    elapsed = _elapsed_ms(started)
    update_webhook_log(
        log_id,
        status=WebhookLogStatus.STORED.value,
        result_call_id=result.call.id if result.call else None,
        processing_time_ms=elapsed,
        parsed_data=result.parsed.to_dict() if result.parsed else None,
        ai_parsing_used=result.ai_parsed,
        ai_confidence=result.parsed.confidence if result.parsed else None,
    )
    return elapsed


def _fail_log(log_id: str, exc: Exception, started: float) -> None:
    update_webhook_log(
        log_id,
        status=WebhookLogStatus.FAILED.value,
        error_message=str(exc) or exc.__class__.__name__,
        processing_time_ms=_elapsed_ms(started),
    )


def _process_logged(
    request: Request,
    endpoint: str,
    source: str,
    payload: Any,
    label: str,
    started: float,
    process: Callable[[str], ProcessingResult],
) -> Tuple[ProcessingResult, int]:
    """Open a webhook log, run ``process(log_id)`` and close the log.

    Blocking (store writes, GoTo lookups, AI parsing), so receivers call it
    through ``run_in_threadpool``.
    """
    log = _open_log(request, endpoint, source, payload)
    try:
        result = process(log.id)
    except Exception as exc:
        logger.error("Error processing %s: %s", label, exc)
        _fail_log(log.id, exc, started)
        raise HTTPException(status_code=500, detail=f"Internal server error: {exc}")
    return result, _close_log(log.id, result, started)


def _json_object(body: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    return data


# =============================================================================
# GoTo Connect
# =============================================================================

@router.post("/goto")
async def goto_webhook(request: Request) -> dict:
    """Receive GoTo Connect call events and call report summaries."""
    _check_rate_limit(request)
    started = time.perf_counter()
    body = await request.body()

    secret = get_settings().goto_webhook_secret
    if secret:
        verification = verify_hmac_signature(body, request.headers.get("x-webhook-signature"), secret)
        if not verification.valid:
            logger.warning("GoTo webhook signature rejected: %s", verification.error)
            raise HTTPException(status_code=401, detail="Invalid signature")

    data = _json_object(body)
    notification = goto_hooks.parse_notification(data)
    logger.info(
        "GoTo webhook received: source=%s type=%s id=%s",
        notification.source, notification.event_type, notification.event_id,
    )
    if notification.event_id in goto_processed:
        logger.info("Duplicate GoTo webhook %s ignored", notification.event_id)
        return _duplicate_response()

    result, elapsed = await run_in_threadpool(
        _process_logged,
        request,
        goto_hooks.ENDPOINT,
        goto_hooks.SOURCE,
        data,
        f"GoTo webhook {notification.event_id}",
        started,
        partial(goto_hooks.process_notification, notification),
    )
    goto_processed.add(notification.event_id)
    return {
        "success": True,
        "message": "GoTo Connect webhook processed successfully",
        "recordId": result.call.id if result.call else None,
        "eventId": notification.event_id,
        "eventType": notification.event_type,
        "processingTimeMs": elapsed,
    }


@router.get("/goto")
def goto_webhook_health() -> dict:
    return _health(
        goto_hooks.ENDPOINT,
        "GoTo Connect webhook endpoint for receiving call events and reports",
        "Configure this URL as your GoTo Connect webhook notification channel",
    )


# =============================================================================
# VAPI
# =============================================================================

@router.post("/vapi")
async def vapi_webhook(request: Request) -> dict:
    """Receive VAPI end-of-call reports and answer agent function calls."""
    _check_rate_limit(request)
    started = time.perf_counter()
    data = _json_object(await request.body())

    if vapi_hooks.is_function_call(data):
        call_data = vapi_hooks.function_call_data(data)
        logger.info("VAPI function call: %s", call_data.get("name"))
        result = await run_in_threadpool(handle_function_call, call_data.get("name"), call_data.get("parameters"))
        return {"result": result}

    call_id = vapi_hooks.extract_call_id(data)
    if call_id in vapi_processed:
        logger.info("Duplicate VAPI webhook %s ignored", call_id)
        return _duplicate_response()

    result, _ = await run_in_threadpool(
        _process_logged,
        request,
        vapi_hooks.ENDPOINT,
        vapi_hooks.SOURCE,
        data,
        f"VAPI webhook {call_id}",
        started,
        partial(vapi_hooks.process_end_of_call, data, call_id),
    )
    vapi_processed.add(call_id)
    return {
        "success": True,
        "message": "VAPI webhook processed successfully",
        "recordId": result.call.id if result.call else None,
        "callId": call_id,
        "aiParsed": result.ai_parsed,
        "summary": result.call.summary if result.call else None,
    }


@router.get("/vapi")
def vapi_webhook_health() -> dict:
    return _health(
        vapi_hooks.ENDPOINT,
        "VAPI webhook endpoint for receiving call data",
        "Configure this URL as your VAPI assistant's Server URL",
    )


# =============================================================================
# Generic calls / forms
# =============================================================================

@router.post("/calls")
async def calls_webhook(request: Request) -> dict:
    """Receive any call or form payload and let the AI parser classify it."""
    _check_rate_limit(request)
    started = time.perf_counter()
    body = await request.body()

    signature = (
        request.headers.get("x-webhook-signature")
        or request.headers.get("x-signature")
        or request.headers.get("authorization")
    )
    verification = verify_call_webhook_signature(body, signature)
    if not verification.valid:
        logger.warning("Call webhook signature rejected: %s", verification.error)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        data = {"raw": text}
    if not isinstance(data, dict):
        data = {"raw": text}

    envelope = calls_hooks.parse_envelope(data)
    if envelope.has_timestamp and not is_timestamp_valid(envelope.timestamp):
        raise HTTPException(status_code=400, detail="Webhook timestamp expired")

    key = generate_idempotency_key(envelope.event_id, envelope.timestamp)
    if key in calls_processed:
        logger.info("Duplicate call webhook %s ignored", key)
        return _duplicate_response()

    if not data:
        raise HTTPException(status_code=400, detail="Empty payload")

    quick_source = detect_source_type(data)
    logger.info("Call webhook received: event=%s detected=%s", envelope.event_id, quick_source)

    result, _ = await run_in_threadpool(
        _process_logged,
        request,
        calls_hooks.ENDPOINT,
        calls_hooks.SOURCE,
        data,
        f"call webhook {envelope.event_id}",
        started,
        partial(calls_hooks.process_call_payload, data, envelope.event_id),
    )
    calls_processed.add(key)
    return {
        "success": True,
        "message": "Webhook processed successfully",
        "recordId": result.call.id if result.call else None,
        "source": result.parsed.source if result.parsed else quick_source,
        "aiParsed": result.ai_parsed,
        "analysis": result.parsed.analysis.to_dict() if result.parsed else None,
    }


@router.get("/calls")
def calls_webhook_verify(
    challenge: Optional[str] = Query(None),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Echo a verification challenge, or report endpoint health."""
    token = challenge or hub_challenge
    if token:
        return PlainTextResponse(token)
    return _health(
        calls_hooks.ENDPOINT,
        "AI phone agent and web form webhook endpoint",
        "POST any JSON payload; it is classified automatically",
    )


# =============================================================================
# SMS (Twilio)
# =============================================================================

async def _twilio_form(request: Request) -> Dict[str, str]:
    """Read the form body and reject it unless the Twilio signature checks out."""
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    settings = get_settings()
    url = f"{settings.app_url}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    verification = verify_twilio_signature(
        url, params, request.headers.get("x-twilio-signature"), settings.twilio_auth_token
    )
    if not verification.valid:
        logger.warning("Twilio webhook signature rejected: %s", verification.error)
        raise HTTPException(status_code=403, detail="Invalid signature")
    return params


def _process_sms(request: Request, params: Dict[str, str], started: float) -> sms_hooks.SmsResult:
    log = _open_log(request, sms_hooks.ENDPOINT, sms_hooks.SOURCE, params)
    try:
        result = sms_hooks.process_inbound(sms_hooks.parse_inbound(params))
    except Exception as exc:
        logger.error("Error processing inbound SMS: %s", exc)
        _fail_log(log.id, exc, started)
        return sms_hooks.SmsResult("failed")

    update_webhook_log(
        log.id,
        status=WebhookLogStatus.STORED.value,
        processing_time_ms=_elapsed_ms(started),
        parsed_data=result.to_dict(),
    )
    return result


@router.post("/sms")
async def sms_webhook(request: Request) -> Response:
    """Receive an inbound SMS and answer with TwiML. Processing errors still get
    an empty TwiML reply so Twilio does not retry."""
    _check_rate_limit(request)
    started = time.perf_counter()
    params = await _twilio_form(request)

    message_sid = params.get("MessageSid")
    if message_sid and message_sid in sms_processed:
        logger.info("Duplicate SMS webhook %s ignored", message_sid)
        return Response(sms_hooks.twiml(None), media_type="text/xml")

    result = await run_in_threadpool(_process_sms, request, params, started)
    if message_sid and result.action != "failed":
        sms_processed.add(message_sid)
    return Response(sms_hooks.twiml(result.reply), media_type="text/xml")


@router.put("/sms")
@router.post("/sms/status")
async def sms_status_callback(request: Request):
    """Apply a Twilio delivery receipt to the stored message."""
    params = await _twilio_form(request)
    message_sid = params.get("MessageSid")
    if not message_sid:
        return JSONResponse(status_code=400, content={"error": "MessageSid required"})

    updated = await run_in_threadpool(
        update_message_status,
        message_sid,
        params.get("MessageStatus"),
        error_code=params.get("ErrorCode"),
        error_message=params.get("ErrorMessage"),
    )
    return {"success": True, "updated": updated}


@router.get("/sms")
def sms_webhook_health() -> dict:
    return _health(
        sms_hooks.ENDPOINT,
        "Twilio inbound SMS webhook endpoint",
        "Configure this URL as your Twilio number's messaging webhook",
    )


# =============================================================================
# Monitor
# =============================================================================

@router.get("/monitor")
def webhook_monitor(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    status: Optional[str] = Query(None),
    endpoint: Optional[str] = Query(None),
    user: ApiUser = Depends(require_permission("view:audit-logs")),
) -> dict:
    """Recent webhook logs with paging and aggregate stats."""
    limit = min(limit, 100)
    logs, total = list_webhook_logs(status=status, endpoint=endpoint, limit=limit, offset=offset)
    return {
        "success": True,
        "data": {
            "logs": [log.to_api_dict() for log in logs],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "hasMore": offset + len(logs) < total,
            },
            "stats": webhook_log_stats(),
        },
    }


@router.post("/monitor")
def webhook_monitor_detail(
    body: Optional[Dict[str, Any]] = Body(None),
    user: ApiUser = Depends(require_permission("view:audit-logs")),
) -> dict:
    """One webhook log plus the call it produced."""
    log_id = (body or {}).get("id")
    if not log_id:
        raise HTTPException(status_code=400, detail="Webhook log ID is required")

    log = get_webhook_log(str(log_id))
    if not log:
        raise HTTPException(status_code=404, detail="Webhook log not found")

    call = get_call(log.result_call_id) if log.result_call_id else None
    return {
        "success": True,
        "data": {
            "log": log.to_api_dict(),
            "call": call.to_api_dict() if call else None,
        },
    }
