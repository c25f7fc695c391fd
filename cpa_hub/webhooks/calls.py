"""Generic call / web-form webhook processing.

Accepts any JSON payload (phone providers, form builders, other
integrations) and lets the AI parser decide what it is. Without an AI
key the payload is only logged.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from ..calls import create_call
from ..llm.webhook_parser import ParsedWebhookData
from ..logs.activity import log_activity
from .processing import ProcessingResult, first_present, parse_if_available

logger = logging.getLogger(__name__)

ENDPOINT = "/api/webhooks/calls"
SOURCE = "calls"


@dataclass(slots=True)
class CallEnvelope:
    event_id: str
    timestamp: Union[str, int, float]
    has_timestamp: bool


def parse_envelope(data: Dict[str, Any]) -> CallEnvelope:
    event_id = first_present(data.get("event_id"), data.get("id"), data.get("callId"))
    timestamp = first_present(data.get("timestamp"), data.get("created_at"))
    return CallEnvelope(
        event_id=str(event_id) if event_id is not None else f"auto-{int(time.time() * 1000)}",
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        has_timestamp=data.get("timestamp") not in (None, ""),
    )


def _store_phone_call(data: Dict[str, Any], event_id: str, parsed: ParsedWebhookData, webhook_log_id: Optional[str]):
    parsed_call = parsed.call
    direction = parsed_call.direction or "inbound"
    call = create_call(
        str(first_present(data.get("call_id"), data.get("callId"), data.get("id"), event_id)),
        caller_phone=parsed.contact.phone,
        caller_name=parsed.contact.display_name,
        direction=direction,
        duration=parsed_call.duration,
        transcription=parsed_call.transcript,
        summary=first_present(parsed.analysis.summary, parsed_call.summary),
        intent=parsed.analysis.category,
        sentiment=parsed.analysis.sentiment,
        recording_url=parsed_call.recording_url,
        metadata={
            "sourceProvider": parsed.source_provider,
            "analysis": parsed.analysis.to_dict(),
            "parsedAt": parsed.parsed_at,
            "confidence": parsed.confidence,
            "webhookLogId": webhook_log_id,
        },
    )
    label = "Inbound" if direction == "inbound" else "Outbound"
    log_activity(
        action="call_received" if direction == "inbound" else "call_made",
        resource_type="call",
        resource_id=call.id,
        resource_name=parsed.contact.display_name,
        description=f"{label} call from {parsed.contact.phone or 'unknown'} - {parsed.analysis.summary}",
        details={"category": parsed.analysis.category, "urgency": parsed.analysis.urgency},
    )
    return call


def _store_form(event_id: str, parsed: ParsedWebhookData, webhook_log_id: Optional[str]):
    form = parsed.form
    call = create_call(
        f"form-{event_id}",
        caller_phone=parsed.contact.phone,
        caller_name=parsed.contact.display_name,
        direction="inbound",
        duration=0,
        transcription=json.dumps(form.fields, indent=2, default=str),
        summary=parsed.analysis.summary or f"Web form submission: {form.form_name or 'Unknown form'}",
        intent=parsed.analysis.category or "web_form",
        sentiment=parsed.analysis.sentiment,
        metadata={
            "source": "web_form",
            "formName": form.form_name,
            "formFields": dict(form.fields),
            "sourceProvider": parsed.source_provider,
            "analysis": parsed.analysis.to_dict(),
            "parsedAt": parsed.parsed_at,
            "confidence": parsed.confidence,
            "webhookLogId": webhook_log_id,
        },
    )
    who = parsed.contact.display_name or parsed.contact.email or "unknown"
    log_activity(
        action="form_submission",
        resource_type="call",
        resource_id=call.id,
        resource_name=who,
        description=f"Web form submission from {who} - {parsed.analysis.summary}",
        details={"formName": form.form_name, "category": parsed.analysis.category, "urgency": parsed.analysis.urgency},
    )
    return call


def _store_other(event_id: str, parsed: ParsedWebhookData, webhook_log_id: Optional[str]):
    call = create_call(
        f"unknown-{event_id}",
        caller_phone=parsed.contact.phone,
        caller_name=parsed.contact.name,
        direction="inbound",
        summary=parsed.analysis.summary or "Unknown webhook source",
        intent=parsed.analysis.category or "other",
        sentiment=parsed.analysis.sentiment,
        metadata={
            "source": parsed.source,
            "sourceProvider": parsed.source_provider,
            "analysis": parsed.analysis.to_dict(),
            "parsedAt": parsed.parsed_at,
            "confidence": parsed.confidence,
            "webhookLogId": webhook_log_id,
        },
    )
    log_activity(
        action="webhook_received",
        resource_type="call",
        resource_id=call.id,
        description=f"Webhook received from {parsed.source_provider or 'unknown source'} - {parsed.analysis.summary}",
        details={"source": parsed.source, "category": parsed.analysis.category},
    )
    return call


def process_call_payload(data: Dict[str, Any], event_id: str, webhook_log_id: Optional[str]) -> ProcessingResult:
    """Parse the payload with AI and store it according to the detected source."""
    parsed = parse_if_available(data)
    if parsed is None:
        logger.warning("ANTHROPIC_API_KEY not configured, skipping AI parsing")
        return ProcessingResult()

    if parsed.source == "phone_call" and parsed.call is not None:
        call = _store_phone_call(data, event_id, parsed, webhook_log_id)
    elif parsed.source == "web_form" and parsed.form is not None:
        call = _store_form(event_id, parsed, webhook_log_id)
    else:
        call = _store_other(event_id, parsed, webhook_log_id)
    return ProcessingResult(call=call, parsed=parsed)
