"""VAPI webhook processing.

End-of-call reports become call records. Function-call messages are
answered synchronously by ``cpa_hub.vapi.functions``.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from ..calls import create_call
from ..logs.activity import log_activity
from .processing import ProcessingResult, first_present, parse_if_available

logger = logging.getLogger(__name__)

ENDPOINT = "/api/webhooks/vapi"
SOURCE = "vapi"

FUNCTION_CALL_TYPES = ("function-call", "function.call")


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def message_type(data: Dict[str, Any]) -> Optional[str]:
    return _dict(data.get("message")).get("type") or data.get("type")


def is_function_call(data: Dict[str, Any]) -> bool:
    return message_type(data) in FUNCTION_CALL_TYPES


def function_call_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """The ``{name, parameters}`` block, wherever VAPI put it."""
    message = _dict(data.get("message"))
    return _dict(message.get("functionCall")) or _dict(data.get("functionCall"))


def extract_call_id(data: Dict[str, Any]) -> str:
    message = _dict(data.get("message"))
    return str(first_present(
        _dict(message.get("call")).get("id"),
        _dict(data.get("call")).get("id"),
        data.get("callId"),
    ) or f"vapi-{int(time.time() * 1000)}")


def _duration_from_times(call: Dict[str, Any]) -> Optional[int]:
    started, ended = call.get("startedAt"), call.get("endedAt")
    if not started or not ended:
        return None
    try:
        start = datetime.fromisoformat(str(started).replace("Z", "+00:00"))
        end = datetime.fromisoformat(str(ended).replace("Z", "+00:00"))
    except ValueError:
        return None
    return round((end - start).total_seconds())


def process_end_of_call(data: Dict[str, Any], call_id: str, webhook_log_id: Optional[str]) -> ProcessingResult:
    """Store a call from a VAPI report, preferring AI-parsed values over raw fields."""
    message = _dict(data.get("message"))
    vapi_call = _dict(message.get("call")) or _dict(data.get("call")) or data
    customer = _dict(message.get("customer")) or _dict(data.get("customer"))
    artifact = _dict(message.get("artifact")) or _dict(data.get("artifact"))
    msg_type = message_type(data)

    parsed = parse_if_available(data)
    parsed_call = parsed.call if parsed else None

    caller_phone = first_present(
        parsed and parsed.contact.phone,
        customer.get("number"),
        _dict(vapi_call.get("customer")).get("number"),
    )
    caller_name = first_present(parsed and parsed.contact.display_name, customer.get("name"))
    transcript = first_present(
        parsed_call and parsed_call.transcript,
        artifact.get("transcript"),
        vapi_call.get("transcript"),
    )
    recording_url = first_present(
        parsed_call and parsed_call.recording_url,
        artifact.get("recordingUrl"),
        vapi_call.get("recordingUrl"),
    )
    duration = first_present(
        parsed_call and parsed_call.duration,
        vapi_call.get("duration"),
        _duration_from_times(vapi_call),
    )
    summary = first_present(
        parsed and parsed.analysis.summary,
        parsed_call and parsed_call.summary,
        artifact.get("summary"),
        vapi_call.get("summary"),
    ) or "Call completed"
    direction = first_present(parsed_call and parsed_call.direction, vapi_call.get("direction")) or "inbound"

    call = create_call(
        call_id,
        caller_phone=caller_phone,
        caller_name=caller_name,
        direction=direction,
        duration=int(duration) if duration is not None else None,
        transcription=transcript if isinstance(transcript, str) else None,
        summary=summary,
        intent=first_present(parsed and parsed.analysis.category, msg_type),
        sentiment=parsed.analysis.sentiment if parsed else None,
        recording_url=recording_url,
        metadata={
            "vapiMessageType": msg_type,
            "sourceProvider": SOURCE,
            "analysis": parsed.analysis.to_dict() if parsed else None,
            "confidence": parsed.confidence if parsed else None,
            "aiParsed": parsed is not None,
            "webhookLogId": webhook_log_id,
        },
    )

    label = "Inbound" if direction == "inbound" else "Outbound"
    from_part = f" from {caller_phone}" if caller_phone else ""
    log_activity(
        action="call_received" if direction == "inbound" else "call_made",
        resource_type="call",
        resource_id=call.id,
        resource_name=caller_name,
        description=f"{label} VAPI call{from_part} - {summary}",
        details={
            "vapiCallId": call_id,
            "category": parsed.analysis.category if parsed else None,
            "urgency": parsed.analysis.urgency if parsed else None,
            "webhookLogId": webhook_log_id,
        },
    )
    return ProcessingResult(call=call, parsed=parsed)
