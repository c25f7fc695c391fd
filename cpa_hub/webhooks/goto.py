"""GoTo Connect webhook processing.

Notifications arrive in two flavours:
- ``call-events-report`` / ``REPORT_SUMMARY``: a finished call; the full
  report, recording and transcript are fetched from GoTo.
- ``call-events``: real-time STARTING / ACTIVE / ENDING events; only
  ENDING produces a call record.
Anything else is handed to the AI parser and stored only if it looks
like a phone call.
"""
from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..calls import create_call
from ..integrations import goto as goto_client
from ..logs.activity import log_activity
from .processing import ProcessingResult, first_present, parse_if_available

logger = logging.getLogger(__name__)

ENDPOINT = "/api/webhooks/goto"
SOURCE = "goto"


@dataclass(slots=True)
class GoToNotification:
    data: Dict[str, Any]
    envelope: Dict[str, Any]
    source: Optional[str]
    event_type: Optional[str]
    content: Dict[str, Any]
    event_id: str


def _generated_event_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"goto-{int(time.time() * 1000)}-{suffix}"


def parse_notification(data: Dict[str, Any]) -> GoToNotification:
    """Unwrap the ``data.data`` envelope and work out the event id."""
    notification = data.get("data") if isinstance(data.get("data"), dict) else data
    content = notification.get("content") if isinstance(notification.get("content"), dict) else {}
    event_id = first_present(
        content.get("conversationSpaceId"),
        content.get("callId"),
        data.get("id"),
    ) or _generated_event_id()
    return GoToNotification(
        data=data,
        envelope=notification,
        source=notification.get("source"),
        event_type=notification.get("type"),
        content=content,
        event_id=str(event_id),
    )


def _parse_time(value: Optional[str]) -> datetime:
    """Parse a GoTo timestamp as UTC; missing or malformed values become now."""
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable GoTo timestamp %r", value)
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _log_call_activity(direction: str, call_id: str, description: str, details: Dict[str, Any]) -> None:
    log_activity(
        action="call_received" if direction == "inbound" else "call_made",
        resource_type="call",
        resource_id=call_id,
        description=description,
        details=details,
    )


# =============================================================================
# Processors
# =============================================================================

def process_call_report(content: Dict[str, Any], webhook_log_id: Optional[str]) -> ProcessingResult:
    conversation_space_id = content.get("conversationSpaceId")
    if not conversation_space_id:
        raise ValueError("Missing conversationSpaceId in call report notification")

    try:
        report = goto_client.get_call_report(conversation_space_id)
    except Exception as exc:
        logger.error("Failed to fetch GoTo call report %s: %s", conversation_space_id, exc)
        now = datetime.now(timezone.utc).isoformat()
        report = {
            "conversationSpaceId": conversation_space_id,
            "callCreated": now,
            "callEnded": now,
            "direction": "INBOUND",
            "accountKey": "",
            "participants": [],
        }

    elapsed = _parse_time(report.get("callEnded")) - _parse_time(report.get("callCreated"))
    duration = max(0, round(elapsed.total_seconds()))
    direction = "outbound" if report.get("direction") == "OUTBOUND" else "inbound"

    recording_url = None
    transcript = None
    if content.get("recordingId"):
        try:
            recording_url = goto_client.get_recording_url(content["recordingId"])
        except Exception as exc:
            logger.error("Failed to get GoTo recording URL: %s", exc)
    if content.get("transcriptId"):
        try:
            transcript = goto_client.get_transcription(content["transcriptId"]).get("text")
        except Exception as exc:
            logger.error("Failed to get GoTo transcription: %s", exc)

    parsed = parse_if_available({
        "source": "goto_connect",
        "type": "call_report",
        "report": report,
        "transcript": transcript,
    })

    participants = report.get("participants") or []
    caller = next((p for p in participants if p.get("originator")), None)
    caller_phone = caller.get("id") if caller else None

    call = create_call(
        f"goto-{conversation_space_id}",
        caller_phone=first_present(parsed and parsed.contact.phone, caller_phone),
        caller_name=parsed.contact.display_name if parsed else None,
        direction=direction,
        duration=duration,
        transcription=transcript,
        summary=(parsed.analysis.summary if parsed else None) or f"GoTo Connect call - {duration}s",
        intent=parsed.analysis.category if parsed else None,
        sentiment=parsed.analysis.sentiment if parsed else None,
        recording_url=recording_url,
        metadata={
            "sourceProvider": SOURCE,
            "gotoConversationSpaceId": conversation_space_id,
            "gotoAccountKey": report.get("accountKey"),
            "participants": participants,
            "analysis": parsed.analysis.to_dict() if parsed else None,
            "confidence": parsed.confidence if parsed else None,
            "aiParsed": parsed is not None,
            "webhookLogId": webhook_log_id,
        },
    )

    label = "Inbound" if direction == "inbound" else "Outbound"
    from_part = f" from {caller_phone}" if caller_phone else ""
    _log_call_activity(direction, call.id, f"{label} GoTo Connect call{from_part} - {duration}s", {
        "gotoConversationSpaceId": conversation_space_id,
        "category": parsed.analysis.category if parsed else None,
        "urgency": parsed.analysis.urgency if parsed else None,
        "webhookLogId": webhook_log_id,
    })
    return ProcessingResult(call=call, parsed=parsed)


def process_call_event(
    event_type: str,
    content: Dict[str, Any],
    notification: Dict[str, Any],
    webhook_log_id: Optional[str],
) -> ProcessingResult:
    if event_type != "ENDING":
        logger.info("GoTo %s event received - logging only", event_type)
        log_activity(
            action="call_received" if event_type == "STARTING" else "webhook_received",
            resource_type="call",
            description=f"GoTo Connect call {event_type.lower()}",
            details={"eventType": event_type, "content": content, "webhookLogId": webhook_log_id},
        )
        return ProcessingResult()

    conversation_space_id = content.get("conversationSpaceId")
    state = content.get("state") or notification.get("state") or {}
    metadata = content.get("metadata") or notification.get("metadata") or {}

    direction = "outbound" if str(state.get("direction") or "").lower() == "outbound" else "inbound"
    caller_phone = first_present(state.get("originator"), metadata.get("callerNumber"))

    parsed = parse_if_available({
        "source": "goto_connect",
        "type": "call_ending",
        "eventType": event_type,
        "content": content,
        "fullData": notification,
    })

    provider_id = conversation_space_id or str(int(time.time() * 1000))
    call = create_call(
        f"goto-{provider_id}",
        caller_phone=first_present(parsed and parsed.contact.phone, caller_phone),
        caller_name=parsed.contact.display_name if parsed else None,
        direction=direction,
        duration=parsed.call.duration if parsed and parsed.call else None,
        summary=(parsed.analysis.summary if parsed else None) or "GoTo Connect call ended",
        intent=parsed.analysis.category if parsed else None,
        sentiment=parsed.analysis.sentiment if parsed else None,
        metadata={
            "sourceProvider": SOURCE,
            "eventType": event_type,
            "gotoConversationSpaceId": conversation_space_id,
            "analysis": parsed.analysis.to_dict() if parsed else None,
            "confidence": parsed.confidence if parsed else None,
            "aiParsed": parsed is not None,
            "webhookLogId": webhook_log_id,
        },
    )

    label = "Inbound" if direction == "inbound" else "Outbound"
    from_part = f" from {caller_phone}" if caller_phone else ""
    _log_call_activity(direction, call.id, f"{label} GoTo Connect call ended{from_part}", {
        "gotoConversationSpaceId": conversation_space_id,
        "eventType": event_type,
        "webhookLogId": webhook_log_id,
    })
    return ProcessingResult(call=call, parsed=parsed)


def process_unknown_event(data: Dict[str, Any], webhook_log_id: Optional[str]) -> ProcessingResult:
    parsed = parse_if_available({"source": "goto_connect", "type": "unknown", "data": data})
    if parsed is None or parsed.source != "phone_call":
        logger.info("Unknown GoTo event does not look like a phone call")
        return ProcessingResult(parsed=parsed)

    parsed_call = parsed.call
    call = create_call(
        f"goto-unknown-{int(time.time() * 1000)}",
        caller_phone=parsed.contact.phone,
        caller_name=parsed.contact.display_name,
        direction=(parsed_call.direction if parsed_call else None) or "inbound",
        duration=parsed_call.duration if parsed_call else None,
        transcription=parsed_call.transcript if parsed_call else None,
        summary=parsed.analysis.summary or "GoTo Connect call",
        intent=parsed.analysis.category,
        sentiment=parsed.analysis.sentiment,
        recording_url=parsed_call.recording_url if parsed_call else None,
        metadata={
            "sourceProvider": SOURCE,
            "eventType": "unknown",
            "analysis": parsed.analysis.to_dict(),
            "confidence": parsed.confidence,
            "aiParsed": True,
            "webhookLogId": webhook_log_id,
        },
    )
    return ProcessingResult(call=call, parsed=parsed)


def process_notification(notification: GoToNotification, webhook_log_id: Optional[str]) -> ProcessingResult:
    """Route a GoTo notification to the matching processor."""
    if notification.source == "call-events-report" and notification.event_type == "REPORT_SUMMARY":
        return process_call_report(notification.content, webhook_log_id)
    if notification.source == "call-events":
        return process_call_event(
            notification.event_type or "UNKNOWN",
            notification.content,
            notification.envelope,
            webhook_log_id,
        )
    return process_unknown_event(notification.data, webhook_log_id)
