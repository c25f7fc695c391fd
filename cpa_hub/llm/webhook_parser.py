"""AI webhook parser.

Uses Claude to parse any incoming webhook payload (phone call reports,
VAPI transcripts, web form submissions, ...) into structured contact,
call/form and analysis data. Parsing never raises: failures produce a
minimal result flagged for manual review.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from anthropic import Anthropic

from .anthropic_client import (
    AnthropicError,
    build_anthropic_client,
    create_message,
    extract_response_text,
    is_ai_available,
    parse_json_response,
    resolve_config,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

WEBHOOK_SOURCES = ["phone_call", "web_form", "email", "sms", "chat", "unknown"]

ANALYSIS_CATEGORIES = [
    "new_client_inquiry",
    "existing_client_question",
    "document_request",
    "appointment_scheduling",
    "payment_inquiry",
    "tax_question",
    "status_check",
    "complaint",
    "urgent_matter",
    "follow_up",
    "general_inquiry",
    "spam",
    "other",
]

PARSING_PROMPT = """You parse webhook payloads for a CPA/accounting firm's office management system.
Incoming JSON may be a phone call report or transcript, a web form submission, an email, or something else.

For VAPI phone calls, data can be nested (message.call, message.customer, message.artifact) or flat
(call, customer, artifact). The transcript is usually in artifact.transcript or can be rebuilt from
artifact.messages. The caller number is usually customer.number. Duration is call.duration (seconds)
or the difference between startedAt and endedAt.

When a transcript is present, read it and summarize who called, what they wanted, what was discussed,
and any action items.

Return a JSON object with this structure:
{
  "source": "phone_call" | "web_form" | "email" | "sms" | "chat" | "unknown",
  "sourceProvider": "vapi, goto_connect, twilio, typeform, jotform, custom, ...",
  "contact": {"name": "", "firstName": "", "lastName": "", "phone": "E.164", "email": "", "company": ""},
  "call": {"direction": "inbound" | "outbound", "duration": seconds, "transcript": "", "summary": "",
           "recordingUrl": "", "startedAt": "ISO", "endedAt": "ISO"},
  "form": {"formName": "", "submittedAt": "ISO", "fields": {}},
  "analysis": {
    "category": "%(categories)s",
    "sentiment": "positive" | "neutral" | "negative" | "unknown",
    "urgency": "low" | "medium" | "high" | "urgent",
    "summary": "2-3 specific sentences",
    "keyPoints": [],
    "suggestedActions": [],
    "clientMatch": {"possibleMatch": true/false, "searchTerms": []}
  },
  "confidence": 0.0-1.0
}

Only include "call" for phone calls and "form" for web forms. Omit fields without data.
Common inquiries are about taxes, documents, deadlines and appointments.
Return ONLY valid JSON, no explanations or markdown.""" % {"categories": " | ".join(ANALYSIS_CATEGORIES)}


# =============================================================================
# Result Dataclasses
# =============================================================================

@dataclass(slots=True)
class ParsedContact:
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        if self.name:
            return self.name
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or None


@dataclass(slots=True)
class ParsedCall:
    direction: Optional[str] = None
    duration: Optional[int] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    recording_url: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None


@dataclass(slots=True)
class ParsedForm:
    form_name: Optional[str] = None
    submitted_at: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ParsedAnalysis:
    category: str = "other"
    sentiment: str = "unknown"
    urgency: str = "medium"
    summary: str = "Unable to generate summary"
    key_points: List[str] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    client_match: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "sentiment": self.sentiment,
            "urgency": self.urgency,
            "summary": self.summary,
            "keyPoints": list(self.key_points),
            "suggestedActions": list(self.suggested_actions),
            "clientMatch": self.client_match,
        }


@dataclass(slots=True)
class ParsedWebhookData:
    source: str
    contact: ParsedContact
    analysis: ParsedAnalysis
    raw_payload: Dict[str, Any]
    parsed_at: str
    confidence: float
    source_provider: Optional[str] = None
    call: Optional[ParsedCall] = None
    form: Optional[ParsedForm] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form stored on webhook logs (camelCase)."""
        return {
            "source": self.source,
            "sourceProvider": self.source_provider,
            "contact": {
                "name": self.contact.name,
                "firstName": self.contact.first_name,
                "lastName": self.contact.last_name,
                "phone": self.contact.phone,
                "email": self.contact.email,
                "company": self.contact.company,
            },
            "call": None if self.call is None else {
                "direction": self.call.direction,
                "duration": self.call.duration,
                "transcript": self.call.transcript,
                "summary": self.call.summary,
                "recordingUrl": self.call.recording_url,
                "startedAt": self.call.started_at,
                "endedAt": self.call.ended_at,
            },
            "form": None if self.form is None else {
                "formName": self.form.form_name,
                "submittedAt": self.form.submitted_at,
                "fields": dict(self.form.fields),
            },
            "analysis": self.analysis.to_dict(),
            "parsedAt": self.parsed_at,
            "confidence": self.confidence,
        }


# =============================================================================
# Public API
# =============================================================================

def is_ai_parsing_available() -> bool:
    return is_ai_available()


def parse_webhook_with_ai(
    raw_payload: Dict[str, Any],
    *,
    client: Optional[Anthropic] = None,
) -> ParsedWebhookData:
    """Parse a webhook payload with Claude.

    Never raises; on any failure returns a zero-confidence result.
    """
    try:
        if client is None:
            client = build_anthropic_client()
        config = resolve_config(max_output_tokens=2000, temperature=0.2)
        prompt = "Here is the webhook payload to parse:\n\n" + json.dumps(
            raw_payload, indent=2, default=str
        )
        response = create_message(client, config, system=PARSING_PROMPT, prompt=prompt)
        data = parse_json_response(extract_response_text(response))
        if not isinstance(data, dict):
            raise AnthropicError("Webhook parser returned a non-object response.")
        return _build_parsed_result(data, raw_payload)
    except Exception as exc:
        logger.error("Error parsing webhook with AI: %s", exc)
        return _create_fallback_result(raw_payload)


def detect_source_type(payload: Dict[str, Any]) -> str:
    """Quick keyword-based source detection without calling the model."""
    text = json.dumps(payload, default=str).lower()

    if (
        "transcript" in text
        or "recording" in text
        or "call_sid" in text
        or "callid" in text
        or ("duration" in text and "phone" in text)
    ):
        return "phone_call"

    if any(marker in text for marker in ("form_id", "formid", "submission", "typeform", "jotform", "webform")):
        return "web_form"

    if "subject" in text and "body" in text and ("from" in text or "sender" in text):
        return "email"

    if (
        "sms" in text
        or "messagingsid" in text
        or ("body" in text and "from" in text and "subject" not in text)
    ):
        return "sms"

    return "unknown"


# =============================================================================
# Result builders
# =============================================================================

def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def _build_parsed_result(data: Dict[str, Any], raw_payload: Dict[str, Any]) -> ParsedWebhookData:
    contact_data = data.get("contact") or {}
    analysis_data = data.get("analysis") or {}
    call_data = data.get("call")
    form_data = data.get("form")

    call = None
    if isinstance(call_data, dict):
        call = ParsedCall(
            direction=call_data.get("direction"),
            duration=_int_or_none(call_data.get("duration")),
            transcript=call_data.get("transcript"),
            summary=call_data.get("summary"),
            recording_url=call_data.get("recordingUrl"),
            started_at=call_data.get("startedAt"),
            ended_at=call_data.get("endedAt"),
        )

    form = None
    if isinstance(form_data, dict):
        form = ParsedForm(
            form_name=form_data.get("formName"),
            submitted_at=form_data.get("submittedAt"),
            fields=dict(form_data.get("fields") or {}),
        )

    source = data.get("source") or "unknown"
    if source not in WEBHOOK_SOURCES:
        source = "unknown"

    return ParsedWebhookData(
        source=source,
        source_provider=data.get("sourceProvider"),
        contact=ParsedContact(
            name=contact_data.get("name"),
            first_name=contact_data.get("firstName"),
            last_name=contact_data.get("lastName"),
            phone=contact_data.get("phone"),
            email=contact_data.get("email"),
            company=contact_data.get("company"),
        ),
        call=call,
        form=form,
        analysis=ParsedAnalysis(
            category=analysis_data.get("category") or "other",
            sentiment=analysis_data.get("sentiment") or "unknown",
            urgency=analysis_data.get("urgency") or "medium",
            summary=analysis_data.get("summary") or "Unable to generate summary",
            key_points=list(analysis_data.get("keyPoints") or []),
            suggested_actions=list(analysis_data.get("suggestedActions") or []),
            client_match=analysis_data.get("clientMatch"),
        ),
        raw_payload=raw_payload,
        parsed_at=datetime.now(timezone.utc).isoformat(),
        confidence=float(data.get("confidence") or 0.5),
    )


def _create_fallback_result(raw_payload: Dict[str, Any]) -> ParsedWebhookData:
    return ParsedWebhookData(
        source="unknown",
        contact=ParsedContact(),
        analysis=ParsedAnalysis(
            summary="Failed to parse webhook payload",
            suggested_actions=["Manual review required"],
        ),
        raw_payload=raw_payload,
        parsed_at=datetime.now(timezone.utc).isoformat(),
        confidence=0.0,
    )
