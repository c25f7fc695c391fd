"""AI email classification for the email intelligence inbox.

Produces a priority score, action items, extracted entities, client match
hints and an optional draft reply for each email in a single Claude call.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from anthropic import Anthropic

from ..llm.anthropic_client import (
    AnthropicError,
    build_anthropic_client,
    create_message,
    extract_response_text,
    parse_json_response,
    resolve_config,
    response_token_count,
)
from .rule_classifier import EmailClassification, EmailInput

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

EMAIL_CATEGORIES = [
    "document_request",
    "question",
    "payment",
    "appointment",
    "tax_filing",
    "compliance",
    "follow_up",
    "information",
    "urgent",
    "internal",
    "spam",
    "other",
]

ACTION_TYPES = ["response", "document", "calendar", "task", "call", "review"]

PRIORITY_FACTOR_KEYS = [
    "urgencyKeywords",
    "senderImportance",
    "deadlineMentioned",
    "clientMatch",
    "responseRequired",
    "amountMentioned",
]

EMAIL_CLASSIFICATION_PROMPT = """You are an assistant for a CPA/accounting firm's email management system.
Analyze the email and return a single JSON object.

BUSINESS CONTEXT:
- Services: tax preparation, tax planning, bookkeeping, payroll, business consulting, IRS representation, audit support
- Typical mail: document submissions (W-2, 1099, K-1), tax questions, payment inquiries, appointment scheduling

CATEGORIES: document_request, question, payment, appointment, tax_filing, compliance, follow_up,
information, urgent, internal, spam, other

GUIDELINES:
1. Extract every action item, and be specific ("Review W-2" rather than "Review document")
2. Detect deadlines such as "by Friday", "ASAP", "before April 15"
3. Extract monetary amounts, document types, names, phone numbers and companies
4. Suggest a draft response when the email clearly needs a reply

PRIORITY SCORING (0-100), base 50:
- Urgent keywords ("urgent", "asap", "immediately", "emergency"): +20
- Deadline mentioned: +15
- IRS/government related (IRS, audit, notice): +15
- Specific dollar amount: +10
- Appears to be an existing client: +10
- Question mark present: +5
- FYI / no action needed: -20

JSON structure:
{
  "category": "", "subcategory": null, "isBusinessRelevant": true,
  "priorityScore": 0-100,
  "priorityFactors": {"urgencyKeywords": 0-20, "senderImportance": 0-10, "deadlineMentioned": 0-15,
                      "clientMatch": 0-10, "responseRequired": 0-10, "amountMentioned": 0-10},
  "sentiment": "positive" | "neutral" | "negative",
  "urgency": "low" | "medium" | "high" | "urgent",
  "requiresResponse": true, "responseDeadline": "ISO date or null",
  "summary": "2-3 sentences", "keyPoints": [],
  "actionItems": [{"title": "", "description": "", "type": "response" | "document" | "calendar" | "task" | "call" | "review",
                   "priority": "low" | "medium" | "high" | "urgent", "dueDate": "ISO date or null", "confidence": 0-1}],
  "primaryAction": "most important action or null",
  "extractedEntities": {"dates": [{"value": "", "context": ""}], "amounts": [{"value": 0, "context": "", "currency": "USD"}],
                        "documentTypes": [], "names": [{"name": "", "role": ""}], "phoneNumbers": [], "companies": []},
  "clientMatchSuggestions": {"searchTerms": [], "possibleMatch": false, "matchReason": ""},
  "suggestedAssignment": {"reason": "", "suggestedColumn": "pending" | "in_progress" | "waiting" | null, "suggestedTags": []},
  "draftResponse": {"subject": "", "body": "", "tone": "formal" | "friendly" | "urgent"} or null,
  "confidence": 0-1
}

Return ONLY valid JSON, no additional text or markdown."""


# =============================================================================
# Result Dataclasses
# =============================================================================

@dataclass(slots=True)
class ActionItem:
    id: str
    title: str
    description: str = ""
    type: str = "task"
    priority: str = "medium"
    due_date: Optional[str] = None
    confidence: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "dueDate": self.due_date,
            "confidence": self.confidence,
        }


@dataclass(slots=True)
class AIClassificationResult:
    category: str = "other"
    subcategory: Optional[str] = None
    is_business_relevant: bool = True
    priority_score: int = 50
    priority_factors: Dict[str, int] = field(
        default_factory=lambda: {key: 0 for key in PRIORITY_FACTOR_KEYS}
    )
    sentiment: str = "neutral"
    urgency: str = "medium"
    requires_response: bool = True
    response_deadline: Optional[str] = None
    summary: str = "Email received"
    key_points: List[str] = field(default_factory=list)
    action_items: List[ActionItem] = field(default_factory=list)
    primary_action: Optional[str] = None
    extracted_entities: Dict[str, List[Any]] = field(default_factory=lambda: {
        "dates": [],
        "amounts": [],
        "documentTypes": [],
        "names": [],
        "phoneNumbers": [],
        "companies": [],
    })
    client_match_suggestions: Dict[str, Any] = field(
        default_factory=lambda: {"searchTerms": [], "possibleMatch": False}
    )
    suggested_assignment: Optional[Dict[str, Any]] = None
    draft_response: Optional[Dict[str, Any]] = None
    confidence: float = 0.5
    processing_time_ms: Optional[int] = None
    tokens_used: Optional[int] = None
    model_used: str = ""


# =============================================================================
# Public API
# =============================================================================

def priority_from_score(score: int) -> str:
    """Map a 0-100 priority score to low/medium/high/urgent."""
    if score >= 80:
        return "urgent"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def format_email_for_prompt(email: EmailInput) -> str:
    recipients = ", ".join(email.to) if email.to else "unknown"
    return "\n".join([
        f"FROM: {email.sender_name or 'Unknown'} <{email.sender_email or 'unknown@example.com'}>",
        f"TO: {recipients}",
        f"SUBJECT: {email.subject or '(no subject)'}",
        f"DATE: {email.received_at or 'unknown'}",
        f"HAS ATTACHMENTS: {'Yes' if email.has_attachments else 'No'}",
        "",
        "BODY:",
        email.body or email.body_preview or "(no content)",
    ])


def classify_email_with_ai(
    email: EmailInput,
    *,
    client: Optional[Anthropic] = None,
) -> AIClassificationResult:
    """Classify an email with Claude.

    Never raises; failures return a fallback asking for manual review.
    """
    started = time.monotonic()
    config = resolve_config()

    try:
        if client is None:
            client = build_anthropic_client()
        response = create_message(
            client,
            config,
            system=EMAIL_CLASSIFICATION_PROMPT,
            prompt=f"Analyze this email:\n\n{format_email_for_prompt(email)}",
        )
        data = parse_json_response(extract_response_text(response))
        if not isinstance(data, dict):
            raise AnthropicError("Classifier returned a non-object response.")
    except Exception as exc:
        logger.error("AI email classification failed: %s", exc)
        return _create_fallback_result(email, started)

    result = _build_classification_result(data)
    result.processing_time_ms = int((time.monotonic() - started) * 1000)
    result.tokens_used = response_token_count(response)
    result.model_used = config.model
    return result


def convert_to_email_classification(result: AIClassificationResult) -> EmailClassification:
    """Reduce an AI result to the inbox classification shape."""
    if result.urgency == "urgent":
        suggested_action = "respond_immediately"
    elif result.category == "document_request":
        suggested_action = "request_documents"
    elif result.category == "appointment":
        suggested_action = "schedule_call"
    elif not result.requires_response:
        suggested_action = "archive"
    elif result.category == "spam":
        suggested_action = "mark_as_spam"
    else:
        suggested_action = "respond_today"

    if result.urgency == "urgent":
        response_urgency = "immediate"
    elif result.urgency == "high":
        response_urgency = "today"
    else:
        response_urgency = "this_week"

    return EmailClassification(
        category=result.category,
        priority=priority_from_score(result.priority_score),
        confidence=result.confidence,
        suggested_action=suggested_action,
        summary=result.summary,
        key_points=list(result.key_points),
        sentiment=result.sentiment,
        topics=[t for t in (result.category, result.subcategory) if t],
        requires_response=result.requires_response,
        response_urgency=response_urgency,
    )


# =============================================================================
# Result builders
# =============================================================================

def _build_classification_result(data: Dict[str, Any]) -> AIClassificationResult:
    stamp = int(time.time() * 1000)
    action_items = [
        ActionItem(
            id=f"action-{stamp}-{index}",
            title=str(item.get("title") or "Untitled action"),
            description=str(item.get("description") or ""),
            type=item.get("type") if item.get("type") in ACTION_TYPES else "task",
            priority=str(item.get("priority") or "medium"),
            due_date=item.get("dueDate"),
            confidence=float(item.get("confidence") or 0.5),
        )
        for index, item in enumerate(data.get("actionItems") or [])
        if isinstance(item, dict)
    ]

    defaults = AIClassificationResult()
    entities = dict(defaults.extracted_entities)
    entities.update({k: v for k, v in (data.get("extractedEntities") or {}).items() if v is not None})

    factors = dict(defaults.priority_factors)
    factors.update(data.get("priorityFactors") or {})

    category = data.get("category") or "other"
    if category not in EMAIL_CATEGORIES:
        category = "other"

    score = data.get("priorityScore")
    score = 50 if score is None else max(0, min(100, int(score)))

    return AIClassificationResult(
        category=category,
        subcategory=data.get("subcategory"),
        is_business_relevant=data.get("isBusinessRelevant", True) is not False,
        priority_score=score,
        priority_factors=factors,
        sentiment=data.get("sentiment") or "neutral",
        urgency=data.get("urgency") or "medium",
        requires_response=data.get("requiresResponse", True) is not False,
        response_deadline=data.get("responseDeadline"),
        summary=data.get("summary") or "Email received",
        key_points=list(data.get("keyPoints") or []),
        action_items=action_items,
        primary_action=data.get("primaryAction"),
        extracted_entities=entities,
        client_match_suggestions=data.get("clientMatchSuggestions") or defaults.client_match_suggestions,
        suggested_assignment=data.get("suggestedAssignment"),
        draft_response=data.get("draftResponse"),
        confidence=float(data.get("confidence") or 0.5),
    )


def _create_fallback_result(email: EmailInput, started: float) -> AIClassificationResult:
    return AIClassificationResult(
        summary=f"Email from {email.sender_name or email.sender_email or 'unknown sender'}",
        action_items=[
            ActionItem(
                id=f"action-{int(time.time() * 1000)}-0",
                title="Review email",
                description="AI classification failed - manual review needed",
                type="review",
                priority="medium",
            )
        ],
        primary_action="Review email",
        confidence=0.0,
        processing_time_ms=int((time.monotonic() - started) * 1000),
        model_used="error",
    )
