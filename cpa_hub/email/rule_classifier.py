"""Rule-based email classification for a tax/accounting firm.

Filters out spam, newsletters and system notifications, scores business
relevance from tax/accounting keywords, then assigns a category, priority
and suggested action to relevant mail. Runs without any model calls.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


# =============================================================================
# Constants
# =============================================================================

BUSINESS_SERVICES = [
    "tax preparation",
    "tax planning",
    "bookkeeping",
    "payroll",
    "business consulting",
    "irs representation",
    "audit support",
    "financial statements",
    "quarterly estimates",
    "tax extensions",
]

RELEVANT_TOPICS = [
    # Tax
    "tax", "taxes", "irs", "1040", "1099", "w-2", "w2", "w-9", "w9",
    "schedule c", "schedule k", "k-1", "k1", "1065", "1120", "990",
    "tax return", "refund", "extension", "amendment", "audit",
    "deduction", "credit", "withholding", "estimated tax",
    # Accounting
    "invoice", "payment", "billing", "account", "balance",
    "bookkeeping", "financial", "statement", "profit", "loss",
    "expense", "receipt", "payroll", "quarterly",
    # Client communication
    "appointment", "meeting", "call", "schedule", "consultation",
    "question", "help", "document", "file", "send", "upload",
    # Business
    "client", "engagement", "service", "deadline", "due date",
]

_I = re.IGNORECASE

SPAM_SENDER_PATTERNS = [re.compile(p, _I) for p in [
    r"noreply@",
    r"no-reply@",
    r"donotreply@",
    r"newsletter@",
    r"marketing@",
    r"promo@",
    r"offers@",
    r"deals@",
    r"info@.*\.com$",
    r"hello@.*\.com$",
    r"support@(?!spencermcgaw|botmakers)",
]]

SPAM_SUBJECT_PATTERNS = [re.compile(p, _I) for p in [
    r"unsubscribe",
    r"\bsale\b",
    r"\boff\b.*%",
    r"limited time",
    r"act now",
    r"don't miss",
    r"exclusive offer",
    r"free trial",
    r"special offer",
    r"newsletter",
    r"weekly digest",
    r"daily digest",
    r"monthly update",
    r"\bpromo\b",
    r"discount",
    r"coupon",
    r"deal of",
    r"flash sale",
    r"black friday",
    r"cyber monday",
    r"holiday sale",
]]

SPAM_BODY_PATTERNS = [re.compile(p, _I) for p in [
    r"unsubscribe",
    r"opt.?out",
    r"email preferences",
    r"manage.*subscription",
    r"you.*subscribed",
    r"receiving this.*email",
    r"view.*browser",
    r"view this email online",
    r"trouble viewing",
    r"add us to your contacts",
    r"privacy policy",
    r"terms.*conditions",
]]

MARKETING_DOMAINS = [
    "mailchimp.com",
    "sendgrid.net",
    "constantcontact.com",
    "hubspot.com",
    "marketo.com",
    "salesforce.com",
    "mailgun.org",
    "sendpulse.com",
    "klaviyo.com",
    "drip.com",
    "convertkit.com",
    "aweber.com",
    "getresponse.com",
    "activecampaign.com",
    "campaignmonitor.com",
    "sendinblue.com",
    "linkedin.com",
    "twitter.com",
    "facebook.com",
    "instagram.com",
    "youtube.com",
]

NEWSLETTER_SUBJECT_PATTERNS = [re.compile(p, _I) for p in [
    r"newsletter",
    r"digest",
    r"weekly.*update",
    r"monthly.*update",
    r"roundup",
    r"this week in",
    r"weekly wrap",
    r"edition",
    r"issue #?\d+",
]]

NEWSLETTER_BODY_PATTERNS = [re.compile(p, _I) for p in [
    r"this week's",
    r"this month's",
    r"top stories",
    r"featured articles",
    r"read more",
    r"continue reading",
]]

NOTIFICATION_SENDER_PATTERNS = [re.compile(p, _I) for p in [
    r"notifications?@",
    r"alerts?@",
    r"updates?@",
    r"system@",
    r"automated@",
]]

NOTIFICATION_SUBJECT_PATTERNS = [re.compile(p, _I) for p in [
    r"notification",
    r"alert:",
    r"reminder:",
    r"automated",
    r"your.*order",
    r"shipping.*confirmation",
    r"delivery.*update",
    r"password.*reset",
    r"verify.*email",
    r"confirm.*email",
    r"security.*alert",
    r"login.*detected",
    r"new.*device",
]]

PERSONAL_EMAIL_PATTERNS = [re.compile(p, _I) for p in [
    r"@gmail\.com$",
    r"@yahoo\.com$",
    r"@outlook\.com$",
    r"@hotmail\.com$",
    r"@icloud\.com$",
    r"@aol\.com$",
]]

# Checked in order; first match wins
CATEGORY_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("urgent", re.compile(r"urgent|asap|immediately|emergency", _I)),
    ("document_request", re.compile(r"document|w-?2|1099|tax return|upload|attach|send.*file", _I)),
    ("question", re.compile(r"\?|question|wondering|can you|could you|how do|what is", _I)),
    ("payment", re.compile(r"payment|invoice|bill|pay|amount|balance due|owe", _I)),
    ("appointment", re.compile(r"appointment|schedule|meeting|call|available|calendar", _I)),
    ("tax_filing", re.compile(r"tax.*return|filing|irs|1040|extension|amendment", _I)),
    ("compliance", re.compile(r"deadline|compliance|regulation|due date|required", _I)),
    ("follow_up", re.compile(r"follow.?up|following up|checking in|status|update", _I)),
    ("information", re.compile(r"fyi|for your information|just letting|heads up", _I)),
]

CATEGORY_SUMMARIES = {
    "document_request": "Client document request - review and respond",
    "question": "Client question requiring response",
    "payment": "Payment or billing inquiry",
    "appointment": "Scheduling or meeting request",
    "tax_filing": "Tax filing or IRS related matter",
    "compliance": "Compliance deadline or requirement",
    "follow_up": "Follow-up on previous communication",
    "information": "Informational message",
    "urgent": "Urgent matter requiring immediate attention",
    "spam": "Filtered as non-business email",
    "internal": "Internal team communication",
    "other": "General client inquiry",
}

CATEGORY_ACTIONS = {
    "urgent": "respond_immediately",
    "document_request": "request_documents",
    "appointment": "schedule_call",
    "tax_filing": "create_task",
    "compliance": "create_task",
    "information": "archive",
}

RELEVANCE_THRESHOLD = 25


# =============================================================================
# Result Dataclasses
# =============================================================================

@dataclass(slots=True)
class EmailInput:
    """The parts of an email the classifiers look at."""

    sender_email: str = ""
    sender_name: Optional[str] = None
    subject: str = ""
    body: str = ""
    body_preview: Optional[str] = None
    to: List[str] = field(default_factory=list)
    received_at: Optional[str] = None
    has_attachments: bool = False

    @property
    def text(self) -> str:
        return self.body_preview or self.body or ""


@dataclass(slots=True)
class EmailClassification:
    category: str
    priority: str
    confidence: float
    suggested_action: str
    summary: str
    key_points: List[str]
    sentiment: str
    topics: List[str]
    requires_response: bool
    response_urgency: str
    classified_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "priority": self.priority,
            "confidence": self.confidence,
            "suggestedAction": self.suggested_action,
            "summary": self.summary,
            "keyPoints": list(self.key_points),
            "sentiment": self.sentiment,
            "topics": list(self.topics),
            "requiresResponse": self.requires_response,
            "responseUrgency": self.response_urgency,
            "classifiedAt": self.classified_at,
        }


@dataclass(slots=True)
class EmailClassificationResult:
    relevance: str  # relevant | spam | newsletter | notification | unknown
    is_business_relevant: bool
    confidence: float
    reasons: List[str]
    classification: EmailClassification


# =============================================================================
# Checks
# =============================================================================

def is_marketing_domain(email: str) -> bool:
    parts = (email or "").split("@")
    domain = parts[1].lower() if len(parts) > 1 else ""
    return any(d in domain for d in MARKETING_DOMAINS)


def check_spam_marketing(email: EmailInput) -> Tuple[bool, List[str]]:
    reasons: List[str] = []
    from_email = (email.sender_email or "").lower()
    subject = (email.subject or "").lower()
    body = email.text.lower()

    for pattern in SPAM_SENDER_PATTERNS:
        if pattern.search(from_email):
            reasons.append(f"Sender matches marketing pattern: {from_email}")

    if is_marketing_domain(from_email):
        reasons.append("Email from known marketing domain")

    if any(p.search(subject) for p in SPAM_SUBJECT_PATTERNS):
        reasons.append("Subject contains marketing indicator")

    body_matches = sum(1 for p in SPAM_BODY_PATTERNS if p.search(body))
    if body_matches >= 2:
        reasons.append(f"Body contains {body_matches} marketing indicators")

    return len(reasons) >= 2, reasons


def check_newsletter(email: EmailInput) -> Tuple[bool, List[str]]:
    reasons: List[str] = []
    subject = (email.subject or "").lower()
    body = email.text.lower()

    if any(p.search(subject) for p in NEWSLETTER_SUBJECT_PATTERNS):
        reasons.append("Subject indicates newsletter")

    if sum(1 for p in NEWSLETTER_BODY_PATTERNS if p.search(body)) >= 2:
        reasons.append("Body contains newsletter patterns")

    return len(reasons) >= 1, reasons


def check_notification(email: EmailInput) -> Tuple[bool, List[str]]:
    reasons: List[str] = []
    from_email = (email.sender_email or "").lower()
    subject = (email.subject or "").lower()

    if any(p.search(from_email) for p in NOTIFICATION_SENDER_PATTERNS):
        reasons.append("Sender is automated notification")
    if any(p.search(subject) for p in NOTIFICATION_SUBJECT_PATTERNS):
        reasons.append("Subject indicates system notification")

    return len(reasons) >= 1, reasons


def check_business_relevance(email: EmailInput) -> Tuple[bool, float, List[str]]:
    """Score tax/accounting relevance. Returns (is_relevant, confidence, reasons)."""
    reasons: List[str] = []
    subject = (email.subject or "").lower()
    from_email = (email.sender_email or "").lower()
    combined = f"{subject} {email.text.lower()}"

    score = 0
    matched: List[str] = []

    for topic in RELEVANT_TOPICS:
        if topic in combined:
            score += 10
            matched.append(topic)

    for service in BUSINESS_SERVICES:
        if service in combined:
            score += 15
            matched.append(service)

    if any(p.search(from_email) for p in PERSONAL_EMAIL_PATTERNS) and not is_marketing_domain(from_email):
        score += 20
        reasons.append("From personal email address (likely client)")

    if re.match(r"^(re:|fwd:|fw:)", email.subject or "", _I):
        score += 15
        reasons.append("Part of ongoing conversation")

    if "?" in combined or re.search(r"can you|could you|please|help|need", combined, _I):
        score += 10
        reasons.append("Contains question or request")

    if matched:
        reasons.append(f"Matches business topics: {', '.join(matched[:3])}")

    return score >= RELEVANCE_THRESHOLD, min(score / 100, 1.0), reasons


def determine_category(email: EmailInput) -> str:
    combined = f"{(email.subject or '').lower()} {email.text.lower()}"
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(combined):
            return category
    return "other"


# =============================================================================
# Public API
# =============================================================================

def classify_email(email: EmailInput) -> EmailClassificationResult:
    """Classify an email without calling a model."""

    is_spam, spam_reasons = check_spam_marketing(email)
    if is_spam:
        return EmailClassificationResult(
            relevance="spam",
            is_business_relevant=False,
            confidence=0.85,
            reasons=spam_reasons,
            classification=_rejected_classification("spam", spam_reasons),
        )

    is_newsletter, newsletter_reasons = check_newsletter(email)
    if is_newsletter:
        return EmailClassificationResult(
            relevance="newsletter",
            is_business_relevant=False,
            confidence=0.8,
            reasons=newsletter_reasons,
            classification=_rejected_classification("spam", newsletter_reasons),
        )

    is_notification, notification_reasons = check_notification(email)
    if is_notification:
        return EmailClassificationResult(
            relevance="notification",
            is_business_relevant=False,
            confidence=0.75,
            reasons=notification_reasons,
            classification=_rejected_classification("spam", notification_reasons),
        )

    is_relevant, confidence, reasons = check_business_relevance(email)
    if not is_relevant:
        return EmailClassificationResult(
            relevance="unknown",
            is_business_relevant=False,
            confidence=1 - confidence,
            reasons=["Email does not appear to be business-related", *reasons],
            classification=_rejected_classification("other", ["Not business relevant"]),
        )

    category = determine_category(email)
    return EmailClassificationResult(
        relevance="relevant",
        is_business_relevant=True,
        confidence=confidence,
        reasons=reasons,
        classification=_business_classification(email, category, confidence),
    )


def _rejected_classification(category: str, reasons: List[str]) -> EmailClassification:
    return EmailClassification(
        category=category,
        priority="low",
        confidence=0.9,
        suggested_action="archive",
        summary=reasons[0] if reasons else "Email filtered as non-business related",
        key_points=list(reasons),
        sentiment="neutral",
        topics=[],
        requires_response=False,
        response_urgency="whenever",
    )


def _business_classification(email: EmailInput, category: str, confidence: float) -> EmailClassification:
    combined = f"{(email.subject or '').lower()} {(email.body_preview or '').lower()}"

    if re.search(r"urgent|asap|immediately|emergency", combined, _I):
        priority = "urgent"
    elif re.search(r"important|deadline|due|required|irs", combined, _I):
        priority = "high"
    elif re.search(r"fyi|just letting|no rush|when you can", combined, _I):
        priority = "low"
    else:
        priority = "medium"

    if re.search(r"thank|appreciate|great|excellent|happy|pleased", combined, _I):
        sentiment = "positive"
    elif re.search(r"frustrated|unhappy|disappointed|angry|upset|problem|issue", combined, _I):
        sentiment = "negative"
    else:
        sentiment = "neutral"

    requires_response = category not in ("information", "spam")
    label = category.replace("_", " ")

    if priority == "urgent":
        response_urgency = "immediate"
    elif priority == "high":
        response_urgency = "today"
    else:
        response_urgency = "this_week"

    return EmailClassification(
        category=category,
        priority=priority,
        confidence=confidence,
        suggested_action=CATEGORY_ACTIONS.get(category, "respond_today"),
        summary=CATEGORY_SUMMARIES[category],
        key_points=[
            f"Category: {label}",
            f"Priority: {priority}",
            "Requires response" if requires_response else "No response needed",
        ],
        sentiment=sentiment,
        topics=[label],
        requires_response=requires_response,
        response_urgency=response_urgency,
    )
