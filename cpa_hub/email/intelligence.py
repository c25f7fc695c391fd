"""Email intelligence inbox: AI classifications awaiting review.

Classifications live in ``email_classifications`` and their action items
in ``email_action_items``. Approving an email turns its pending action
items into tasks; dismissing or completing it closes them without tasks.
"""
from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..clients import get_client
from ..clients.matcher import match_email_to_client, save_client_match
from ..documents import DocumentStore, new_id
from ..integrations.microsoft import (
    GraphError,
    get_message,
    get_valid_access_token,
    list_connections,
    list_inbox_messages,
)
from ..tasks import MAX_DESCRIPTION_LENGTH, MAX_TITLE_LENGTH, Task, TaskSource, TaskStatus, create_task
from .ai_classifier import AIClassificationResult, classify_email_with_ai, priority_from_score
from .assignment import AssignmentEmail, AssignmentResult, determine_assignment, record_user_action
from .rule_classifier import EmailInput
from .sync import MailboxSyncService
from .task_extractor import ExtractedTask, extract_tasks_from_email

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CLASSIFICATIONS_COLLECTION = "email_classifications"
ACTION_ITEMS_COLLECTION = "email_action_items"

INBOX_FETCH_SIZE = 20

# Action item priority -> task priority
TASK_PRIORITY_MAP = {
    "urgent": "high",
    "high": "high",
    "medium": "medium",
    "low": "low",
}


class ClassificationNotFound(RuntimeError):
    """Raised when a classification id does not exist."""


class NoEmailConnection(RuntimeError):
    """Raised when the user has no connected mailbox."""


def _classifications() -> DocumentStore:
    return DocumentStore(CLASSIFICATIONS_COLLECTION)


def _action_items() -> DocumentStore:
    return DocumentStore(ACTION_ITEMS_COLLECTION)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Graph message helpers
# =============================================================================

def _email_address(value: Optional[Dict[str, Any]]) -> Tuple[str, str]:
    address = (value or {}).get("emailAddress") or {}
    return address.get("address") or "", address.get("name") or ""


def email_input_from_graph(message: Dict[str, Any]) -> EmailInput:
    sender_email, sender_name = _email_address(message.get("from"))
    return EmailInput(
        sender_email=sender_email,
        sender_name=sender_name or "Unknown",
        subject=message.get("subject") or "(No Subject)",
        body=(message.get("body") or {}).get("content") or message.get("bodyPreview") or "",
        body_preview=message.get("bodyPreview") or "",
        to=[_email_address(r)[0] for r in message.get("toRecipients") or []],
        received_at=message.get("receivedDateTime"),
        has_attachments=bool(message.get("hasAttachments")),
    )


# =============================================================================
# Storage
# =============================================================================

def store_classification(
    email_message_id: str,
    email: EmailInput,
    result: AIClassificationResult,
    *,
    user_id: Optional[str] = None,
    account_id: Optional[str] = None,
    assignment: Optional[AssignmentResult] = None,
    client_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Persist a classification and its action items (status pending)."""
    entities = result.extracted_entities
    suggested = result.suggested_assignment or {}
    record = {
        "email_message_id": email_message_id,
        "user_id": user_id,
        "account_id": account_id,
        "sender_name": email.sender_name,
        "sender_email": email.sender_email,
        "subject": email.subject,
        "has_attachments": email.has_attachments,
        "received_at": email.received_at,
        "status": "pending",
        "category": result.category,
        "subcategory": result.subcategory,
        "is_business_relevant": result.is_business_relevant,
        "priority_score": result.priority_score,
        "priority_factors": dict(result.priority_factors),
        "sentiment": result.sentiment,
        "urgency": result.urgency,
        "requires_response": result.requires_response,
        "response_deadline": result.response_deadline,
        "summary": result.summary,
        "key_points": list(result.key_points),
        "extracted_dates": entities.get("dates", []),
        "extracted_amounts": entities.get("amounts", []),
        "extracted_document_types": entities.get("documentTypes", []),
        "extracted_names": entities.get("names", []),
        "client_id": client_id,
        "suggested_assignee_id": assignment.assigned_user_id if assignment else None,
        "suggested_column": assignment.assigned_column if assignment else suggested.get("suggestedColumn"),
        "assignment_reason": assignment.assignment_reason if assignment else suggested.get("reason"),
        "tags": list(assignment.tags) if assignment else [],
        "draft_response": (result.draft_response or {}).get("body"),
        "model_used": result.model_used,
        "confidence": result.confidence,
        "processing_time_ms": result.processing_time_ms,
        "tokens_used": result.tokens_used,
        "created_at": _now(),
        "updated_at": _now(),
    }
    saved = _classifications().save(new_id(), record)

    items = _action_items()
    for item in result.action_items:
        items.save(new_id(), {
            "email_message_id": email_message_id,
            "classification_id": saved["id"],
            "title": item.title,
            "description": item.description,
            "action_type": item.type,
            "mentioned_date": item.due_date,
            "priority": item.priority,
            "confidence": item.confidence,
            "status": "pending",
            "created_task_id": None,
            "completed_at": None,
            "created_at": _now(),
        })
    return saved


def get_classification(classification_id: str) -> Dict[str, Any]:
    record = _classifications().get(classification_id)
    if record is None:
        raise ClassificationNotFound("Classification not found")
    return record


def is_classified(email_message_id: str) -> bool:
    return _classifications().find_one(email_message_id=email_message_id) is not None


def _action_item_to_api(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": item["id"],
        "title": item.get("title"),
        "description": item.get("description"),
        "type": item.get("action_type"),
        "dueDate": item.get("mentioned_date"),
        "priority": item.get("priority"),
        "confidence": item.get("confidence"),
        "status": item.get("status"),
        "createdTaskId": item.get("created_task_id"),
    }


def to_intelligence(record: Dict[str, Any], action_items: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Convert a stored classification to the inbox API shape (camelCase)."""
    score = int(record.get("priority_score") or 0)
    return {
        "id": record["id"],
        "emailId": record.get("email_message_id"),
        "accountId": record.get("account_id"),
        "from": {
            "name": record.get("sender_name") or "Unknown",
            "email": record.get("sender_email") or "",
        },
        "subject": record.get("subject") or "(No Subject)",
        "hasAttachments": bool(record.get("has_attachments")),
        "receivedAt": record.get("received_at"),
        "category": record.get("category"),
        "subcategory": record.get("subcategory"),
        "isBusinessRelevant": record.get("is_business_relevant"),
        "priorityScore": score,
        "priority": priority_from_score(score),
        "sentiment": record.get("sentiment"),
        "urgency": record.get("urgency"),
        "requiresResponse": record.get("requires_response"),
        "responseDeadline": record.get("response_deadline"),
        "summary": record.get("summary"),
        "keyPoints": record.get("key_points") or [],
        "extractedDates": record.get("extracted_dates") or [],
        "extractedAmounts": record.get("extracted_amounts") or [],
        "extractedDocumentTypes": record.get("extracted_document_types") or [],
        "extractedNames": record.get("extracted_names") or [],
        "clientId": record.get("client_id"),
        "suggestedAssigneeId": record.get("suggested_assignee_id"),
        "suggestedColumn": record.get("suggested_column"),
        "assignmentReason": record.get("assignment_reason"),
        "tags": record.get("tags") or [],
        "draftResponse": record.get("draft_response"),
        "confidence": record.get("confidence"),
        "status": record.get("status") or "pending",
        "processedAt": record.get("created_at"),
        "actionItems": [_action_item_to_api(i) for i in action_items],
    }


def list_intelligence(
    *,
    status: str = "pending",
    category: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Classifications newest first (by received_at), with their action items."""
    records = _classifications().list()
    if status and status != "all":
        records = [r for r in records if (r.get("status") or "pending") == status]
    if category and category != "all":
        records = [r for r in records if r.get("category") == category]

    # Missing received_at sorts last
    records.sort(key=lambda r: r.get("received_at") or "", reverse=True)
    page = records[offset:offset + limit]

    wanted = {r.get("email_message_id") for r in page}
    by_email: Dict[str, List[Dict[str, Any]]] = {}
    for item in _action_items().list():
        if item.get("email_message_id") in wanted:
            by_email.setdefault(item["email_message_id"], []).append(item)

    return [to_intelligence(r, by_email.get(r.get("email_message_id"), [])) for r in page]


# =============================================================================
# Review Actions
# =============================================================================

def _due_date(value: Any) -> Optional[date]:
    """Parse an AI-suggested due date, ignoring values that are not ISO dates."""
    try:
        return date.fromisoformat(str(value)[:10]) if value else None
    except ValueError:
        return None


def _pending_items(classification: Dict[str, Any]) -> List[Dict[str, Any]]:
    return _action_items().find(
        email_message_id=classification.get("email_message_id"), status="pending"
    )


def _log_review(user_id: str, classification: Dict[str, Any], action_type: str, **value: Any) -> None:
    score = int(classification.get("priority_score") or 0)
    record_user_action(
        user_id,
        classification.get("email_message_id") or "",
        sender_email=classification.get("sender_email") or "",
        subject=classification.get("subject") or "",
        category=classification.get("category") or "other",
        priority="high" if score >= 60 else "medium",
        action_type=action_type,
        action_value=json.dumps(value) if value else None,
    )


def approve_classification(classification_id: str, user_id: str) -> List[Task]:
    """Create a task per pending action item and mark the items approved.

    Raises:
        ClassificationNotFound: for an unknown id.
    """
    classification = get_classification(classification_id)
    items = _action_items()
    created: List[Task] = []

    for item in _pending_items(classification):
        description = item.get("description") or f"Created from email: {classification.get('summary')}"
        task = create_task(
            (item.get("title") or "Follow up on email")[:MAX_TITLE_LENGTH],
            created_by=user_id,
            description=description[:MAX_DESCRIPTION_LENGTH],
            status=TaskStatus.TODO.value,
            priority=TASK_PRIORITY_MAP.get(item.get("priority") or "", "medium"),
            due_date=_due_date(item.get("mentioned_date")),
            client_id=classification.get("client_id"),
            assigned_to=classification.get("suggested_assignee_id") or user_id,
            source=TaskSource.EMAIL_INTELLIGENCE.value,
            source_id=classification.get("email_message_id"),
            metadata={
                "source": TaskSource.EMAIL_INTELLIGENCE.value,
                "email_message_id": classification.get("email_message_id"),
                "classification_id": classification["id"],
                "action_item_id": item["id"],
            },
        )
        created.append(task)
        items.update(item["id"], {
            "status": "approved",
            "created_task_id": task.id,
            "completed_at": _now(),
        })

    _classifications().update(classification["id"], {"status": "approved", "updated_at": _now()})
    _log_review(user_id, classification, "approve", created_tasks=len(created))
    logger.info("Approved classification %s: %s task(s)", classification_id, len(created))
    return created


def _close_classification(
    classification_id: str, user_id: str, *, item_status: str, status: str, action_type: str
) -> int:
    classification = get_classification(classification_id)
    items = _action_items()
    pending = _pending_items(classification)
    for item in pending:
        items.update(item["id"], {"status": item_status, "completed_at": _now()})

    _classifications().update(classification["id"], {"status": status, "updated_at": _now()})
    _log_review(user_id, classification, action_type)
    return len(pending)


def dismiss_classification(classification_id: str, user_id: str) -> int:
    """Dismiss pending action items. Returns how many were dismissed."""
    return _close_classification(
        classification_id, user_id, item_status="dismissed", status="dismissed", action_type="dismiss"
    )


def complete_classification(classification_id: str, user_id: str) -> int:
    """Mark the email handled; pending action items become skipped."""
    return _close_classification(
        classification_id, user_id, item_status="skipped", status="completed", action_type="complete"
    )


# =============================================================================
# Inbox Sync
# =============================================================================

def process_message(
    message: Dict[str, Any],
    *,
    user_id: str,
    account_id: Optional[str],
    classify: Callable[[EmailInput], AIClassificationResult] = classify_email_with_ai,
) -> Dict[str, Any]:
    """Classify one Graph message, match it to a client and pick an assignee."""
    email = email_input_from_graph(message)
    result = classify(email)

    entities = result.extracted_entities
    match = match_email_to_client(
        email.sender_email,
        email.sender_name,
        extracted_names=[n.get("name", "") if isinstance(n, dict) else str(n) for n in entities.get("names", [])],
        extracted_phones=[str(p) for p in entities.get("phoneNumbers", [])],
        extracted_companies=[str(c) for c in entities.get("companies", [])],
    )
    client_id = match.primary_match.client_id if match.primary_match else None
    client = get_client(client_id) if client_id else None
    if match.primary_match:
        save_client_match(message["id"], match)

    assignment = determine_assignment(AssignmentEmail(
        sender_email=email.sender_email,
        subject=email.subject,
        classification=result,
        body=email.body,
        has_attachments=email.has_attachments,
        client_matched=client is not None,
        matched_client_assignee=client.assigned_user if client else None,
    ))

    return store_classification(
        message["id"],
        email,
        result,
        user_id=user_id,
        account_id=account_id,
        assignment=assignment,
        client_id=client_id,
    )


def sync_inbox(
    user_id: str,
    *,
    classify: Callable[[EmailInput], AIClassificationResult] = classify_email_with_ai,
) -> Tuple[int, int]:
    """Classify new inbox messages for every Microsoft connection of a user.

    Each mailbox is mirrored into the email store first; a failed mirror
    does not stop classification.

    Returns (processed, failed).

    Raises:
        NoEmailConnection: if the user has no connected mailbox.
    """
    connections = list_connections(user_id)
    if not connections:
        raise NoEmailConnection("No email accounts connected")

    processed = failed = 0
    for connection in connections:
        access_token = get_valid_access_token(connection)
        if not access_token:
            logger.error("Skipping connection %s: token refresh failed", connection.get("id"))
            continue

        try:
            MailboxSyncService(user_id, connection["id"], access_token).sync()
        except Exception as exc:
            logger.error("Mailbox sync failed for connection %s: %s", connection.get("id"), exc)

        try:
            messages = list_inbox_messages(access_token, top=INBOX_FETCH_SIZE)
        except GraphError as exc:
            logger.error("Failed to fetch inbox for connection %s: %s", connection.get("id"), exc)
            continue

        for message in messages:
            if not message.get("id") or is_classified(message["id"]):
                continue
            try:
                process_message(message, user_id=user_id, account_id=connection.get("id"), classify=classify)
                processed += 1
            except Exception as exc:
                logger.error("Error processing email %s: %s", message.get("id"), exc)
                failed += 1

    return processed, failed


def extract_tasks_for_message(user_id: str, message_id: str) -> Tuple[Dict[str, Any], List[ExtractedTask]]:
    """Fetch a message from the user's mailbox and extract task suggestions.

    Raises:
        NoEmailConnection: if no mailbox is connected or its token is unusable.
        GraphError: if the message cannot be fetched.
        AnthropicError: if task extraction fails.
    """
    connections = list_connections(user_id)
    access_token = get_valid_access_token(connections[0]) if connections else None
    if not access_token:
        raise NoEmailConnection("No email accounts connected")

    message = get_message(access_token, message_id)
    sender_email, sender_name = _email_address(message.get("from"))
    body = message.get("body") or {}
    tasks = extract_tasks_from_email(
        f"{sender_name} <{sender_email}>" if sender_name else sender_email,
        message.get("subject") or "",
        body.get("content") or message.get("bodyPreview") or "",
        body.get("contentType") or "text",
    )
    return message, tasks
