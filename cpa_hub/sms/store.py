"""SMS conversations, messages and messaging settings.

Collections:
- ``sms_conversations``: one per phone number, optionally tied to a client
- ``sms_messages``: inbound and outbound messages (``twilio_sid`` for Twilio's id)
- ``sms_opt_out_log``: STOP / START keyword history
- ``sms_settings``: a single ``default`` document
- ``sms_auto_responders``: keyword and after-hours replies
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from ..clients import Client
from ..documents import DocumentStore, new_id

CONVERSATIONS_COLLECTION = "sms_conversations"
MESSAGES_COLLECTION = "sms_messages"
OPT_OUT_LOG_COLLECTION = "sms_opt_out_log"
SETTINGS_COLLECTION = "sms_settings"
AUTO_RESPONDERS_COLLECTION = "sms_auto_responders"
SETTINGS_ID = "default"

PREVIEW_LENGTH = 100


@dataclass(slots=True)
class SmsSettings:
    opt_out_keywords: List[str] = field(default_factory=lambda: ["STOP", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"])
    opt_in_keywords: List[str] = field(default_factory=lambda: ["START", "YES", "UNSTOP"])
    auto_opt_out_reply: str = "You have been unsubscribed. Reply START to resubscribe."
    business_hours_start: str = "09:00"
    business_hours_end: str = "17:00"
    # 0 = Sunday
    business_days: List[int] = field(default_factory=lambda: [1, 2, 3, 4, 5])
    time_zone: str = "America/Chicago"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SmsSettings":
        settings = cls()
        for item in fields(cls):
            if data.get(item.name):
                setattr(settings, item.name, data[item.name])
        return settings

    def is_business_hours(self, at: datetime) -> bool:
        at = at.astimezone(ZoneInfo(self.time_zone))
        minutes = at.hour * 60 + at.minute
        day = (at.weekday() + 1) % 7
        return (
            day in self.business_days
            and _minutes(self.business_hours_start) <= minutes <= _minutes(self.business_hours_end)
        )


def _minutes(clock: str) -> int:
    hours, _, mins = clock.partition(":")
    return int(hours) * 60 + int(mins or 0)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_sms_settings() -> SmsSettings:
    return SmsSettings.from_dict(DocumentStore(SETTINGS_COLLECTION).get(SETTINGS_ID) or {})


# =============================================================================
# Conversations
# =============================================================================

def _conversations() -> DocumentStore:
    return DocumentStore(CONVERSATIONS_COLLECTION)


def find_conversation(phone_number: str) -> Optional[Dict[str, Any]]:
    return _conversations().find_one(phone_number=phone_number)


def create_conversation(phone_number: str, client: Client) -> Dict[str, Any]:
    now = _now()
    return _conversations().save(new_id(), {
        "phone_number": phone_number,
        "client_id": client.id,
        "client_name": client.display_name,
        "is_opted_in": True,
        "unread_count": 0,
        "last_message_at": None,
        "last_message_preview": None,
        "created_at": now,
        "updated_at": now,
    })


def touch_conversation(conversation: Dict[str, Any], body: str) -> Optional[Dict[str, Any]]:
    return _conversations().update(conversation["id"], {
        "last_message_at": _now(),
        "last_message_preview": body[:PREVIEW_LENGTH],
        "unread_count": int(conversation.get("unread_count") or 0) + 1,
        "updated_at": _now(),
    })


def set_opt_in(phone_number: str, conversation: Optional[Dict[str, Any]], opted_in: bool) -> None:
    """Flip the conversation's opt-in flag and record the keyword in the log."""
    now = _now()
    if conversation:
        stamp = "opted_in_at" if opted_in else "opted_out_at"
        _conversations().update(conversation["id"], {"is_opted_in": opted_in, stamp: now, "updated_at": now})
    DocumentStore(OPT_OUT_LOG_COLLECTION).save(new_id(), {
        "phone_number": phone_number,
        "client_id": conversation.get("client_id") if conversation else None,
        "action": "opt_in" if opted_in else "opt_out",
        "method": "sms_keyword",
        "created_at": now,
    })


# =============================================================================
# Messages
# =============================================================================

def _messages() -> DocumentStore:
    return DocumentStore(MESSAGES_COLLECTION)


def save_message(
    conversation: Dict[str, Any],
    *,
    direction: str,
    from_number: str,
    to_number: str,
    body: str,
    status: str,
    twilio_sid: Optional[str] = None,
    media_urls: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return _messages().save(new_id(), {
        "conversation_id": conversation["id"],
        "client_id": conversation.get("client_id"),
        "direction": direction,
        "from_number": from_number,
        "to_number": to_number,
        "body": body,
        "media_urls": media_urls or None,
        "status": status,
        "twilio_sid": twilio_sid,
        "sent_at": _now(),
        "metadata": metadata or {},
    })


def update_message_status(
    twilio_sid: str,
    status: Optional[str],
    *,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
) -> int:
    """Apply a delivery receipt to every message with this Twilio id."""
    updates: Dict[str, Any] = {"status": status}
    if status == "delivered":
        updates["delivered_at"] = _now()
    if error_code:
        updates["error_code"] = error_code
        updates["error_message"] = error_message

    store = _messages()
    matched = store.find(twilio_sid=twilio_sid)
    for message in matched:
        store.update(message["id"], updates)
    return len(matched)


# =============================================================================
# Auto-responders
# =============================================================================

def pick_auto_response(body: str, settings: SmsSettings, at: datetime) -> Optional[str]:
    """First active responder (highest priority first) that fires for this message.

    ``after_hours`` fires outside business hours; ``keyword`` fires when any
    trigger keyword appears in the message.
    """
    store = DocumentStore(AUTO_RESPONDERS_COLLECTION)
    responders = store.find(is_active=True)
    responders.sort(key=lambda r: r.get("priority") or 0, reverse=True)

    text = body.upper()
    after_hours = not settings.is_business_hours(at)
    for responder in responders:
        trigger = responder.get("trigger_type")
        if trigger == "after_hours" and after_hours:
            return responder.get("response_body")
        if trigger == "keyword" and any(
            kw.upper() in text for kw in responder.get("trigger_keywords") or []
        ):
            store.update(responder["id"], {"use_count": int(responder.get("use_count") or 0) + 1})
            return responder.get("response_body")
    return None
