"""SMS package - Twilio conversations, messages and auto-responders."""
from __future__ import annotations

from .store import (
    SmsSettings,
    find_conversation,
    get_sms_settings,
    update_message_status,
)

__all__ = [
    "SmsSettings",
    "find_conversation",
    "get_sms_settings",
    "update_message_status",
]
