"""Twilio inbound SMS processing.

An inbound message is one of:
- an opt-out or opt-in keyword (STOP, START, ...), answered with a confirmation
- a message from a known conversation, or from a client matched by phone
  (a conversation is opened for them), stored and possibly auto-answered
- a message from an unknown number, which is logged and dropped
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from twilio.twiml.messaging_response import MessagingResponse

from ..clients import find_client_by_phone
from ..logs.activity import log_activity
from ..preferences import get_company_settings
from ..sms import store as sms_store

logger = logging.getLogger(__name__)

ENDPOINT = "/api/webhooks/sms"
SOURCE = "sms"


@dataclass(slots=True)
class InboundSms:
    from_number: str
    to_number: str
    body: str
    message_sid: str
    media_urls: List[str] = field(default_factory=list)

    @property
    def keyword(self) -> str:
        return self.body.strip().upper()


@dataclass(slots=True)
class SmsResult:
    """Outcome of one inbound message; ``reply`` becomes the TwiML <Message>."""
    action: str
    reply: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "reply": self.reply,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
        }


def parse_inbound(form: Mapping[str, Any]) -> InboundSms:
    """Read Twilio's form fields (From, To, Body, MessageSid, NumMedia, MediaUrlN)."""
    try:
        num_media = int(form.get("NumMedia") or 0)
    except ValueError:
        num_media = 0
    media = [str(form[f"MediaUrl{i}"]) for i in range(num_media) if form.get(f"MediaUrl{i}")]
    return InboundSms(
        from_number=str(form.get("From") or ""),
        to_number=str(form.get("To") or ""),
        body=str(form.get("Body") or ""),
        message_sid=str(form.get("MessageSid") or ""),
        media_urls=media,
    )


def twiml(reply: Optional[str]) -> str:
    response = MessagingResponse()
    if reply:
        response.message(reply)
    return str(response)


def process_inbound(sms: InboundSms, *, now: Optional[datetime] = None) -> SmsResult:
    settings = sms_store.get_sms_settings()
    conversation = sms_store.find_conversation(sms.from_number)
    keywords = {k.upper() for k in settings.opt_out_keywords}

    if sms.keyword in keywords:
        sms_store.set_opt_in(sms.from_number, conversation, False)
        logger.info("SMS opt-out from %s", sms.from_number)
        return SmsResult("opt_out", settings.auto_opt_out_reply, conversation and conversation["id"])

    if sms.keyword in {k.upper() for k in settings.opt_in_keywords}:
        sms_store.set_opt_in(sms.from_number, conversation, True)
        company = get_company_settings()["companyName"]
        return SmsResult(
            "opt_in",
            f"You have been resubscribed to SMS messages from {company}.",
            conversation and conversation["id"],
        )

    if conversation is None:
        client = find_client_by_phone(sms.from_number)
        if client is None:
            logger.warning("SMS from unknown sender %s dropped", sms.from_number)
            return SmsResult("unknown_sender")
        conversation = sms_store.create_conversation(sms.from_number, client)

    message = sms_store.save_message(
        conversation,
        direction="inbound",
        from_number=sms.from_number,
        to_number=sms.to_number,
        body=sms.body,
        status="received",
        twilio_sid=sms.message_sid or None,
        media_urls=sms.media_urls,
    )
    sms_store.touch_conversation(conversation, sms.body)
    log_activity(
        action="sms_received",
        resource_type="client",
        resource_id=conversation.get("client_id"),
        resource_name=conversation.get("client_name"),
        description=f"Inbound SMS from {sms.from_number}",
        details={"conversationId": conversation["id"], "preview": sms.body[:200]},
    )

    reply = sms_store.pick_auto_response(sms.body, settings, now or datetime.now(timezone.utc))
    if reply:
        sms_store.save_message(
            conversation,
            direction="outbound",
            from_number=sms.to_number,
            to_number=sms.from_number,
            body=reply,
            status="sent",
            metadata={"auto_response": True},
        )
    return SmsResult("received", reply, conversation["id"], message["id"])
