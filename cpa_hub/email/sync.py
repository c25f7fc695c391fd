"""Mailbox sync between Microsoft Graph and the hub's email store.

This service handles:
- Initial sync of recent messages (paged via @odata.nextLink)
- Delta sync of changes using the stored @odata.deltaLink
- Grouping messages into threads by Graph conversationId
- Sync state tracking per connection (syncing -> idle / error)
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..clients import find_client_by_email
from ..documents import DocumentStore, new_id
from ..integrations.microsoft import GRAPH_URL, graph_get

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
MAX_SYNC_PAGES = 50

SYNC_STATE_COLLECTION = "email_sync_state"
MESSAGES_COLLECTION = "email_messages"
THREADS_COLLECTION = "email_threads"

TEXT_BODY_HEADER = {"Prefer": 'outlook.body-content-type="text"'}

_SUBJECT_PREFIX = re.compile(r"^(re|fwd|fw):\s*", re.IGNORECASE)


@dataclass(slots=True)
class SyncStats:
    """Counters for one sync run."""
    messages_processed: int = 0
    new_messages: int = 0
    updated_messages: int = 0
    errors: int = 0
    threads_created: int = 0
    threads_updated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "messagesProcessed": self.messages_processed,
            "newMessages": self.new_messages,
            "updatedMessages": self.updated_messages,
            "errors": self.errors,
            "threadsCreated": self.threads_created,
            "threadsUpdated": self.threads_updated,
        }


def clean_subject(subject: str) -> str:
    """Strip leading Re:/Fwd:/Fw: prefixes."""
    cleaned = (subject or "").strip()
    while True:
        stripped = _SUBJECT_PREFIX.sub("", cleaned, count=1)
        if stripped == cleaned:
            return cleaned.strip()
        cleaned = stripped


def _address(recipient: Optional[Dict[str, Any]]) -> Tuple[str, str]:
    email_address = (recipient or {}).get("emailAddress") or {}
    return (email_address.get("address") or "", email_address.get("name") or "")


def _recipients(message: Dict[str, Any], key: str) -> List[Dict[str, str]]:
    result = []
    for recipient in message.get(key) or []:
        address, name = _address(recipient)
        if address:
            result.append({"email": address, "name": name})
    return result


def extract_participants(message: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    """Unique lowercased participant emails and their non-empty names."""
    participants: Dict[str, str] = {}
    address, name = _address(message.get("from"))
    if address:
        participants[address.lower()] = name
    for key in ("toRecipients", "ccRecipients"):
        for recipient in _recipients(message, key):
            participants[recipient["email"].lower()] = recipient["name"]
    return list(participants.keys()), [n for n in participants.values() if n]


class MailboxSyncService:
    """Syncs one Microsoft mailbox connection into the email store."""

    def __init__(
        self,
        user_id: str,
        connection_id: str,
        access_token: str,
        *,
        fetch: Callable[..., Dict[str, Any]] = graph_get,
    ) -> None:
        self.user_id = user_id
        self.connection_id = connection_id
        self.access_token = access_token
        self._fetch = fetch
        self._state = DocumentStore(SYNC_STATE_COLLECTION)
        self._messages = DocumentStore(MESSAGES_COLLECTION)
        self._threads = DocumentStore(THREADS_COLLECTION)

    # =========================================================================
    # Sync State
    # =========================================================================

    def get_state(self) -> Dict[str, Any]:
        return self._state.get(self.connection_id) or {
            "user_id": self.user_id,
            "connection_id": self.connection_id,
            "sync_status": "idle",
            "sync_error_count": 0,
            "total_messages_synced": 0,
        }

    def _update_state(self, **fields: Any) -> Dict[str, Any]:
        state = self.get_state()
        state.update(fields)
        state["updated_at"] = datetime.now(timezone.utc).isoformat()
        return self._state.save(self.connection_id, state)

    # =========================================================================
    # Public API
    # =========================================================================

    def sync(self) -> SyncStats:
        """Run a delta sync when a delta link is stored, otherwise an initial sync.

        Raises whatever the Graph fetch raises, after recording the error
        on the sync state.
        """
        stats = SyncStats()
        started = time.monotonic()
        state = self._update_state(
            sync_status="syncing",
            last_sync_started_at=datetime.now(timezone.utc).isoformat(),
        )

        try:
            delta_link = state.get("delta_token")
            if delta_link:
                logger.info("Delta sync for connection %s", self.connection_id)
                self._process_delta_sync(delta_link, stats)
            else:
                logger.info("Initial sync for connection %s", self.connection_id)
                self._process_initial_sync(stats)
        except Exception as exc:
            logger.error("Email sync failed for connection %s: %s", self.connection_id, exc)
            current = self.get_state()
            self._update_state(
                sync_status="error",
                sync_error=str(exc),
                sync_error_count=int(current.get("sync_error_count") or 0) + 1,
            )
            raise

        current = self.get_state()
        self._update_state(
            sync_status="idle",
            last_successful_sync_at=datetime.now(timezone.utc).isoformat(),
            sync_error=None,
            sync_error_count=0,
            last_message_count=stats.new_messages,
            total_messages_synced=int(current.get("total_messages_synced") or 0) + stats.new_messages,
            sync_duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info("Email sync completed for %s: %s", self.connection_id, stats.to_dict())
        return stats

    def _process_initial_sync(self, stats: SyncStats) -> None:
        next_url: Optional[str] = (
            f"{GRAPH_URL}/me/messages?$top={BATCH_SIZE}&$orderby=receivedDateTime%20desc"
        )
        pages = 0
        while next_url and pages < MAX_SYNC_PAGES:
            data = self._fetch(next_url, self.access_token, **TEXT_BODY_HEADER)
            for message in data.get("value") or []:
                self.process_message(message, stats)

            next_url = data.get("@odata.nextLink")
            pages += 1
            if not next_url and data.get("@odata.deltaLink"):
                self._update_state(delta_token=data["@odata.deltaLink"])

        if pages >= MAX_SYNC_PAGES:
            logger.warning("Hit max page limit (%s) during initial sync", MAX_SYNC_PAGES)

    def _process_delta_sync(self, delta_link: str, stats: SyncStats) -> None:
        data = self._fetch(delta_link, self.access_token, **TEXT_BODY_HEADER)
        for message in data.get("value") or []:
            self.process_message(message, stats)
        if data.get("@odata.deltaLink"):
            self._update_state(delta_token=data["@odata.deltaLink"])

    # =========================================================================
    # Messages and Threads
    # =========================================================================

    def process_message(self, message: Dict[str, Any], stats: SyncStats) -> None:
        """Upsert one Graph message. Errors are counted, not raised."""
        try:
            existing = self._messages.find_one(message_id=message.get("id"))
            thread_id = self._find_or_create_thread(message, stats)

            sender_email, sender_name = _address(message.get("from"))
            client = find_client_by_email(sender_email) if sender_email else None
            body = message.get("body") or {}
            content_type = (body.get("contentType") or "").lower()

            record = {
                "user_id": self.user_id,
                "connection_id": self.connection_id,
                "thread_id": thread_id,
                "message_id": message.get("id"),
                "conversation_id": message.get("conversationId"),
                "internet_message_id": message.get("internetMessageId"),
                "subject": message.get("subject"),
                "from_email": sender_email or None,
                "from_name": sender_name or None,
                "to_recipients": _recipients(message, "toRecipients"),
                "cc_recipients": _recipients(message, "ccRecipients"),
                "body_preview": message.get("bodyPreview"),
                "body_html": body.get("content") if content_type == "html" else None,
                "body_text": body.get("content") if content_type == "text" else None,
                "received_at": message.get("receivedDateTime"),
                "sent_at": message.get("sentDateTime") or message.get("receivedDateTime"),
                "importance": message.get("importance") or "normal",
                "is_read": bool(message.get("isRead")),
                "is_flagged": (message.get("flag") or {}).get("flagStatus") == "flagged",
                "is_draft": bool(message.get("isDraft")),
                "has_attachments": bool(message.get("hasAttachments")),
                "folder": "drafts" if message.get("isDraft") else "inbox",
                "client_id": client.id if client else None,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }

            if existing:
                self._messages.save(existing["id"], {**existing, **record})
                stats.updated_messages += 1
            else:
                self._messages.save(new_id(), record)
                stats.new_messages += 1
            stats.messages_processed += 1
        except Exception as exc:
            logger.error("Failed to process email message %s: %s", message.get("id"), exc)
            stats.errors += 1

    def _find_or_create_thread(self, message: Dict[str, Any], stats: SyncStats) -> str:
        conversation_id = message.get("conversationId")
        if conversation_id:
            existing = self._threads.find_one(user_id=self.user_id, conversation_id=conversation_id)
            if existing:
                stats.threads_updated += 1
                return existing["id"]

        emails, names = extract_participants(message)
        received = message.get("receivedDateTime")
        thread = self._threads.save(new_id(), {
            "user_id": self.user_id,
            "conversation_id": conversation_id,
            "subject": clean_subject(message.get("subject") or ""),
            "participants": emails,
            "participant_names": names,
            "message_count": 1,
            "unread_count": 0 if message.get("isRead") else 1,
            "has_attachments": bool(message.get("hasAttachments")),
            "first_message_at": received,
            "last_message_at": received,
            "last_activity_at": received,
        })
        stats.threads_created += 1
        return thread["id"]
