"""Tests for the Graph mailbox mirror (initial and delta sync)."""
from __future__ import annotations

import pytest

from cpa_hub.clients import create_client
from cpa_hub.documents import DocumentStore
from cpa_hub.email.sync import (
    MESSAGES_COLLECTION,
    SYNC_STATE_COLLECTION,
    THREADS_COLLECTION,
    MailboxSyncService,
    SyncStats,
    clean_subject,
    extract_participants,
)
from cpa_hub.integrations.microsoft import GraphError


def _message(message_id, conversation_id, subject="Payroll", sender="jane@acme.com", **extra):
    return {
        "id": message_id,
        "conversationId": conversation_id,
        "subject": subject,
        "from": {"emailAddress": {"address": sender, "name": "Jane Doe"}},
        "toRecipients": [{"emailAddress": {"address": "Staff@Firm.com", "name": "Staff"}}],
        "ccRecipients": [{"emailAddress": {"address": "", "name": "Nobody"}}],
        "body": {"contentType": "text", "content": "See attached"},
        "bodyPreview": "See attached",
        "receivedDateTime": "2026-03-01T10:00:00Z",
        "isRead": False,
        **extra,
    }


class FakeGraph:
    """Serves queued pages keyed by URL prefix and records each call."""

    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []

    def __call__(self, url, access_token, **headers):
        self.calls.append((url, access_token, headers))
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page


def _service(fetch):
    return MailboxSyncService("staff@example.com", "conn-1", "token", fetch=fetch)


@pytest.mark.parametrize(
    "subject, expected",
    [
        ("RE: Fwd: fw: Payroll", "Payroll"),
        ("  Re:   Invoice ", "Invoice"),
        ("Regarding your return", "Regarding your return"),
        ("", ""),
    ],
)
def test_clean_subject(subject, expected):
    assert clean_subject(subject) == expected


def test_extract_participants_dedupes_and_lowercases():
    message = _message("m1", "c1")
    message["ccRecipients"] = [{"emailAddress": {"address": "JANE@acme.com", "name": ""}}]
    emails, names = extract_participants(message)
    assert emails == ["jane@acme.com", "staff@firm.com"]
    assert names == ["Staff"]


class TestInitialSync:

    def test_pages_threads_and_state(self):
        fetch = FakeGraph([
            {
                "value": [_message("m1", "c1"), _message("m2", "c2", subject="Re: Invoice", isRead=True)],
                "@odata.nextLink": "https://graph.microsoft.com/v1.0/me/messages?page=2",
            },
            {
                "value": [_message("m3", "c1", subject="RE: Payroll")],
                "@odata.deltaLink": "https://graph.microsoft.com/v1.0/me/messages/delta?token=abc",
            },
        ])

        stats = _service(fetch).sync()

        assert stats == SyncStats(
            messages_processed=3, new_messages=3, threads_created=2, threads_updated=1
        )
        assert fetch.calls[0][0].startswith("https://graph.microsoft.com/v1.0/me/messages?$top=100")
        assert fetch.calls[0][2] == {"Prefer": 'outlook.body-content-type="text"'}
        assert fetch.calls[1][0].endswith("page=2")

        threads = {t["conversation_id"]: t for t in DocumentStore(THREADS_COLLECTION).list()}
        assert threads["c2"]["subject"] == "Invoice"
        assert threads["c2"]["unread_count"] == 0
        assert threads["c1"]["participants"] == ["jane@acme.com", "staff@firm.com"]

        messages = {m["message_id"]: m for m in DocumentStore(MESSAGES_COLLECTION).list()}
        assert messages["m1"]["thread_id"] == messages["m3"]["thread_id"]
        assert messages["m1"]["body_text"] == "See attached"
        assert messages["m1"]["body_html"] is None
        assert messages["m1"]["to_recipients"] == [{"email": "Staff@Firm.com", "name": "Staff"}]
        assert messages["m1"]["cc_recipients"] == []

        state = DocumentStore(SYNC_STATE_COLLECTION).get("conn-1")
        assert state["sync_status"] == "idle"
        assert state["delta_token"].endswith("token=abc")
        assert state["total_messages_synced"] == 3
        assert state["last_message_count"] == 3
        assert state["sync_error_count"] == 0

    def test_sender_matched_to_client(self):
        acme = create_client("Acme LLC", email="Jane@Acme.com")
        fetch = FakeGraph([{"value": [_message("m1", "c1"), _message("m2", "c2", sender="x@other.com")]}])

        _service(fetch).sync()

        messages = {m["message_id"]: m for m in DocumentStore(MESSAGES_COLLECTION).list()}
        assert messages["m1"]["client_id"] == acme.id
        assert messages["m2"]["client_id"] is None

    def test_bad_message_is_counted_not_raised(self):
        fetch = FakeGraph([{"value": [_message("m1", "c1", **{"from": "not-a-dict"}), _message("m2", "c2")]}])

        stats = _service(fetch).sync()

        assert stats.errors == 1
        assert stats.new_messages == 1


class TestDeltaSync:

    def test_uses_stored_delta_link_and_updates_existing(self):
        service = _service(FakeGraph([
            {"value": [_message("m1", "c1")], "@odata.deltaLink": "https://graph/delta?token=1"},
        ]))
        service.sync()

        delta = FakeGraph([
            {"value": [_message("m1", "c1", isRead=True)], "@odata.deltaLink": "https://graph/delta?token=2"},
        ])
        stats = _service(delta).sync()

        assert delta.calls[0][0] == "https://graph/delta?token=1"
        assert stats.updated_messages == 1
        assert stats.new_messages == 0
        assert len(DocumentStore(MESSAGES_COLLECTION).list()) == 1
        assert DocumentStore(MESSAGES_COLLECTION).list()[0]["is_read"] is True

        state = DocumentStore(SYNC_STATE_COLLECTION).get("conn-1")
        assert state["delta_token"] == "https://graph/delta?token=2"
        assert state["total_messages_synced"] == 1


def test_failure_marks_state_error_and_reraises():
    fetch = FakeGraph([GraphError("Graph request failed (401)", status=401), GraphError("again", status=401)])

    with pytest.raises(GraphError):
        _service(fetch).sync()
    with pytest.raises(GraphError):
        _service(fetch).sync()

    state = DocumentStore(SYNC_STATE_COLLECTION).get("conn-1")
    assert state["sync_status"] == "error"
    assert state["sync_error"] == "again"
    assert state["sync_error_count"] == 2
