"""Tests for the email intelligence inbox: storage, review actions, sync and routes."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routers import email_intelligence as email_router
from cpa_hub.clients import create_client
from cpa_hub.documents import DocumentStore
from cpa_hub.email import intelligence
from cpa_hub.email.ai_classifier import ActionItem, AIClassificationResult
from cpa_hub.email.assignment import USER_ACTIONS_COLLECTION
from cpa_hub.email.rule_classifier import EmailInput
from cpa_hub.email.task_extractor import ExtractedTask
from cpa_hub.integrations import microsoft
from cpa_hub.tasks import MAX_TITLE_LENGTH, get_task


client = TestClient(app)
HEADERS = {"X-User-Email": "staff@example.com"}


def _email(subject="Question about my 1040", received_at="2026-03-01T10:00:00Z"):
    return EmailInput(
        sender_email="jane@acme.com",
        sender_name="Jane Doe",
        subject=subject,
        body="Can you confirm my extension was filed?",
        received_at=received_at,
    )


def _result(**overrides):
    values = {
        "category": "tax_question",
        "priority_score": 72,
        "urgency": "high",
        "summary": "Client asks about extension",
        "action_items": [
            ActionItem(id="a1", title="Confirm extension", priority="urgent", due_date="2026-04-15"),
            ActionItem(id="a2", title="Reply to client", priority="low", due_date="next week"),
        ],
        "model_used": "claude-test",
    }
    values.update(overrides)
    return AIClassificationResult(**values)


def _connect_mailbox(user_id="staff@example.com"):
    tokens = microsoft.TokenSet(
        access_token="graph-token",
        refresh_token="refresh",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    return microsoft.save_connection(user_id, tokens, {"mail": "staff@firm.com", "displayName": "Staff"})


def _graph_message(message_id, subject="Hello", sender="jane@acme.com"):
    return {
        "id": message_id,
        "subject": subject,
        "from": {"emailAddress": {"address": sender, "name": "Jane Doe"}},
        "body": {"contentType": "text", "content": "Please send my W-2"},
        "bodyPreview": "Please send my W-2",
        "receivedDateTime": "2026-03-02T09:00:00Z",
        "hasAttachments": False,
    }


class _NoopSync:
    def __init__(self, *args, **kwargs):
        pass

    def sync(self):
        return None


# =============================================================================
# Storage and listing
# =============================================================================

class TestStoreAndList:

    def test_store_creates_pending_action_items(self):
        saved = intelligence.store_classification("msg-1", _email(), _result(), user_id="staff@example.com")

        items = intelligence.list_intelligence()
        assert len(items) == 1
        entry = items[0]
        assert entry["id"] == saved["id"]
        assert entry["emailId"] == "msg-1"
        assert entry["from"] == {"name": "Jane Doe", "email": "jane@acme.com"}
        assert entry["priority"] == "high"
        assert entry["status"] == "pending"
        assert [a["title"] for a in entry["actionItems"]] == ["Confirm extension", "Reply to client"]
        assert all(a["status"] == "pending" for a in entry["actionItems"])

    def test_is_classified(self):
        assert not intelligence.is_classified("msg-1")
        intelligence.store_classification("msg-1", _email(), _result())
        assert intelligence.is_classified("msg-1")

    def test_list_orders_by_received_and_filters_category(self):
        intelligence.store_classification("old", _email(received_at="2026-01-01T00:00:00Z"), _result())
        intelligence.store_classification(
            "new", _email(received_at="2026-02-01T00:00:00Z"), _result(category="billing")
        )
        intelligence.store_classification("undated", _email(received_at=None), _result())

        ids = [e["emailId"] for e in intelligence.list_intelligence()]
        assert ids == ["new", "old", "undated"]

        billing = intelligence.list_intelligence(category="billing")
        assert [e["emailId"] for e in billing] == ["new"]

    def test_list_pagination(self):
        for i in range(3):
            intelligence.store_classification(
                f"m{i}", _email(received_at=f"2026-01-0{i + 1}T00:00:00Z"), _result(action_items=[])
            )
        page = intelligence.list_intelligence(limit=1, offset=1)
        assert [e["emailId"] for e in page] == ["m1"]


# =============================================================================
# Review actions
# =============================================================================

class TestReviewActions:

    def test_approve_creates_tasks(self):
        saved = intelligence.store_classification("msg-1", _email(), _result())

        tasks = intelligence.approve_classification(saved["id"], "staff@example.com")

        assert len(tasks) == 2
        first = get_task(tasks[0].id)
        assert first.status == "todo"
        assert first.source == "email_intelligence"
        assert first.priority == "high"
        assert first.due_date == date(2026, 4, 15)
        assert first.assigned_to == "staff@example.com"
        # An unparseable due date is dropped
        assert tasks[1].due_date is None
        assert tasks[1].priority == "low"

        entry = intelligence.list_intelligence(status="all")[0]
        assert entry["status"] == "approved"
        assert {a["status"] for a in entry["actionItems"]} == {"approved"}
        assert {a["createdTaskId"] for a in entry["actionItems"]} == {t.id for t in tasks}
        assert intelligence.list_intelligence() == []

    def test_approve_assigns_suggested_assignee(self):
        saved = intelligence.store_classification("msg-1", _email(), _result())
        DocumentStore(intelligence.CLASSIFICATIONS_COLLECTION).update(
            saved["id"], {"suggested_assignee_id": "manager@example.com"}
        )
        tasks = intelligence.approve_classification(saved["id"], "staff@example.com")
        assert {t.assigned_to for t in tasks} == {"manager@example.com"}

    def test_approve_truncates_long_titles(self):
        long_item = ActionItem(id="a1", title="Review " + "x" * 600, priority="medium")
        saved = intelligence.store_classification("msg-1", _email(), _result(action_items=[long_item]))

        tasks = intelligence.approve_classification(saved["id"], "staff@example.com")

        assert len(tasks[0].title) == MAX_TITLE_LENGTH
        assert intelligence.list_intelligence(status="all")[0]["status"] == "approved"

    def test_approve_twice_creates_no_new_tasks(self):
        saved = intelligence.store_classification("msg-1", _email(), _result())
        intelligence.approve_classification(saved["id"], "staff@example.com")
        assert intelligence.approve_classification(saved["id"], "staff@example.com") == []

    def test_approve_records_user_action(self):
        saved = intelligence.store_classification("msg-1", _email(), _result())
        intelligence.approve_classification(saved["id"], "staff@example.com")

        actions = DocumentStore(USER_ACTIONS_COLLECTION).list()
        assert len(actions) == 1
        assert actions[0]["action_type"] == "approve"
        assert actions[0]["sender_domain"] == "acme.com"
        assert actions[0]["ai_priority"] == "high"

    def test_dismiss_and_complete(self):
        first = intelligence.store_classification("msg-1", _email(), _result())
        second = intelligence.store_classification("msg-2", _email(), _result())

        assert intelligence.dismiss_classification(first["id"], "staff@example.com") == 2
        assert intelligence.complete_classification(second["id"], "staff@example.com") == 2

        statuses = {
            e["emailId"]: (e["status"], {a["status"] for a in e["actionItems"]})
            for e in intelligence.list_intelligence(status="all")
        }
        assert statuses["msg-1"] == ("dismissed", {"dismissed"})
        assert statuses["msg-2"] == ("completed", {"skipped"})

    def test_unknown_classification(self):
        with pytest.raises(intelligence.ClassificationNotFound):
            intelligence.dismiss_classification("missing", "staff@example.com")


# =============================================================================
# Inbox sync
# =============================================================================

class TestSyncInbox:

    @pytest.fixture(autouse=True)
    def no_mirror(self, monkeypatch):
        monkeypatch.setattr(intelligence, "MailboxSyncService", _NoopSync)

    def test_requires_connection(self):
        with pytest.raises(intelligence.NoEmailConnection):
            intelligence.sync_inbox("staff@example.com", classify=lambda email: _result())

    def test_classifies_new_messages_only(self, monkeypatch):
        _connect_mailbox()
        intelligence.store_classification("seen", _email(), _result())
        messages = [_graph_message("seen"), _graph_message("new-1"), _graph_message("boom"), {"subject": "no id"}]
        monkeypatch.setattr(intelligence, "list_inbox_messages", lambda token, top: messages)

        def classify(email):
            if email.subject == "Explode":
                raise ValueError("bad response")
            return _result(action_items=[])

        messages[2]["subject"] = "Explode"
        processed, failed = intelligence.sync_inbox("staff@example.com", classify=classify)

        assert (processed, failed) == (1, 1)
        assert intelligence.is_classified("new-1")
        assert not intelligence.is_classified("boom")

    def test_matches_client_and_uses_client_assignee(self, monkeypatch):
        acme = create_client("Acme LLC", email="jane@acme.com", assigned_user="manager@example.com")
        _connect_mailbox()
        monkeypatch.setattr(intelligence, "list_inbox_messages", lambda token, top: [_graph_message("m1")])

        intelligence.sync_inbox("staff@example.com", classify=lambda email: _result(action_items=[]))

        entry = intelligence.list_intelligence()[0]
        assert entry["clientId"] == acme.id
        assert entry["suggestedAssigneeId"] == "manager@example.com"
        assert entry["assignmentReason"].endswith("(Client's assigned user)")

    def test_mirror_failure_does_not_stop_classification(self, monkeypatch):
        class _FailingSync(_NoopSync):
            def sync(self):
                raise microsoft.GraphError("delta expired", status=410)

        monkeypatch.setattr(intelligence, "MailboxSyncService", _FailingSync)
        _connect_mailbox()
        monkeypatch.setattr(intelligence, "list_inbox_messages", lambda token, top: [_graph_message("m1")])

        processed, failed = intelligence.sync_inbox("staff@example.com", classify=lambda email: _result())
        assert (processed, failed) == (1, 0)

    def test_skips_connection_without_token(self, monkeypatch):
        _connect_mailbox()
        monkeypatch.setattr(intelligence, "get_valid_access_token", lambda connection: None)
        assert intelligence.sync_inbox("staff@example.com", classify=lambda email: _result()) == (0, 0)


def test_extract_tasks_for_message(monkeypatch):
    _connect_mailbox()
    monkeypatch.setattr(intelligence, "get_message", lambda token, message_id: _graph_message(message_id))
    seen = {}

    def fake_extract(sender, subject, body, content_type):
        seen.update(sender=sender, content_type=content_type)
        return [ExtractedTask("Send W-2", "", "medium", None, "document_request")]

    monkeypatch.setattr(intelligence, "extract_tasks_from_email", fake_extract)

    message, tasks = intelligence.extract_tasks_for_message("staff@example.com", "m1")
    assert message["id"] == "m1"
    assert tasks[0].title == "Send W-2"
    assert seen == {"sender": "Jane Doe <jane@acme.com>", "content_type": "text"}


# =============================================================================
# Routes
# =============================================================================

class TestRoutes:

    def test_list_and_approve(self):
        saved = intelligence.store_classification("msg-1", _email(), _result())

        body = client.get("/api/email-intelligence", headers=HEADERS).json()
        assert body["count"] == 1

        resp = client.post(f"/api/email-intelligence/{saved['id']}/approve", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["tasksCreated"] == 2
        assert resp.json()["tasks"][0]["status"] == "todo"

        body = client.get("/api/email-intelligence?status=approved", headers=HEADERS).json()
        assert body["count"] == 1

    def test_dismiss_and_complete_routes(self):
        first = intelligence.store_classification("msg-1", _email(), _result())
        second = intelligence.store_classification("msg-2", _email(), _result(action_items=[]))

        resp = client.post(f"/api/email-intelligence/{first['id']}/dismiss", headers=HEADERS)
        assert resp.json() == {"success": True, "itemsDismissed": 2}
        resp = client.post(f"/api/email-intelligence/{second['id']}/complete", headers=HEADERS)
        assert resp.json() == {"success": True, "itemsSkipped": 0}

    @pytest.mark.parametrize("action", ["approve", "dismiss", "complete"])
    def test_unknown_classification_is_404(self, action):
        resp = client.post(f"/api/email-intelligence/missing/{action}", headers=HEADERS)
        assert resp.status_code == 404

    def test_sync_without_connection(self):
        resp = client.post("/api/email-intelligence/sync", headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["needsConnection"] is True

    def test_sync_reports_counts(self, monkeypatch):
        monkeypatch.setattr(email_router, "sync_inbox", lambda user_id: (3, 1))
        resp = client.post("/api/email-intelligence/sync", headers=HEADERS)
        assert resp.json() == {"success": True, "processed": 3, "failed": 1}

    def test_assignment_rules(self):
        resp = client.post(
            "/api/email-intelligence/assignment-rules",
            json={
                "name": "Payroll to manager",
                "conditions": [{"field": "category", "operator": "equals", "value": "payroll"}],
                "assign_to_user_id": "manager@example.com",
                "priority": 5,
            },
            headers=HEADERS,
        )
        assert resp.status_code == 201
        assert resp.json()["rule"]["created_by"] == "staff@example.com"

        body = client.get("/api/email-intelligence/assignment-rules", headers=HEADERS).json()
        assert body["count"] == 1

    def test_invalid_assignment_rule(self):
        resp = client.post(
            "/api/email-intelligence/assignment-rules",
            json={"name": "Broken", "conditions": [{"field": "mood", "operator": "equals"}]},
            headers=HEADERS,
        )
        assert resp.status_code == 400
        assert "mood" in resp.json()["detail"]

    def test_extract_tasks_needs_connection(self):
        resp = client.post("/api/emails/m1/extract-tasks", headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["needsConnection"] is True

    def test_extract_tasks(self, monkeypatch):
        monkeypatch.setattr(
            email_router,
            "extract_tasks_for_message",
            lambda user_id, message_id: (
                {"id": message_id, "subject": "W-2 request"},
                [ExtractedTask("Send W-2", "Client needs W-2", "high", "2026-02-01", "document_request")],
            ),
        )
        resp = client.post("/api/emails/m1/extract-tasks", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["emailId"] == "m1"
        assert body["emailSubject"] == "W-2 request"
        assert body["tasks"][0]["due_date"] == "2026-02-01"

    def test_extract_tasks_graph_failure(self, monkeypatch):
        def fail(user_id, message_id):
            raise microsoft.GraphError("not found", status=404)

        monkeypatch.setattr(email_router, "extract_tasks_for_message", fail)
        resp = client.post("/api/emails/m1/extract-tasks", headers=HEADERS)
        assert resp.status_code == 500
        assert resp.json()["detail"].startswith("Failed to fetch email")
