"""Tests for the functions the phone assistant can call mid-call."""
from __future__ import annotations

import pytest

from cpa_hub.clients import create_client
from cpa_hub.logs import fetch_activity_entries
from cpa_hub.tasks import MAX_TITLE_LENGTH, create_task, get_task, update_task
from cpa_hub.vapi import handle_function_call


@pytest.fixture
def acme():
    return create_client(
        "Acme LLC",
        first_name="Jane",
        last_name="Doe",
        email="jane@acme.example",
        phone="(555) 123-4567",
        assigned_user="staff@example.com",
    )


class TestDispatch:
    def test_missing_name(self):
        assert handle_function_call(None) == {"error": "No function call data"}

    def test_unknown_function(self):
        assert handle_function_call("launchRocket", {}) == {"error": "Unknown function: launchRocket"}


class TestCreateTask:
    """createTask"""

    def test_creates_phone_task_for_client(self, acme):
        result = handle_function_call(
            "createTask",
            {"title": "Send engagement letter", "description": "Caller asked", "priority": "high",
             "clientId": acme.id},
        )
        assert result["success"] is True
        task = get_task(result["taskId"])
        assert task.source == "phone_call"
        assert task.priority == "high"
        assert task.client_name == "Jane Doe"
        assert task.assigned_to == "staff@example.com"
        assert fetch_activity_entries(1)[0]["description"] == "Task created by phone assistant"

    def test_unknown_priority_falls_back_to_medium(self):
        result = handle_function_call("createTask", {"title": "Call IRS", "priority": "critical"})
        assert get_task(result["taskId"]).priority == "medium"

    def test_title_required(self):
        result = handle_function_call("createTask", {"description": "no title"})
        assert result == {"success": False, "error": "Task title is required"}

    def test_long_title_is_truncated(self):
        result = handle_function_call("createTask", {"title": "Call back " + "x" * 700, "description": 42})
        assert result["success"] is True
        task = get_task(result["taskId"])
        assert len(task.title) == MAX_TITLE_LENGTH
        assert task.description == "42"


class TestLookupClient:
    """lookupClient"""

    def test_by_phone_last_ten_digits(self, acme):
        result = handle_function_call("lookupClient", {"phoneNumber": "+1 555 123 4567"})
        assert result["client"]["found"] is True
        assert result["client"]["id"] == acme.id
        assert result["client"]["assignedTo"] == "staff@example.com"

    def test_by_email_then_name(self, acme):
        assert handle_function_call("lookupClient", {"email": "JANE@acme.example"})["client"]["id"] == acme.id
        assert handle_function_call("lookupClient", {"name": "acme"})["client"]["id"] == acme.id

    def test_not_found(self, acme):
        result = handle_function_call("lookupClient", {"phoneNumber": "555-000-0000"})
        assert result["client"] == {"found": False}
        assert result["success"] is True


class TestDocumentStatus:
    """getDocumentStatus"""

    def test_not_found(self):
        result = handle_function_call("getDocumentStatus", {"documentType": "1040", "year": "2025"})
        assert result["status"] == "not_found"

    def test_reports_task_status(self, acme):
        task = create_task("Prepare 2025 1040", client_id=acme.id)
        result = handle_function_call(
            "getDocumentStatus", {"clientId": acme.id, "documentType": "1040", "year": "2025"}
        )
        assert result["status"] == "pending"
        assert result["taskId"] == task.id

        update_task(task.id, {"status": "completed"})
        result = handle_function_call(
            "getDocumentStatus", {"clientId": acme.id, "documentType": "1040", "year": "2025"}
        )
        assert result["status"] == "filed"

    def test_terms_match_in_any_order(self, acme):
        task = create_task("W-2 for 2023", client_id=acme.id)
        create_task("W-2 for 2022", client_id=acme.id)
        result = handle_function_call(
            "getDocumentStatus", {"clientId": acme.id, "documentType": "w-2", "year": 2023}
        )
        assert result["taskId"] == task.id
        assert result["message"] == "The 2023 w-2 is currently pending."


def test_schedule_callback(acme):
    result = handle_function_call(
        "scheduleCallback",
        {"phoneNumber": "555-123-4567", "preferredTime": "tomorrow 10am", "reason": "Refund question"},
    )
    task = get_task(result["taskId"])
    assert task.title == "Call back Jane Doe"
    assert task.priority == "high"
    assert task.tags == ["callback"]
    assert "Preferred time: tomorrow 10am" in task.description
    assert task.metadata["preferredTime"] == "tomorrow 10am"


def test_schedule_callback_unknown_caller():
    result = handle_function_call("scheduleCallback", {"phoneNumber": "555-999-0000"})
    task = get_task(result["taskId"])
    assert task.title == "Call back 555-999-0000"
    assert "the next available time" in result["message"]


class TestTransferCall:
    """transferCall"""

    def test_department_number(self, monkeypatch):
        monkeypatch.setenv("VAPI_TRANSFER_TAX", "+15550001111")
        result = handle_function_call("transferCall", {"department": "tax"})
        assert result["transferTo"] == "+15550001111"

    def test_falls_back_to_general(self, monkeypatch):
        monkeypatch.delenv("VAPI_TRANSFER_BOOKKEEPING", raising=False)
        monkeypatch.setenv("VAPI_TRANSFER_GENERAL", "+15550002222")
        result = handle_function_call("transferCall", {"department": "bookkeeping"})
        assert result["transferTo"] == "+15550002222"

    def test_not_configured(self, monkeypatch):
        for name in ("VAPI_TRANSFER_TAX", "VAPI_TRANSFER_BOOKKEEPING", "VAPI_TRANSFER_GENERAL"):
            monkeypatch.delenv(name, raising=False)
        result = handle_function_call("transferCall", {"department": "legal"})
        assert result == {"success": False, "error": "No transfer number configured for general"}
