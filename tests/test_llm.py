"""Tests for the Anthropic-backed webhook parser, email classifier and task extractor.

The Anthropic SDK client is replaced by a MagicMock so no network calls are made.
"""
from __future__ import annotations

import json

import pytest

from cpa_hub.email.ai_classifier import (
    classify_email_with_ai,
    convert_to_email_classification,
    priority_from_score,
)
from cpa_hub.email.rule_classifier import EmailInput
from cpa_hub.email.task_extractor import extract_tasks_from_email, html_to_text
from cpa_hub.llm import AnthropicError
from cpa_hub.llm.anthropic_client import parse_json_response
from cpa_hub.llm.webhook_parser import detect_source_type, parse_webhook_with_ai


# =============================================================================
# JSON response handling
# =============================================================================

def test_parse_json_response_strips_fences():
    assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}


def test_parse_json_response_invalid():
    with pytest.raises(AnthropicError):
        parse_json_response("not json")


# =============================================================================
# Webhook parser
# =============================================================================

class TestDetectSourceType:
    """Keyword-based quick detection."""

    @pytest.mark.parametrize(
        "payload, expected",
        [
            ({"transcript": "Hello", "caller": "+15551234567"}, "phone_call"),
            ({"duration": 30, "phone": "+15551234567"}, "phone_call"),
            ({"form_id": "abc", "fields": {"name": "Jane"}}, "web_form"),
            ({"subject": "Hi", "body": "text", "from": "a@b.com"}, "email"),
            ({"MessagingSid": "SM1", "text": "hi"}, "sms"),
            ({"foo": "bar"}, "unknown"),
        ],
    )
    def test_detection(self, payload, expected):
        assert detect_source_type(payload) == expected


def test_parse_webhook_builds_call(anthropic_client):
    reply = {
        "source": "phone_call",
        "sourceProvider": "vapi",
        "contact": {"firstName": "Jane", "lastName": "Doe", "phone": "+15551234567"},
        "call": {"direction": "inbound", "duration": "125.4", "transcript": "Hi"},
        "analysis": {"category": "tax_question", "urgency": "high", "summary": "Asked about refund"},
        "confidence": 0.9,
    }
    client = anthropic_client(json.dumps(reply))
    parsed = parse_webhook_with_ai({"callId": "1"}, client=client)

    assert parsed.source == "phone_call"
    assert parsed.call.duration == 125
    assert parsed.contact.display_name == "Jane Doe"
    assert parsed.analysis.summary == "Asked about refund"
    assert parsed.confidence == 0.9
    assert parsed.to_dict()["call"]["direction"] == "inbound"


def test_parse_webhook_unknown_source_is_normalized(anthropic_client):
    client = anthropic_client(json.dumps({"source": "fax"}))
    parsed = parse_webhook_with_ai({"x": 1}, client=client)
    assert parsed.source == "unknown"


def test_parse_webhook_falls_back_on_failure(anthropic_client):
    client = anthropic_client("I cannot help with that")
    parsed = parse_webhook_with_ai({"x": 1}, client=client)
    assert parsed.confidence == 0.0
    assert parsed.analysis.summary == "Failed to parse webhook payload"
    assert parsed.raw_payload == {"x": 1}


# =============================================================================
# Email classifier
# =============================================================================

EMAIL = EmailInput(
    sender_email="jane@gmail.com",
    sender_name="Jane Doe",
    subject="Need my W-2 help",
    body="Can you send me the form?",
)


def test_classify_email_with_ai(anthropic_client):
    reply = {
        "category": "document_request",
        "priorityScore": 140,
        "urgency": "high",
        "summary": "Client asks for W-2 help",
        "actionItems": [
            {"title": "Send W-2 instructions", "type": "response", "priority": "high", "dueDate": "2026-01-15"},
            {"title": "Odd type", "type": "dance"},
        ],
        "extractedEntities": {"names": ["Jane Doe"], "phoneNumbers": None},
        "confidence": 0.85,
    }
    client = anthropic_client(json.dumps(reply), input_tokens=100, output_tokens=50)
    result = classify_email_with_ai(EMAIL, client=client)

    assert result.category == "document_request"
    assert result.priority_score == 100
    assert [a.type for a in result.action_items] == ["response", "task"]
    assert result.extracted_entities["names"] == ["Jane Doe"]
    assert result.extracted_entities["phoneNumbers"] == []
    assert result.tokens_used == 150
    assert client.messages.create.call_count == 1


def test_classify_email_unknown_category(anthropic_client):
    client = anthropic_client(json.dumps({"category": "gossip"}))
    assert classify_email_with_ai(EMAIL, client=client).category == "other"


def test_classify_email_fallback(anthropic_client):
    client = anthropic_client("[1, 2, 3]")
    result = classify_email_with_ai(EMAIL, client=client)
    assert result.confidence == 0.0
    assert result.model_used == "error"
    assert result.action_items[0].title == "Review email"


@pytest.mark.parametrize(
    "score, expected",
    [(95, "urgent"), (80, "urgent"), (60, "high"), (45, "medium"), (10, "low")],
)
def test_priority_from_score(score, expected):
    assert priority_from_score(score) == expected


def test_convert_to_email_classification(anthropic_client):
    client = anthropic_client(json.dumps({"category": "appointment", "urgency": "urgent", "priorityScore": 85}))
    classification = convert_to_email_classification(classify_email_with_ai(EMAIL, client=client))
    assert classification.priority == "urgent"
    assert classification.suggested_action == "respond_immediately"


# =============================================================================
# Task extractor
# =============================================================================

def test_html_to_text():
    assert html_to_text("<p>Hello <b>there</b></p>").split() == ["Hello", "there"]


def test_extract_tasks(anthropic_client):
    reply = [
        {"title": "Upload 1099", "priority": "high", "category": "document_request", "due_date": "2026-02-01"},
        {"title": "Unknown category", "category": "misc"},
        {"description": "missing title"},
    ]
    client = anthropic_client(json.dumps(reply))
    tasks = extract_tasks_from_email("Jane <jane@gmail.com>", "Docs", "<p>Please upload</p>", "html", client=client)

    assert [t.title for t in tasks] == ["Upload 1099", "Unknown category"]
    assert tasks[0].due_date == "2026-02-01"
    assert tasks[1].category == "other"


def test_extract_tasks_requires_array(anthropic_client):
    client = anthropic_client(json.dumps({"title": "not a list"}))
    with pytest.raises(AnthropicError):
        extract_tasks_from_email("a@b.com", "s", "b", client=client)
