"""Tests for email-to-client matching."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from cpa_hub.clients import create_client
from cpa_hub.clients.matcher import (
    calculate_similarity,
    get_client_match,
    match_email_to_client,
    save_client_match,
    verify_client_match,
)
from cpa_hub.clients.store import Client


def _client(client_id, name, **fields):
    now = datetime.now(timezone.utc)
    return Client(id=client_id, name=name, created_at=now, updated_at=now, **fields)


CLIENTS = [
    _client("c-jane", "Jane Doe", first_name="Jane", last_name="Doe", email="jane@acme.example"),
    _client("c-bob", "Bob Stone", first_name="Bob", last_name="Stone", email="bob@acme.example",
            phone="555-123-4567"),
    _client("c-gmail", "Sam Lee", first_name="Sam", last_name="Lee", email="sam@gmail.com",
            company_name="Lee Holdings LLC"),
]


class TestMatchEmailToClient:
    """Signal order and confidence."""

    def test_exact_email_suppresses_domain(self):
        result = match_email_to_client("Jane@Acme.example", clients=CLIENTS)
        assert result.primary_match.client_id == "c-jane"
        assert result.primary_match.match_type == "exact_email"
        assert result.primary_match.confidence == 1.0
        assert result.alternative_matches == []

    def test_business_domain(self):
        result = match_email_to_client("newhire@acme.example", clients=CLIENTS)
        matched = {m.client_id for m in [result.primary_match, *result.alternative_matches]}
        assert matched == {"c-jane", "c-bob"}
        assert result.primary_match.match_type == "domain"
        assert result.primary_match.confidence == 0.7

    def test_generic_domain_is_ignored(self):
        result = match_email_to_client("stranger@gmail.com", clients=CLIENTS)
        assert result.primary_match is None
        assert "domain:gmail.com" not in result.search_terms_used

    def test_name_match(self):
        result = match_email_to_client("jd@example.org", sender_name="Jane Doe", clients=CLIENTS)
        assert result.primary_match.client_id == "c-jane"
        assert result.primary_match.match_type == "name_match"
        assert result.primary_match.confidence == pytest.approx(0.8)

    def test_phone_match_uses_last_ten_digits(self):
        result = match_email_to_client(
            "x@example.org", extracted_phones=["+1 (555) 123-4567", "12345"], clients=CLIENTS
        )
        assert result.primary_match.client_id == "c-bob"
        assert result.primary_match.confidence == 0.85
        assert result.search_terms_used[-1] == "phone:+1 (555) 123-4567"

    def test_company_match(self):
        result = match_email_to_client("x@example.org", extracted_companies=["Lee Holdings"], clients=CLIENTS)
        assert result.primary_match.client_id == "c-gmail"
        assert result.primary_match.match_type == "company_match"

    def test_client_listed_once_with_strongest_match(self):
        result = match_email_to_client(
            "jane@acme.example", sender_name="Jane Doe", clients=CLIENTS
        )
        assert result.primary_match.match_type == "exact_email"
        assert "c-jane" not in [m.client_id for m in result.alternative_matches]

    def test_to_api_dict(self):
        body = match_email_to_client("jane@acme.example", clients=CLIENTS).to_api_dict()
        assert body["primaryMatch"]["clientId"] == "c-jane"
        assert body["primaryMatch"]["matchType"] == "exact_email"

    def test_uses_stored_clients_by_default(self):
        created = create_client("Acme", email="owner@acme.example")
        result = match_email_to_client("owner@acme.example")
        assert result.primary_match.client_id == created.id


@pytest.mark.parametrize(
    "first, second, expected",
    [
        ("Jane", "jane", 1.0),
        ("Jane", "Jane Doe", 0.8),
        ("", "Jane", 0.0),
        ("kitten", "sitting", 1 - 3 / 7),
    ],
)
def test_calculate_similarity(first, second, expected):
    assert calculate_similarity(first, second) == pytest.approx(expected)


def test_save_and_verify_match():
    result = match_email_to_client("jane@acme.example", clients=CLIENTS)
    first = save_client_match("msg-1", result)
    second = save_client_match("msg-1", result)
    assert first["id"] == second["id"]
    assert get_client_match("msg-1")["client_id"] == "c-jane"

    verified = verify_client_match("msg-1", "c-bob", "staff@example.com")
    assert verified["id"] == first["id"]
    assert verified["match_type"] == "manual"
    assert verified["is_verified"] is True


def test_save_without_match_is_noop():
    result = match_email_to_client("nobody@gmail.com", clients=CLIENTS)
    assert save_client_match("msg-2", result) is None
    assert get_client_match("msg-2") is None
