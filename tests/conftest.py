"""Shared fixtures: file-backed stores in a temp dir and the dev auth bypass."""
from __future__ import annotations

import os

import pytest

# Set env vars BEFORE any imports that might cache them
os.environ["HUB_STORE_FORCE_FILE"] = "1"
os.environ["HUB_ACTIVITY_FORCE_FILE"] = "1"
os.environ["HUB_DEV_AUTH_BYPASS"] = "1"
os.environ.pop("ANTHROPIC_API_KEY", None)
os.environ.pop("CALL_WEBHOOK_SECRET", None)
os.environ.pop("GOTO_WEBHOOK_SECRET", None)


@pytest.fixture(autouse=True)
def isolated_store(tmp_path, monkeypatch):
    """Point every collection and the activity log at a fresh temp directory."""
    monkeypatch.setenv("HUB_STORE_FORCE_FILE", "1")
    monkeypatch.setenv("HUB_STORE_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("HUB_ACTIVITY_FORCE_FILE", "1")
    monkeypatch.setenv("HUB_ACTIVITY_LOG", str(tmp_path / "activity.jsonl"))
    monkeypatch.setenv("HUB_DEV_AUTH_BYPASS", "1")
    return tmp_path


@pytest.fixture
def ai_unavailable(monkeypatch):
    """Make webhook processing skip AI parsing regardless of the local .env."""
    from cpa_hub.llm import webhook_parser

    monkeypatch.setattr(webhook_parser, "is_ai_parsing_available", lambda: False)


@pytest.fixture
def save_profile_as():
    """Create a user profile with the given role."""
    from cpa_hub.permissions import save_profile

    def _save(email: str, role: str) -> None:
        save_profile(email, role=role)

    return _save


def make_anthropic_client(text: str, input_tokens: int = 10, output_tokens: int = 20):
    """MagicMock Anthropic client whose messages.create returns ``text``."""
    from types import SimpleNamespace
    from unittest.mock import MagicMock

    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )
    return client


@pytest.fixture
def anthropic_client():
    return make_anthropic_client


@pytest.fixture
def ai_parsed(monkeypatch):
    """Make webhook processing 'parse' every payload into the given result."""
    from cpa_hub.llm import webhook_parser

    def _install(parsed):
        monkeypatch.setattr(webhook_parser, "is_ai_parsing_available", lambda: True)
        monkeypatch.setattr(webhook_parser, "parse_webhook_with_ai", lambda payload: parsed)

    return _install
