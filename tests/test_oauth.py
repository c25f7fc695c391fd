"""API tests for the Microsoft, Google Calendar and GoTo Connect OAuth routes."""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_settings
from api.main import app
from cpa_hub.integrations import google_calendar
from cpa_hub.integrations import goto as goto_client
from cpa_hub.integrations import microsoft
from cpa_hub.webhooks.security import generate_client_state

STAFF_HEADERS = {"X-User-Email": "staff@example.com"}
ADMIN_HEADERS = {"X-User-Email": "admin@example.com"}
APP_URL = "http://localhost:8000"


@pytest.fixture
def client(isolated_store, save_profile_as, monkeypatch):
    monkeypatch.delenv("HUB_APP_URL", raising=False)
    get_settings.cache_clear()
    save_profile_as("admin@example.com", "admin")
    yield TestClient(app)
    get_settings.cache_clear()


@pytest.fixture
def ms_env(monkeypatch):
    monkeypatch.setenv("MICROSOFT_CLIENT_ID", "ms-id")
    monkeypatch.setenv("MICROSOFT_CLIENT_SECRET", "ms-secret")


@pytest.fixture
def fake_graph(monkeypatch):
    tokens = microsoft.TokenSet("at", "rt", datetime.now(timezone.utc) + timedelta(hours=1))
    monkeypatch.setattr(microsoft, "exchange_code_for_tokens", lambda code: tokens)
    monkeypatch.setattr(microsoft, "get_me", lambda token: {"mail": "staff@firm.example", "displayName": "Staff"})


# =============================================================================
# Microsoft
# =============================================================================

class TestEmailConnect:
    """GET /api/email/connect"""

    def test_redirects_with_state_cookie(self, client, ms_env):
        resp = client.get("/api/email/connect", headers=STAFF_HEADERS, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith(microsoft.AUTHORIZE_URL)
        state = (resp.cookies.get("oauth_state") or "").strip('"')
        assert state.startswith("staff@example.com:")
        assert parse_qs(urlparse(resp.headers["location"]).query)["state"] == [state]

    def test_not_configured(self, client, monkeypatch):
        for name in ("MICROSOFT_CLIENT_ID", "MICROSOFT_CLIENT_SECRET", "MS_GRAPH_CLIENT_ID", "MS_GRAPH_CLIENT_SECRET"):
            monkeypatch.delenv(name, raising=False)
        resp = client.get("/api/email/connect", headers=STAFF_HEADERS, follow_redirects=False)
        assert resp.status_code == 500
        assert "Microsoft OAuth not configured" in resp.json()["error"]

    def test_requires_user(self, client, ms_env):
        assert client.get("/api/email/connect", follow_redirects=False).status_code == 401


class TestEmailCallback:
    """GET /api/email/callback"""

    def _callback(self, client, **params):
        return client.get("/api/email/callback", params=params, follow_redirects=False)

    def test_stores_connection(self, client, fake_graph):
        state = generate_client_state("staff@example.com", "abc")
        resp = self._callback(client, code="code-1", state=state)
        assert resp.status_code == 302
        assert resp.headers["location"] == f"{APP_URL}/email?success=connected"

        connections = microsoft.list_connections("staff@example.com")
        assert connections[0]["email"] == "staff@firm.example"

    def test_round_trip_from_connect(self, client, ms_env, fake_graph):
        resp = client.get("/api/email/connect", headers=STAFF_HEADERS, follow_redirects=False)
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        resp = self._callback(client, code="code-1", state=state)
        assert resp.headers["location"] == f"{APP_URL}/email?success=connected"

    def test_non_ascii_state(self, client, fake_graph):
        resp = self._callback(client, code="c", state="a:b:1:\u00e9\u00e9")
        assert resp.status_code == 302
        assert resp.headers["location"] == f"{APP_URL}/settings?error=invalid_state"

    def test_provider_error(self, client):
        resp = self._callback(client, error="access_denied", error_description="User cancelled")
        assert resp.headers["location"] == f"{APP_URL}/settings?error=User+cancelled"

    def test_invalid_state(self, client, fake_graph):
        resp = self._callback(client, code="code-1", state="forged:state:1:sig")
        assert resp.headers["location"] == f"{APP_URL}/settings?error=invalid_state"

    def test_cookie_must_match_state(self, client, fake_graph):
        state = generate_client_state("staff@example.com", "abc")
        client.cookies.set("oauth_state", generate_client_state("staff@example.com", "other"))
        resp = self._callback(client, code="code-1", state=state)
        assert resp.headers["location"] == f"{APP_URL}/settings?error=invalid_state"

    def test_missing_code(self, client):
        state = generate_client_state("staff@example.com", "abc")
        resp = self._callback(client, state=state)
        assert resp.headers["location"] == f"{APP_URL}/settings?error=missing_code"

    def test_exchange_failure(self, client, monkeypatch):
        def _fail(code):
            raise microsoft.GraphError("bad code", 400)

        monkeypatch.setattr(microsoft, "exchange_code_for_tokens", _fail)
        state = generate_client_state("staff@example.com", "abc")
        resp = self._callback(client, code="code-1", state=state)
        assert resp.headers["location"] == f"{APP_URL}/settings?error=connection_failed"


# =============================================================================
# Google Calendar
# =============================================================================

@pytest.fixture
def google_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CALENDAR_CLIENT_ID", "g-id")
    monkeypatch.setenv("GOOGLE_CALENDAR_CLIENT_SECRET", "g-secret")


@pytest.fixture
def fake_google(monkeypatch):
    tokens = google_calendar.TokenSet("g-at", "g-rt", datetime.now(timezone.utc) + timedelta(hours=1))
    monkeypatch.setattr(google_calendar, "exchange_code_for_tokens", lambda code: tokens)
    monkeypatch.setattr(google_calendar, "get_user_info", lambda token: {"email": "staff@gmail.example"})
    monkeypatch.setattr(google_calendar, "get_primary_calendar_id", lambda token: "cal-primary")


class TestCalendarConnect:
    """GET /api/calendar/google/connect"""

    def test_returns_url_and_cookie(self, client, google_env):
        resp = client.get("/api/calendar/google/connect", headers=STAFF_HEADERS)
        assert resp.status_code == 200
        url = resp.json()["url"]
        assert url.startswith(google_calendar.AUTHORIZE_URL)

        query = parse_qs(urlparse(url).query)
        assert query["access_type"] == ["offline"]
        assert query["redirect_uri"] == [f"{APP_URL}/api/calendar/google/callback"]
        state = (resp.cookies.get("calendar_oauth_state") or "").strip('"')
        assert query["state"] == [state]
        assert state.startswith("staff@example.com:")

    def test_falls_back_to_shared_google_credentials(self, client, monkeypatch):
        monkeypatch.delenv("GOOGLE_CALENDAR_CLIENT_ID", raising=False)
        monkeypatch.delenv("GOOGLE_CALENDAR_CLIENT_SECRET", raising=False)
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "shared-id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "shared-secret")
        url = client.get("/api/calendar/google/connect", headers=STAFF_HEADERS).json()["url"]
        assert parse_qs(urlparse(url).query)["client_id"] == ["shared-id"]

    def test_not_configured(self, client, monkeypatch):
        for name in (
            "GOOGLE_CALENDAR_CLIENT_ID",
            "GOOGLE_CALENDAR_CLIENT_SECRET",
            "GOOGLE_CLIENT_ID",
            "GOOGLE_CLIENT_SECRET",
        ):
            monkeypatch.delenv(name, raising=False)
        resp = client.get("/api/calendar/google/connect", headers=STAFF_HEADERS)
        assert resp.status_code == 500
        assert resp.json()["error"] == "Google OAuth not configured"

    def test_requires_user(self, client, google_env):
        assert client.get("/api/calendar/google/connect").status_code == 401


class TestCalendarCallback:
    """GET /api/calendar/google/callback"""

    def _callback(self, client, **params):
        return client.get("/api/calendar/google/callback", params=params, follow_redirects=False)

    def test_stores_connection(self, client, google_env, fake_google):
        resp = client.get("/api/calendar/google/connect", headers=STAFF_HEADERS)
        state = parse_qs(urlparse(resp.json()["url"]).query)["state"][0]

        resp = self._callback(client, code="code-1", state=state)
        assert resp.status_code == 302
        assert resp.headers["location"] == f"{APP_URL}/calendar?connected=google"

        [connection] = google_calendar.list_connections("staff@example.com")
        assert connection["email"] == "staff@gmail.example"
        assert connection["calendar_id"] == "cal-primary"
        assert connection["refresh_token"] == "g-rt"

    def test_reconnect_updates_existing(self, client, fake_google):
        state = generate_client_state("staff@example.com", "abc")
        self._callback(client, code="code-1", state=state)
        self._callback(client, code="code-2", state=state)
        assert len(google_calendar.list_connections("staff@example.com")) == 1

    def test_provider_error(self, client):
        resp = self._callback(client, error="access_denied")
        assert resp.headers["location"] == f"{APP_URL}/calendar?error=access_denied"

    def test_missing_params(self, client):
        resp = self._callback(client, code="code-1")
        assert resp.headers["location"] == f"{APP_URL}/calendar?error=missing_params"

    def test_invalid_state(self, client, fake_google):
        resp = self._callback(client, code="code-1", state="forged:state:1:sig")
        assert resp.headers["location"] == f"{APP_URL}/calendar?error=invalid_state"
        assert google_calendar.list_connections("forged") == []

    def test_exchange_failure(self, client, monkeypatch):
        def _fail(code):
            raise google_calendar.CalendarError("bad code", 400)

        monkeypatch.setattr(google_calendar, "exchange_code_for_tokens", _fail)
        state = generate_client_state("staff@example.com", "abc")
        resp = self._callback(client, code="code-1", state=state)
        assert resp.headers["location"] == f"{APP_URL}/calendar?error=token_exchange_failed"

    def test_user_info_failure(self, client, fake_google, monkeypatch):
        def _fail(token):
            raise google_calendar.CalendarError("expired", 401)

        monkeypatch.setattr(google_calendar, "get_user_info", _fail)
        state = generate_client_state("staff@example.com", "abc")
        resp = self._callback(client, code="code-1", state=state)
        assert resp.headers["location"] == f"{APP_URL}/calendar?error=connection_failed"


class TestCalendarConnections:
    """/api/calendar/connections"""

    def _connect(self, user_id):
        tokens = google_calendar.TokenSet("at", "rt", datetime.now(timezone.utc) + timedelta(hours=1))
        return google_calendar.save_connection(user_id, tokens, {"email": f"{user_id}.cal"})

    def test_lists_without_tokens(self, client):
        self._connect("staff@example.com")
        self._connect("other@example.com")

        body = client.get("/api/calendar/connections", headers=STAFF_HEADERS).json()
        [connection] = body["connections"]
        assert connection["email"] == "staff@example.com.cal"
        assert connection["calendarId"] == "primary"
        assert "access_token" not in connection and "refresh_token" not in connection

    def test_delete(self, client):
        connection = self._connect("staff@example.com")
        resp = client.delete(f"/api/calendar/connections/{connection['id']}", headers=STAFF_HEADERS)
        assert resp.json() == {"success": True}
        assert google_calendar.list_connections("staff@example.com") == []

    def test_cannot_delete_another_users_connection(self, client):
        connection = self._connect("other@example.com")
        resp = client.delete(f"/api/calendar/connections/{connection['id']}", headers=STAFF_HEADERS)
        assert resp.status_code == 404
        assert len(google_calendar.list_connections("other@example.com")) == 1


# =============================================================================
# GoTo Connect
# =============================================================================

class TestGoToAuth:
    """/api/auth/goto and /api/integrations/goto"""

    def test_requires_manage_settings(self, client):
        assert client.get("/api/auth/goto", headers=STAFF_HEADERS, follow_redirects=False).status_code == 403

    def test_redirects_admin(self, client, monkeypatch):
        monkeypatch.setenv("GOTO_CLIENT_ID", "goto-id")
        monkeypatch.setenv("GOTO_CLIENT_SECRET", "goto-secret")
        resp = client.get("/api/auth/goto", headers=ADMIN_HEADERS, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith(goto_client.AUTH_BASE)

    def test_callback_sets_up_webhooks(self, client, monkeypatch):
        seen = {}
        monkeypatch.setattr(goto_client, "exchange_code_for_tokens", lambda code: seen.setdefault("code", code))
        monkeypatch.setattr(
            goto_client,
            "setup_goto_integration",
            lambda url: seen.setdefault("url", url) and {"channelId": "ch-1"},
        )
        resp = client.get("/api/auth/goto/callback?code=abc", follow_redirects=False)
        assert resp.headers["location"] == f"{APP_URL}/calls?goto_connected=true"
        assert seen == {"code": "abc", "url": f"{APP_URL}/api/webhooks/goto"}

    def test_callback_error(self, client, monkeypatch):
        def _fail(code):
            raise goto_client.GoToError("denied")

        monkeypatch.setattr(goto_client, "exchange_code_for_tokens", _fail)
        resp = client.get("/api/auth/goto/callback?code=abc", follow_redirects=False)
        assert resp.headers["location"] == f"{APP_URL}/calls?goto_error=true&error_message=denied"

    def test_callback_without_code(self, client):
        resp = client.get("/api/auth/goto/callback?error=access_denied", follow_redirects=False)
        assert "error_message=access_denied" in resp.headers["location"]

    def test_status(self, client, monkeypatch):
        monkeypatch.delenv("GOTO_CLIENT_ID", raising=False)
        body = client.get("/api/integrations/goto", headers=STAFF_HEADERS).json()
        assert body == {"connected": False, "accountKey": None}

        goto_client.save_tokens(goto_client.GoToTokens("at", "rt", time.time() + 3600, account_key="acct-1"))
        body = client.get("/api/integrations/goto", headers=STAFF_HEADERS).json()
        assert body == {"connected": True, "accountKey": "acct-1"}
