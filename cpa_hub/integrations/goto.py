"""GoTo Connect API client.

Handles OAuth, call reports, recordings and notification subscriptions.
Tokens are persisted in ``integration_tokens/goto`` so every process
shares the same authorization.
"""
from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from ..config import ConfigError, GoToConfig, load_goto_config
from ..documents import DocumentStore

logger = logging.getLogger(__name__)

API_BASE = "https://api.goto.com"
AUTH_BASE = "https://authentication.logmeininc.com"

SCOPES = [
    "call-events.v1.notifications.manage",
    "call-events.v1.events.read",
    "cr.v1.read",
    "recording.v1.read",
]

TOKENS_COLLECTION = "integration_tokens"
TOKEN_DOC_ID = "goto"
REFRESH_MARGIN_SECONDS = 5 * 60


class GoToError(RuntimeError):
    """Raised when a GoTo Connect request fails."""


@dataclass(slots=True)
class GoToTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_at: float  # epoch seconds
    account_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "account_key": self.account_key,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoToTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=float(data.get("expires_at") or 0),
            account_key=data.get("account_key"),
        )


# =============================================================================
# Token Storage
# =============================================================================

def _tokens_store() -> DocumentStore:
    return DocumentStore(TOKENS_COLLECTION)


def load_tokens() -> Optional[GoToTokens]:
    data = _tokens_store().get(TOKEN_DOC_ID)
    if not data or not data.get("access_token"):
        return None
    return GoToTokens.from_dict(data)


def save_tokens(tokens: GoToTokens) -> None:
    _tokens_store().save(TOKEN_DOC_ID, tokens.to_dict())


def clear_tokens() -> None:
    _tokens_store().delete(TOKEN_DOC_ID)


def is_authenticated() -> bool:
    tokens = load_tokens()
    return tokens is not None and tokens.expires_at > time.time()


def get_account_key(config: Optional[GoToConfig] = None) -> Optional[str]:
    tokens = load_tokens()
    if tokens and tokens.account_key:
        return tokens.account_key
    if config is None:
        try:
            config = load_goto_config()
        except ConfigError:
            return None
    return config.account_key


# =============================================================================
# HTTP
# =============================================================================

def _send(req: urlrequest.Request) -> Any:
    try:
        with urlrequest.urlopen(req, timeout=20) as resp:
            body = resp.read().decode("utf-8")
    except urlerror.HTTPError as exc:  # pragma: no cover - network path
        detail = exc.read().decode("utf-8", errors="ignore")
        raise GoToError(f"GoTo API error ({exc.code}): {detail}") from exc
    except urlerror.URLError as exc:  # pragma: no cover - network path
        raise GoToError(f"GoTo network error: {exc}") from exc
    return json.loads(body) if body else {}


def _token_request(config: GoToConfig, fields: Dict[str, str]) -> Dict[str, Any]:
    basic = base64.b64encode(f"{config.client_id}:{config.client_secret}".encode("utf-8")).decode("ascii")
    req = urlrequest.Request(
        f"{AUTH_BASE}/oauth/token",
        data=urlparse.urlencode(fields).encode("utf-8"),
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {basic}",
        },
        method="POST",
    )
    return _send(req)


def api_request(endpoint: str, *, method: str = "GET", body: Optional[Dict[str, Any]] = None) -> Any:
    """Authenticated request against the GoTo Connect API."""
    access_token = get_access_token()
    req = urlrequest.Request(
        f"{API_BASE}{endpoint}",
        data=json.dumps(body).encode("utf-8") if body is not None else None,
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        },
        method=method,
    )
    return _send(req)


# =============================================================================
# OAuth
# =============================================================================

def get_authorization_url(state: Optional[str] = None, config: Optional[GoToConfig] = None) -> str:
    config = config or load_goto_config()
    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": config.redirect_uri,
        "scope": " ".join(SCOPES),
    }
    if state:
        params["state"] = state
    return f"{AUTH_BASE}/oauth/authorize?{urlparse.urlencode(params)}"


def exchange_code_for_tokens(code: str, config: Optional[GoToConfig] = None) -> GoToTokens:
    config = config or load_goto_config()
    data = _token_request(config, {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.redirect_uri,
    })
    tokens = GoToTokens(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=time.time() + int(data.get("expires_in") or 3600),
        account_key=data.get("account_key") or config.account_key,
    )
    save_tokens(tokens)
    return tokens


def refresh_access_token(config: Optional[GoToConfig] = None) -> GoToTokens:
    """Refresh the stored token; clears it when GoTo rejects the refresh."""
    current = load_tokens()
    if current is None or not current.refresh_token:
        raise GoToError("No refresh token available. Re-authorization required.")

    config = config or load_goto_config()
    try:
        data = _token_request(config, {
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
        })
    except GoToError:
        clear_tokens()
        raise

    tokens = GoToTokens(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or current.refresh_token,
        expires_at=time.time() + int(data.get("expires_in") or 3600),
        account_key=current.account_key,
    )
    save_tokens(tokens)
    return tokens


def get_access_token() -> str:
    tokens = load_tokens()
    if tokens is None:
        raise GoToError("Not authenticated with GoTo Connect. Authorization required.")
    if tokens.expires_at - time.time() < REFRESH_MARGIN_SECONDS:
        tokens = refresh_access_token()
    return tokens.access_token


# =============================================================================
# Notification Channels and Subscriptions
# =============================================================================

def create_webhook_channel(webhook_url: str, channel_id: Optional[str] = None) -> Dict[str, Any]:
    channel_id = channel_id or f"webhook-{int(time.time() * 1000)}"
    return api_request(
        f"/notification-channel/v1/channels/{channel_id}",
        method="POST",
        body={
            "channelType": "Webhook",
            "webhookChannelData": {"webhook": {"url": webhook_url}},
        },
    )


def _require_account_key() -> str:
    account_key = get_account_key()
    if not account_key:
        raise GoToError("GoTo account key not configured. Set GOTO_ACCOUNT_KEY.")
    return account_key


def subscribe_to_call_events(channel_id: str, events: Optional[List[str]] = None) -> None:
    account_key = _require_account_key()
    api_request("/call-events/v1/subscriptions", method="POST", body={
        "channelId": channel_id,
        "accountKeys": [{"id": account_key, "events": events or ["STARTING", "ENDING", "ACTIVE"]}],
    })


def subscribe_to_call_reports(channel_id: str) -> None:
    account_key = _require_account_key()
    api_request("/call-events-report/v1/subscriptions", method="POST", body={
        "channelId": channel_id,
        "eventTypes": ["REPORT_SUMMARY"],
        "accountKeys": [account_key],
    })


def setup_goto_integration(webhook_url: str) -> Dict[str, Any]:
    """Create a webhook channel and subscribe it to call events and reports."""
    logger.info("Creating GoTo webhook channel for %s", webhook_url)
    channel = create_webhook_channel(webhook_url)
    channel_id = channel.get("channelId")
    if not channel_id:
        raise GoToError("GoTo did not return a channel id.")

    subscribe_to_call_events(channel_id)
    subscribe_to_call_reports(channel_id)
    logger.info("GoTo integration set up on channel %s", channel_id)

    return {
        "channelId": channel_id,
        "webhookUrl": webhook_url,
        "subscriptions": ["call-events", "call-reports"],
    }


# =============================================================================
# Call Reports and Recordings
# =============================================================================

def get_call_report(conversation_space_id: str) -> Dict[str, Any]:
    return api_request(f"/call-events-report/v1/reports/{urlparse.quote(conversation_space_id, safe='')}")


def get_recent_call_reports(start_time: datetime, end_time: Optional[datetime] = None) -> List[Dict[str, Any]]:
    params = urlparse.urlencode({
        "accountKey": get_account_key() or "",
        "startTime": start_time.isoformat(),
        "endTime": (end_time or datetime.now(timezone.utc)).isoformat(),
    })
    result = api_request(f"/call-events-report/v1/report-summaries?{params}")
    if isinstance(result, dict):
        return result.get("items", [])
    return result


def get_recording_url(recording_id: str) -> Optional[str]:
    return api_request(f"/recording/v1/recordings/{recording_id}/content").get("url")


def get_transcription(transcript_id: str) -> Dict[str, Any]:
    return api_request(f"/recording/v1/transcriptions/{transcript_id}")
