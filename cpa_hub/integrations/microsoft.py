"""Microsoft OAuth and Graph helpers for mailbox integration.

Connections (tokens per user and provider) live in the
``email_connections`` collection.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from ..config import MicrosoftConfig, load_microsoft_config
from ..documents import DocumentStore, new_id

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
GRAPH_URL = "https://graph.microsoft.com/v1.0"

SCOPES = [
    "openid",
    "profile",
    "email",
    "offline_access",
    "Mail.Read",
    "Mail.ReadWrite",
    "Mail.Send",
    "Calendars.Read",
    "Calendars.ReadWrite",
    "Contacts.Read",
    "Contacts.ReadWrite",
    "User.Read",
]

MESSAGE_SELECT = (
    "id,conversationId,subject,bodyPreview,body,from,toRecipients,ccRecipients,"
    "receivedDateTime,sentDateTime,isRead,isDraft,hasAttachments,importance,flag,"
    "internetMessageId,webLink"
)

CONNECTIONS_COLLECTION = "email_connections"
PROVIDER = "microsoft"


class GraphError(RuntimeError):
    """Raised when a Microsoft OAuth or Graph request fails."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class TokenSet:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: Optional[str] = None


# =============================================================================
# HTTP
# =============================================================================

def _request_json(
    url: str,
    *,
    data: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    method: str = "GET",
) -> Dict[str, Any]:
    req = urlrequest.Request(url, data=data, headers=headers or {}, method=method)
    try:
        with urlrequest.urlopen(req, timeout=20) as resp:
            body = resp.read().decode("utf-8")
    except urlerror.HTTPError as exc:  # pragma: no cover - network path
        detail = exc.read().decode("utf-8", errors="ignore")
        raise GraphError(f"Microsoft request failed ({exc.code}): {detail}", exc.code) from exc
    except urlerror.URLError as exc:  # pragma: no cover - network path
        raise GraphError(f"Microsoft network error: {exc}") from exc
    return json.loads(body) if body else {}


def _token_request(config: MicrosoftConfig, fields: Dict[str, str]) -> TokenSet:
    payload = urlparse.urlencode({
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        **fields,
    }).encode("utf-8")
    data = _request_json(
        TOKEN_URL,
        data=payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    token = data.get("access_token")
    if not token:
        raise GraphError("Token response missing access_token.")
    return TokenSet(
        access_token=str(token),
        refresh_token=data.get("refresh_token"),
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(data.get("expires_in") or 3600)),
        scope=data.get("scope"),
    )


# =============================================================================
# OAuth
# =============================================================================

def get_authorization_url(state: str, config: Optional[MicrosoftConfig] = None) -> str:
    config = config or load_microsoft_config()
    params = urlparse.urlencode({
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": config.redirect_uri,
        "scope": " ".join(SCOPES),
        "state": state,
        "response_mode": "query",
        "prompt": "consent",
    })
    return f"{AUTHORIZE_URL}?{params}"


def exchange_code_for_tokens(code: str, config: Optional[MicrosoftConfig] = None) -> TokenSet:
    config = config or load_microsoft_config()
    return _token_request(config, {
        "code": code,
        "redirect_uri": config.redirect_uri,
        "grant_type": "authorization_code",
        "scope": " ".join(SCOPES),
    })


def refresh_access_token(refresh_token: str, config: Optional[MicrosoftConfig] = None) -> TokenSet:
    config = config or load_microsoft_config()
    return _token_request(config, {
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    })


# =============================================================================
# Graph
# =============================================================================

def graph_get(path_or_url: str, access_token: str, **headers: str) -> Dict[str, Any]:
    url = path_or_url if path_or_url.startswith("http") else f"{GRAPH_URL}{path_or_url}"
    return _request_json(url, headers={
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
        **headers,
    })


def get_me(access_token: str) -> Dict[str, Any]:
    return graph_get("/me", access_token)


def list_inbox_messages(access_token: str, top: int = 20) -> List[Dict[str, Any]]:
    params = urlparse.urlencode({
        "$top": str(top),
        "$orderby": "receivedDateTime desc",
        "$select": MESSAGE_SELECT,
    })
    return graph_get(f"/me/mailFolders/inbox/messages?{params}", access_token).get("value", [])


def get_message(access_token: str, message_id: str) -> Dict[str, Any]:
    return graph_get(f"/me/messages/{urlparse.quote(message_id, safe='')}", access_token)


# =============================================================================
# Connections
# =============================================================================

def _connections() -> DocumentStore:
    return DocumentStore(CONNECTIONS_COLLECTION)


def save_connection(user_id: str, tokens: TokenSet, profile: Dict[str, Any]) -> Dict[str, Any]:
    """Upsert the user's Microsoft connection."""
    store = _connections()
    existing = store.find_one(user_id=user_id, provider=PROVIDER)
    now = datetime.now(timezone.utc).isoformat()
    record = {
        **(existing or {}),
        "user_id": user_id,
        "provider": PROVIDER,
        "email": profile.get("mail") or profile.get("userPrincipalName"),
        "display_name": profile.get("displayName"),
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token or (existing or {}).get("refresh_token"),
        "expires_at": tokens.expires_at.isoformat(),
        "scopes": (tokens.scope or " ".join(SCOPES)).split(),
        "is_active": True,
        "updated_at": now,
    }
    record.setdefault("created_at", now)
    return store.save(existing["id"] if existing else new_id(), record)


def list_connections(user_id: str) -> List[Dict[str, Any]]:
    return _connections().find(user_id=user_id, provider=PROVIDER, is_active=True)


def get_valid_access_token(connection: Dict[str, Any]) -> Optional[str]:
    """Return a usable access token, refreshing and persisting if expired.

    Returns None when the token is expired and cannot be refreshed.
    """
    expires_raw = connection.get("expires_at")
    expires_at = datetime.fromisoformat(expires_raw) if expires_raw else None
    if expires_at and expires_at > datetime.now(timezone.utc):
        return connection.get("access_token")

    refresh_token = connection.get("refresh_token")
    if not refresh_token:
        return None
    try:
        tokens = refresh_access_token(refresh_token)
    except (GraphError, RuntimeError) as exc:
        logger.warning("Microsoft token refresh failed for %s: %s", connection.get("id"), exc)
        return None

    _connections().update(connection["id"], {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token or refresh_token,
        "expires_at": tokens.expires_at.isoformat(),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    })
    return tokens.access_token
