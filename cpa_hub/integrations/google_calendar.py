"""Google Calendar OAuth and connection storage.

One connection per user lives in the ``calendar_connections`` collection,
keyed by ``user_id`` and ``provider``.
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

from ..config import GoogleCalendarConfig, load_google_calendar_config
from ..documents import DocumentStore, new_id

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
PRIMARY_CALENDAR_URL = "https://www.googleapis.com/calendar/v3/users/me/calendarList/primary"

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

CONNECTIONS_COLLECTION = "calendar_connections"
PROVIDER = "google"


class CalendarError(RuntimeError):
    """Raised when a Google OAuth or Calendar request fails."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class TokenSet:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime


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
        raise CalendarError(f"Google request failed ({exc.code}): {detail}", exc.code) from exc
    except urlerror.URLError as exc:  # pragma: no cover - network path
        raise CalendarError(f"Google network error: {exc}") from exc
    return json.loads(body) if body else {}


def _bearer(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


# =============================================================================
# OAuth
# =============================================================================

def get_authorization_url(state: str, config: Optional[GoogleCalendarConfig] = None) -> str:
    config = config or load_google_calendar_config()
    params = urlparse.urlencode({
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    })
    return f"{AUTHORIZE_URL}?{params}"


def exchange_code_for_tokens(code: str, config: Optional[GoogleCalendarConfig] = None) -> TokenSet:
    config = config or load_google_calendar_config()
    payload = urlparse.urlencode({
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config.redirect_uri,
    }).encode("utf-8")
    data = _request_json(
        TOKEN_URL,
        data=payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    token = data.get("access_token")
    if not token:
        raise CalendarError("Token response missing access_token.")
    return TokenSet(
        access_token=str(token),
        refresh_token=data.get("refresh_token"),
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(data.get("expires_in") or 3600)),
    )


def get_user_info(access_token: str) -> Dict[str, Any]:
    return _request_json(USERINFO_URL, headers=_bearer(access_token))


def get_primary_calendar_id(access_token: str) -> str:
    """Id of the user's primary calendar; ``primary`` when the lookup fails."""
    try:
        return _request_json(PRIMARY_CALENDAR_URL, headers=_bearer(access_token)).get("id") or "primary"
    except CalendarError as exc:
        logger.warning("Primary calendar lookup failed: %s", exc)
        return "primary"


# =============================================================================
# Connections
# =============================================================================

def _connections() -> DocumentStore:
    return DocumentStore(CONNECTIONS_COLLECTION)


def save_connection(
    user_id: str,
    tokens: TokenSet,
    user_info: Dict[str, Any],
    calendar_id: str = "primary",
) -> Dict[str, Any]:
    """Upsert the user's Google Calendar connection."""
    store = _connections()
    existing = store.find_one(user_id=user_id, provider=PROVIDER)
    now = datetime.now(timezone.utc).isoformat()
    record = {
        **(existing or {}),
        "user_id": user_id,
        "provider": PROVIDER,
        "email": user_info.get("email"),
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token or (existing or {}).get("refresh_token"),
        "expires_at": tokens.expires_at.isoformat(),
        "calendar_id": calendar_id,
        "sync_enabled": True,
        "last_sync_at": None,
        "updated_at": now,
    }
    record.setdefault("created_at", now)
    return store.save(existing["id"] if existing else new_id(), record)


def to_api_dict(connection: Dict[str, Any]) -> Dict[str, Any]:
    """Connection fields safe to return to the browser (no tokens)."""
    return {
        "id": connection.get("id"),
        "provider": connection.get("provider"),
        "email": connection.get("email"),
        "calendarId": connection.get("calendar_id"),
        "syncEnabled": connection.get("sync_enabled", True),
        "lastSyncAt": connection.get("last_sync_at"),
        "createdAt": connection.get("created_at"),
    }


def list_connections(user_id: str) -> List[Dict[str, Any]]:
    connections = _connections().find(user_id=user_id)
    connections.sort(key=lambda c: c.get("created_at") or "", reverse=True)
    return connections


def delete_connection(user_id: str, connection_id: str) -> bool:
    """Remove one of the user's connections; False if it is not theirs."""
    store = _connections()
    connection = store.get(connection_id)
    if not connection or connection.get("user_id") != user_id:
        return False
    return store.delete(connection_id)
