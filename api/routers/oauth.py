"""OAuth Router - connect Microsoft mailboxes, Google calendars and the GoTo Connect account.

Handles:
- /email/connect and /email/callback (Microsoft Graph, per user)
- /auth/goto and /auth/goto/callback (GoTo Connect, firm-wide)
- /integrations/goto status
- /calendar/google/connect and /calendar/google/callback (Google Calendar, per user)
- /calendar/connections listing and removal
"""
from __future__ import annotations

import logging
import secrets
from typing import Optional
from urllib import parse as urlparse

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import ApiUser, get_api_user, get_settings, require_permission
from cpa_hub.config import ConfigError
from cpa_hub.integrations import google_calendar
from cpa_hub.integrations import goto as goto_client
from cpa_hub.integrations import microsoft
from cpa_hub.webhooks.security import generate_client_state, validate_client_state

logger = logging.getLogger(__name__)

router = APIRouter()

STATE_COOKIE = "oauth_state"
CALENDAR_STATE_COOKIE = "calendar_oauth_state"
STATE_COOKIE_MAX_AGE = 10 * 60


def _frontend(path: str, **params: str) -> RedirectResponse:
    url = f"{get_settings().app_url}{path}"
    if params:
        url = f"{url}?{urlparse.urlencode(params)}"
    return RedirectResponse(url, status_code=302)


def _set_state_cookie(response, name: str, state: str) -> None:
    response.set_cookie(
        name,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=get_settings().environment != "local",
    )


# =============================================================================
# Microsoft
# =============================================================================

@router.get("/email/connect")
def connect_email(user: ApiUser = Depends(get_api_user)):
    """Start the Microsoft OAuth flow with a signed state bound to the caller."""
    state = generate_client_state(user.email, secrets.token_hex(8))
    try:
        url = microsoft.get_authorization_url(state)
    except ConfigError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})

    response = RedirectResponse(url, status_code=302)
    _set_state_cookie(response, STATE_COOKIE, state)
    return response


@router.get("/email/callback")
def email_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    oauth_state: Optional[str] = Cookie(None),
):
    """Finish the Microsoft OAuth flow and store the connection."""
    if error:
        logger.error("Microsoft OAuth error: %s %s", error, error_description)
        return _frontend("/settings", error=error_description or error)

    valid, user_id, _ = validate_client_state(state or "")
    if not valid or not user_id or (oauth_state is not None and oauth_state != state):
        return _frontend("/settings", error="invalid_state")
    if not code:
        return _frontend("/settings", error="missing_code")

    try:
        tokens = microsoft.exchange_code_for_tokens(code)
        profile = microsoft.get_me(tokens.access_token)
        connection = microsoft.save_connection(user_id, tokens, profile)
    except (microsoft.GraphError, ConfigError) as exc:
        logger.error("Microsoft OAuth callback failed for %s: %s", user_id, exc)
        return _frontend("/settings", error="connection_failed")

    logger.info("Connected Microsoft mailbox %s for %s", connection.get("email"), user_id)
    response = _frontend("/email", success="connected")
    response.delete_cookie(STATE_COOKIE)
    return response


# =============================================================================
# GoTo Connect
# =============================================================================

@router.get("/auth/goto")
def connect_goto(user: ApiUser = Depends(require_permission("manage:settings"))):
    try:
        url = goto_client.get_authorization_url()
    except ConfigError as exc:
        logger.error("GoTo OAuth not configured: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})
    return RedirectResponse(url, status_code=302)


@router.get("/auth/goto/callback")
def goto_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    """Store GoTo tokens and register the call webhooks."""
    if error or not code:
        return _frontend("/calls", goto_error="true", error_message=error or "missing_code")

    try:
        goto_client.exchange_code_for_tokens(code)
        setup = goto_client.setup_goto_integration(f"{get_settings().app_url}/api/webhooks/goto")
    except (goto_client.GoToError, ConfigError) as exc:
        logger.error("GoTo OAuth callback failed: %s", exc)
        return _frontend("/calls", goto_error="true", error_message=str(exc))

    logger.info("GoTo Connect integrated, channel %s", setup.get("channelId"))
    return _frontend("/calls", goto_connected="true")


@router.get("/integrations/goto")
def goto_status(user: ApiUser = Depends(get_api_user)) -> dict:
    return {
        "connected": goto_client.is_authenticated(),
        "accountKey": goto_client.get_account_key(),
    }


# =============================================================================
# Google Calendar
# =============================================================================

@router.get("/calendar/google/connect")
def connect_google_calendar(user: ApiUser = Depends(get_api_user)):
    """Return the Google consent URL; the signed state also goes in a cookie."""
    state = generate_client_state(user.email, secrets.token_hex(8))
    try:
        url = google_calendar.get_authorization_url(state)
    except ConfigError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})

    response = JSONResponse(content={"url": url})
    _set_state_cookie(response, CALENDAR_STATE_COOKIE, state)
    return response


@router.get("/calendar/google/callback")
def google_calendar_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    calendar_oauth_state: Optional[str] = Cookie(None),
):
    """Finish the Google OAuth flow and store the calendar connection."""
    if error:
        logger.error("Google Calendar OAuth error: %s", error)
        return _frontend("/calendar", error=error)
    if not code or not state:
        return _frontend("/calendar", error="missing_params")

    valid, user_id, _ = validate_client_state(state)
    if not valid or not user_id or (calendar_oauth_state is not None and calendar_oauth_state != state):
        return _frontend("/calendar", error="invalid_state")

    try:
        tokens = google_calendar.exchange_code_for_tokens(code)
    except (google_calendar.CalendarError, ConfigError) as exc:
        logger.error("Google token exchange failed for %s: %s", user_id, exc)
        return _frontend("/calendar", error="token_exchange_failed")

    try:
        user_info = google_calendar.get_user_info(tokens.access_token)
        calendar_id = google_calendar.get_primary_calendar_id(tokens.access_token)
        connection = google_calendar.save_connection(user_id, tokens, user_info, calendar_id)
    except google_calendar.CalendarError as exc:
        logger.error("Google Calendar callback failed for %s: %s", user_id, exc)
        return _frontend("/calendar", error="connection_failed")

    logger.info("Connected Google Calendar %s for %s", connection.get("email"), user_id)
    response = _frontend("/calendar", connected="google")
    response.delete_cookie(CALENDAR_STATE_COOKIE)
    return response


@router.get("/calendar/connections")
def list_calendar_connections(user: ApiUser = Depends(get_api_user)) -> dict:
    connections = google_calendar.list_connections(user.email)
    return {"connections": [google_calendar.to_api_dict(c) for c in connections]}


@router.delete("/calendar/connections/{connection_id}")
def delete_calendar_connection(connection_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    if not google_calendar.delete_connection(user.email, connection_id):
        raise HTTPException(status_code=404, detail="Connection not found")
    return {"success": True}
