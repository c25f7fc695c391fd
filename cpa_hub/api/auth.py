"""Staff sign-in: Google ID token verification for the hub API.

Firm staff sign in to the frontend with Google; the API receives the ID
token as a Bearer token and resolves it to a lowercased email. Roles are
looked up separately (see ``cpa_hub.permissions``).
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from fastapi import Header, HTTPException, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

DEV_BYPASS_ENV = "HUB_DEV_AUTH_BYPASS"
CLIENT_ID_ENV = "GOOGLE_OAUTH_CLIENT_ID"
ALLOWED_AUDIENCE_ENV = "GOOGLE_OAUTH_AUDIENCE"
ALLOWED_DOMAINS_ENV = "HUB_ALLOWED_EMAIL_DOMAINS"


class AuthError(HTTPException):
    def __init__(self, detail: str, code: int = status.HTTP_401_UNAUTHORIZED) -> None:
        super().__init__(status_code=code, detail=detail)


def _split_env(name: str) -> List[str]:
    return [part.strip() for part in (os.getenv(name) or "").split(",") if part.strip()]


def token_audiences() -> List[str]:
    """Accepted ID token audiences (the frontend OAuth client ids)."""
    return _split_env(ALLOWED_AUDIENCE_ENV) or _split_env(CLIENT_ID_ENV)


def verify_google_token(token: str) -> Dict[str, Any]:
    """Verify an ID token against each configured audience in turn.

    Raises:
        AuthError: when no audience is configured or none accepts the token.
    """
    audiences = token_audiences()
    if not audiences:
        raise AuthError("Server missing GOOGLE_OAUTH_CLIENT_ID or audience config.")

    request = google_requests.Request()
    last_error: Optional[ValueError] = None
    for audience in audiences:
        try:
            return id_token.verify_oauth2_token(token, request, audience)
        except ValueError as exc:
            last_error = exc
    raise AuthError(f"Invalid token: {last_error}")


def email_from_claims(claims: Dict[str, Any]) -> str:
    """Pull a verified firm email out of ID token claims.

    Raises:
        AuthError: 401 for a missing or unverified email, 403 when
            ``HUB_ALLOWED_EMAIL_DOMAINS`` is set and the domain is not listed.
    """
    email = (claims.get("email") or "").strip().lower()
    if not email:
        raise AuthError("Token missing email claim.")
    if claims.get("email_verified") is False:
        raise AuthError("Email address not verified.")

    allowed = [d.lower() for d in _split_env(ALLOWED_DOMAINS_ENV)]
    if allowed and email.rsplit("@", 1)[-1] not in allowed:
        raise AuthError("Email domain not allowed", code=status.HTTP_403_FORBIDDEN)
    return email


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    dev_user: str | None = Header(default=None, alias="X-User-Email"),
) -> str:
    """Return the authenticated user's email.

    With HUB_DEV_AUTH_BYPASS=1 the X-User-Email header is trusted instead.
    """
    if os.getenv(DEV_BYPASS_ENV) == "1":
        if dev_user and dev_user.strip():
            return dev_user.strip().lower()
        raise AuthError("Unauthorized")

    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Unauthorized")

    token = authorization.split(" ", 1)[1].strip()
    return email_from_claims(verify_google_token(token))
