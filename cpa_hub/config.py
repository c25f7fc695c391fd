"""Configuration helpers for the CPA Operations Hub."""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

from dotenv import load_dotenv


class ConfigError(RuntimeError):
    """Raised when required configuration is missing."""


@dataclass(slots=True)
class Settings:
    """Runtime configuration for the API."""

    environment: str = "local"
    app_url: str = "http://localhost:8000"
    anthropic_model: Optional[str] = None
    goto_webhook_secret: Optional[str] = None
    call_webhook_secret: Optional[str] = None
    graph_webhook_secret: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    resend_api_key: Optional[str] = None
    resend_from_email: Optional[str] = None


@dataclass(slots=True)
class GoToConfig:
    """OAuth credentials for the GoTo Connect integration."""

    client_id: str
    client_secret: str
    redirect_uri: str
    account_key: Optional[str] = None


@dataclass(slots=True)
class MicrosoftConfig:
    """OAuth credentials for the Microsoft Graph integration."""

    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass(slots=True)
class GoogleCalendarConfig:
    """OAuth credentials for Google Calendar connections."""

    client_id: str
    client_secret: str
    redirect_uri: str


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings() -> Settings:
    """Load settings from environment variables (and a local .env file)."""

    load_dotenv()
    return Settings(
        environment=os.getenv("HUB_ENV", "local"),
        app_url=(_env("HUB_APP_URL") or "http://localhost:8000").rstrip("/"),
        anthropic_model=_env("ANTHROPIC_MODEL"),
        goto_webhook_secret=_env("GOTO_WEBHOOK_SECRET"),
        call_webhook_secret=_env("CALL_WEBHOOK_SECRET"),
        graph_webhook_secret=_env("WEBHOOK_SECRET"),
        twilio_account_sid=_env("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=_env("TWILIO_AUTH_TOKEN"),
        twilio_phone_number=_env("TWILIO_PHONE_NUMBER"),
        resend_api_key=_env("RESEND_API_KEY"),
        resend_from_email=_env("RESEND_FROM_EMAIL"),
    )


def load_goto_config(settings: Optional[Settings] = None) -> GoToConfig:
    """Load GoTo Connect OAuth credentials.

    Raises:
        ConfigError: if the client id or secret is missing.
    """

    settings = settings or load_settings()
    client_id = _env("GOTO_CLIENT_ID")
    client_secret = _env("GOTO_CLIENT_SECRET")

    missing = [
        name
        for name, value in [("GOTO_CLIENT_ID", client_id), ("GOTO_CLIENT_SECRET", client_secret)]
        if not value
    ]
    if missing:
        raise ConfigError(f"GoTo Connect credentials not configured: {', '.join(missing)}")

    return GoToConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=_env("GOTO_REDIRECT_URI") or f"{settings.app_url}/api/auth/goto/callback",
        account_key=_env("GOTO_ACCOUNT_KEY"),
    )


def load_microsoft_config(settings: Optional[Settings] = None) -> MicrosoftConfig:
    """Load Microsoft Graph OAuth credentials.

    Accepts either the MICROSOFT_* or MS_GRAPH_* variable names.
    """

    settings = settings or load_settings()
    client_id = _env("MICROSOFT_CLIENT_ID") or _env("MS_GRAPH_CLIENT_ID")
    client_secret = _env("MICROSOFT_CLIENT_SECRET") or _env("MS_GRAPH_CLIENT_SECRET")

    if not client_id or not client_secret:
        raise ConfigError(
            "Microsoft OAuth not configured. Export MICROSOFT_CLIENT_ID and "
            "MICROSOFT_CLIENT_SECRET (or the MS_GRAPH_* equivalents)."
        )

    return MicrosoftConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=_env("MS_GRAPH_REDIRECT_URI") or f"{settings.app_url}/api/email/callback",
    )


def load_google_calendar_config(settings: Optional[Settings] = None) -> GoogleCalendarConfig:
    """Load Google Calendar OAuth credentials.

    GOOGLE_CALENDAR_CLIENT_ID/SECRET win over the shared GOOGLE_CLIENT_ID/SECRET.

    Raises:
        ConfigError: if the client id or secret is missing.
    """

    settings = settings or load_settings()
    client_id = _env("GOOGLE_CALENDAR_CLIENT_ID") or _env("GOOGLE_CLIENT_ID")
    client_secret = _env("GOOGLE_CALENDAR_CLIENT_SECRET") or _env("GOOGLE_CLIENT_SECRET")

    if not client_id or not client_secret:
        raise ConfigError("Google OAuth not configured")

    return GoogleCalendarConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=_env("GOOGLE_CALENDAR_REDIRECT_URI") or f"{settings.app_url}/api/calendar/google/callback",
    )
