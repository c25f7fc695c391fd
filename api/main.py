"""FastAPI service for the CPA Operations Hub."""
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import ALLOWED_ORIGINS, get_settings
from api.routers import (
    activity_router,
    admin_router,
    calls_router,
    clients_router,
    email_intelligence_router,
    email_webhooks_router,
    emails_router,
    oauth_router,
    settings_router,
    tasks_router,
    webhooks_router,
)
from cpa_hub.documents import DocumentStore
from cpa_hub.tasks.store import TASKS_COLLECTION

logger = logging.getLogger(__name__)


app = FastAPI(
    title="CPA Operations Hub API",
    version="0.1.0",
    description="Tasks, clients, calls and email intelligence for a CPA firm.",
)

origins = [origin for origin in ALLOWED_ORIGINS if origin]

if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


app.include_router(tasks_router, prefix="/api/tasks", tags=["tasks"])
app.include_router(clients_router, prefix="/api/clients", tags=["clients"])
app.include_router(calls_router, prefix="/api/calls", tags=["calls"])
app.include_router(activity_router, prefix="/api/activity", tags=["activity"])
app.include_router(admin_router, prefix="/api/admin", tags=["admin"])
app.include_router(webhooks_router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(email_webhooks_router, prefix="/api/emails/webhooks", tags=["email"])
app.include_router(emails_router, prefix="/api/emails", tags=["email"])
app.include_router(email_intelligence_router, prefix="/api/email-intelligence", tags=["email"])
app.include_router(oauth_router, prefix="/api", tags=["oauth"])
app.include_router(settings_router, prefix="/api/settings", tags=["settings"])


def _configured(*names: str) -> str:
    return "configured" if all(os.getenv(name) for name in names) else "not_configured"


@app.get("/health")
@app.get("/api/health")
def health_check() -> dict:
    """Health check endpoint with service configuration status."""
    settings = get_settings()

    services = {
        "anthropic": _configured("ANTHROPIC_API_KEY"),
        "goto": _configured("GOTO_CLIENT_ID", "GOTO_CLIENT_SECRET"),
        "microsoft": "configured" if (
            (os.getenv("MICROSOFT_CLIENT_ID") or os.getenv("MS_GRAPH_CLIENT_ID"))
            and (os.getenv("MICROSOFT_CLIENT_SECRET") or os.getenv("MS_GRAPH_CLIENT_SECRET"))
        ) else "not_configured",
        "google_calendar": "configured" if (
            (os.getenv("GOOGLE_CALENDAR_CLIENT_ID") or os.getenv("GOOGLE_CLIENT_ID"))
            and (os.getenv("GOOGLE_CALENDAR_CLIENT_SECRET") or os.getenv("GOOGLE_CLIENT_SECRET"))
        ) else "not_configured",
        "twilio": "configured" if settings.twilio_account_sid and settings.twilio_auth_token else "not_configured",
        "resend": "configured" if settings.resend_api_key else "not_configured",
        "call_webhook_secret": _configured("CALL_WEBHOOK_SECRET"),
    }

    try:
        DocumentStore(TASKS_COLLECTION).ping()
        storage = "ok"
    except Exception as exc:
        logger.warning("Storage health check failed: %s", exc)
        storage = "error"

    return {
        "status": "healthy" if storage == "ok" else "degraded",
        "time": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "services": services,
        "storage": storage,
    }
