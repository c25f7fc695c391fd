"""API Routers Package.

Each router handles a specific domain:
- tasks.py: Task CRUD, filters and stats
- clients.py: CRM client records
- calls.py: Call records from phone/form webhooks
- activity.py: Activity log
- admin.py: User roles and permission overrides
- webhooks.py: GoTo, VAPI, Twilio SMS and generic call receivers plus the monitor
- email_webhooks.py: Microsoft Graph change notifications
- email_intelligence.py: Classified email review, sync and task extraction
- oauth.py: Microsoft, GoTo and Google Calendar OAuth flows
- settings.py: Profile, company and notification settings

Usage in main.py:
    from api.routers import tasks_router, clients_router, ...

    app.include_router(tasks_router, prefix="/api/tasks", tags=["tasks"])
"""

from .activity import router as activity_router
from .admin import router as admin_router
from .calls import router as calls_router
from .clients import router as clients_router
from .email_intelligence import emails_router
from .email_intelligence import router as email_intelligence_router
from .email_webhooks import router as email_webhooks_router
from .oauth import router as oauth_router
from .settings import router as settings_router
from .tasks import router as tasks_router
from .webhooks import router as webhooks_router

__all__ = [
    "activity_router",
    "admin_router",
    "calls_router",
    "clients_router",
    "email_intelligence_router",
    "email_webhooks_router",
    "emails_router",
    "oauth_router",
    "settings_router",
    "tasks_router",
    "webhooks_router",
]
