"""Microsoft Graph change notifications for connected mailboxes."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..documents import DocumentStore
from ..email.sync import SYNC_STATE_COLLECTION
from .security import validate_client_state

logger = logging.getLogger(__name__)


def _user_from_client_state(client_state: str) -> str:
    """Signed states carry ``user:connection:ts:hmac``; bare states are the user id."""
    if client_state.count(":") == 3:
        valid, user_id, _ = validate_client_state(client_state)
        if not valid:
            raise ValueError("Invalid signed clientState")
        return user_id or ""
    return client_state


def handle_notifications(notifications: List[Dict[str, Any]]) -> int:
    """Record webhook activity on matching sync states. Returns how many matched."""
    store = DocumentStore(SYNC_STATE_COLLECTION)
    matched = 0
    for notification in notifications:
        client_state = notification.get("clientState") or ""
        subscription_id = notification.get("subscriptionId")
        if not client_state:
            logger.error("Graph notification without clientState skipped")
            continue
        try:
            user_id = _user_from_client_state(client_state)
        except ValueError:
            logger.error("Graph notification with invalid clientState skipped")
            continue

        state = store.find_one(user_id=user_id, webhook_subscription_id=subscription_id)
        if state is None:
            logger.error("Graph subscription not found: %s", subscription_id)
            continue

        now = datetime.now(timezone.utc).isoformat()
        store.update(state["id"], {"last_webhook_at": now, "updated_at": now})
        logger.info(
            "Mail notification for %s: %s %s",
            user_id,
            notification.get("changeType"),
            notification.get("resource"),
        )
        matched += 1
    return matched
