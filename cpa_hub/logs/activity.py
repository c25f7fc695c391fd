"""Activity logging to Firestore with file fallback."""
from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..firestore import get_firestore_client

logger = logging.getLogger(__name__)

DEFAULT_LOG_PATH = Path(__file__).resolve().parents[2] / "activity_log.jsonl"
ACTIVITY_COLLECTION = os.getenv("HUB_ACTIVITY_COLLECTION", "activity_log")


def _force_file() -> bool:
    return os.getenv("HUB_ACTIVITY_FORCE_FILE", "0") == "1"


def log_activity(
    *,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    resource_name: Optional[str] = None,
    user_email: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """Record an activity entry and return it."""

    entry: Dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "resource_name": resource_name,
        "user_email": user_email,
        "details": details or {},
        "description": description,
    }

    if _force_file():
        _write_file(entry)
        return entry

    try:
        client = get_firestore_client()
        client.collection(ACTIVITY_COLLECTION).add(entry)
    except Exception as exc:  # pragma: no cover - network/auth path
        _write_file(entry)
        logger.warning("Firestore activity write failed, wrote to local log instead: %s", exc)
    return entry


def fetch_activity_entries(
    limit: int = 50,
    *,
    offset: int = 0,
    resource_type: Optional[str] = None,
    action: Optional[str] = None,
    user_email: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return recent activity entries, newest first."""

    entries = _load_entries()

    if resource_type and resource_type != "all":
        entries = [e for e in entries if e.get("resource_type") == resource_type]
    if action and action != "all":
        entries = [e for e in entries if e.get("action") == action]
    if user_email and user_email != "all":
        entries = [e for e in entries if e.get("user_email") == user_email]
    if search:
        needle = search.lower()
        entries = [e for e in entries if needle in (e.get("resource_name") or "").lower()]

    return entries[offset:offset + limit]


def _load_entries() -> List[Dict[str, Any]]:
    if _force_file():
        return _read_file_entries()

    try:
        client = get_firestore_client()
        from firebase_admin import firestore as fb_firestore

        query = client.collection(ACTIVITY_COLLECTION).order_by(
            "ts", direction=fb_firestore.Query.DESCENDING
        )
        return [doc.to_dict() for doc in query.stream()]
    except Exception as exc:  # pragma: no cover - network/auth path
        logger.warning("Firestore activity read failed, falling back to local log: %s", exc)
        return _read_file_entries()


def _write_file(entry: Dict[str, Any]) -> None:
    path = _get_log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(entry, default=str))
        handle.write("\n")


def _get_log_path() -> Path:
    override = os.getenv("HUB_ACTIVITY_LOG")
    if override:
        return Path(override)
    return DEFAULT_LOG_PATH


def _read_file_entries() -> List[Dict[str, Any]]:
    path = _get_log_path()
    if not path.exists():
        return []
    entries: List[Dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return list(reversed(entries))
