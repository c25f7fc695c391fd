"""Call records produced by the phone and form webhooks."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..documents import DocumentStore

CALLS_COLLECTION = "calls"


@dataclass(slots=True)
class Call:
    id: str
    vapi_call_id: str  # Provider call id, prefixed (goto-, form-, unknown-) for non-VAPI sources
    created_at: datetime
    caller_phone: Optional[str] = None
    caller_name: Optional[str] = None
    client_id: Optional[str] = None
    direction: str = "inbound"
    status: str = "completed"
    duration: Optional[int] = None
    recording_url: Optional[str] = None
    transcription: Optional[str] = None
    summary: Optional[str] = None
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vapi_call_id": self.vapi_call_id,
            "created_at": self.created_at.isoformat(),
            "caller_phone": self.caller_phone,
            "caller_name": self.caller_name,
            "client_id": self.client_id,
            "direction": self.direction,
            "status": self.status,
            "duration": self.duration,
            "recording_url": self.recording_url,
            "transcription": self.transcription,
            "summary": self.summary,
            "intent": self.intent,
            "sentiment": self.sentiment,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Call":
        created = data.get("created_at")
        if isinstance(created, str):
            created = datetime.fromisoformat(created)
        return cls(
            id=data["id"],
            vapi_call_id=data.get("vapi_call_id") or "",
            created_at=created or datetime.now(timezone.utc),
            caller_phone=data.get("caller_phone"),
            caller_name=data.get("caller_name"),
            client_id=data.get("client_id"),
            direction=data.get("direction") or "inbound",
            status=data.get("status") or "completed",
            duration=data.get("duration"),
            recording_url=data.get("recording_url"),
            transcription=data.get("transcription"),
            summary=data.get("summary"),
            intent=data.get("intent"),
            sentiment=data.get("sentiment"),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to API response format (camelCase)."""
        return {
            "id": self.id,
            "vapiCallId": self.vapi_call_id,
            "createdAt": self.created_at.isoformat(),
            "callerPhone": self.caller_phone,
            "callerName": self.caller_name,
            "clientId": self.client_id,
            "direction": self.direction,
            "status": self.status,
            "duration": self.duration,
            "recordingUrl": self.recording_url,
            "transcription": self.transcription,
            "summary": self.summary,
            "intent": self.intent,
            "sentiment": self.sentiment,
            "metadata": dict(self.metadata),
        }


def _store() -> DocumentStore:
    return DocumentStore(CALLS_COLLECTION)


def create_call(vapi_call_id: str, **fields: Any) -> Call:
    """Store a new call record."""
    call = Call(
        id=str(uuid.uuid4()),
        vapi_call_id=vapi_call_id,
        created_at=datetime.now(timezone.utc),
        **{k: v for k, v in fields.items() if v is not None},
    )
    _store().save(call.id, call.to_dict())
    return call


def get_call(call_id: str) -> Optional[Call]:
    data = _store().get(call_id)
    return Call.from_dict(data) if data else None


def find_call_by_provider_id(vapi_call_id: str) -> Optional[Call]:
    data = _store().find_one(vapi_call_id=vapi_call_id)
    return Call.from_dict(data) if data else None


def list_calls(
    *,
    direction: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Call]:
    """List calls newest first."""
    calls = [Call.from_dict(d) for d in _store().list()]

    if direction and direction != "all":
        calls = [c for c in calls if c.direction == direction]
    if search:
        needle = search.lower()
        calls = [
            c for c in calls
            if needle in (c.caller_name or "").lower()
            or needle in (c.caller_phone or "")
            or needle in (c.summary or "").lower()
        ]

    calls.sort(key=lambda c: c.created_at, reverse=True)
    return calls[offset:offset + limit]
