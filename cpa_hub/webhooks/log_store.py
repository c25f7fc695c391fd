"""Webhook log storage.

Every inbound webhook gets a ``webhook_logs`` row that moves through
received -> parsing -> stored (or failed), so the monitor can show what
arrived, how it was parsed and which call record it produced.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..documents import DocumentStore, new_id

WEBHOOK_LOGS_COLLECTION = "webhook_logs"


class WebhookLogStatus(str, Enum):
    RECEIVED = "received"
    PARSING = "parsing"
    PARSED = "parsed"
    STORED = "stored"
    FAILED = "failed"


@dataclass(slots=True)
class WebhookLog:
    id: str
    endpoint: str
    source: str
    status: str
    created_at: datetime
    http_method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    raw_payload: Any = None
    parsed_data: Optional[Dict[str, Any]] = None
    ai_parsing_used: bool = False
    ai_confidence: Optional[float] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    result_call_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "endpoint": self.endpoint,
            "source": self.source,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "http_method": self.http_method,
            "headers": dict(self.headers),
            "raw_payload": self.raw_payload,
            "parsed_data": self.parsed_data,
            "ai_parsing_used": self.ai_parsing_used,
            "ai_confidence": self.ai_confidence,
            "error_message": self.error_message,
            "processing_time_ms": self.processing_time_ms,
            "result_call_id": self.result_call_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookLog":
        created = data.get("created_at")
        if isinstance(created, str):
            created = datetime.fromisoformat(created)
        return cls(
            id=data["id"],
            endpoint=data.get("endpoint") or "",
            source=data.get("source") or "unknown",
            status=data.get("status") or WebhookLogStatus.RECEIVED.value,
            created_at=created or datetime.now(timezone.utc),
            http_method=data.get("http_method") or "POST",
            headers=dict(data.get("headers") or {}),
            raw_payload=data.get("raw_payload"),
            parsed_data=data.get("parsed_data"),
            ai_parsing_used=bool(data.get("ai_parsing_used")),
            ai_confidence=data.get("ai_confidence"),
            error_message=data.get("error_message"),
            processing_time_ms=data.get("processing_time_ms"),
            result_call_id=data.get("result_call_id"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "endpoint": self.endpoint,
            "source": self.source,
            "status": self.status,
            "httpMethod": self.http_method,
            "headers": dict(self.headers),
            "rawPayload": self.raw_payload,
            "parsedData": self.parsed_data,
            "aiParsingUsed": self.ai_parsing_used,
            "aiConfidence": self.ai_confidence,
            "errorMessage": self.error_message,
            "processingTimeMs": self.processing_time_ms,
            "resultCallId": self.result_call_id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "createdAt": self.created_at.isoformat(),
        }


def _store() -> DocumentStore:
    return DocumentStore(WEBHOOK_LOGS_COLLECTION)


# =============================================================================
# CRUD Operations
# =============================================================================

def create_webhook_log(
    endpoint: str,
    source: str,
    *,
    raw_payload: Any = None,
    headers: Optional[Dict[str, str]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    http_method: str = "POST",
    status: str = WebhookLogStatus.RECEIVED.value,
) -> WebhookLog:
    log = WebhookLog(
        id=new_id(),
        endpoint=endpoint,
        source=source,
        status=status,
        created_at=datetime.now(timezone.utc),
        http_method=http_method,
        headers=dict(headers or {}),
        raw_payload=raw_payload,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    _store().save(log.id, log.to_dict())
    return log


def update_webhook_log(log_id: str, **updates: Any) -> Optional[WebhookLog]:
    data = _store().update(log_id, updates)
    return WebhookLog.from_dict(data) if data else None


def get_webhook_log(log_id: str) -> Optional[WebhookLog]:
    data = _store().get(log_id)
    return WebhookLog.from_dict(data) if data else None


def list_webhook_logs(
    *,
    status: Optional[str] = None,
    endpoint: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[WebhookLog], int]:
    """Return (page of logs newest first, total matching logs)."""
    logs = [WebhookLog.from_dict(d) for d in _store().list()]
    if status:
        logs = [log for log in logs if log.status == status]
    if endpoint:
        logs = [log for log in logs if log.endpoint == endpoint]
    logs.sort(key=lambda log: log.created_at, reverse=True)
    return logs[offset:offset + limit], len(logs)


def webhook_log_stats() -> Dict[str, Any]:
    logs = [WebhookLog.from_dict(d) for d in _store().list()]
    by_status = {s.value: 0 for s in WebhookLogStatus}
    for log in logs:
        if log.status in by_status:
            by_status[log.status] += 1

    timings = [log.processing_time_ms for log in logs if log.processing_time_ms is not None]
    return {
        "total": len(logs),
        "byStatus": by_status,
        "avgProcessingTimeMs": round(sum(timings) / len(timings)) if timings else 0,
        "aiParsedCount": sum(1 for log in logs if log.ai_parsing_used),
    }
