"""Webhook signature checks, replay protection and rate limiting."""
from __future__ import annotations

import hashlib
import hmac
import logging
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple, Union

from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 5 * 60
CLIENT_STATE_MAX_AGE_SECONDS = 24 * 60 * 60
DEFAULT_STATE_SECRET = "default-secret-change-in-production"

WEBHOOK_RATE_LIMIT = 200
WEBHOOK_RATE_INTERVAL_SECONDS = 60


# =============================================================================
# Signatures
# =============================================================================

@dataclass(slots=True)
class VerificationResult:
    valid: bool
    error: Optional[str] = None


def verify_hmac_signature(
    payload: Union[str, bytes],
    signature: Optional[str],
    secret: Optional[str],
    algorithm: str = "sha256",
) -> VerificationResult:
    """Check a hex HMAC signature, with or without a ``sha256=``/``sha1=`` prefix."""
    if not signature or not secret:
        return VerificationResult(False, "Missing signature or secret")

    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    digest = hashlib.sha1 if algorithm == "sha1" else hashlib.sha256
    expected = hmac.new(secret.encode("utf-8"), body, digest).hexdigest()

    provided = signature
    for prefix in ("sha256=", "sha1="):
        if provided.startswith(prefix):
            provided = provided[len(prefix):]
            break

    if len(provided) != len(expected):
        return VerificationResult(False, "Invalid signature length")
    if not hmac.compare_digest(provided.lower().encode("utf-8"), expected.encode("utf-8")):
        return VerificationResult(False, "Signature mismatch")
    return VerificationResult(True)


def verify_call_webhook_signature(
    payload: Union[str, bytes],
    signature: Optional[str],
    secret: Optional[str] = None,
) -> VerificationResult:
    """Verify the generic call webhook; skipped when no secret is configured."""
    secret = secret if secret is not None else os.getenv("CALL_WEBHOOK_SECRET")
    if not secret:
        logger.warning("CALL_WEBHOOK_SECRET not configured - skipping signature verification")
        return VerificationResult(True)
    if not signature:
        return VerificationResult(False, "Missing webhook signature header")
    return verify_hmac_signature(payload, signature, secret)


def verify_twilio_signature(
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
    auth_token: Optional[str],
) -> VerificationResult:
    """Check ``X-Twilio-Signature`` (HMAC-SHA1 over the URL and sorted form params)."""
    if not auth_token:
        logger.warning("TWILIO_AUTH_TOKEN not configured - skipping signature verification")
        return VerificationResult(True)
    if not signature:
        return VerificationResult(False, "Missing Twilio signature header")
    if not RequestValidator(auth_token).validate(url, dict(params), signature):
        return VerificationResult(False, "Signature mismatch")
    return VerificationResult(True)


# =============================================================================
# Replay Protection
# =============================================================================

def _timestamp_seconds(timestamp: Union[str, int, float]) -> Optional[float]:
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        return float(timestamp) / 1000
    text = str(timestamp).strip()
    if text.isdigit():
        return float(text) / 1000
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def is_timestamp_valid(
    timestamp: Union[str, int, float],
    max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
    *,
    now: Optional[float] = None,
) -> bool:
    """True if the ISO or epoch-milliseconds timestamp is within max age of now."""
    seconds = _timestamp_seconds(timestamp)
    if seconds is None:
        return False
    current = time.time() if now is None else now
    return abs(current - seconds) <= max_age_seconds


def generate_idempotency_key(event_id: str, timestamp: Union[str, int, float]) -> str:
    return f"{event_id}-{timestamp}"


class ProcessedWebhookCache:
    """Bounded set of processed webhook ids; oldest entries are evicted first."""

    def __init__(self, max_size: int = 10000) -> None:
        self.max_size = max_size
        self._ids: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, key: str) -> None:
        with self._lock:
            self._ids[key] = None
            while len(self._ids) > self.max_size:
                self._ids.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()


# =============================================================================
# Graph Client State
# =============================================================================

def _state_secret() -> str:
    return os.getenv("WEBHOOK_SECRET") or DEFAULT_STATE_SECRET


def _sign(data: str) -> str:
    return hmac.new(_state_secret().encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_client_state(user_id: str, connection_id: str) -> str:
    """Signed ``user:connection:timestamp_ms:hmac`` token."""
    data = f"{user_id}:{connection_id}:{int(time.time() * 1000)}"
    return f"{data}:{_sign(data)}"


def validate_client_state(client_state: str) -> Tuple[bool, Optional[str], Optional[str]]:
    """Return (valid, user_id, connection_id) for a signed client state."""
    parts = (client_state or "").split(":")
    if len(parts) != 4:
        return False, None, None

    user_id, connection_id, timestamp, received = parts
    expected = _sign(f"{user_id}:{connection_id}:{timestamp}")
    if not hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8")):
        return False, None, None
    try:
        age = time.time() - int(timestamp) / 1000
    except ValueError:
        return False, None, None
    if age > CLIENT_STATE_MAX_AGE_SECONDS:
        return False, None, None
    return True, user_id, connection_id


# =============================================================================
# Rate Limiting
# =============================================================================

@dataclass(slots=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset: float  # epoch seconds when the window resets


class RateLimiter:
    """Fixed-window in-memory rate limiter keyed by identifier (e.g. client IP)."""

    def __init__(self, interval: float = WEBHOOK_RATE_INTERVAL_SECONDS, limit: int = WEBHOOK_RATE_LIMIT) -> None:
        self.interval = interval
        self.limit = limit
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, identifier: str, *, now: Optional[float] = None) -> RateLimitResult:
        current = time.time() if now is None else now
        with self._lock:
            # Drop expired windows so the table stays bounded by active clients
            expired = [key for key, (_, reset) in self._windows.items() if reset < current]
            for key in expired:
                del self._windows[key]

            count, reset_at = self._windows.get(identifier, (0, current + self.interval))
            count += 1
            self._windows[identifier] = (count, reset_at)

        return RateLimitResult(
            success=count <= self.limit,
            remaining=max(0, self.limit - count),
            reset=reset_at,
        )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
