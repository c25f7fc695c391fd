"""Tests for webhook signatures, replay protection and rate limiting."""
from __future__ import annotations

import hashlib
import hmac
import time

import pytest

from cpa_hub.webhooks import security
from cpa_hub.webhooks.security import (
    ProcessedWebhookCache,
    RateLimiter,
    generate_client_state,
    generate_idempotency_key,
    is_timestamp_valid,
    validate_client_state,
    verify_call_webhook_signature,
    verify_hmac_signature,
)

SECRET = "s3cret"
BODY = '{"event": "call.ended"}'


def _sign(body: str, secret: str = SECRET, digest=hashlib.sha256) -> str:
    return hmac.new(secret.encode(), body.encode(), digest).hexdigest()


class TestHmac:
    """HMAC verification."""

    def test_valid_signature(self):
        assert verify_hmac_signature(BODY, _sign(BODY), SECRET).valid

    def test_prefixed_and_uppercase_signature(self):
        assert verify_hmac_signature(BODY, "sha256=" + _sign(BODY).upper(), SECRET).valid

    def test_sha1(self):
        signature = "sha1=" + _sign(BODY, digest=hashlib.sha1)
        assert verify_hmac_signature(BODY.encode(), signature, SECRET, algorithm="sha1").valid

    def test_tampered_body(self):
        result = verify_hmac_signature(BODY + " ", _sign(BODY), SECRET)
        assert not result.valid
        assert result.error == "Signature mismatch"

    def test_wrong_length(self):
        assert verify_hmac_signature(BODY, "abc", SECRET).error == "Invalid signature length"

    @pytest.mark.parametrize("signature, secret", [(None, SECRET), ("abc", None), ("", "")])
    def test_missing_inputs(self, signature, secret):
        assert verify_hmac_signature(BODY, signature, secret).error == "Missing signature or secret"

    def test_non_ascii_signature_is_mismatch(self):
        result = verify_hmac_signature(BODY, "\u00e9" * 64, SECRET)
        assert not result.valid
        assert result.error == "Signature mismatch"


class TestCallWebhookSignature:
    """Generic call webhook verification."""

    def test_skipped_without_secret(self, monkeypatch):
        monkeypatch.delenv("CALL_WEBHOOK_SECRET", raising=False)
        assert verify_call_webhook_signature(BODY, None).valid

    def test_requires_header_when_secret_set(self, monkeypatch):
        monkeypatch.setenv("CALL_WEBHOOK_SECRET", SECRET)
        result = verify_call_webhook_signature(BODY, None)
        assert not result.valid
        assert result.error == "Missing webhook signature header"
        assert verify_call_webhook_signature(BODY, _sign(BODY)).valid


class TestTimestamps:
    """Replay window."""

    def test_epoch_milliseconds(self):
        now = 1_700_000_000.0
        assert is_timestamp_valid(int(now * 1000) - 60_000, now=now)
        assert not is_timestamp_valid(int(now * 1000) - 600_000, now=now)
        assert is_timestamp_valid(str(int(now * 1000)), now=now)

    def test_iso_timestamp(self):
        now = 1_700_000_000.0  # 2023-11-14T22:13:20Z
        assert is_timestamp_valid("2023-11-14T22:10:00Z", now=now)
        assert not is_timestamp_valid("2023-11-14T21:00:00+00:00", now=now)

    def test_future_timestamps_outside_window(self):
        now = 1_700_000_000.0
        assert not is_timestamp_valid(int((now + 3600) * 1000), now=now)

    def test_naive_iso_timestamp_is_utc(self):
        now = 1_700_000_000.0
        assert is_timestamp_valid("2023-11-14T22:13:20", now=now)
        assert not is_timestamp_valid("2023-11-14T20:13:20", now=now)

    def test_garbage(self):
        assert not is_timestamp_valid("yesterday")

    def test_idempotency_key(self):
        assert generate_idempotency_key("evt-1", 1700) == "evt-1-1700"


def test_processed_cache_evicts_oldest():
    cache = ProcessedWebhookCache(max_size=2)
    for key in ("a", "b", "c"):
        cache.add(key)
    assert "a" not in cache
    assert "b" in cache and "c" in cache
    assert len(cache) == 2
    cache.clear()
    assert len(cache) == 0


class TestClientState:
    """Signed Graph subscription state."""

    def test_round_trip(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_SECRET", "graph-secret")
        state = generate_client_state("staff@example.com", "conn-1")
        assert validate_client_state(state) == (True, "staff@example.com", "conn-1")

    def test_wrong_secret(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_SECRET", "graph-secret")
        state = generate_client_state("staff@example.com", "conn-1")
        monkeypatch.setenv("WEBHOOK_SECRET", "rotated")
        assert validate_client_state(state) == (False, None, None)

    def test_expired(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_SECRET", "graph-secret")
        state = generate_client_state("staff@example.com", "conn-1")
        later = time.time() + 2 * 24 * 60 * 60
        monkeypatch.setattr(security.time, "time", lambda: later)
        assert validate_client_state(state)[0] is False

    @pytest.mark.parametrize("state", ["", "a:b:c", "a:b:c:d:e"])
    def test_malformed(self, state):
        assert validate_client_state(state)[0] is False

    def test_non_ascii_signature(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_SECRET", "graph-secret")
        assert validate_client_state("a:b:1:\u00e9\u00e9") == (False, None, None)


class TestRateLimiter:
    """Fixed window limiter."""

    def test_blocks_after_limit(self):
        limiter = RateLimiter(interval=60, limit=2)
        assert limiter.check("1.2.3.4", now=0).remaining == 1
        assert limiter.check("1.2.3.4", now=1).success
        blocked = limiter.check("1.2.3.4", now=2)
        assert not blocked.success
        assert blocked.remaining == 0
        assert blocked.reset == 60

    def test_identifiers_are_independent(self):
        limiter = RateLimiter(interval=60, limit=1)
        assert limiter.check("a", now=0).success
        assert limiter.check("b", now=0).success

    def test_window_resets(self):
        limiter = RateLimiter(interval=60, limit=1)
        limiter.check("a", now=0)
        assert not limiter.check("a", now=30).success
        assert limiter.check("a", now=61).success
