"""Shared pieces for the webhook processors."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..calls import Call
from ..llm import webhook_parser
from ..llm.webhook_parser import ParsedWebhookData

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProcessingResult:
    """What a webhook produced: the stored call (if any) and the AI parse (if run)."""
    call: Optional[Call] = None
    parsed: Optional[ParsedWebhookData] = None

    @property
    def ai_parsed(self) -> bool:
        return self.parsed is not None


def client_ip(headers: Mapping[str, str]) -> str:
    return headers.get("x-forwarded-for") or headers.get("x-real-ip") or "unknown"


def parse_if_available(payload: Dict[str, Any]) -> Optional[ParsedWebhookData]:
    """Run AI parsing when an API key is configured, otherwise return None."""
    if not webhook_parser.is_ai_parsing_available():
        return None
    return webhook_parser.parse_webhook_with_ai(payload)


def first_present(*values: Any) -> Any:
    """First value that is not None or empty."""
    for value in values:
        if value not in (None, ""):
            return value
    return None
