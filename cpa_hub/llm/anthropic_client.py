"""Anthropic client wrappers for the CPA Operations Hub."""
from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from typing import Any, Optional

from anthropic import Anthropic, APIStatusError
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
FAST_MODEL = "claude-3-5-haiku-20241022"


class AnthropicError(RuntimeError):
    """Base error for Anthropic failures."""


class AnthropicNotConfigured(AnthropicError):
    """Raised when the API key is missing."""


@dataclass(slots=True)
class AnthropicConfig:
    model: str = DEFAULT_MODEL
    max_output_tokens: int = 2500
    temperature: float = 0.3


def is_ai_available() -> bool:
    """True when an Anthropic API key is configured."""
    load_dotenv()
    return bool(os.getenv("ANTHROPIC_API_KEY"))


def build_anthropic_client() -> Anthropic:
    """Instantiate the Anthropic SDK client."""

    load_dotenv()
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise AnthropicNotConfigured(
            "ANTHROPIC_API_KEY is missing. Add it to your environment or .env file."
        )
    return Anthropic(api_key=api_key)


def resolve_config(model_override: Optional[str] = None, **overrides: Any) -> AnthropicConfig:
    env_model = os.getenv("ANTHROPIC_MODEL")
    model = model_override or env_model or DEFAULT_MODEL
    return AnthropicConfig(model=model, **overrides)


def create_message(
    client: Anthropic,
    config: AnthropicConfig,
    *,
    system: str,
    prompt: str,
):
    """Send a single-turn request, wrapping SDK failures in AnthropicError."""
    try:
        return client.messages.create(
            model=config.model,
            max_tokens=config.max_output_tokens,
            temperature=config.temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
    except APIStatusError as exc:
        raise AnthropicError(f"Anthropic API error: {exc}") from exc
    except Exception as exc:
        raise AnthropicError(f"Anthropic request failed: {exc}") from exc


def extract_response_text(response) -> str:
    """Extract text content from Anthropic response."""
    for block in getattr(response, "content", []):
        if getattr(block, "type", None) == "text":
            return getattr(block, "text", "").strip()
    raise AnthropicError("Anthropic response did not contain text content.")


def response_token_count(response) -> Optional[int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    input_tokens = getattr(usage, "input_tokens", 0) or 0
    output_tokens = getattr(usage, "output_tokens", 0) or 0
    total = input_tokens + output_tokens
    return total if isinstance(total, int) else None


def parse_json_response(text: str) -> Any:
    """Parse a JSON response, handling markdown fences."""
    cleaned = text.strip()

    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        if len(lines) >= 2:
            cleaned = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse model response: %s", text[:200])
        raise AnthropicError(f"Invalid JSON from model: {exc}") from exc
