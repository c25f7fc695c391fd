"""LLM helpers (Anthropic) for webhook parsing and email intelligence."""

from .anthropic_client import (
    AnthropicError,
    AnthropicNotConfigured,
    build_anthropic_client,
    is_ai_available,
)

__all__ = [
    "AnthropicError",
    "AnthropicNotConfigured",
    "build_anthropic_client",
    "is_ai_available",
]
