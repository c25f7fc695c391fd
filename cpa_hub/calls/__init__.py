"""Calls package - call records from phone and form webhooks."""

from .store import Call, create_call, find_call_by_provider_id, get_call, list_calls

__all__ = ["Call", "create_call", "find_call_by_provider_id", "get_call", "list_calls"]
