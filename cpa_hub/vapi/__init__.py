"""VAPI phone assistant integration."""

from .functions import AGENT_FUNCTIONS, handle_function_call

__all__ = ["AGENT_FUNCTIONS", "handle_function_call"]
