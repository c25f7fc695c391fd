"""Shared dependencies and helper functions for API routers.

Import these in routers instead of duplicating code.

Usage in routers:
    from api.dependencies import get_api_user, get_settings, clamp_limit
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from cpa_hub.api.auth import get_current_user  # noqa: F401 - re-export
from cpa_hub.config import load_settings
from cpa_hub.permissions import ApiUser, get_api_user, require_permission  # noqa: F401 - re-export


# =============================================================================
# Configuration Constants
# =============================================================================

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    os.getenv("HUB_ALLOWED_FRONTEND", "").strip(),
]


# =============================================================================
# Cached Functions
# =============================================================================

@lru_cache
def get_settings():
    """Get application settings (cached)."""
    return load_settings()


# =============================================================================
# Request Helpers
# =============================================================================

def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """Clamp a paging limit to ``1..maximum``."""
    if limit is None:
        return default
    return max(1, min(limit, maximum))


def clamp_offset(offset: Optional[int]) -> int:
    return max(0, offset or 0)
