"""Logging utilities for the CPA Operations Hub."""

from .activity import fetch_activity_entries, log_activity

__all__ = ["log_activity", "fetch_activity_entries"]
