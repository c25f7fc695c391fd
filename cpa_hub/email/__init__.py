"""Email intelligence: classification, client matching, assignment and sync."""
from __future__ import annotations

from .ai_classifier import AIClassificationResult, classify_email_with_ai
from .intelligence import (
    ClassificationNotFound,
    NoEmailConnection,
    approve_classification,
    complete_classification,
    dismiss_classification,
    list_intelligence,
    sync_inbox,
)
from .rule_classifier import EmailInput, classify_email

__all__ = [
    "AIClassificationResult",
    "ClassificationNotFound",
    "EmailInput",
    "NoEmailConnection",
    "approve_classification",
    "classify_email",
    "classify_email_with_ai",
    "complete_classification",
    "dismiss_classification",
    "list_intelligence",
    "sync_inbox",
]
