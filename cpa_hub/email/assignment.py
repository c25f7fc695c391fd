"""Email assignment rules engine.

Decides who should handle a classified email, which column it lands in,
its priority and tags. Explicit rules are evaluated first (highest rule
priority first); when none match, patterns learned from past user actions
are used; finally a matched client's assigned user is suggested.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..documents import DocumentStore, new_id
from .ai_classifier import AIClassificationResult, priority_from_score

logger = logging.getLogger(__name__)

RULES_COLLECTION = "email_assignment_rules"
USER_ACTIONS_COLLECTION = "email_user_actions"

CONDITION_FIELDS = [
    "sender_email",
    "sender_domain",
    "subject",
    "category",
    "priority_score",
    "has_attachments",
    "contains_keyword",
    "client_matched",
]
CONDITION_OPERATORS = [
    "equals",
    "contains",
    "starts_with",
    "ends_with",
    "greater_than",
    "less_than",
    "is_true",
    "is_false",
]

LEARNED_PATTERN_MIN_CONFIDENCE = 0.5


class AssignmentRuleError(RuntimeError):
    """Raised when an assignment rule definition is invalid."""


@dataclass(slots=True)
class RuleCondition:
    field: str
    operator: str
    value: Any = None
    case_sensitive: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
            case_sensitive=bool(data.get("caseSensitive", data.get("case_sensitive", False))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "caseSensitive": self.case_sensitive,
        }


@dataclass(slots=True)
class AssignmentRule:
    id: str
    name: str
    conditions: List[RuleCondition]
    condition_operator: str = "and"
    priority: int = 0
    is_active: bool = True
    description: Optional[str] = None
    assign_to_user_id: Optional[str] = None
    assign_to_column: Optional[str] = None
    set_priority: Optional[str] = None
    add_tags: List[str] = field(default_factory=list)
    auto_create_task: bool = False
    times_matched: int = 0
    last_matched_at: Optional[str] = None
    created_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssignmentRule":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions") or []],
            condition_operator=data.get("condition_operator", "and"),
            priority=int(data.get("priority") or 0),
            is_active=bool(data.get("is_active", True)),
            description=data.get("description"),
            assign_to_user_id=data.get("assign_to_user_id"),
            assign_to_column=data.get("assign_to_column"),
            set_priority=data.get("set_priority"),
            add_tags=list(data.get("add_tags") or []),
            auto_create_task=bool(data.get("auto_create_task", False)),
            times_matched=int(data.get("times_matched") or 0),
            last_matched_at=data.get("last_matched_at"),
            created_by=data.get("created_by"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "conditions": [c.to_dict() for c in self.conditions],
            "condition_operator": self.condition_operator,
            "priority": self.priority,
            "is_active": self.is_active,
            "description": self.description,
            "assign_to_user_id": self.assign_to_user_id,
            "assign_to_column": self.assign_to_column,
            "set_priority": self.set_priority,
            "add_tags": list(self.add_tags),
            "auto_create_task": self.auto_create_task,
            "times_matched": self.times_matched,
            "last_matched_at": self.last_matched_at,
            "created_by": self.created_by,
        }


@dataclass(slots=True)
class AssignmentEmail:
    """The email facts rules are evaluated against."""

    sender_email: str
    subject: str
    classification: AIClassificationResult
    body: Optional[str] = None
    has_attachments: bool = False
    client_matched: bool = False
    matched_client_assignee: Optional[str] = None

    @property
    def sender_domain(self) -> str:
        parts = self.sender_email.split("@")
        return parts[1].lower() if len(parts) > 1 else ""


@dataclass(slots=True)
class AssignmentResult:
    assigned_column: str
    priority: str
    assignment_reason: str
    assigned_user_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    should_create_task: bool = False
    matched_rules: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignedUserId": self.assigned_user_id,
            "assignedColumn": self.assigned_column,
            "priority": self.priority,
            "tags": list(self.tags),
            "shouldCreateTask": self.should_create_task,
            "matchedRules": list(self.matched_rules),
            "assignmentReason": self.assignment_reason,
        }


@dataclass(slots=True)
class LearnedPattern:
    confidence: float = 0.0
    suggested_column: Optional[str] = None
    suggested_user_id: Optional[str] = None


def _rules_store() -> DocumentStore:
    return DocumentStore(RULES_COLLECTION)


def _actions_store() -> DocumentStore:
    return DocumentStore(USER_ACTIONS_COLLECTION)


# =============================================================================
# Rule evaluation
# =============================================================================

def evaluate_condition(condition: RuleCondition, email: AssignmentEmail) -> bool:
    if condition.field == "sender_email":
        value: Any = email.sender_email if condition.case_sensitive else email.sender_email.lower()
    elif condition.field == "sender_domain":
        value = email.sender_domain
    elif condition.field == "subject":
        value = email.subject if condition.case_sensitive else email.subject.lower()
    elif condition.field == "category":
        value = email.classification.category
    elif condition.field == "priority_score":
        value = email.classification.priority_score
    elif condition.field == "has_attachments":
        value = email.has_attachments
    elif condition.field == "contains_keyword":
        text = f"{email.subject} {email.body or ''}".lower()
        value = str(condition.value).lower() in text
    elif condition.field == "client_matched":
        value = email.client_matched
    else:
        return False

    expected = condition.value
    if not condition.case_sensitive and isinstance(expected, str):
        expected = expected.lower()

    operator = condition.operator
    try:
        if operator == "equals":
            return value == expected
        if operator == "contains":
            return str(expected) in str(value)
        if operator == "starts_with":
            return str(value).startswith(str(expected))
        if operator == "ends_with":
            return str(value).endswith(str(expected))
        if operator == "greater_than":
            return float(value) > float(expected)
        if operator == "less_than":
            return float(value) < float(expected)
    except (TypeError, ValueError):
        return False
    if operator == "is_true":
        return value is True
    if operator == "is_false":
        return value is False
    return False


def evaluate_rule(rule: AssignmentRule, email: AssignmentEmail) -> bool:
    if not rule.is_active or not rule.conditions:
        return False
    results = [evaluate_condition(c, email) for c in rule.conditions]
    if rule.condition_operator == "and":
        return all(results)
    return any(results)


def load_assignment_rules() -> List[AssignmentRule]:
    """Active rules, highest priority first."""
    rules = []
    for data in _rules_store().list():
        try:
            rule = AssignmentRule.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed assignment rule: %s", exc)
            continue
        if rule.is_active:
            rules.append(rule)
    rules.sort(key=lambda r: r.priority, reverse=True)
    return rules


def create_assignment_rule(data: Dict[str, Any], created_by: str) -> AssignmentRule:
    """Validate and store a new rule.

    Raises:
        AssignmentRuleError: on a missing name or unknown field/operator.
    """
    if not (data.get("name") or "").strip():
        raise AssignmentRuleError("Rule name is required")
    conditions = [RuleCondition.from_dict(c) for c in data.get("conditions") or []]
    if not conditions:
        raise AssignmentRuleError("At least one condition is required")
    for condition in conditions:
        if condition.field not in CONDITION_FIELDS:
            raise AssignmentRuleError(f"Unknown condition field: {condition.field}")
        if condition.operator not in CONDITION_OPERATORS:
            raise AssignmentRuleError(f"Unknown condition operator: {condition.operator}")
    operator = data.get("condition_operator", "and")
    if operator not in ("and", "or"):
        raise AssignmentRuleError(f"Unknown condition operator: {operator}")

    rule = AssignmentRule(
        id=new_id(),
        name=data["name"].strip(),
        conditions=conditions,
        condition_operator=operator,
        priority=int(data.get("priority") or 0),
        is_active=bool(data.get("is_active", True)),
        description=data.get("description"),
        assign_to_user_id=data.get("assign_to_user_id"),
        assign_to_column=data.get("assign_to_column"),
        set_priority=data.get("set_priority"),
        add_tags=list(data.get("add_tags") or []),
        auto_create_task=bool(data.get("auto_create_task", False)),
        created_by=created_by,
    )
    _rules_store().save(rule.id, rule.to_dict())
    return rule


# =============================================================================
# Learned patterns
# =============================================================================

def _recent_actions(limit: int, **equals: Any) -> List[Dict[str, Any]]:
    actions = _actions_store().find(**equals)
    actions.sort(key=lambda a: a.get("created_at") or "", reverse=True)
    return actions[:limit]


def _most_common(values: List[Optional[str]]) -> Tuple[Optional[str], int]:
    counts = Counter(v for v in values if v)
    if not counts:
        return None, 0
    value, count = counts.most_common(1)[0]
    return value, count


def get_learned_patterns(sender_email: str, sender_domain: str, category: str) -> LearnedPattern:
    """Suggest a column/assignee from how users handled similar mail before."""
    sender_actions = _recent_actions(10, sender_email=sender_email.lower())
    if len(sender_actions) >= 2:
        column, column_count = _most_common([a.get("new_column") for a in sender_actions])
        assignee, assignee_count = _most_common([a.get("new_assignee") for a in sender_actions])
        if column or assignee:
            confidence = min((column_count + assignee_count) / (len(sender_actions) * 2), 0.95)
            return LearnedPattern(confidence, column, assignee)

    domain_actions = _recent_actions(20, sender_domain=sender_domain.lower())
    if len(domain_actions) >= 3:
        column, count = _most_common([a.get("new_column") for a in domain_actions])
        if column and count >= 2:
            return LearnedPattern(min(count / len(domain_actions), 0.7), column)

    category_actions = _recent_actions(50, ai_category=category)
    if len(category_actions) >= 5:
        column, count = _most_common([a.get("new_column") for a in category_actions])
        if column and count >= 3:
            return LearnedPattern(min(count / len(category_actions), 0.5), column)

    return LearnedPattern()


# =============================================================================
# Public API
# =============================================================================

def determine_assignment(email: AssignmentEmail) -> AssignmentResult:
    result = AssignmentResult(
        assigned_column="pending",
        priority=priority_from_score(email.classification.priority_score),
        assignment_reason="Default assignment based on AI classification",
    )
    tags: List[str] = []

    store = _rules_store()
    for rule in load_assignment_rules():
        if not evaluate_rule(rule, email):
            continue
        result.matched_rules.append(rule.id)
        if rule.assign_to_user_id:
            result.assigned_user_id = rule.assign_to_user_id
        if rule.assign_to_column:
            result.assigned_column = rule.assign_to_column
        if rule.set_priority:
            result.priority = rule.set_priority
        tags.extend(rule.add_tags)
        if rule.auto_create_task:
            result.should_create_task = True
        result.assignment_reason = f"Matched rule: {rule.name}"
        store.update(rule.id, {
            "times_matched": rule.times_matched + 1,
            "last_matched_at": datetime.now(timezone.utc).isoformat(),
        })

    if not result.matched_rules:
        learned = get_learned_patterns(
            email.sender_email, email.sender_domain, email.classification.category
        )
        if learned.confidence >= LEARNED_PATTERN_MIN_CONFIDENCE:
            if learned.suggested_column:
                result.assigned_column = learned.suggested_column
                result.assignment_reason = (
                    f"Learned pattern ({round(learned.confidence * 100)}% confidence)"
                )
            if learned.suggested_user_id:
                result.assigned_user_id = learned.suggested_user_id

    if not result.assigned_user_id and email.matched_client_assignee:
        result.assigned_user_id = email.matched_client_assignee
        result.assignment_reason += " (Client's assigned user)"

    tags.append(email.classification.category)
    if email.classification.urgency == "urgent":
        tags.append("urgent")
    if email.has_attachments:
        tags.append("has-attachments")
    result.tags = list(dict.fromkeys(tags))
    return result


def record_user_action(
    user_id: str,
    email_message_id: str,
    *,
    sender_email: str,
    subject: str,
    category: str,
    priority: str,
    action_type: str,
    action_value: Optional[str] = None,
    previous_column: Optional[str] = None,
    new_column: Optional[str] = None,
    previous_assignee: Optional[str] = None,
    new_assignee: Optional[str] = None,
) -> Dict[str, Any]:
    """Log how a user handled an email so future assignments can learn from it."""
    sender = (sender_email or "").lower()
    parts = sender.split("@")
    record = {
        "user_id": user_id,
        "email_message_id": email_message_id,
        "sender_email": sender,
        "sender_domain": parts[1] if len(parts) > 1 else "",
        "subject": subject,
        "ai_category": category,
        "ai_priority": priority,
        "action_type": action_type,
        "action_value": action_value,
        "previous_column": previous_column,
        "new_column": new_column,
        "previous_assignee": previous_assignee,
        "new_assignee": new_assignee,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    return _actions_store().save(new_id(), record)
