"""Task store for the CPA Operations Hub.

Tasks are created manually, from phone calls (VAPI function calls), and
from approved email action items. They follow the Firestore + file
fallback pattern through DocumentStore:
- Firestore path: tasks/{task_id}
- File fallback: {HUB_STORE_DIR}/tasks.jsonl
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..documents import DocumentStore

TASKS_COLLECTION = "tasks"


class TaskStatus(str, Enum):
    """Task status values."""

    PENDING = "pending"
    TODO = "todo"  # Created from approved email action items
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskSource(str, Enum):
    """Where the task originated."""

    MANUAL = "manual"
    PHONE_CALL = "phone_call"
    EMAIL = "email"
    EMAIL_INTELLIGENCE = "email_intelligence"


# Statuses a task may be moved to by an update
UPDATABLE_STATUSES = [
    TaskStatus.PENDING.value,
    TaskStatus.IN_PROGRESS.value,
    TaskStatus.COMPLETED.value,
    TaskStatus.CANCELLED.value,
]
VALID_PRIORITIES = [p.value for p in TaskPriority]
MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 5000

UPDATABLE_FIELDS = {
    "title",
    "description",
    "status",
    "priority",
    "due_date",
    "client_id",
    "client_name",
    "assignee_id",
    "assigned_to",
    "assignee_name",
    "tags",
    "estimated_minutes",
}


class TaskValidationError(RuntimeError):
    """Raised when a task create/update payload is invalid."""


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(slots=True)
class Task:
    """A task stored in the hub."""

    id: str
    title: str
    status: str
    priority: str
    created_at: datetime
    updated_at: datetime

    description: Optional[str] = None
    due_date: Optional[date] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None

    # Assignment
    assigned_to: Optional[str] = None
    assignee_name: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    claimed_by: Optional[str] = None

    source: str = TaskSource.MANUAL.value
    source_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    estimated_minutes: Optional[int] = None
    created_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_overdue(self, today: Optional[date] = None) -> bool:
        if not self.due_date or self.status in (TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value):
            return False
        return self.due_date < (today or date.today())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "assigned_to": self.assigned_to,
            "assignee_name": self.assignee_name,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "assigned_by": self.assigned_by,
            "claimed_by": self.claimed_by,
            "source": self.source,
            "source_id": self.source_id,
            "tags": list(self.tags),
            "estimated_minutes": self.estimated_minutes,
            "created_by": self.created_by,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary."""
        now = datetime.now(timezone.utc)
        return cls(
            id=data["id"],
            title=data["title"],
            status=data.get("status", TaskStatus.PENDING.value),
            priority=data.get("priority", TaskPriority.MEDIUM.value),
            created_at=_parse_datetime(data.get("created_at")) or now,
            updated_at=_parse_datetime(data.get("updated_at")) or now,
            description=data.get("description"),
            due_date=_parse_date(data.get("due_date")),
            client_id=data.get("client_id"),
            client_name=data.get("client_name"),
            assigned_to=data.get("assigned_to"),
            assignee_name=data.get("assignee_name"),
            assigned_at=_parse_datetime(data.get("assigned_at")),
            assigned_by=data.get("assigned_by"),
            claimed_by=data.get("claimed_by"),
            source=data.get("source", TaskSource.MANUAL.value),
            source_id=data.get("source_id"),
            tags=list(data.get("tags") or []),
            estimated_minutes=data.get("estimated_minutes"),
            created_by=data.get("created_by"),
            completed_at=_parse_datetime(data.get("completed_at")),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to API response format (camelCase)."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "description": self.description,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "clientId": self.client_id,
            "clientName": self.client_name,
            "assignedTo": self.assigned_to,
            "assigneeName": self.assignee_name,
            "assignedAt": self.assigned_at.isoformat() if self.assigned_at else None,
            "assignedBy": self.assigned_by,
            "claimedBy": self.claimed_by,
            "source": self.source,
            "sourceId": self.source_id,
            "tags": list(self.tags),
            "estimatedMinutes": self.estimated_minutes,
            "createdBy": self.created_by,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "metadata": dict(self.metadata),
        }


@dataclass(slots=True)
class TaskFilters:
    """Filter criteria for listing tasks."""

    status: Optional[str] = None
    priority: Optional[str] = None
    client_id: Optional[str] = None
    search: Optional[str] = None
    unassigned: bool = False
    # Restrict to tasks related to this user (created, assigned or claimed)
    visible_to: Optional[str] = None


def _store() -> DocumentStore:
    return DocumentStore(TASKS_COLLECTION)


# =============================================================================
# CRUD Operations
# =============================================================================

def create_task(
    title: str,
    *,
    created_by: Optional[str] = None,
    description: Optional[str] = None,
    status: str = TaskStatus.PENDING.value,
    priority: str = TaskPriority.MEDIUM.value,
    due_date: Optional[date] = None,
    client_id: Optional[str] = None,
    client_name: Optional[str] = None,
    assigned_to: Optional[str] = None,
    assignee_name: Optional[str] = None,
    source: str = TaskSource.MANUAL.value,
    source_id: Optional[str] = None,
    tags: Optional[List[str]] = None,
    estimated_minutes: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Task:
    """Create a new task.

    Raises:
        TaskValidationError: if the title is empty or status/priority unknown.
    """
    title = (title or "").strip()
    if not title:
        raise TaskValidationError("Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise TaskValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    if status not in [s.value for s in TaskStatus]:
        raise TaskValidationError(f"Invalid status: {status}")
    if priority not in VALID_PRIORITIES:
        raise TaskValidationError(f"Invalid priority: {priority}")

    now = datetime.now(timezone.utc)
    task = Task(
        id=str(uuid.uuid4()),
        title=title,
        status=status,
        priority=priority,
        created_at=now,
        updated_at=now,
        description=description,
        due_date=_parse_date(due_date),
        client_id=client_id,
        client_name=client_name,
        assigned_to=assigned_to,
        assignee_name=assignee_name,
        assigned_at=now if assigned_to else None,
        assigned_by=created_by if assigned_to else None,
        source=source,
        source_id=source_id,
        tags=list(tags or []),
        estimated_minutes=estimated_minutes,
        created_by=created_by,
        metadata=dict(metadata or {}),
    )
    _store().save(task.id, task.to_dict())
    return task


def get_task(task_id: str) -> Optional[Task]:
    data = _store().get(task_id)
    return Task.from_dict(data) if data else None


def list_tasks(
    filters: Optional[TaskFilters] = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> List[Task]:
    """List tasks newest first, with optional filtering."""
    tasks = []
    for data in _store().list():
        try:
            tasks.append(Task.from_dict(data))
        except (KeyError, ValueError):
            continue

    if filters:
        tasks = _apply_filters(tasks, filters)

    tasks.sort(key=lambda t: t.created_at, reverse=True)
    return tasks[offset:offset + limit]


def validate_task_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Check an update payload and return the normalized updates.

    Raises:
        TaskValidationError: on unknown fields or invalid values.
    """
    unknown = sorted(set(updates) - UPDATABLE_FIELDS)
    if unknown:
        raise TaskValidationError(f"Unknown fields: {', '.join(unknown)}")

    cleaned = dict(updates)
    if "title" in cleaned:
        if not isinstance(cleaned["title"], str):
            raise TaskValidationError("Title must be a string")
        title = cleaned["title"].strip()
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise TaskValidationError(f"Title must be 1-{MAX_TITLE_LENGTH} characters")
        cleaned["title"] = title
    if "description" in cleaned and cleaned["description"] is not None:
        if not isinstance(cleaned["description"], str):
            raise TaskValidationError("Description must be a string")
        if len(cleaned["description"]) > MAX_DESCRIPTION_LENGTH:
            raise TaskValidationError(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
            )
    if "status" in cleaned and cleaned["status"] not in UPDATABLE_STATUSES:
        raise TaskValidationError(f"Invalid status: {cleaned['status']}")
    if "priority" in cleaned and cleaned["priority"] not in VALID_PRIORITIES:
        raise TaskValidationError(f"Invalid priority: {cleaned['priority']}")
    if "due_date" in cleaned:
        try:
            cleaned["due_date"] = _parse_date(cleaned["due_date"])
        except ValueError as exc:
            raise TaskValidationError(f"Invalid due_date: {cleaned['due_date']}") from exc

    # assignee_id is an alias for assigned_to
    if "assignee_id" in cleaned:
        cleaned["assigned_to"] = cleaned.pop("assignee_id")
    return cleaned


def update_task(
    task_id: str,
    updates: Dict[str, Any],
    *,
    actor: Optional[str] = None,
) -> Optional[Task]:
    """Validate and apply updates to a task.

    Returns:
        Updated Task if found, None otherwise.
    """
    cleaned = validate_task_updates(updates)
    task = get_task(task_id)
    if not task:
        return None

    now = datetime.now(timezone.utc)
    for key, value in cleaned.items():
        setattr(task, key, value)

    if cleaned.get("status") == TaskStatus.COMPLETED.value and task.completed_at is None:
        task.completed_at = now

    if "assigned_to" in cleaned:
        if cleaned["assigned_to"]:
            task.assigned_at = now
            task.assigned_by = actor
        else:
            task.assigned_at = None
            task.assigned_by = None

    task.updated_at = now
    _store().save(task.id, task.to_dict())
    return task


def delete_task(task_id: str) -> bool:
    return _store().delete(task_id)


def task_stats() -> Dict[str, Any]:
    """Counts by status and priority plus the overdue count."""
    tasks = list_tasks(limit=100_000)
    by_status: Dict[str, int] = {}
    by_priority: Dict[str, int] = {}
    for task in tasks:
        by_status[task.status] = by_status.get(task.status, 0) + 1
        by_priority[task.priority] = by_priority.get(task.priority, 0) + 1
    return {
        "total": len(tasks),
        "byStatus": by_status,
        "byPriority": by_priority,
        "overdue": sum(1 for t in tasks if t.is_overdue()),
    }


def is_related_to(task: Task, email: str) -> bool:
    """True if the user created, was assigned, or claimed the task."""
    return email in (task.created_by, task.assigned_to, task.claimed_by)


def _apply_filters(tasks: List[Task], filters: TaskFilters) -> List[Task]:
    result = tasks

    if filters.status and filters.status != "all":
        result = [t for t in result if t.status == filters.status]

    if filters.priority:
        result = [t for t in result if t.priority == filters.priority]

    if filters.client_id:
        result = [t for t in result if t.client_id == filters.client_id]

    if filters.search:
        needle = filters.search.lower()
        result = [
            t for t in result
            if needle in t.title.lower() or needle in (t.description or "").lower()
        ]

    if filters.unassigned:
        result = [t for t in result if not t.assigned_to]

    if filters.visible_to:
        result = [t for t in result if is_related_to(t, filters.visible_to)]

    return result
