"""Tasks package - task data models and storage."""
from __future__ import annotations

from .store import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    Task,
    TaskFilters,
    TaskPriority,
    TaskSource,
    TaskStatus,
    TaskValidationError,
    create_task,
    delete_task,
    get_task,
    is_related_to,
    list_tasks,
    task_stats,
    update_task,
)

__all__ = [
    "MAX_DESCRIPTION_LENGTH",
    "MAX_TITLE_LENGTH",
    "Task",
    "TaskFilters",
    "TaskPriority",
    "TaskSource",
    "TaskStatus",
    "TaskValidationError",
    "create_task",
    "delete_task",
    "get_task",
    "is_related_to",
    "list_tasks",
    "task_stats",
    "update_task",
]
