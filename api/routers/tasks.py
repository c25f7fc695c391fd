"""Tasks Router - firm task management.

Handles:
- Task listing with filters (staff only see their own tasks)
- Task CRUD with validation and activity logging
- Status/priority/overdue stats
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import ApiUser, get_api_user
from cpa_hub.logs import log_activity
from cpa_hub.permissions import can_view_all, user_has_permission
from cpa_hub.tasks import (
    Task,
    TaskFilters,
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

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class TaskCreateRequest(BaseModel):
    """Request body for creating a task."""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    assigned_to: Optional[str] = Field(None, alias="assignee_id")
    assignee_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    estimated_minutes: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Helpers
# =============================================================================

def _load_visible_task(task_id: str, user: ApiUser) -> Task:
    task = get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if not can_view_all(user) and not is_related_to(task, user.email):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return task


def _can_delete(task: Task, user: ApiUser) -> bool:
    if user_has_permission(user, "delete:any"):
        return True
    owns = task.created_by == user.email
    return owns and (
        user_has_permission(user, "delete:own")
        or user_has_permission(user, "manage:own-tasks")
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.get("")
def list_tasks_endpoint(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None, alias="clientId"),
    search: Optional[str] = Query(None),
    unassigned: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    """List tasks newest first."""
    filters = TaskFilters(
        status=status,
        priority=priority,
        client_id=client_id,
        search=search,
        unassigned=unassigned,
        visible_to=None if can_view_all(user) else user.email,
    )
    tasks = list_tasks(filters, limit=limit, offset=offset)
    return {"tasks": [t.to_api_dict() for t in tasks], "count": len(tasks)}


@router.post("", status_code=201)
def create_task_endpoint(
    request: TaskCreateRequest,
    user: ApiUser = Depends(get_api_user),
) -> dict:
    """Create a task. Defaults: pending, medium, manual."""
    if not (request.title or "").strip():
        raise HTTPException(status_code=400, detail="Title is required")

    try:
        task = create_task(
            request.title,
            created_by=user.email,
            description=request.description,
            status=request.status or TaskStatus.PENDING.value,
            priority=request.priority or "medium",
            due_date=request.due_date,
            client_id=request.client_id,
            client_name=request.client_name,
            assigned_to=request.assigned_to,
            assignee_name=request.assignee_name,
            tags=request.tags,
            estimated_minutes=request.estimated_minutes,
        )
    except (TaskValidationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    log_activity(
        action="created",
        resource_type="task",
        resource_id=task.id,
        resource_name=task.title,
        user_email=user.email,
    )
    return {"task": task.to_api_dict()}


@router.get("/stats")
def task_stats_endpoint(user: ApiUser = Depends(get_api_user)) -> dict:
    """Counts by status and priority plus overdue."""
    return task_stats()


@router.get("/{task_id}")
def get_task_endpoint(task_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    task = _load_visible_task(task_id, user)
    return {"task": task.to_api_dict()}


def _apply_update(task_id: str, updates: Dict[str, Any], user: ApiUser) -> dict:
    _load_visible_task(task_id, user)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")

    try:
        task = update_task(task_id, updates, actor=user.email)
    except TaskValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    completed = updates.get("status") == TaskStatus.COMPLETED.value
    log_activity(
        action="completed" if completed else "updated",
        resource_type="task",
        resource_id=task.id,
        resource_name=task.title,
        user_email=user.email,
        details={"fields": sorted(updates)},
    )
    return {"task": task.to_api_dict()}


@router.put("/{task_id}")
def replace_task_endpoint(
    task_id: str,
    updates: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    return _apply_update(task_id, updates, user)


@router.patch("/{task_id}")
def patch_task_endpoint(
    task_id: str,
    updates: Dict[str, Any] = Body(...),
    user: ApiUser = Depends(get_api_user),
) -> dict:
    return _apply_update(task_id, updates, user)


@router.delete("/{task_id}")
def delete_task_endpoint(task_id: str, user: ApiUser = Depends(get_api_user)) -> dict:
    task = get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if not _can_delete(task, user):
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    delete_task(task_id)
    log_activity(
        action="deleted",
        resource_type="task",
        resource_id=task.id,
        resource_name=task.title,
        user_email=user.email,
    )
    return {"success": True, "deleted": task_id}
