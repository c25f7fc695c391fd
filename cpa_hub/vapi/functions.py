"""Functions the VAPI phone assistant can call during a live call.

VAPI posts a ``function-call`` message with a name and parameters; the
result dict is returned to the assistant as ``{"result": ...}``.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Optional

from ..clients import Client, find_client_by_email, find_client_by_phone, find_clients_by_name, get_client
from ..logs.activity import log_activity
from ..tasks import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    Task,
    TaskFilters,
    TaskPriority,
    TaskSource,
    TaskStatus,
    create_task,
    list_tasks,
)

logger = logging.getLogger(__name__)

# Department -> env var holding the transfer number
TRANSFER_NUMBER_ENV = {
    "tax": "VAPI_TRANSFER_TAX",
    "bookkeeping": "VAPI_TRANSFER_BOOKKEEPING",
    "general": "VAPI_TRANSFER_GENERAL",
}

AGENT_FUNCTIONS: List[Dict[str, Any]] = [
    {
        "name": "createTask",
        "description": "Create a task for the office staff when a caller requests something that requires follow-up",
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Brief title of the task"},
                "description": {"type": "string", "description": "Detailed description of what needs to be done"},
                "priority": {"type": "string", "enum": ["low", "medium", "high", "urgent"]},
                "clientId": {"type": "string", "description": "The client ID if known"},
            },
            "required": ["title", "description"],
        },
    },
    {
        "name": "lookupClient",
        "description": "Look up a client in the system by phone number, name, or email",
        "parameters": {
            "type": "object",
            "properties": {
                "phoneNumber": {"type": "string"},
                "name": {"type": "string"},
                "email": {"type": "string"},
            },
        },
    },
    {
        "name": "getDocumentStatus",
        "description": "Check the status of a document for a client",
        "parameters": {
            "type": "object",
            "properties": {
                "clientId": {"type": "string"},
                "documentType": {"type": "string"},
                "year": {"type": "string"},
            },
        },
    },
    {
        "name": "scheduleCallback",
        "description": "Schedule a callback for the caller",
        "parameters": {
            "type": "object",
            "properties": {
                "phoneNumber": {"type": "string"},
                "preferredTime": {"type": "string"},
                "reason": {"type": "string"},
            },
        },
    },
    {
        "name": "transferCall",
        "description": "Transfer the call to a department",
        "parameters": {
            "type": "object",
            "properties": {
                "department": {"type": "string", "enum": list(TRANSFER_NUMBER_ENV)},
                "reason": {"type": "string"},
                "urgent": {"type": "boolean"},
            },
        },
    },
]


def _client_summary(client: Client) -> Dict[str, Any]:
    return {
        "found": True,
        "id": client.id,
        "name": client.display_name,
        "email": client.email,
        "phone": client.phone,
        "assignedTo": client.assigned_user,
    }


# =============================================================================
# Handlers
# =============================================================================

def create_task_from_call(params: Dict[str, Any]) -> Dict[str, Any]:
    title = str(params.get("title") or "").strip()[:MAX_TITLE_LENGTH].strip()
    if not title:
        return {"success": False, "error": "Task title is required"}

    priority = params.get("priority") or TaskPriority.MEDIUM.value
    if priority not in [p.value for p in TaskPriority]:
        priority = TaskPriority.MEDIUM.value

    description = params.get("description")
    client_id = params.get("clientId")
    client = get_client(client_id) if client_id else None
    task = create_task(
        title,
        description=str(description)[:MAX_DESCRIPTION_LENGTH] if description is not None else None,
        priority=priority,
        status=TaskStatus.PENDING.value,
        source=TaskSource.PHONE_CALL.value,
        client_id=client.id if client else None,
        client_name=client.display_name if client else None,
        assigned_to=client.assigned_user if client else None,
    )
    log_activity(
        action="created",
        resource_type="task",
        resource_id=task.id,
        resource_name=task.title,
        description="Task created by phone assistant",
    )
    return {
        "success": True,
        "taskId": task.id,
        "message": f'Task "{task.title}" has been created and assigned to the team.',
    }


def lookup_client(params: Dict[str, Any]) -> Dict[str, Any]:
    client: Optional[Client] = None
    if params.get("phoneNumber"):
        client = find_client_by_phone(params["phoneNumber"])
    if client is None and params.get("email"):
        client = find_client_by_email(params["email"])
    if client is None and params.get("name"):
        matches = find_clients_by_name(params["name"], limit=1)
        client = matches[0] if matches else None

    if client is None:
        return {
            "success": True,
            "client": {"found": False},
            "message": "No matching client was found.",
        }
    return {
        "success": True,
        "client": _client_summary(client),
        "message": "Client found in the system.",
    }


def _mentions_all(task: Task, terms: List[str]) -> bool:
    text = f"{task.title} {task.description or ''}".lower()
    return all(term in text for term in terms)


def get_document_status(params: Dict[str, Any]) -> Dict[str, Any]:
    """Report on open or completed tasks that mention the document."""
    document_type = (params.get("documentType") or "").strip()
    year = str(params.get("year") or "").strip()
    client_id = params.get("clientId")

    terms = [p.lower() for p in (year, document_type) if p]
    tasks = [
        t for t in list_tasks(TaskFilters(client_id=client_id), limit=100_000)
        if _mentions_all(t, terms)
    ][:10]
    label = " ".join(p for p in (year, document_type) if p) or "document"

    if not tasks:
        return {
            "success": True,
            "status": "not_found",
            "message": f"I could not find any work on the {label}. A team member will follow up.",
        }

    task = tasks[0]
    status = "filed" if task.status == TaskStatus.COMPLETED.value else task.status
    return {
        "success": True,
        "status": status,
        "taskId": task.id,
        "message": f"The {label} is currently {status.replace('_', ' ')}.",
    }


def schedule_callback(params: Dict[str, Any]) -> Dict[str, Any]:
    phone = params.get("phoneNumber")
    preferred_time = params.get("preferredTime") or "the next available time"
    reason = params.get("reason")

    client = find_client_by_phone(phone) if phone else None
    task = create_task(
        f"Call back {client.display_name if client else phone or 'caller'}",
        description="\n".join(p for p in (
            f"Preferred time: {preferred_time}",
            f"Phone: {phone}" if phone else None,
            f"Reason: {reason}" if reason else None,
        ) if p),
        priority=TaskPriority.HIGH.value,
        status=TaskStatus.PENDING.value,
        source=TaskSource.PHONE_CALL.value,
        client_id=client.id if client else None,
        client_name=client.display_name if client else None,
        assigned_to=client.assigned_user if client else None,
        tags=["callback"],
        metadata={"phoneNumber": phone, "preferredTime": preferred_time},
    )
    return {
        "success": True,
        "taskId": task.id,
        "message": f"A callback has been scheduled for {preferred_time}. Someone from our team will call you back.",
    }


def transfer_call(params: Dict[str, Any]) -> Dict[str, Any]:
    department = params.get("department") or "general"
    if department not in TRANSFER_NUMBER_ENV:
        department = "general"
    number = os.getenv(TRANSFER_NUMBER_ENV[department]) or os.getenv(TRANSFER_NUMBER_ENV["general"])
    if not number:
        return {"success": False, "error": f"No transfer number configured for {department}"}
    return {
        "success": True,
        "transferTo": number,
        "message": f"Transferring you to our {department} department now.",
    }


FUNCTION_HANDLERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "createTask": create_task_from_call,
    "lookupClient": lookup_client,
    "getDocumentStatus": get_document_status,
    "scheduleCallback": schedule_callback,
    "transferCall": transfer_call,
}


def handle_function_call(name: Optional[str], parameters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Dispatch a VAPI function call by name."""
    if not name:
        return {"error": "No function call data"}
    handler = FUNCTION_HANDLERS.get(name)
    if handler is None:
        return {"error": f"Unknown function: {name}"}
    logger.info("VAPI function call: %s", name)
    return handler(dict(parameters or {}))
