"""Extract actionable task suggestions from a single email."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from anthropic import Anthropic

from ..llm.anthropic_client import (
    AnthropicError,
    FAST_MODEL,
    build_anthropic_client,
    create_message,
    extract_response_text,
    parse_json_response,
    resolve_config,
)

MAX_BODY_CHARS = 2000

TASK_CATEGORIES = [
    "tax_return",
    "bookkeeping",
    "payroll",
    "client_communication",
    "document_request",
    "meeting",
    "other",
]

TASK_EXTRACTION_PROMPT = """Analyze the following email for a CPA/accounting firm and extract actionable tasks.

For each task provide:
1. title: clear, concise task title (max 100 chars)
2. description: what needs to be done
3. priority: low, medium, high, or urgent
4. due_date: suggested due date (ISO format) or null
5. category: tax_return, bookkeeping, payroll, client_communication, document_request, meeting, or other

Return ONLY a JSON array of tasks. If there are no tasks, return [].

Example:
[
  {{
    "title": "Prepare 2023 1040 for John Smith",
    "description": "Client has sent all W-2s and 1099s. Ready to prepare personal return.",
    "priority": "high",
    "due_date": "2024-04-15T00:00:00Z",
    "category": "tax_return"
  }}
]

Email:
From: {sender}
Subject: {subject}
Body: {body}"""


@dataclass(slots=True)
class ExtractedTask:
    title: str
    description: str
    priority: str
    due_date: Optional[str]
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "due_date": self.due_date,
            "category": self.category,
        }


def html_to_text(content: str) -> str:
    return re.sub(r"<[^>]*>", " ", content or "").strip()


def extract_tasks_from_email(
    sender: str,
    subject: str,
    body: str,
    content_type: str = "text",
    *,
    client: Optional[Anthropic] = None,
) -> List[ExtractedTask]:
    """Ask Claude for task suggestions.

    Raises:
        AnthropicError: if the request fails or the response is not a JSON array.
    """
    text = html_to_text(body) if content_type.lower() == "html" else (body or "")
    prompt = TASK_EXTRACTION_PROMPT.format(
        sender=sender or "Unknown",
        subject=subject or "(no subject)",
        body=text[:MAX_BODY_CHARS],
    )

    if client is None:
        client = build_anthropic_client()
    config = resolve_config(FAST_MODEL, max_output_tokens=1000, temperature=0.3)
    response = create_message(
        client,
        config,
        system="You extract actionable tasks from emails. Respond with JSON only.",
        prompt=prompt,
    )
    data = parse_json_response(extract_response_text(response) or "[]")
    if not isinstance(data, list):
        raise AnthropicError("Task extraction did not return a JSON array.")

    tasks = []
    for item in data:
        if not isinstance(item, dict) or not item.get("title"):
            continue
        category = item.get("category") or "other"
        tasks.append(ExtractedTask(
            title=str(item["title"])[:100],
            description=str(item.get("description") or ""),
            priority=str(item.get("priority") or "medium"),
            due_date=item.get("due_date"),
            category=category if category in TASK_CATEGORIES else "other",
        ))
    return tasks
