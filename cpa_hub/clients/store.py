"""Client (CRM) store backed by DocumentStore."""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..documents import DocumentStore

CLIENTS_COLLECTION = "clients"

ALLOWED_UPDATE_FIELDS = [
    "name",
    "first_name",
    "last_name",
    "company_name",
    "email",
    "phone",
    "alternate_phone",
    "address",
    "city",
    "state",
    "zip",
    "status",
    "notes",
    "tags",
    "assigned_user",
]


class ClientValidationError(RuntimeError):
    """Raised when a client payload is invalid."""


@dataclass(slots=True)
class Client:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    alternate_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    status: str = "active"
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    assigned_user: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company_name": self.company_name,
            "email": self.email,
            "phone": self.phone,
            "alternate_phone": self.alternate_phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "status": self.status,
            "notes": self.notes,
            "tags": list(self.tags),
            "assigned_user": self.assigned_user,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Client":
        now = datetime.now(timezone.utc)
        created = data.get("created_at")
        updated = data.get("updated_at")
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            created_at=datetime.fromisoformat(created) if isinstance(created, str) else (created or now),
            updated_at=datetime.fromisoformat(updated) if isinstance(updated, str) else (updated or now),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            company_name=data.get("company_name"),
            email=data.get("email"),
            phone=data.get("phone"),
            alternate_phone=data.get("alternate_phone"),
            address=data.get("address"),
            city=data.get("city"),
            state=data.get("state"),
            zip=data.get("zip"),
            status=data.get("status") or "active",
            notes=data.get("notes"),
            tags=list(data.get("tags") or []),
            assigned_user=data.get("assigned_user"),
            created_by=data.get("created_by"),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to API response format (camelCase)."""
        return {
            "id": self.id,
            "name": self.name,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "companyName": self.company_name,
            "email": self.email,
            "phone": self.phone,
            "alternatePhone": self.alternate_phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "status": self.status,
            "notes": self.notes,
            "tags": list(self.tags),
            "assignedUser": self.assigned_user,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _store() -> DocumentStore:
    return DocumentStore(CLIENTS_COLLECTION)


def digits_only(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


# =============================================================================
# CRUD Operations
# =============================================================================

def create_client(name: str, *, created_by: Optional[str] = None, **fields: Any) -> Client:
    """Create a client record.

    Raises:
        ClientValidationError: if the name is empty.
    """
    name = (name or "").strip()
    if not name:
        raise ClientValidationError("Client name is required")

    now = datetime.now(timezone.utc)
    values = {
        k: v for k, v in fields.items()
        if k in ALLOWED_UPDATE_FIELDS and k != "name" and v is not None
    }
    client = Client(
        id=str(uuid.uuid4()),
        name=name,
        created_at=now,
        updated_at=now,
        created_by=created_by,
        **values,
    )
    _store().save(client.id, client.to_dict())
    return client


def get_client(client_id: str) -> Optional[Client]:
    data = _store().get(client_id)
    return Client.from_dict(data) if data else None


def list_clients(
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Client]:
    """List clients ordered by name."""
    clients = [Client.from_dict(d) for d in _store().list()]

    if status and status != "all":
        clients = [c for c in clients if c.status == status]

    if search:
        needle = search.lower()
        clients = [
            c for c in clients
            if needle in c.name.lower()
            or needle in (c.email or "").lower()
            or needle in (c.phone or "")
        ]

    clients.sort(key=lambda c: c.name.lower())
    return clients[offset:offset + limit]


def update_client(client_id: str, updates: Dict[str, Any]) -> Optional[Client]:
    """Apply allowed-field updates. Unknown fields are ignored."""
    client = get_client(client_id)
    if not client:
        return None

    for key, value in updates.items():
        if key == "tags":
            value = list(value or [])
        if key in ALLOWED_UPDATE_FIELDS:
            setattr(client, key, value)
    if not (client.name or "").strip():
        raise ClientValidationError("Client name is required")

    client.updated_at = datetime.now(timezone.utc)
    _store().save(client.id, client.to_dict())
    return client


def delete_client(client_id: str) -> bool:
    return _store().delete(client_id)


# =============================================================================
# Lookups
# =============================================================================

def all_clients() -> List[Client]:
    return [Client.from_dict(d) for d in _store().list()]


def find_client_by_phone(phone: str) -> Optional[Client]:
    """Match on the last 10 digits of phone or alternate_phone."""
    target = digits_only(phone)[-10:]
    if len(target) < 10:
        return None
    for client in all_clients():
        for candidate in (client.phone, client.alternate_phone):
            if candidate and digits_only(candidate)[-10:] == target:
                return client
    return None


def find_client_by_email(email: str) -> Optional[Client]:
    target = (email or "").strip().lower()
    if not target:
        return None
    for client in all_clients():
        if (client.email or "").lower() == target:
            return client
    return None


def find_clients_by_name(name: str, limit: int = 5) -> List[Client]:
    needle = (name or "").strip().lower()
    if not needle:
        return []
    matches = [
        c for c in all_clients()
        if needle in c.name.lower() or needle in c.display_name.lower()
    ]
    return matches[:limit]
