"""Clients package - CRM records and email-to-client matching."""
from __future__ import annotations

from .store import (
    Client,
    ClientValidationError,
    create_client,
    delete_client,
    find_client_by_email,
    find_client_by_phone,
    find_clients_by_name,
    get_client,
    list_clients,
    update_client,
)

__all__ = [
    "Client",
    "ClientValidationError",
    "create_client",
    "delete_client",
    "find_client_by_email",
    "find_client_by_phone",
    "find_clients_by_name",
    "get_client",
    "list_clients",
    "update_client",
]
