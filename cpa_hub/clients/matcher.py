"""Match email senders to existing clients.

Matching runs from strongest to weakest signal: exact email, business
domain, name similarity, phone number (last 10 digits), company name.
Each client appears at most once, keeping its first (strongest) match.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..documents import DocumentStore, new_id
from .store import Client, all_clients, digits_only

MATCHES_COLLECTION = "email_client_matches"

GENERIC_DOMAINS = frozenset([
    "gmail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
    "icloud.com",
    "aol.com",
    "live.com",
    "msn.com",
])

NAME_MATCH_THRESHOLD = 0.6


@dataclass(slots=True)
class ClientMatch:
    client_id: str
    match_type: str  # exact_email | domain | name_match | phone_match | company_match | manual
    confidence: float
    match_reason: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None

    @classmethod
    def for_client(cls, client: Client, match_type: str, confidence: float, reason: str) -> "ClientMatch":
        return cls(
            client_id=client.id,
            match_type=match_type,
            confidence=confidence,
            match_reason=reason,
            first_name=client.first_name,
            last_name=client.last_name,
            email=client.email,
            phone=client.phone,
            company_name=client.company_name,
        )

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "companyName": self.company_name,
            "matchType": self.match_type,
            "confidence": self.confidence,
            "matchReason": self.match_reason,
        }


@dataclass(slots=True)
class ClientMatchResult:
    primary_match: Optional[ClientMatch] = None
    alternative_matches: List[ClientMatch] = field(default_factory=list)
    search_terms_used: List[str] = field(default_factory=list)

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "primaryMatch": self.primary_match.to_api_dict() if self.primary_match else None,
            "alternativeMatches": [m.to_api_dict() for m in self.alternative_matches],
            "searchTermsUsed": list(self.search_terms_used),
        }


def extract_domain(email: str) -> str:
    parts = (email or "").split("@")
    return parts[1].lower() if len(parts) > 1 else ""


def normalize_name(name: str) -> str:
    return re.sub(r"[^a-z\s]", "", (name or "").lower()).strip()


def calculate_similarity(first: str, second: str) -> float:
    """Similarity in [0, 1]: exact 1, containment 0.8, else Levenshtein ratio."""
    s1 = first.lower()
    s2 = second.lower()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return 0.8

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current

    return 1 - previous[-1] / max(len(s1), len(s2))


def match_email_to_client(
    sender_email: str,
    sender_name: Optional[str] = None,
    extracted_names: Optional[List[str]] = None,
    extracted_phones: Optional[List[str]] = None,
    extracted_companies: Optional[List[str]] = None,
    *,
    clients: Optional[List[Client]] = None,
) -> ClientMatchResult:
    """Match an email sender (and entities from the email) to clients."""
    clients = clients if clients is not None else all_clients()
    matches: List[ClientMatch] = []
    search_terms: List[str] = []

    def _add(match: ClientMatch) -> None:
        if not any(m.client_id == match.client_id for m in matches):
            matches.append(match)

    normalized_email = (sender_email or "").strip().lower()
    sender_domain = extract_domain(normalized_email)

    # 1. Exact email
    search_terms.append(f"email:{normalized_email}")
    for client in clients:
        if normalized_email and (client.email or "").strip().lower() == normalized_email:
            _add(ClientMatch.for_client(client, "exact_email", 1.0, "Email address matches exactly"))

    # 2. Business domain, only when nothing matched yet
    if sender_domain and sender_domain not in GENERIC_DOMAINS and not matches:
        search_terms.append(f"domain:{sender_domain}")
        for client in clients:
            if extract_domain(client.email or "") == sender_domain:
                _add(ClientMatch.for_client(
                    client, "domain", 0.7, f"Same email domain: {sender_domain}"
                ))

    # 3. Names
    names = [n for n in [sender_name, *(extracted_names or [])] if n]
    for name in names:
        search_terms.append(f"name:{name}")
        parts = [p for p in normalize_name(name).split() if p]
        if not parts:
            continue
        for client in clients:
            full_name = f"{client.first_name or ''} {client.last_name or ''}".strip() or client.name
            lowered = full_name.lower()
            if not any(part in lowered for part in parts):
                continue
            similarity = calculate_similarity(name, full_name)
            if similarity >= NAME_MATCH_THRESHOLD:
                _add(ClientMatch.for_client(
                    client,
                    "name_match",
                    similarity * 0.8,
                    f'Name similarity: "{name}" matches "{full_name}"',
                ))

    # 4. Phones
    for phone in extracted_phones or []:
        digits = digits_only(phone)
        if len(digits) < 10:
            continue
        search_terms.append(f"phone:{phone}")
        last10 = digits[-10:]
        for client in clients:
            if any(last10 in digits_only(p) for p in (client.phone, client.alternate_phone) if p):
                _add(ClientMatch.for_client(
                    client, "phone_match", 0.85, f"Phone number matches: {phone}"
                ))

    # 5. Companies
    for company in extracted_companies or []:
        search_terms.append(f"company:{company}")
        needle = company.lower()
        for client in clients:
            if client.company_name and needle in client.company_name.lower():
                _add(ClientMatch.for_client(
                    client, "company_match", 0.75, f"Company name matches: {company}"
                ))

    matches.sort(key=lambda m: m.confidence, reverse=True)
    return ClientMatchResult(
        primary_match=matches[0] if matches else None,
        alternative_matches=matches[1:5],
        search_terms_used=search_terms,
    )


# =============================================================================
# Persistence
# =============================================================================

def _store() -> DocumentStore:
    return DocumentStore(MATCHES_COLLECTION)


def save_client_match(email_message_id: str, result: ClientMatchResult) -> Optional[Dict[str, Any]]:
    """Upsert the primary match for an email. Does nothing without a match."""
    if not result.primary_match:
        return None

    store = _store()
    existing = store.find_one(email_message_id=email_message_id)
    match = result.primary_match
    record = {
        "email_message_id": email_message_id,
        "client_id": match.client_id,
        "match_type": match.match_type,
        "confidence": match.confidence,
        "match_reason": match.match_reason,
        "alternative_matches": [m.to_api_dict() for m in result.alternative_matches],
        "is_verified": False,
        "matched_at": datetime.now(timezone.utc).isoformat(),
    }
    return store.save(existing["id"] if existing else new_id(), record)


def verify_client_match(email_message_id: str, client_id: str, verified_by: str) -> Dict[str, Any]:
    """Record a manual, verified match chosen by a user."""
    store = _store()
    existing = store.find_one(email_message_id=email_message_id)
    now = datetime.now(timezone.utc).isoformat()
    record = {
        **(existing or {}),
        "email_message_id": email_message_id,
        "client_id": client_id,
        "match_type": "manual",
        "confidence": 1.0,
        "match_reason": "Manually verified",
        "is_verified": True,
        "verified_by": verified_by,
        "verified_at": now,
    }
    return store.save(existing["id"] if existing else new_id(), record)


def get_client_match(email_message_id: str) -> Optional[Dict[str, Any]]:
    return _store().find_one(email_message_id=email_message_id)
