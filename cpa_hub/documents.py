"""Document storage shared by every hub collection.

Each collection follows the same Firestore + file fallback pattern:
- Firestore path: {collection}/{doc_id}
- File fallback: {HUB_STORE_DIR}/{collection}.jsonl

Records are plain dictionaries with an "id" key. Typed stores (tasks,
clients, calls, webhook logs, ...) wrap a DocumentStore and convert to
and from their dataclasses.
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


def _use_file_storage() -> bool:
    """Check if we should use file-based storage."""
    return os.getenv("HUB_STORE_FORCE_FILE", "").strip() == "1"


def _get_store_dir() -> Path:
    """Get the file storage directory."""
    env_dir = os.getenv("HUB_STORE_DIR", "").strip()
    if env_dir:
        return Path(env_dir)
    return Path(__file__).resolve().parent.parent / "hub_store"


def _get_firestore_client():
    """Get Firestore client, or None if not available."""
    if _use_file_storage():
        return None

    try:
        from .firestore import get_firestore_client
        return get_firestore_client()
    except Exception as exc:
        logger.warning("Firestore unavailable, using local files: %s", exc)
        return None


def new_id() -> str:
    """Generate a new document id."""
    return str(uuid.uuid4())


class DocumentStore:
    """CRUD access to a single collection."""

    def __init__(self, collection: str) -> None:
        self.collection = collection

    # =========================================================================
    # Public API
    # =========================================================================

    def save(self, doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace a document."""
        record = dict(data)
        record["id"] = doc_id

        db = _get_firestore_client()
        if db is not None:
            try:
                db.collection(self.collection).document(doc_id).set(record)
                return record
            except Exception as exc:
                logger.warning(
                    "Firestore write to %s failed, falling back to local: %s",
                    self.collection,
                    exc,
                )
        self._save_to_file(record)
        return record

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return a document, or None if it does not exist."""
        db = _get_firestore_client()
        if db is not None:
            doc = db.collection(self.collection).document(doc_id).get()
            if doc.exists:
                return doc.to_dict()
            return None
        return self._read_file().get(doc_id)

    def list(self) -> List[Dict[str, Any]]:
        """Return every document in the collection."""
        db = _get_firestore_client()
        if db is not None:
            return [doc.to_dict() for doc in db.collection(self.collection).stream()]
        return list(self._read_file().values())

    def find(
        self,
        predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
        **equals: Any,
    ) -> List[Dict[str, Any]]:
        """Return documents whose fields equal the given values."""
        results = []
        for record in self.list():
            if any(record.get(key) != value for key, value in equals.items()):
                continue
            if predicate is not None and not predicate(record):
                continue
            results.append(record)
        return results

    def find_one(self, **equals: Any) -> Optional[Dict[str, Any]]:
        matches = self.find(**equals)
        return matches[0] if matches else None

    def update(self, doc_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Merge updates into an existing document."""
        record = self.get(doc_id)
        if record is None:
            return None
        record.update(updates)
        return self.save(doc_id, record)

    def delete(self, doc_id: str) -> bool:
        """Delete a document. Returns False if it was not found."""
        db = _get_firestore_client()
        if db is not None:
            doc_ref = db.collection(self.collection).document(doc_id)
            if doc_ref.get().exists:
                doc_ref.delete()
                return True
            return False

        records = self._read_file()
        if doc_id not in records:
            return False
        del records[doc_id]
        self._write_file(records)
        return True

    def ping(self) -> bool:
        """Check that the backing store can be read."""
        db = _get_firestore_client()
        if db is not None:
            list(db.collection(self.collection).limit(1).stream())
            return True
        self._read_file()
        return True

    # =========================================================================
    # File Storage (Fallback)
    # =========================================================================

    def _file_path(self) -> Path:
        store_dir = _get_store_dir()
        store_dir.mkdir(parents=True, exist_ok=True)
        return store_dir / f"{self.collection}.jsonl"

    def _read_file(self) -> Dict[str, Dict[str, Any]]:
        path = self._file_path()
        records: Dict[str, Dict[str, Any]] = {}
        if not path.exists():
            return records
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                try:
                    data = json.loads(line.strip())
                    records[data["id"]] = data
                except (json.JSONDecodeError, KeyError, TypeError):
                    continue
        return records

    def _write_file(self, records: Dict[str, Dict[str, Any]]) -> None:
        path = self._file_path()
        with path.open("w", encoding="utf-8") as handle:
            for record in records.values():
                handle.write(json.dumps(record, default=str) + "\n")

    def _save_to_file(self, record: Dict[str, Any]) -> None:
        records = self._read_file()
        records[record["id"]] = record
        self._write_file(records)
