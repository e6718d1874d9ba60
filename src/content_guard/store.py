"""Durable-store interface and the in-memory backend.

Business logic never knows which backend it talks to:

  - MemoryStore  — bounded ring per collection, the default
  - SqliteStore  — survives restarts (store_sqlite.py)
  - HttpStore    — a REST datastore collaborator (store_http.py)

Records are plain JSON-able dicts with an "id" key.  `create` is
idempotent on id, so a retried write never duplicates a record.
"""

from __future__ import annotations
import threading
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable

AUDIT_COLLECTION = "audit_logs"
CONSENT_COLLECTION = "consent_records"
CASE_COLLECTION = "cases"


@runtime_checkable
class Store(Protocol):
    def create(self, collection: str, record: dict[str, Any]) -> None: ...

    def list(self, collection: str, *, org_id: str | None = None) -> list[dict[str, Any]]: ...

    def purge(self, collection: str, *, before: str, org_id: str | None = None,
              key: str = "timestamp") -> int: ...


class MemoryStore:
    """In-process store.  Oldest records fall off once a collection is full."""

    __slots__ = ("_capacity", "_collections", "_lock")

    def __init__(self, capacity: int = 10_000) -> None:
        self._capacity = capacity
        self._collections: dict[str, OrderedDict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def create(self, collection: str, record: dict[str, Any]) -> None:
        with self._lock:
            records = self._collections.setdefault(collection, OrderedDict())
            records[record["id"]] = dict(record)
            records.move_to_end(record["id"])
            while len(records) > self._capacity:
                records.popitem(last=False)

    def list(self, collection: str, *, org_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            records = list(self._collections.get(collection, {}).values())
        if org_id is not None:
            records = [r for r in records if r.get("organizationId") == org_id]
        return [dict(r) for r in records]

    def purge(self, collection: str, *, before: str, org_id: str | None = None,
              key: str = "timestamp") -> int:
        with self._lock:
            records = self._collections.get(collection)
            if not records:
                return 0
            doomed = [
                rid for rid, r in records.items()
                if (org_id is None or r.get("organizationId") == org_id)
                and r.get(key) and r[key] < before
            ]
            for rid in doomed:
                del records[rid]
        return len(doomed)

    @property
    def size(self) -> int:
        with self._lock:
            return sum(len(r) for r in self._collections.values())

    def clear(self) -> None:
        with self._lock:
            self._collections.clear()
