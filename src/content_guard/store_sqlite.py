"""Persistent store backed by SQLite — survives process restarts.

Drop-in replacement for MemoryStore when you need durability.

Usage:
    store = SqliteStore(db_path="~/.content-guard/audit.db")
    store.create("audit_logs", entry.to_dict())
"""

from __future__ import annotations
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any


_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    org_id TEXT,
    payload TEXT NOT NULL,
    created_at REAL NOT NULL DEFAULT (julianday('now')),
    PRIMARY KEY (collection, id)
);
CREATE INDEX IF NOT EXISTS idx_records_org
    ON records(collection, org_id);
"""


class SqliteStore:
    """Durable record store.  One connection, guarded by a lock."""

    __slots__ = ("_db", "_lock", "_path")

    def __init__(self, db_path: str | Path = "content_guard.db") -> None:
        self._path = Path(db_path).expanduser()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(self._path), check_same_thread=False)
        self._db.executescript(_SCHEMA)
        self._lock = threading.Lock()

    def create(self, collection: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._db.execute(
                "INSERT OR REPLACE INTO records (collection, id, org_id, payload) VALUES (?, ?, ?, ?)",
                (collection, record["id"], record.get("organizationId"),
                 json.dumps(record, ensure_ascii=False)),
            )
            self._db.commit()

    def list(self, collection: str, *, org_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT payload FROM records WHERE collection = ?"
        params: tuple[Any, ...] = (collection,)
        if org_id is not None:
            query += " AND org_id = ?"
            params += (org_id,)
        with self._lock:
            rows = self._db.execute(query + " ORDER BY rowid", params).fetchall()
        return [json.loads(r[0]) for r in rows]

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                "SELECT payload FROM records WHERE collection = ? AND id = ?",
                (collection, record_id),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def purge(self, collection: str, *, before: str, org_id: str | None = None,
              key: str = "timestamp") -> int:
        doomed = [
            r["id"] for r in self.list(collection, org_id=org_id)
            if r.get(key) and r[key] < before
        ]
        if not doomed:
            return 0
        with self._lock:
            self._db.executemany(
                "DELETE FROM records WHERE collection = ? AND id = ?",
                [(collection, rid) for rid in doomed],
            )
            self._db.commit()
        return len(doomed)

    def list_collections(self) -> list[str]:
        with self._lock:
            rows = self._db.execute("SELECT DISTINCT collection FROM records").fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        self._db.close()
