"""Audit log — append-only record of every flagged event and consent change.

Two tiers:

  - fast storage: the newest `capacity` entries, most recent first, kept
    in memory for dashboard queries.  Overflow evicts the oldest.
  - durable storage: every entry is submitted to the configured Store.
    A failing store is logged and the entry parked in a bounded retry
    buffer; compliance decisions stay available while the backend is down.
"""

from __future__ import annotations
import logging
import threading
from collections import deque
from concurrent.futures import Executor
from datetime import datetime, timedelta, timezone
from typing import Any

from .store import AUDIT_COLLECTION, MemoryStore, Store
from .types import AuditLogEntry, AuditStatus, Severity

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_RETRY_BUFFER = 500


class DurableWriter:
    """Fail-soft writes to a Store, with a bounded write-ahead retry buffer.

    Pass an executor to move writes off the caller's thread entirely.
    """

    def __init__(self, store: Store, *, retry_buffer: int = DEFAULT_RETRY_BUFFER,
                 executor: Executor | None = None) -> None:
        self.store = store
        self._executor = executor
        self._pending: deque[tuple[str, dict[str, Any]]] = deque(maxlen=retry_buffer)
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, collection: str, record: dict[str, Any]) -> None:
        if self._executor is not None:
            self._executor.submit(self._write, collection, record)
        else:
            self._write(collection, record)

    def retry_pending(self) -> int:
        """Replay parked writes.  Returns how many went through."""
        with self._lock:
            batch = list(self._pending)
            self._pending.clear()
        done = 0
        for i, (collection, record) in enumerate(batch):
            if not self._try(collection, record):
                with self._lock:
                    # Keep order: the failed one and everything after it go back
                    self._pending.extendleft(reversed(batch[i:]))
                break
            done += 1
        return done

    def _write(self, collection: str, record: dict[str, Any]) -> None:
        if self._try(collection, record):
            if self.pending:
                self.retry_pending()
        else:
            with self._lock:
                if len(self._pending) == self._pending.maxlen:
                    logger.error("Audit retry buffer full, dropping oldest parked write")
                self._pending.append((collection, record))

    def _try(self, collection: str, record: dict[str, Any]) -> bool:
        try:
            self.store.create(collection, record)
        except Exception as exc:
            logger.warning("Failed to persist %s record %s: %s", collection, record.get("id"), exc)
            return False
        return True


class AuditLog:
    """Bounded, most-recent-first, append-only audit trail."""

    def __init__(self, writer: DurableWriter | None = None, *,
                 capacity: int = DEFAULT_CAPACITY, org_id: str = "org-1") -> None:
        self.writer = writer or DurableWriter(MemoryStore())
        self.org_id = org_id
        self._entries: deque[AuditLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def record(
        self,
        *,
        member_id: str,
        action: str,
        resource: str,
        status: AuditStatus,
        risk_level: Severity,
        flagged: bool,
        resource_id: str | None = None,
        trigger: str | None = None,
        metadata: dict[str, Any] | None = None,
        org_id: str | None = None,
    ) -> AuditLogEntry:
        """Append one entry and hand it to durable storage."""
        entry = AuditLogEntry(
            org_id=org_id or self.org_id,
            member_id=member_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            status=status,
            risk_level=risk_level,
            flagged=flagged,
            trigger=trigger,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._entries.appendleft(entry)
        self.writer.submit(AUDIT_COLLECTION, entry.to_dict())
        return entry

    def query(
        self,
        *,
        member_id: str | None = None,
        status: AuditStatus | str | None = None,
        risk_level: Severity | str | None = None,
        flagged_only: bool = False,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Filter the fast tier.  Filters AND together; none returns everything."""
        with self._lock:
            entries = list(self._entries)

        if member_id:
            entries = [e for e in entries if e.member_id == member_id]
        if status:
            status = AuditStatus(status)
            entries = [e for e in entries if e.status is status]
        if risk_level:
            risk_level = Severity(risk_level)
            entries = [e for e in entries if e.risk_level is risk_level]
        if flagged_only:
            entries = [e for e in entries if e.flagged]
        if limit:
            entries = entries[:limit]
        return entries

    def restore(self) -> int:
        """Warm the fast tier from durable storage, e.g. after a restart."""
        records = self.writer.store.list(AUDIT_COLLECTION, org_id=self.org_id)
        entries = sorted(
            (AuditLogEntry.from_dict(r) for r in records),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        with self._lock:
            self._entries.clear()
            self._entries.extend(entries[: self._entries.maxlen])
        return len(self._entries)

    def apply_retention(self, retention_days: int, *, org_id: str | None = None,
                        now: datetime | None = None) -> int:
        """Purge durable records older than the org's retention window."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        removed = self.writer.store.purge(
            AUDIT_COLLECTION, before=cutoff.isoformat(), org_id=org_id or self.org_id,
        )
        if removed:
            logger.info("Purged %d audit records older than %d days", removed, retention_days)
        return removed
