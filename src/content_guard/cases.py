"""Case manager — longer-lived, investigable compliance records.

Lifecycle:

    open          → investigating | escalated | resolved
    investigating → escalated | resolved
    escalated     → investigating | resolved   (higher-tier review)
    resolved      → (terminal)

CRITICAL cases start out escalated; everything else starts open.  Every
transition appends exactly one action to the case history.  Callers only
ever get copies; the manager's own cases change through the methods below.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import replace
from typing import Any

from .audit import DurableWriter
from .errors import CaseNotFoundError, InvalidTransitionError
from .store import CASE_COLLECTION
from .types import (
    Case,
    CaseAction,
    CaseStatus,
    CaseType,
    Evidence,
    Severity,
    utcnow,
)

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[CaseStatus, set[CaseStatus]] = {
    CaseStatus.OPEN: {CaseStatus.INVESTIGATING, CaseStatus.ESCALATED, CaseStatus.RESOLVED},
    CaseStatus.INVESTIGATING: {CaseStatus.ESCALATED, CaseStatus.RESOLVED},
    CaseStatus.ESCALATED: {CaseStatus.INVESTIGATING, CaseStatus.RESOLVED},
    CaseStatus.RESOLVED: set(),
}

_RESOLUTION_ACTIONS = {
    "allowed": "allow",
    "blocked": "block",
    "quarantined": "quarantine",
}


class CaseManager:
    """Owns all cases for an org.  Newest first."""

    def __init__(self, org_id: str = "org-1", writer: DurableWriter | None = None) -> None:
        self.org_id = org_id
        self.writer = writer
        self._cases: list[Case] = []
        self._lock = threading.Lock()

    def create_case(
        self,
        member_id: str,
        case_type: CaseType | str,
        evidence: Evidence,
        severity: Severity | str,
        *,
        event_id: str | None = None,
        org_id: str | None = None,
    ) -> Case:
        case_type = CaseType(case_type)
        severity = Severity(severity)
        now = utcnow()
        case = Case(
            org_id=org_id or self.org_id,
            member_id=member_id,
            type=case_type,
            severity=severity,
            status=CaseStatus.ESCALATED if severity is Severity.CRITICAL else CaseStatus.OPEN,
            title=f"{case_type.value.replace('_', ' ')} - {now[:10]}",
            description=f"Automated case created for {case_type.value}",
            evidence=evidence,
            event_id=event_id,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._cases.insert(0, case)
            snapshot = case.to_dict()
            case = _copy(case)
        self._persist(snapshot)
        logger.info("Opened %s case %s for member %s (%s)",
                    severity.value, case.id, member_id, case.status.value)
        return case

    def get_case(self, case_id: str) -> Case:
        with self._lock:
            return _copy(self._find(case_id))

    def get_cases(
        self,
        *,
        member_id: str | None = None,
        status: CaseStatus | str | None = None,
        severity: Severity | str | None = None,
    ) -> list[Case]:
        with self._lock:
            cases = [_copy(c) for c in self._cases]
        if member_id:
            cases = [c for c in cases if c.member_id == member_id]
        if status:
            status = CaseStatus(status)
            cases = [c for c in cases if c.status is status]
        if severity:
            severity = Severity(severity)
            cases = [c for c in cases if c.severity is severity]
        return cases

    # -- transitions ---------------------------------------------------------

    def start_investigation(self, case_id: str, investigator: str,
                            notes: str | None = None) -> Case:
        return self._transition(case_id, CaseStatus.INVESTIGATING, "review", investigator, notes)

    def escalate_case(self, case_id: str, escalated_by: str, notes: str | None = None) -> Case:
        return self._transition(case_id, CaseStatus.ESCALATED, "escalate", escalated_by, notes)

    def resolve_case(self, case_id: str, resolution: str, resolved_by: str,
                     notes: str | None = None) -> Case:
        """Close a case.  `resolution` is "allowed", "blocked" or "quarantined"."""
        action = _RESOLUTION_ACTIONS.get(resolution)
        if action is None:
            raise ValueError(f"unknown resolution {resolution!r}")
        return self._transition(case_id, CaseStatus.RESOLVED, action, resolved_by, notes)

    def _transition(self, case_id: str, target: CaseStatus, action_type: str,
                    performed_by: str, notes: str | None) -> Case:
        with self._lock:
            case = self._find(case_id)
            if target not in _TRANSITIONS[case.status]:
                raise InvalidTransitionError(
                    f"case {case_id} can't go from {case.status.value} to {target.value}"
                )
            action = CaseAction(type=action_type, performed_by=performed_by, notes=notes)
            case.actions.append(action)
            case.status = target
            case.updated_at = action.performed_at
            if target is CaseStatus.RESOLVED:
                case.closed_at = action.performed_at
            snapshot = case.to_dict()
            case = _copy(case)
        self._persist(snapshot)
        logger.info("Case %s -> %s by %s", case_id, target.value, performed_by)
        return case

    def restore(self) -> int:
        """Reload cases from durable storage, e.g. after a restart."""
        if self.writer is None:
            return 0
        records = self.writer.store.list(CASE_COLLECTION, org_id=self.org_id)
        cases = sorted((Case.from_dict(r) for r in records),
                       key=lambda c: c.created_at, reverse=True)
        with self._lock:
            self._cases = cases
        return len(cases)

    def _persist(self, snapshot: dict[str, Any]) -> None:
        if self.writer is not None:
            self.writer.submit(CASE_COLLECTION, snapshot)

    def _find(self, case_id: str) -> Case:
        for case in self._cases:
            if case.id == case_id:
                return case
        raise CaseNotFoundError(case_id)

    # -- stats ---------------------------------------------------------------

    def open_count(self) -> int:
        with self._lock:
            return sum(1 for c in self._cases
                       if c.status in (CaseStatus.OPEN, CaseStatus.INVESTIGATING))

    def critical_count(self) -> int:
        """CRITICAL cases that are still unresolved."""
        with self._lock:
            return sum(1 for c in self._cases
                       if c.severity is Severity.CRITICAL and c.status is not CaseStatus.RESOLVED)


def _copy(case: Case) -> Case:
    # CaseAction is frozen, so only the containers need fresh copies
    evidence = replace(case.evidence, matched_patterns=list(case.evidence.matched_patterns))
    return replace(case, evidence=evidence, actions=list(case.actions))
