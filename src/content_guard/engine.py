"""ComplianceEngine — the one object a host process builds at startup.

Owns every component and wires them to a single audit log, so chat
screening, ledger scanning and consent changes share one audit trail.
Pass it by reference; there is no module-level instance.
"""

from __future__ import annotations
from concurrent.futures import Executor
from typing import Any, Callable

from .audit import DEFAULT_CAPACITY, AuditLog, DurableWriter
from .cases import CaseManager
from .consent import AccessDecision, ConsentStore, FeatureGate
from .detector import Detector
from .patterns import Matcher, PatternRegistry, PatternRule
from .pipeline import MessagePipeline
from .redactor import Redactor, RedactorConfig
from .settings import ComplianceSettings
from .store import MemoryStore, Store
from .types import (
    AuditLogEntry,
    AuditStatus,
    Case,
    ConsentRecord,
    LedgerItem,
    Message,
    Subject,
)


class ComplianceEngine:
    """Detection, redaction, policy, audit, cases and consent for one org."""

    def __init__(
        self,
        settings: ComplianceSettings | None = None,
        *,
        store: Store | None = None,
        org_id: str = "org-1",
        audit_capacity: int = DEFAULT_CAPACITY,
        redactor_config: RedactorConfig | None = None,
        executor: Executor | None = None,
        notifier: Callable[[ConsentRecord], None] | None = None,
    ) -> None:
        self.settings = settings or ComplianceSettings()
        self.org_id = org_id
        self.store = store or MemoryStore()

        self.registry = PatternRegistry()
        self.detector = Detector(self.registry)
        self.redactor = Redactor(self.registry, redactor_config)
        self._executor = executor
        self.writer = DurableWriter(self.store, executor=executor)
        self.audit = AuditLog(self.writer, capacity=audit_capacity, org_id=org_id)
        self.cases = CaseManager(org_id, self.writer)
        self.consents = ConsentStore(self.audit, settings=self.settings, notifier=notifier)
        self.gate = FeatureGate(self.consents, self.settings)
        self.pipeline = MessagePipeline(
            self.detector, self.redactor, self.audit, self.cases, self.settings,
        )

    # -- screening -----------------------------------------------------------

    def register_pattern(self, name: str, category: str, severity: str, matcher: Matcher,
                         **kwargs: Any) -> PatternRule:
        return self.registry.register(name, category, severity, matcher, **kwargs)

    def process_message(self, message: Message | dict[str, Any]) -> Message:
        if isinstance(message, dict):
            message = Message.from_dict(message)
        return self.pipeline.process_message(message)

    def process_ledger_item(self, item: LedgerItem | dict[str, Any]) -> LedgerItem:
        if isinstance(item, dict):
            item = LedgerItem.from_dict(item)
        return self.pipeline.process_ledger_item(item)

    def check_feature_access(self, subject: Subject, feature: str) -> AccessDecision:
        return self.gate.check_feature_access(subject, feature)

    # -- dashboard -----------------------------------------------------------

    def get_audit_log(self, **filters: Any) -> list[AuditLogEntry]:
        return self.audit.query(**filters)

    def get_cases(self, **filters: Any) -> list[Case]:
        return self.cases.get_cases(**filters)

    def get_compliance_stats(self) -> dict[str, int]:
        entries = self.audit.query()
        return {
            "total_events": len(entries),
            # Content blocks only; feature-gate denials live under the consent resource
            "blocked_count": sum(1 for e in entries
                                 if e.status is AuditStatus.BLOCKED and e.resource != "consent"),
            "flagged_count": sum(1 for e in entries if e.flagged),
            "open_cases": self.cases.open_count(),
            "critical_cases": self.cases.critical_count(),
        }

    # -- housekeeping --------------------------------------------------------

    def restore(self) -> dict[str, int]:
        """Reload audit entries, cases and consent records after a restart."""
        return {
            "audit_entries": self.audit.restore(),
            "cases": self.cases.restore(),
            "consent_records": self.consents.restore(),
        }

    def apply_retention(self) -> int:
        return self.audit.apply_retention(self.settings.retention_days, org_id=self.org_id)

    def retry_pending_writes(self) -> int:
        return self.writer.retry_pending()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
