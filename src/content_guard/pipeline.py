"""Message pipeline — detect, redact, decide, audit.

Usage:

    pipeline = MessagePipeline(detector, redactor, audit, cases, settings)

    # Chat: may block the message
    screened = pipeline.process_message(message)
    if screened.is_blocked:
        ...

    # Ledger items: never hidden, a CRITICAL finding opens a case instead
    scanned = pipeline.process_ledger_item(item)

The inbound object is never mutated; an annotated copy comes back.  The
durable audit write happens after the decision and can't fail the call.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from typing import Any

from .audit import AuditLog
from .cases import CaseManager
from .detector import Detector
from .policy import decide
from .redactor import Redactor
from .settings import ComplianceSettings
from .types import (
    AuditLogEntry,
    CaseType,
    Decision,
    Evidence,
    Flag,
    FlagCategory,
    LedgerItem,
    Message,
    Severity,
    worst_severity,
)

logger = logging.getLogger(__name__)


@dataclass
class MessagePipeline:
    """Detector → Redactor → Policy, then one audit entry per flagged item."""

    detector: Detector
    redactor: Redactor
    audit: AuditLog
    cases: CaseManager
    settings: ComplianceSettings

    def screen(self, text: str) -> tuple[list[Flag], str | None, Decision]:
        """Flags, redacted text and decision for raw text.

        The redacted text is None unless at least one span was actually
        masked; skip_types and the allow-list can leave PII flagged but
        unmasked.
        """
        flags = self.detector.detect(text)
        pii_flags = [f for f in flags if f.category is FlagCategory.PII]
        redacted = None
        if pii_flags:
            result = self.redactor.redact_detailed(text, pii_flags)
            if result.redacted:
                redacted = result.text
        return flags, redacted, decide(flags, self.settings.block_on_pii)

    def process_message(self, message: Message) -> Message:
        flags, redacted, decision = self.screen(message.content)
        screened = replace(
            message,
            is_blocked=decision is Decision.BLOCK,
            pii_redacted=redacted is not None,
            redacted_content=redacted,
            compliance_flags=flags or None,
        )
        logger.debug("Message %s: %s (%d flags)", message.id, decision.value, len(flags))

        if flags:
            self._audit(
                flags, decision,
                member_id=message.sender_id,
                action="MESSAGE_SENT",
                resource="chat",
                resource_id=message.channel_id,
                metadata={"messageId": message.id},
            )
        return screened

    def process_ledger_item(self, item: LedgerItem) -> LedgerItem:
        text = item.scan_text
        flags, redacted, decision = self.screen(text)
        scanned = replace(item, compliance_flags=flags or None)
        if not flags:
            return scanned

        metadata: dict[str, Any] = {"ledgerType": item.type}
        worst = worst_severity(f.severity for f in flags)
        if worst is Severity.CRITICAL:
            critical_pii = any(
                f.category is FlagCategory.PII and f.severity is Severity.CRITICAL for f in flags
            )
            case = self.cases.create_case(
                item.member_id,
                CaseType.PII_DETECTION if critical_pii else CaseType.CONTENT_FLAG,
                Evidence(
                    original_content=text,
                    redacted_content=redacted,
                    matched_patterns=[f.rule for f in flags],
                ),
                Severity.CRITICAL,
                event_id=item.id,
                org_id=item.org_id,
            )
            scanned.case_id = case.id
            metadata["caseId"] = case.id

        self._audit(
            flags, decision,
            member_id=item.member_id,
            action="LEDGER_ITEM_SCANNED",
            resource="ledger",
            resource_id=item.id,
            metadata=metadata,
            org_id=item.org_id,
        )
        return scanned

    def process_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Chat caller contract over plain dicts (camelCase keys)."""
        return [self.process_message(Message.from_dict(m)).to_dict() for m in messages]

    def _audit(self, flags: list[Flag], decision: Decision, **fields: Any) -> AuditLogEntry:
        return self.audit.record(
            status=decision.audit_status,
            risk_level=worst_severity(f.severity for f in flags),
            flagged=True,
            trigger=", ".join(f.trigger for f in flags),
            **fields,
        )
