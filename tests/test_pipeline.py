"""Tests for policy decisions, the message pipeline and the engine."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from concurrent.futures import ThreadPoolExecutor

import pytest

from content_guard import (
    AuditStatus,
    CaseStatus,
    CaseType,
    ComplianceEngine,
    ComplianceSettings,
    Decision,
    Flag,
    FlagCategory,
    LedgerItem,
    Message,
    RedactorConfig,
    Severity,
    Subject,
    decide,
)
from content_guard.store import AUDIT_COLLECTION, MemoryStore

BLOCKING = ComplianceSettings(block_on_pii=True)
PERMISSIVE = ComplianceSettings(block_on_pii=False)


def _flag(category, severity, rule="R"):
    return Flag(FlagCategory(category), Severity(severity), rule, f"{rule} hit")


def _msg(content, **kw):
    return {"senderId": "u1", "senderName": "Ann", "channelId": "c1", "content": content, **kw}


class BrokenStore:
    """A store whose backend is down until `up` is set."""

    def __init__(self):
        self.up = False
        self.inner = MemoryStore()

    def create(self, collection, record):
        if not self.up:
            raise ConnectionError("datastore unreachable")
        self.inner.create(collection, record)

    def list(self, collection, *, org_id=None):
        return self.inner.list(collection, org_id=org_id)

    def purge(self, collection, *, before, org_id=None, key="timestamp"):
        return self.inner.purge(collection, before=before, org_id=org_id, key=key)


# ── Policy ───────────────────────────────────────────────────────────

def test_no_flags_allows():
    assert decide([], True) is Decision.ALLOW
    assert decide([], False) is Decision.ALLOW


def test_high_pii_blocks_only_when_blocking():
    flags = [_flag("PII", "HIGH", "PHONE")]
    assert decide(flags, True) is Decision.BLOCK
    assert decide(flags, False) is Decision.FLAG


def test_critical_blocks_only_when_blocking():
    for category in ("PII", "CONTENT"):
        flags = [_flag(category, "CRITICAL")]
        assert decide(flags, True) is Decision.BLOCK
        assert decide(flags, False) is Decision.FLAG


def test_high_content_never_blocks():
    assert decide([_flag("CONTENT", "HIGH")], True) is Decision.FLAG


def test_low_and_medium_flag():
    flags = [_flag("PII", "MEDIUM", "EMAIL"), _flag("CONTENT", "LOW", "PROFANITY")]
    assert decide(flags, True) is Decision.FLAG


def test_adding_critical_always_blocks():
    bases = [
        [],
        [_flag("CONTENT", "LOW")],
        [_flag("PII", "MEDIUM")],
        [_flag("CONTENT", "HIGH")],
        [_flag("PII", "HIGH")],
        [_flag("PII", "CRITICAL")],
    ]
    for base in bases:
        for category in ("PII", "CONTENT"):
            assert decide(base + [_flag(category, "CRITICAL", "X")], True) is Decision.BLOCK


def test_decision_maps_to_audit_status():
    assert Decision.ALLOW.audit_status is AuditStatus.ALLOWED
    assert Decision.FLAG.audit_status is AuditStatus.FLAGGED
    assert Decision.BLOCK.audit_status is AuditStatus.BLOCKED


# ── Chat messages ────────────────────────────────────────────────────

def test_ssn_message_blocked():
    engine = ComplianceEngine(BLOCKING)
    out = engine.process_message(_msg("My SSN is 123-45-6789"))
    assert out.compliance_flags == [
        Flag(FlagCategory.PII, Severity.CRITICAL, "SSN", "Social Security Number detected"),
    ]
    assert out.is_blocked
    assert out.pii_redacted
    assert out.redacted_content == "My SSN is XXX-XX-XXXX"
    assert out.content == "My SSN is 123-45-6789"


def test_phone_message_blocked():
    engine = ComplianceEngine(BLOCKING)
    out = engine.process_message(_msg("call me at 555-123-4567"))
    assert [(f.rule, f.severity) for f in out.compliance_flags] == [("PHONE", Severity.HIGH)]
    assert out.is_blocked
    assert out.redacted_content == "call me at (XXX) XXX-XXXX"


def test_email_message_flagged_not_blocked():
    engine = ComplianceEngine(PERMISSIVE)
    out = engine.process_message(_msg("email me at a@b.com"))
    assert [(f.rule, f.severity) for f in out.compliance_flags] == [("EMAIL", Severity.MEDIUM)]
    assert not out.is_blocked
    assert out.pii_redacted
    assert out.redacted_content == "email me at [EMAIL REDACTED]"

    entries = engine.get_audit_log()
    assert len(entries) == 1
    assert entries[0].status is AuditStatus.FLAGGED


def test_clean_message_not_audited():
    engine = ComplianceEngine(BLOCKING)
    out = engine.process_message(_msg("have a great day"))
    assert out.compliance_flags is None
    assert not out.is_blocked
    assert not out.pii_redacted
    assert out.redacted_content is None
    assert engine.get_audit_log() == []
    assert "complianceFlags" not in out.to_dict()


def test_audit_entry_fields():
    engine = ComplianceEngine(BLOCKING)
    out = engine.process_message(_msg("SSN 123-45-6789, what the hell"))
    [entry] = engine.get_audit_log()
    assert entry.member_id == "u1"
    assert entry.action == "MESSAGE_SENT"
    assert entry.resource == "chat"
    assert entry.resource_id == "c1"
    assert entry.status is AuditStatus.BLOCKED
    assert entry.risk_level is Severity.CRITICAL
    assert entry.flagged
    assert entry.trigger == "Social Security Number detected, Profanity Filter triggered"
    assert entry.metadata == {"messageId": out.id}


def test_content_only_message_flagged():
    engine = ComplianceEngine(BLOCKING)
    out = engine.process_message(_msg("this is damn annoying, I want to fight"))
    assert not out.is_blocked
    assert not out.pii_redacted
    assert out.redacted_content is None
    [entry] = engine.get_audit_log()
    assert entry.risk_level is Severity.MEDIUM
    assert entry.trigger == "Profanity Filter triggered, Violence Keywords triggered"


def test_skipped_pii_is_flagged_but_not_marked_redacted():
    engine = ComplianceEngine(PERMISSIVE, redactor_config=RedactorConfig(skip_types={"EMAIL"}))
    out = engine.process_message(_msg("email me at a@b.com"))
    assert [f.rule for f in out.compliance_flags] == ["EMAIL"]
    assert not out.pii_redacted
    assert out.redacted_content is None
    assert len(engine.get_audit_log()) == 1


def test_allow_listed_pii_is_not_marked_redacted():
    config = RedactorConfig(allow_list={"help@school.edu"})
    engine = ComplianceEngine(PERMISSIVE, redactor_config=config)
    out = engine.process_message(_msg("write help@school.edu"))
    assert not out.pii_redacted
    assert "redactedContent" not in out.to_dict()

    out = engine.process_message(_msg("write help@school.edu or bob@x.com"))
    assert out.pii_redacted
    assert out.redacted_content == "write help@school.edu or [EMAIL REDACTED]"


def test_high_content_rule_does_not_block():
    engine = ComplianceEngine(BLOCKING)
    engine.register_pattern("THREAT", "CONTENT", "HIGH", r"\bbomb\b", label="Threat Keywords")
    out = engine.process_message(_msg("there is a bomb"))
    assert not out.is_blocked
    assert engine.get_audit_log()[0].status is AuditStatus.FLAGGED


def test_self_harm_message_blocked_when_blocking():
    engine = ComplianceEngine(BLOCKING)
    assert engine.process_message(_msg("thinking about suicide")).is_blocked


def test_input_message_not_mutated():
    engine = ComplianceEngine(BLOCKING)
    msg = Message(sender_id="u1", channel_id="c1", content="My SSN is 123-45-6789")
    out = engine.process_message(msg)
    assert out is not msg
    assert out.id == msg.id
    assert not msg.is_blocked
    assert msg.redacted_content is None
    assert msg.compliance_flags is None


def test_process_messages_dict_contract():
    engine = ComplianceEngine(BLOCKING)
    out = engine.pipeline.process_messages([
        _msg("My SSN is 123-45-6789", id="m1", timestamp="2024-01-01T00:00:00+00:00"),
        _msg("have a great day", id="m2"),
    ])
    assert out[0]["id"] == "m1"
    assert out[0]["senderName"] == "Ann"
    assert out[0]["timestamp"] == "2024-01-01T00:00:00+00:00"
    assert out[0]["isBlocked"] is True
    assert out[0]["piiRedacted"] is True
    assert out[0]["redactedContent"] == "My SSN is XXX-XX-XXXX"
    assert out[0]["complianceFlags"][0]["rule"] == "SSN"
    assert out[1]["isBlocked"] is False
    assert "redactedContent" not in out[1]


def test_every_flagged_message_gets_one_matching_entry():
    engine = ComplianceEngine(BLOCKING)
    texts = [
        "My SSN is 123-45-6789",
        "have a great day",
        "email me at a@b.com",
        "what the hell",
        "card 4111 1111 1111 1111 and a@b.com",
        "see you tomorrow",
        "call 555-123-4567, I will fight you",
    ]
    expected = []
    for text in texts:
        flags = engine.detector.detect(text)
        engine.process_message(_msg(text))
        if flags:
            expected.append(decide(flags, True).audit_status)

    entries = engine.get_audit_log()
    assert len(entries) == len(expected)
    # Most recent first
    assert [e.status for e in reversed(entries)] == expected


# ── Ledger items ─────────────────────────────────────────────────────

def test_ledger_critical_pii_opens_case():
    engine = ComplianceEngine(PERMISSIVE)
    item = engine.process_ledger_item({
        "memberId": "m1", "title": "Refund", "description": "card 4111 1111 1111 1111",
        "type": "expense",
    })
    assert [f.rule for f in item.compliance_flags] == ["CREDIT_CARD"]
    assert item.case_id is not None

    case = engine.cases.get_case(item.case_id)
    assert case.type is CaseType.PII_DETECTION
    assert case.severity is Severity.CRITICAL
    assert case.status is CaseStatus.ESCALATED
    assert case.event_id == item.id
    assert case.evidence.matched_patterns == ["CREDIT_CARD"]
    assert case.evidence.redacted_content == "Refund\ncard XXXX-XXXX-XXXX-XXXX"

    [entry] = engine.get_audit_log()
    assert entry.action == "LEDGER_ITEM_SCANNED"
    assert entry.resource == "ledger"
    assert entry.resource_id == item.id
    assert entry.metadata == {"ledgerType": "expense", "caseId": case.id}


def test_ledger_critical_content_opens_content_case():
    engine = ComplianceEngine(PERMISSIVE)
    item = engine.process_ledger_item(
        LedgerItem(member_id="m1", title="Note", description="mentions an overdose"),
    )
    assert engine.cases.get_case(item.case_id).type is CaseType.CONTENT_FLAG


def test_ledger_non_critical_has_no_case():
    engine = ComplianceEngine(BLOCKING)
    item = engine.process_ledger_item({"memberId": "m1", "title": "Invoice for a@b.com"})
    assert item.case_id is None
    assert engine.get_cases() == []
    assert len(engine.get_audit_log()) == 1
    assert "caseId" not in item.to_dict()


def test_clean_ledger_item_not_audited():
    engine = ComplianceEngine(BLOCKING)
    item = engine.process_ledger_item({"memberId": "m1", "title": "Team lunch", "description": None})
    assert item.compliance_flags is None
    assert engine.get_audit_log() == []


def test_ledger_item_keeps_org():
    engine = ComplianceEngine(PERMISSIVE, org_id="org-1")
    item = engine.process_ledger_item({
        "memberId": "m1", "organizationId": "org-2", "title": "SSN 123-45-6789",
    })
    assert engine.get_audit_log()[0].org_id == "org-2"
    assert engine.cases.get_case(item.case_id).org_id == "org-2"


# ── Engine ───────────────────────────────────────────────────────────

def test_compliance_stats():
    engine = ComplianceEngine(BLOCKING)
    engine.process_message(_msg("My SSN is 123-45-6789"))
    engine.process_message(_msg("email me at a@b.com"))
    engine.process_message(_msg("have a great day"))
    engine.process_ledger_item({"memberId": "m1", "title": "card 4111 1111 1111 1111"})

    assert engine.get_compliance_stats() == {
        "total_events": 3,
        "blocked_count": 2,
        "flagged_count": 3,
        "open_cases": 0,
        "critical_cases": 1,
    }


def test_feature_denials_do_not_count_as_blocked_content():
    engine = ComplianceEngine(BLOCKING)
    engine.process_message(_msg("My SSN is 123-45-6789"))
    engine.check_feature_access(Subject(id="s1", role="student", grade_level=3), "chat")

    stats = engine.get_compliance_stats()
    assert stats["total_events"] == 2
    assert stats["blocked_count"] == 1
    assert stats["flagged_count"] == 1


def test_failing_store_never_fails_screening():
    store = BrokenStore()
    engine = ComplianceEngine(BLOCKING, store=store)

    out = engine.process_message(_msg("My SSN is 123-45-6789"))
    assert out.is_blocked
    assert len(engine.get_audit_log()) == 1
    assert engine.writer.pending == 1

    store.up = True
    assert engine.retry_pending_writes() == 1
    assert engine.writer.pending == 0
    assert len(store.list(AUDIT_COLLECTION)) == 1


def test_engine_writes_through_to_store():
    store = MemoryStore()
    engine = ComplianceEngine(BLOCKING, store=store)
    engine.process_message(_msg("My SSN is 123-45-6789"))
    [record] = store.list(AUDIT_COLLECTION, org_id="org-1")
    assert record["status"] == "BLOCKED"
    assert record["riskLevel"] == "CRITICAL"


def test_concurrent_screening():
    engine = ComplianceEngine(BLOCKING)
    texts = ["My SSN is 123-45-6789", "email me at a@b.com", "have a great day"] * 50

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda t: engine.process_message(_msg(t)), texts))

    assert sum(r.is_blocked for r in results) == 50
    assert len(engine.get_audit_log()) == 100


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
