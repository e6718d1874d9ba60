"""Core types."""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 to an aware datetime.  Naive values are taken as UTC."""
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def worst_severity(severities: Iterable[Severity]) -> Severity | None:
    """Highest severity in the iterable, or None when it is empty."""
    return max(severities, key=lambda s: s.rank, default=None)


class FlagCategory(str, Enum):
    PII = "PII"
    CONTENT = "CONTENT"


class AuditStatus(str, Enum):
    ALLOWED = "ALLOWED"
    FLAGGED = "FLAGGED"
    BLOCKED = "BLOCKED"
    QUARANTINED = "QUARANTINED"
    PENDING = "PENDING"


class Decision(str, Enum):
    ALLOW = "ALLOW"
    FLAG = "FLAG"
    BLOCK = "BLOCK"

    @property
    def audit_status(self) -> AuditStatus:
        return {
            Decision.ALLOW: AuditStatus.ALLOWED,
            Decision.FLAG: AuditStatus.FLAGGED,
            Decision.BLOCK: AuditStatus.BLOCKED,
        }[self]


class CaseStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class CaseType(str, Enum):
    PII_DETECTION = "PII_DETECTION"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    SECURITY_INCIDENT = "SECURITY_INCIDENT"
    CONTENT_FLAG = "CONTENT_FLAG"
    BEHAVIORAL_ALERT = "BEHAVIORAL_ALERT"


class ConsentType(str, Enum):
    FULL = "full"
    LIMITED = "limited"
    COMMUNICATION_ONLY = "communication_only"
    NONE = "none"
    PENDING = "pending"


class ConsentStatus(str, Enum):
    PENDING = "pending"
    GRANTED = "granted"
    EXPIRED = "expired"
    REVOKED = "revoked"


# ── Detection ────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Flag:
    """One detection result.  Id and timestamp don't take part in equality."""
    category: FlagCategory
    severity: Severity
    rule: str              # rule name, e.g. "SSN", "PROFANITY"
    trigger: str           # human-readable, e.g. "Social Security Number detected"
    id: str = field(default_factory=lambda: new_id("flag"), compare=False)
    detected_at: str = field(default_factory=utcnow, compare=False)
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution: str | None = None  # "allowed" | "blocked" | "quarantined" | "escalated"

    def resolve(self, resolution: str, resolved_by: str) -> Flag:
        return replace(self, resolution=resolution, resolved_by=resolved_by, resolved_at=utcnow())

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.category.value,
            "rule": self.rule,
            "severity": self.severity.value,
            "trigger": self.trigger,
            "detectedAt": self.detected_at,
        }
        if self.resolution:
            out.update(resolution=self.resolution, resolvedBy=self.resolved_by,
                       resolvedAt=self.resolved_at)
        return out


# ── Chat & ledger items ──────────────────────────────────────────────

@dataclass(slots=True)
class Message:
    """A chat message.  `content` is never overwritten by redaction."""
    sender_id: str
    channel_id: str
    content: str
    sender_name: str = ""
    id: str = field(default_factory=lambda: new_id("msg"))
    timestamp: str = field(default_factory=utcnow)
    is_blocked: bool = False
    pii_redacted: bool = False
    redacted_content: str | None = None
    compliance_flags: list[Flag] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        kwargs: dict[str, Any] = {
            "sender_id": data.get("senderId", data.get("sender_id", "")),
            "sender_name": data.get("senderName", data.get("sender_name", "")),
            "channel_id": data.get("channelId", data.get("channel_id", "")),
            "content": data.get("content") or "",
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        if data.get("timestamp"):
            kwargs["timestamp"] = data["timestamp"]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "channelId": self.channel_id,
            "content": self.content,
            "timestamp": self.timestamp,
            "isBlocked": self.is_blocked,
            "piiRedacted": self.pii_redacted,
        }
        if self.redacted_content is not None:
            out["redactedContent"] = self.redacted_content
        if self.compliance_flags:
            out["complianceFlags"] = [f.to_dict() for f in self.compliance_flags]
        return out


@dataclass(slots=True)
class LedgerItem:
    """An expense, invoice, bounty, assignment... anything with free text."""
    member_id: str
    title: str
    description: str | None = None
    type: str = "expense"
    status: str = "pending"
    org_id: str = "org-1"
    id: str = field(default_factory=lambda: new_id("ledger"))
    metadata: dict[str, Any] = field(default_factory=dict)
    compliance_flags: list[Flag] | None = None
    case_id: str | None = None

    @property
    def scan_text(self) -> str:
        return "\n".join(part for part in (self.title, self.description) if part)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerItem:
        kwargs: dict[str, Any] = {
            "member_id": data.get("memberId", data.get("member_id", "")),
            "title": data.get("title") or "",
            "description": data.get("description"),
            "type": data.get("type", "expense"),
            "status": data.get("status", "pending"),
            "org_id": data.get("organizationId", data.get("org_id", "org-1")),
            "metadata": dict(data.get("metadata") or {}),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "organizationId": self.org_id,
            "memberId": self.member_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "metadata": self.metadata,
        }
        if self.compliance_flags:
            out["complianceFlags"] = [f.to_dict() for f in self.compliance_flags]
        if self.case_id:
            out["caseId"] = self.case_id
        return out


# ── Audit ────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class AuditLogEntry:
    """A single audit event.  Never mutated after creation."""
    org_id: str
    member_id: str
    action: str
    resource: str
    status: AuditStatus
    risk_level: Severity
    flagged: bool
    resource_id: str | None = None
    trigger: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("audit"))
    timestamp: str = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organizationId": self.org_id,
            "memberId": self.member_id,
            "timestamp": self.timestamp,
            "action": self.action,
            "resource": self.resource,
            "resourceId": self.resource_id,
            "status": self.status.value,
            "riskLevel": self.risk_level.value,
            "flagged": self.flagged,
            "trigger": self.trigger,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditLogEntry:
        return cls(
            id=data["id"],
            org_id=data["organizationId"],
            member_id=data["memberId"],
            timestamp=data["timestamp"],
            action=data["action"],
            resource=data["resource"],
            resource_id=data.get("resourceId"),
            status=AuditStatus(data["status"]),
            risk_level=Severity(data["riskLevel"]),
            flagged=bool(data["flagged"]),
            trigger=data.get("trigger"),
            metadata=dict(data.get("metadata") or {}),
        )


# ── Cases ────────────────────────────────────────────────────────────

@dataclass(slots=True)
class Evidence:
    """Snapshot of what triggered a case."""
    original_content: str | None = None
    redacted_content: str | None = None
    matched_patterns: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalContent": self.original_content,
            "redactedContent": self.redacted_content,
            "matchedPatterns": list(self.matched_patterns),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Evidence:
        return cls(
            original_content=data.get("originalContent"),
            redacted_content=data.get("redactedContent"),
            matched_patterns=list(data.get("matchedPatterns") or []),
            timestamp=data.get("timestamp") or utcnow(),
        )


@dataclass(frozen=True, slots=True)
class CaseAction:
    type: str             # review | allow | block | quarantine | escalate | notify | delete
    performed_by: str
    notes: str | None = None
    id: str = field(default_factory=lambda: new_id("action"))
    performed_at: str = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "performedBy": self.performed_by,
            "performedAt": self.performed_at,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CaseAction:
        return cls(
            id=data["id"],
            type=data["type"],
            performed_by=data["performedBy"],
            performed_at=data["performedAt"],
            notes=data.get("notes"),
        )


@dataclass(slots=True)
class Case:
    org_id: str
    member_id: str
    type: CaseType
    severity: Severity
    status: CaseStatus
    title: str
    description: str
    evidence: Evidence
    actions: list[CaseAction] = field(default_factory=list)
    event_id: str | None = None
    id: str = field(default_factory=lambda: new_id("case"))
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)
    closed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organizationId": self.org_id,
            "memberId": self.member_id,
            "eventId": self.event_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "description": self.description,
            "evidence": self.evidence.to_dict(),
            "actions": [a.to_dict() for a in self.actions],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "closedAt": self.closed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Case:
        return cls(
            id=data["id"],
            org_id=data["organizationId"],
            member_id=data["memberId"],
            event_id=data.get("eventId"),
            type=CaseType(data["type"]),
            severity=Severity(data["severity"]),
            status=CaseStatus(data["status"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            evidence=Evidence.from_dict(data.get("evidence") or {}),
            actions=[CaseAction.from_dict(a) for a in data.get("actions") or []],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            closed_at=data.get("closedAt"),
        )


# ── Consent ──────────────────────────────────────────────────────────

@dataclass(slots=True)
class ConsentRecord:
    student_id: str
    org_id: str
    data_categories: frozenset[str]
    consent_type: ConsentType = ConsentType.PENDING
    status: ConsentStatus = ConsentStatus.PENDING
    guardian_id: str = ""
    guardian_name: str = ""
    guardian_email: str = ""
    verification_method: str = "email"  # email | in_person | portal
    id: str = field(default_factory=lambda: new_id("consent"))
    requested_at: str = field(default_factory=utcnow)
    granted_at: str | None = None
    expires_at: str | None = None
    revoked_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_effective(self, now: datetime | None = None) -> bool:
        """Granted and not past its expiry."""
        if self.status is not ConsentStatus.GRANTED:
            return False
        if self.expires_at:
            return parse_timestamp(self.expires_at) > (now or datetime.now(timezone.utc))
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "guardianId": self.guardian_id,
            "guardianName": self.guardian_name,
            "guardianEmail": self.guardian_email,
            "organizationId": self.org_id,
            "consentType": self.consent_type.value,
            "dataCategories": sorted(self.data_categories),
            "requestedAt": self.requested_at,
            "grantedAt": self.granted_at,
            "expiresAt": self.expires_at,
            "revokedAt": self.revoked_at,
            "status": self.status.value,
            "verificationMethod": self.verification_method,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConsentRecord:
        return cls(
            id=data["id"],
            student_id=data["studentId"],
            org_id=data.get("organizationId", "org-1"),
            data_categories=frozenset(data.get("dataCategories") or ()),
            consent_type=ConsentType(data.get("consentType", ConsentType.PENDING.value)),
            status=ConsentStatus(data.get("status", ConsentStatus.PENDING.value)),
            guardian_id=data.get("guardianId") or "",
            guardian_name=data.get("guardianName") or "",
            guardian_email=data.get("guardianEmail") or "",
            verification_method=data.get("verificationMethod") or "email",
            requested_at=data.get("requestedAt") or utcnow(),
            granted_at=data.get("grantedAt"),
            expires_at=data.get("expiresAt"),
            revoked_at=data.get("revokedAt"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True, slots=True)
class Subject:
    """The member a feature check is about."""
    id: str
    role: str
    grade_level: int | None = None
    org_id: str = "org-1"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subject:
        grade = data.get("gradeLevel", data.get("grade_level"))
        if grade is None:
            grade = (data.get("metadata") or {}).get("gradeLevel")
        return cls(
            id=data.get("id", ""),
            role=data.get("role", ""),
            grade_level=int(grade) if grade is not None else None,
            org_id=data.get("organizationId", data.get("org_id", "org-1")),
        )
