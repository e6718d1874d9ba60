"""Guardian consent records and the feature gate built on them.

A student's age is *estimated* from grade level (grade + 5); there is no
birthdate.  Each consent category has an age threshold: COPPA (13) for
communication and gamification, school age (18) for the rest.  Below the
threshold a guardian must have granted that category.

Resolution rule: for a (student, category) pair, the most recently granted
record that is still effective decides.  Records are never deleted, so the
rule is applied by comparing grant timestamps, not by list position.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from .audit import AuditLog
from .errors import ConsentNotFoundError
from .settings import ComplianceSettings
from .store import CONSENT_COLLECTION
from .types import (
    AuditStatus,
    ConsentRecord,
    ConsentStatus,
    ConsentType,
    Severity,
    Subject,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

COPPA_AGE = 13
SCHOOL_AGE = 18
GRADE_TO_AGE_OFFSET = 5


@dataclass(frozen=True, slots=True)
class ConsentRequirement:
    category: str
    required: bool
    description: str
    age_threshold: int


CONSENT_REQUIREMENTS: tuple[ConsentRequirement, ...] = (
    ConsentRequirement("basic_info", True, "Name and grade level", SCHOOL_AGE),
    ConsentRequirement("academic", True, "Grades and assignments", SCHOOL_AGE),
    ConsentRequirement("behavioral", False, "Attendance and conduct records", SCHOOL_AGE),
    ConsentRequirement("communication", True, "Chat and messaging features", COPPA_AGE),
    ConsentRequirement("gamification", False, "XP points and achievements", COPPA_AGE),
    ConsentRequirement("analytics", False, "Usage data and analytics", SCHOOL_AGE),
)

_REQUIREMENTS = {r.category: r for r in CONSENT_REQUIREMENTS}

FEATURE_CATEGORIES: dict[str, str] = {
    "chat": "communication",
    "gamification": "gamification",
    "analytics": "analytics",
}


def estimated_age(subject: Subject) -> int:
    return (subject.grade_level or 0) + GRADE_TO_AGE_OFFSET


def needs_guardian_consent(subject: Subject, category: str) -> bool:
    """True only for students whose estimated age is under the category threshold."""
    if subject.role != "student":
        return False
    requirement = _REQUIREMENTS.get(category)
    if requirement is None:
        return False
    return estimated_age(subject) < requirement.age_threshold


def _check_categories(categories: Iterable[str]) -> frozenset[str]:
    cats = frozenset(categories)
    unknown = cats - set(_REQUIREMENTS)
    if unknown:
        raise ValueError(f"unknown consent categories: {sorted(unknown)}")
    return cats


def _most_recent(records: Iterable[ConsentRecord]) -> ConsentRecord | None:
    """Latest grant wins; on a timestamp tie the later-created record wins."""
    ranked = [(r.granted_at or "", i, r) for i, r in enumerate(records)]
    if not ranked:
        return None
    return max(ranked, key=lambda t: (t[0], t[1]))[2]


class ConsentStore:
    """Consent records, mirrored to durable storage and audited."""

    def __init__(
        self,
        audit: AuditLog,
        *,
        settings: ComplianceSettings | None = None,
        notifier: Callable[[ConsentRecord], None] | None = None,
    ) -> None:
        self.audit = audit
        self.settings = settings or ComplianceSettings()
        self.notifier = notifier
        self._records: list[ConsentRecord] = []
        self._lock = threading.Lock()

    @staticmethod
    def requirements() -> tuple[ConsentRequirement, ...]:
        return CONSENT_REQUIREMENTS

    # -- mutations -----------------------------------------------------------

    def request_consent(self, student_id: str, guardian_email: str,
                        categories: Iterable[str], *, org_id: str | None = None) -> ConsentRecord:
        """Open a pending request and (optionally) tell the guardian about it."""
        record = ConsentRecord(
            student_id=student_id,
            org_id=org_id or self.audit.org_id,
            data_categories=_check_categories(categories),
            guardian_email=guardian_email,
        )
        with self._lock:
            self._records.append(record)
            snapshot = record.to_dict()
        self._persist(snapshot)
        self._audit(record, "consent_requested", Severity.LOW,
                    {"guardianEmail": guardian_email, "categories": sorted(record.data_categories)})

        if self.settings.notify_guardians and self.notifier is not None:
            try:
                self.notifier(record)
            except Exception as exc:
                logger.warning("Guardian notification for %s failed: %s", record.id, exc)
        return record

    def grant_consent(
        self,
        student_id: str,
        guardian_id: str,
        categories: Iterable[str],
        *,
        consent_type: ConsentType | str = ConsentType.FULL,
        guardian_name: str = "",
        consent_id: str | None = None,
        expires_at: str | None = None,
        verification_method: str = "portal",
        org_id: str | None = None,
    ) -> ConsentRecord:
        """Grant consent, completing a pending request when `consent_id` is given."""
        cats = _check_categories(categories)
        consent_type = ConsentType(consent_type)
        if expires_at is not None:
            parse_timestamp(expires_at)
        with self._lock:
            if consent_id is not None:
                record = self._find(consent_id)
                if record.student_id != student_id:
                    raise ConsentNotFoundError(f"{consent_id} is not a record for {student_id}")
            else:
                record = ConsentRecord(
                    student_id=student_id,
                    org_id=org_id or self.audit.org_id,
                    data_categories=cats,
                    verification_method=verification_method,
                )
                self._records.append(record)
            record.guardian_id = guardian_id
            record.guardian_name = guardian_name
            record.consent_type = consent_type
            record.data_categories = cats
            record.granted_at = utcnow()
            record.expires_at = expires_at
            record.status = ConsentStatus.GRANTED
            snapshot = record.to_dict()

        self._persist(snapshot)
        self._audit(record, "consent_granted", Severity.LOW, {
            "guardianId": guardian_id,
            "guardianName": guardian_name,
            "consentType": consent_type.value,
            "categories": sorted(cats),
        })
        logger.info("Consent %s granted for student %s: %s", record.id, student_id, sorted(cats))
        return record

    def revoke_consent(self, consent_id: str, reason: str | None = None) -> ConsentRecord:
        with self._lock:
            record = self._find(consent_id)
            record.status = ConsentStatus.REVOKED
            record.revoked_at = utcnow()
            snapshot = record.to_dict()
        self._persist(snapshot)
        self._audit(record, "consent_revoked", Severity.MEDIUM, {"reason": reason})
        logger.info("Consent %s revoked for student %s", consent_id, record.student_id)
        return record

    def restore(self) -> int:
        """Reload consent records from durable storage, e.g. after a restart."""
        records = self.audit.writer.store.list(CONSENT_COLLECTION, org_id=self.audit.org_id)
        # Creation order breaks grant-time ties, so keep it stable
        restored = sorted((ConsentRecord.from_dict(r) for r in records),
                          key=lambda r: r.requested_at)
        with self._lock:
            self._records = restored
        return len(restored)

    # -- lookups (unknown students simply have no consent) -------------------

    def records_for(self, student_id: str) -> list[ConsentRecord]:
        with self._lock:
            return [r for r in self._records if r.student_id == student_id]

    def get_record(self, consent_id: str) -> ConsentRecord:
        with self._lock:
            return self._find(consent_id)

    def active_consent(self, student_id: str, category: str) -> ConsentRecord | None:
        """The most recently granted effective record covering `category`."""
        now = datetime.now(timezone.utc)
        return _most_recent(
            r for r in self.records_for(student_id)
            if category in r.data_categories and r.is_effective(now)
        )

    def has_consent_for_category(self, student_id: str, category: str) -> bool:
        return self.active_consent(student_id, category) is not None

    def get_student_consent(self, student_id: str) -> ConsentRecord | None:
        """The most recently granted effective record, whatever it covers."""
        now = datetime.now(timezone.utc)
        return _most_recent(r for r in self.records_for(student_id) if r.is_effective(now))

    def has_full_consent(self, student_id: str) -> bool:
        record = self.get_student_consent(student_id)
        return record is not None and record.consent_type is ConsentType.FULL

    def consent_summary(self, student_id: str) -> dict[str, Any]:
        record = self.get_student_consent(student_id)
        if record is None:
            return {
                "hasConsent": False,
                "consentType": None,
                "categories": [],
                "guardianName": None,
                "grantedAt": None,
            }
        return {
            "hasConsent": True,
            "consentType": record.consent_type.value,
            "categories": sorted(record.data_categories),
            "guardianName": record.guardian_name,
            "grantedAt": record.granted_at,
        }

    # -- internals -----------------------------------------------------------

    def _find(self, consent_id: str) -> ConsentRecord:
        for record in self._records:
            if record.id == consent_id:
                return record
        raise ConsentNotFoundError(consent_id)

    def _persist(self, snapshot: dict[str, Any]) -> None:
        self.audit.writer.submit(CONSENT_COLLECTION, snapshot)

    def _audit(self, record: ConsentRecord, action: str, risk: Severity,
               metadata: dict[str, Any]) -> None:
        self.audit.record(
            org_id=record.org_id,
            member_id=record.student_id,
            action=action,
            resource="consent",
            resource_id=record.id,
            status=AuditStatus.ALLOWED,
            risk_level=risk,
            flagged=False,
            metadata=metadata,
        )


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"allowed": self.allowed}
        if self.reason:
            out["reason"] = self.reason
        return out


class FeatureGate:
    """Answers "may this subject use this feature right now?"."""

    def __init__(self, consents: ConsentStore, settings: ComplianceSettings | None = None) -> None:
        self.consents = consents
        self.settings = settings or consents.settings

    def requires_consent(self, subject: Subject, category: str) -> bool:
        if not needs_guardian_consent(subject, category):
            return False
        if self.settings.require_consent:
            return True
        # Orgs that don't ask for consent still can't skip COPPA
        return _REQUIREMENTS[category].age_threshold <= COPPA_AGE

    def check_feature_access(self, subject: Subject, feature: str) -> AccessDecision:
        category = FEATURE_CATEGORIES.get(feature)
        if category is None or not self.requires_consent(subject, category):
            return AccessDecision(allowed=True)

        if self.consents.has_consent_for_category(subject.id, category):
            return AccessDecision(allowed=True)

        self.consents.audit.record(
            org_id=subject.org_id,
            member_id=subject.id,
            action="feature_access_denied",
            resource="consent",
            resource_id=feature,
            status=AuditStatus.BLOCKED,
            risk_level=Severity.LOW,
            flagged=False,
            metadata={"feature": feature, "category": category},
        )
        logger.debug("Feature %s denied for %s: no %s consent", feature, subject.id, category)
        return AccessDecision(
            allowed=False,
            reason=(f"Guardian consent required for {feature}. "
                    "Please ask a parent or guardian to grant permission."),
        )
