"""content-guard — PII and content compliance screening with audit, cases and consent."""

from .engine import ComplianceEngine
from .patterns import PatternRegistry, PatternRule
from .detector import Detector
from .redactor import Redactor, RedactorConfig, RedactionResult
from .policy import decide
from .pipeline import MessagePipeline
from .audit import AuditLog, DurableWriter
from .cases import CaseManager
from .consent import AccessDecision, ConsentStore, FeatureGate
from .settings import ComplianceSettings, settings_for
from .store import MemoryStore
from .store_sqlite import SqliteStore
from .store_http import HttpStore
from .config import create_engine, load_config, load_from_yaml
from .errors import (
    CaseNotFoundError,
    ConsentNotFoundError,
    ContentGuardError,
    InvalidPatternError,
    InvalidTransitionError,
)
from .types import (
    AuditLogEntry,
    AuditStatus,
    Case,
    CaseStatus,
    CaseType,
    ConsentRecord,
    ConsentStatus,
    ConsentType,
    Decision,
    Evidence,
    Flag,
    FlagCategory,
    LedgerItem,
    Message,
    Severity,
    Subject,
)

__all__ = [
    "ComplianceEngine", "create_engine", "load_config", "load_from_yaml",
    "PatternRegistry", "PatternRule", "Detector",
    "Redactor", "RedactorConfig", "RedactionResult",
    "decide", "MessagePipeline",
    "AuditLog", "DurableWriter", "CaseManager",
    "ConsentStore", "FeatureGate", "AccessDecision",
    "ComplianceSettings", "settings_for",
    "MemoryStore", "SqliteStore", "HttpStore",
    "ContentGuardError", "InvalidPatternError", "CaseNotFoundError",
    "InvalidTransitionError", "ConsentNotFoundError",
    "AuditLogEntry", "AuditStatus", "Case", "CaseStatus", "CaseType",
    "ConsentRecord", "ConsentStatus", "ConsentType", "Decision", "Evidence",
    "Flag", "FlagCategory", "LedgerItem", "Message", "Severity", "Subject",
]
__version__ = "0.1.0"
