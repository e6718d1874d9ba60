"""Redactor — replaces detected PII spans with fixed masks.

Usage:
    from content_guard import Detector, Redactor

    detector = Detector()
    redactor = Redactor(detector.registry)

    flags = detector.detect("My SSN is 123-45-6789")
    redactor.redact("My SSN is 123-45-6789", flags)   # "My SSN is XXX-XX-XXXX"

Every rule scans the original text and overlapping spans collapse into one
mask.  Masks are fixed per rule and never match any PII rule, so redacting
already-redacted text is a no-op.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable

from .detector import safe_find
from .patterns import PatternRegistry, PatternRule
from .types import Flag, FlagCategory


@dataclass
class RedactorConfig:
    """Configuration for the Redactor."""
    # Rule names to never mask (they are still flagged)
    skip_types: set[str] = field(default_factory=set)
    # Allow-list: values that should NEVER be masked, e.g. a public support address
    allow_list: set[str] = field(default_factory=set)


@dataclass(slots=True)
class RedactionResult:
    text: str
    counts: dict[str, int] = field(default_factory=dict)   # rule name → spans masked

    @property
    def redacted(self) -> bool:
        return bool(self.counts)


class Redactor:
    """Masks PII spans found in the original text, in a single pass."""

    def __init__(self, registry: PatternRegistry | None = None,
                 config: RedactorConfig | None = None) -> None:
        self.registry = registry or PatternRegistry()
        self.config = config or RedactorConfig()

    def redact(self, text: str, flags: Iterable[Flag] | None = None) -> str:
        """Mask every PII rule that flagged (or, without flags, that matches)."""
        return self.redact_detailed(text, flags).text

    def redact_detailed(self, text: str, flags: Iterable[Flag] | None = None) -> RedactionResult:
        if not text:
            return RedactionResult(text=text or "")

        wanted: set[str] | None = None
        if flags is not None:
            wanted = {f.rule for f in flags if f.category is FlagCategory.PII}
            if not wanted:
                return RedactionResult(text=text)

        # (start, end, rule position, rule); every rule scans the original text
        hits: list[tuple[int, int, int, PatternRule]] = []
        for position, rule in enumerate(self.registry.snapshot()):
            if rule.category is not FlagCategory.PII or not rule.mask:
                continue
            if wanted is not None and rule.name not in wanted:
                continue
            if rule.name in self.config.skip_types:
                continue
            hits.extend(
                (start, end, position, rule) for start, end in safe_find(rule, text)
                if text[start:end] not in self.config.allow_list
            )
        if not hits:
            return RedactionResult(text=text)

        counts: dict[str, int] = {}
        pieces: list[str] = []
        cursor = 0
        for start, end, rule in _merge(hits):
            pieces.append(text[cursor:start])
            pieces.append(rule.mask)
            counts[rule.name] = counts.get(rule.name, 0) + 1
            cursor = end
        pieces.append(text[cursor:])
        return RedactionResult(text="".join(pieces), counts=counts)


def _merge(hits: list[tuple[int, int, int, PatternRule]]) -> list[tuple[int, int, PatternRule]]:
    """Collapse overlapping spans; the earliest rule in registry order names the mask."""
    merged: list[tuple[int, int, int, PatternRule]] = []
    for start, end, position, rule in sorted(hits, key=lambda h: (h[0], h[2])):
        if merged and start < merged[-1][1]:
            m_start, m_end, m_position, m_rule = merged[-1]
            if position < m_position:
                m_position, m_rule = position, rule
            merged[-1] = (m_start, max(m_end, end), m_position, m_rule)
        else:
            merged.append((start, end, position, rule))
    return [(start, end, rule) for start, end, _, rule in merged]
