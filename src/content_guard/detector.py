"""Detector — runs the registry over text and produces flags."""

from __future__ import annotations
import logging

from .patterns import PatternRegistry, PatternRule, Span
from .types import Flag, FlagCategory

logger = logging.getLogger(__name__)


class Detector:
    """Turns text into an ordered list of Flags.

    One Flag per rule that matches at least once, in registry order, so a
    message with twenty phone numbers still yields a single PHONE flag.
    Never raises: a custom matcher that fails at scan time is logged and
    counted as no match.
    """

    def __init__(self, registry: PatternRegistry | None = None) -> None:
        self.registry = registry or PatternRegistry()

    def detect(self, text: str | None) -> list[Flag]:
        if not text:
            return []
        return [
            Flag(
                category=rule.category,
                severity=rule.severity,
                rule=rule.name,
                trigger=rule.trigger,
            )
            for rule in self.registry.snapshot()
            if safe_find(rule, text)
        ]

    def detect_pii(self, text: str | None) -> list[Flag]:
        return [f for f in self.detect(text) if f.category is FlagCategory.PII]

    def detect_content(self, text: str | None) -> list[Flag]:
        return [f for f in self.detect(text) if f.category is FlagCategory.CONTENT]


def safe_find(rule: PatternRule, text: str) -> list[Span]:
    """rule.find(text), or [] if a custom matcher misbehaves."""
    try:
        return rule.find(text)
    except Exception as exc:
        logger.warning("Rule %s failed during scan, treating as no match: %s", rule.name, exc)
        return []
