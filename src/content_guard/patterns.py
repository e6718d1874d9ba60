"""Pattern registry — the rule set the detector runs.

Built-in rules are fixed-format regexes for structured PII plus keyword
lists for harmful content.  Custom rules register at runtime and always
run after the built-ins, in registration order.

Registration is rare and administrative; detection is hot.  The registry
therefore publishes an immutable tuple and readers take a snapshot, so a
rule being registered mid-scan is either fully visible or not at all.
"""

from __future__ import annotations
import logging
import re
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Union

from .errors import InvalidPatternError
from .types import FlagCategory, Severity

logger = logging.getLogger(__name__)

Span = tuple[int, int]
Finder = Callable[[str], list[Span]]
Matcher = Union[str, re.Pattern, Callable[[str], Iterable[Span]]]

DEFAULT_MASK = "[REDACTED]"

# Masks must never match any PII rule, otherwise redaction isn't idempotent.
MASKS: dict[str, str] = {
    "SSN": "XXX-XX-XXXX",
    "PHONE": "(XXX) XXX-XXXX",
    "EMAIL": "[EMAIL REDACTED]",
    "CREDIT_CARD": "XXXX-XXXX-XXXX-XXXX",
}


@dataclass(frozen=True, slots=True)
class PatternRule:
    """One detection rule.  Built-ins and custom rules share this shape."""
    name: str                   # e.g. "SSN", "VIOLENCE"
    category: FlagCategory
    severity: Severity
    label: str                  # e.g. "Social Security Number"
    find: Finder                # all non-overlapping (start, end) spans
    mask: str | None = None     # PII rules only
    builtin: bool = True

    @property
    def trigger(self) -> str:
        verb = "detected" if self.category is FlagCategory.PII else "triggered"
        return f"{self.label} {verb}"


def _regex_finder(pattern: re.Pattern[str]) -> Finder:
    def find(text: str) -> list[Span]:
        return [m.span() for m in pattern.finditer(text) if m.end() > m.start()]
    return find


def _callable_finder(fn: Callable[[str], Iterable[Span]]) -> Finder:
    def find(text: str) -> list[Span]:
        spans = []
        for start, end in fn(text):
            if not (0 <= start < end <= len(text)):
                raise ValueError(f"span ({start}, {end}) out of range")
            spans.append((start, end))
        return sorted(spans)
    return find


def _pii(name: str, label: str, severity: Severity, regex: str, flags: int = 0) -> PatternRule:
    return PatternRule(
        name=name,
        category=FlagCategory.PII,
        severity=severity,
        label=label,
        find=_regex_finder(re.compile(regex, flags)),
        mask=MASKS.get(name, DEFAULT_MASK),
    )


def _content(name: str, label: str, severity: Severity, words: Iterable[str]) -> PatternRule:
    alternation = "|".join(re.escape(w) for w in words)
    return PatternRule(
        name=name,
        category=FlagCategory.CONTENT,
        severity=severity,
        label=label,
        find=_regex_finder(re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)),
    )


_ADDRESS_SUFFIXES = (
    "street|st|avenue|ave|road|rd|boulevard|blvd|drive|dr|"
    "lane|ln|court|ct|way|place|pl"
)

BUILTIN_PII_RULES: tuple[PatternRule, ...] = (
    _pii("SSN", "Social Security Number", Severity.CRITICAL,
         r"\b\d{3}[\s\-]\d{2}[\s\-]\d{4}\b"),

    # Optional +1, optional parenthesised area code, '-', '.' or ' ' separators.
    # A parenthesised area code matches regardless of the character before it.
    _pii("PHONE", "Phone Number", Severity.HIGH,
         r"(?:(?<![\w(])\+1[\s\-.]?(?:\(\d{3}\)|\d{3})|\(\d{3}\)|(?<![\w(])\d{3})"
         r"[\s\-.]?\d{3}[\s\-.]?\d{4}\b"),

    _pii("EMAIL", "Email Address", Severity.MEDIUM,
         r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}\b"),

    _pii("CREDIT_CARD", "Credit Card", Severity.CRITICAL,
         r"\b(?:\d{4}[\s\-]?){3}\d{4}\b"),

    # MM/DD/YYYY or MM-DD-YYYY, 1900-2099
    _pii("DATE_OF_BIRTH", "Date of Birth Pattern", Severity.HIGH,
         r"\b(?:0[1-9]|1[0-2])[/\-](?:0[1-9]|[12]\d|3[01])[/\-](?:19|20)\d{2}\b"),

    # House number, up to four words, then a street suffix word
    _pii("STREET_ADDRESS", "Street Address", Severity.HIGH,
         rf"\b\d{{1,5}}\s+(?:[A-Za-z0-9.]+\s+){{0,4}}?(?:{_ADDRESS_SUFFIXES})\b",
         re.IGNORECASE),
)

BUILTIN_CONTENT_RULES: tuple[PatternRule, ...] = (
    _content("PROFANITY", "Profanity Filter", Severity.LOW,
             ["damn", "hell", "crap"]),
    _content("VIOLENCE", "Violence Keywords", Severity.MEDIUM,
             ["kill", "attack", "fight", "weapon"]),
    _content("SELF_HARM", "Harmful Content", Severity.CRITICAL,
             ["suicide", "self-harm", "overdose"]),
)

BUILTIN_RULES = BUILTIN_PII_RULES + BUILTIN_CONTENT_RULES

# Fed to custom callables at registration to catch ones that blow up.
_SAMPLE_INPUTS = ("", "sample text 123", *MASKS.values(), DEFAULT_MASK)


class PatternRegistry:
    """Built-in plus custom rules, evaluated in a fixed order."""

    def __init__(self, *, include_builtins: bool = True) -> None:
        self._lock = threading.Lock()
        self._rules: tuple[PatternRule, ...] = BUILTIN_RULES if include_builtins else ()

    def snapshot(self) -> tuple[PatternRule, ...]:
        """The current rule set.  Safe to iterate while others register."""
        return self._rules

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def get(self, name: str) -> PatternRule | None:
        for rule in self._rules:
            if rule.name == name:
                return rule
        return None

    def register(
        self,
        name: str,
        category: FlagCategory | str,
        severity: Severity | str,
        matcher: Matcher,
        *,
        label: str | None = None,
        mask: str | None = None,
        flags: int = re.IGNORECASE,
    ) -> PatternRule:
        """Validate and add a custom rule.  Raises InvalidPatternError."""
        if not isinstance(name, str) or not name.strip():
            raise InvalidPatternError("rule name must be a non-empty string")
        try:
            category = FlagCategory(category.upper() if isinstance(category, str) else category)
        except ValueError:
            raise InvalidPatternError(f"{name}: unknown category {category!r}") from None
        try:
            severity = Severity(severity.upper() if isinstance(severity, str) else severity)
        except ValueError:
            raise InvalidPatternError(f"{name}: unknown severity {severity!r}") from None

        find = _build_finder(name, matcher, flags)
        if category is FlagCategory.PII:
            mask = mask or DEFAULT_MASK
        elif mask is not None:
            raise InvalidPatternError(f"{name}: only PII rules carry a mask")

        rule = PatternRule(
            name=name,
            category=category,
            severity=severity,
            label=label or name,
            find=find,
            mask=mask,
            builtin=False,
        )

        with self._lock:
            if any(r.name == name for r in self._rules):
                raise InvalidPatternError(f"rule {name!r} is already registered")
            if category is FlagCategory.PII:
                _check_masks(rule, self._rules)
            self._rules = self._rules + (rule,)

        logger.info("Registered custom %s rule %s (%s)", category.value, name, severity.value)
        return rule

    def unregister(self, name: str) -> None:
        """Remove a custom rule.  Built-ins can't be removed."""
        with self._lock:
            rule = self.get(name)
            if rule is None:
                raise KeyError(name)
            if rule.builtin:
                raise InvalidPatternError(f"{name} is a built-in rule")
            self._rules = tuple(r for r in self._rules if r.name != name)


def _build_finder(name: str, matcher: Matcher, flags: int) -> Finder:
    if isinstance(matcher, str):
        if not matcher:
            raise InvalidPatternError(f"{name}: empty pattern")
        try:
            matcher = re.compile(matcher, flags)
        except re.error as exc:
            raise InvalidPatternError(f"{name}: invalid regex: {exc}") from exc

    if isinstance(matcher, re.Pattern):
        if matcher.search("") is not None:
            raise InvalidPatternError(f"{name}: pattern matches the empty string")
        return _regex_finder(matcher)

    if callable(matcher):
        find = _callable_finder(matcher)
        for sample in _SAMPLE_INPUTS:
            try:
                find(sample)
            except Exception as exc:
                raise InvalidPatternError(f"{name}: matcher failed on sample input: {exc}") from exc
        return find

    raise InvalidPatternError(f"{name}: matcher must be a regex or a callable")


def _check_masks(new: PatternRule, existing: Iterable[PatternRule]) -> None:
    """Reject a PII rule whose mask or matcher would make redaction unstable."""
    pii_rules = [r for r in existing if r.category is FlagCategory.PII]
    masks = {r.mask for r in pii_rules if r.mask} | {new.mask}
    for mask in masks:
        if new.find(mask):
            raise InvalidPatternError(f"{new.name}: matcher matches the mask {mask!r}")
    for rule in pii_rules:
        if rule.find(new.mask):
            raise InvalidPatternError(
                f"{new.name}: mask {new.mask!r} is matched by rule {rule.name}"
            )
