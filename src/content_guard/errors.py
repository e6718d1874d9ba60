"""Exceptions raised by content_guard."""

from __future__ import annotations


class ContentGuardError(Exception):
    """Base class for all content_guard errors."""


class InvalidPatternError(ContentGuardError, ValueError):
    """A custom rule was rejected at registration."""


class CaseNotFoundError(ContentGuardError, KeyError):
    """No case with the given id."""


class InvalidTransitionError(ContentGuardError):
    """The case lifecycle doesn't allow this move from the current status."""


class ConsentNotFoundError(ContentGuardError, KeyError):
    """No consent record with the given id."""
