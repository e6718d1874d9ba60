"""Policy — turns a flag set plus org settings into ALLOW / FLAG / BLOCK.

PII at HIGH or above halts distribution when the org blocks on PII; any
CRITICAL flag does too.  Everything else is logged for visibility without
disrupting the workflow.  HIGH *content* flags (violence keywords and the
like) never block on their own.
"""

from __future__ import annotations
from typing import Iterable

from .types import Decision, Flag, FlagCategory, Severity


def decide(flags: Iterable[Flag], block_on_pii: bool) -> Decision:
    flags = list(flags)
    if not flags:
        return Decision.ALLOW

    has_critical = any(f.severity is Severity.CRITICAL for f in flags)
    has_high_pii = any(
        f.severity is Severity.HIGH and f.category is FlagCategory.PII for f in flags
    )
    if block_on_pii and (has_critical or has_high_pii):
        return Decision.BLOCK
    return Decision.FLAG
