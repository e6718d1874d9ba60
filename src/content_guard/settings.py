"""Organization compliance settings and the market-context presets."""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class ComplianceSettings:
    """Read-only per-org compliance knobs."""
    block_on_pii: bool = False
    require_consent: bool = False
    notify_guardians: bool = False
    retention_days: int = 365 * 7

    def with_overrides(self, overrides: dict[str, Any]) -> ComplianceSettings:
        known = {k: v for k, v in overrides.items() if k in self.__dataclass_fields__}
        return replace(self, **known)


MARKET_CONTEXTS: dict[str, ComplianceSettings] = {
    "business": ComplianceSettings(
        block_on_pii=False,
        require_consent=False,
        notify_guardians=False,
        retention_days=365 * 7,
    ),
    "education": ComplianceSettings(
        block_on_pii=True,
        require_consent=True,
        notify_guardians=True,
        retention_days=365,
    ),
}


def settings_for(market_context: str) -> ComplianceSettings:
    try:
        return MARKET_CONTEXTS[market_context]
    except KeyError:
        raise ValueError(f"unknown market context {market_context!r}") from None
