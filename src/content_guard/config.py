"""YAML/dict config loader for content-guard.

Supports loading from a YAML file or a plain dict (for embedding in a
larger host config).

Example YAML:

    content_guard:
      org_id: school-42
      market_context: education     # "business" or "education"
      compliance:                   # overrides on top of the market preset
        block_on_pii: true
        retention_days: 180
      audit:
        capacity: 1000
        async_writes: false
      store:
        backend: sqlite             # "memory", "sqlite" or "http"
        path: ~/.content-guard/audit.db
        url: https://datastore.internal/rest/v1
        api_key: ...
        timeout: 2.0
      redaction:
        skip_types: [DATE_OF_BIRTH]
        allow_list: [support@example.com]
      custom_patterns:
        - name: STUDENT_ID
          category: PII
          severity: HIGH
          pattern: "\\bSID-\\d{6}\\b"
          label: Student ID
"""

from __future__ import annotations
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from .audit import DEFAULT_CAPACITY
from .engine import ComplianceEngine
from .redactor import RedactorConfig
from .settings import settings_for
from .store import MemoryStore, Store

DEFAULT_DB = os.environ.get(
    "CONTENT_GUARD_DB",
    str(Path.home() / ".content-guard" / "audit.db"),
)


def load_config(data: dict[str, Any]) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    # Support nested under "content_guard" key or flat
    if "content_guard" in data:
        data = data["content_guard"] or {}

    store = data.get("store", {}) or {}
    audit = data.get("audit", {}) or {}
    redaction = data.get("redaction", {}) or {}
    market = data.get("market_context") or os.environ.get("CONTENT_GUARD_MARKET", "business")

    return {
        "org_id": data.get("org_id", "org-1"),
        "market_context": market,
        "settings": settings_for(market).with_overrides(data.get("compliance", {}) or {}),
        "audit_capacity": int(audit.get("capacity", DEFAULT_CAPACITY)),
        "async_writes": bool(audit.get("async_writes", False)),
        "store_backend": store.get("backend", "memory"),
        "store_path": store.get("path", DEFAULT_DB),
        "store_url": store.get("url"),
        "store_api_key": store.get("api_key") or os.environ.get("CONTENT_GUARD_API_KEY"),
        "store_timeout": float(store.get("timeout", 2.0)),
        "skip_types": set(redaction.get("skip_types", [])),
        "allow_list": set(redaction.get("allow_list", [])),
        "custom_patterns": list(data.get("custom_patterns", [])),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml
    with open(path) as f:
        return load_config(yaml.safe_load(f) or {})


def create_store(cfg: dict[str, Any]) -> Store:
    backend = cfg["store_backend"]
    if backend == "memory":
        return MemoryStore()
    if backend == "sqlite":
        from .store_sqlite import SqliteStore
        return SqliteStore(cfg["store_path"])
    if backend == "http":
        if not cfg["store_url"]:
            raise ValueError("store.url is required for the http backend")
        from .store_http import HttpStore
        return HttpStore(cfg["store_url"], api_key=cfg["store_api_key"],
                         timeout=cfg["store_timeout"])
    raise ValueError(f"unknown store backend {backend!r}")


def create_engine(config: dict[str, Any], **kwargs: Any) -> ComplianceEngine:
    """Create a fully configured engine from a config dict."""
    cfg = load_config(config) if "settings" not in config else config

    engine = ComplianceEngine(
        cfg["settings"],
        store=kwargs.pop("store", None) or create_store(cfg),
        org_id=cfg["org_id"],
        audit_capacity=cfg["audit_capacity"],
        redactor_config=RedactorConfig(
            skip_types=cfg["skip_types"],
            allow_list=cfg["allow_list"],
        ),
        executor=ThreadPoolExecutor(max_workers=1) if cfg["async_writes"] else None,
        **kwargs,
    )
    for rule in cfg["custom_patterns"]:
        engine.register_pattern(
            rule["name"],
            rule.get("category", "PII"),
            rule.get("severity", "MEDIUM"),
            rule["pattern"],
            label=rule.get("label"),
            mask=rule.get("mask"),
        )
    return engine
