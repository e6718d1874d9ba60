"""CLI interface for content-guard — designed to be called by a host app.

Usage:
    # Screen a chat message (stdin: JSON message, stdout: annotated JSON)
    echo '{"senderId":"u1","channelId":"c1","content":"My SSN is 123-45-6789"}' | \
        python -m content_guard.cli --market education scan

    # Scan a ledger item
    echo '{"memberId":"u1","title":"Refund","description":"card 4111 1111 1111 1111"}' | \
        python -m content_guard.cli scan-ledger

    # Redact plain text (stdin: text, stdout: JSON)
    echo 'call me at 555-123-4567' | python -m content_guard.cli redact-text

    # Query the audit trail
    python -m content_guard.cli audit --status BLOCKED --limit 20

All audit state is persisted in SQLite so it survives across calls.
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import Any

from .config import DEFAULT_DB, create_engine, load_config, load_from_yaml
from .engine import ComplianceEngine
from .errors import ContentGuardError


def _build_engine(args: argparse.Namespace) -> ComplianceEngine:
    if args.config:
        cfg = load_from_yaml(args.config)
    else:
        cfg = load_config({
            "org_id": args.org_id,
            "market_context": args.market,
            "store": {"backend": "sqlite", "path": args.db},
        })
    if args.block_on_pii is not None:
        cfg["settings"] = cfg["settings"].with_overrides({"block_on_pii": args.block_on_pii})
    engine = create_engine(cfg)
    engine.restore()
    return engine


def _dump(data: Any) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def cmd_scan(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Screen chat messages: one JSON object, an array, or plain text on stdin."""
    data = sys.stdin.read()
    try:
        raw = json.loads(data)
    except json.JSONDecodeError:
        raw = None
    if not isinstance(raw, (dict, list)):
        raw = {"senderId": "cli", "channelId": "cli", "content": data.strip()}
    if isinstance(raw, list):
        _dump(engine.pipeline.process_messages(raw))
    else:
        _dump(engine.process_message(raw).to_dict())


def cmd_scan_ledger(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Scan one ledger item (JSON on stdin)."""
    item = engine.process_ledger_item(json.loads(sys.stdin.read()))
    _dump(item.to_dict())


def cmd_redact_text(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Redact PII from plain text on stdin.  Nothing is audited."""
    text = sys.stdin.read()
    flags = engine.detector.detect(text)
    result = engine.redactor.redact_detailed(text, flags)
    _dump({
        "text": result.text,
        "flags": [f.to_dict() for f in flags],
        "redactions": result.counts,
    })


def cmd_audit(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Query the audit trail."""
    entries = engine.get_audit_log(
        member_id=args.member_id,
        status=args.status,
        risk_level=args.risk_level,
        flagged_only=args.flagged_only,
        limit=args.limit,
    )
    _dump([e.to_dict() for e in entries])


def cmd_cases(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """List compliance cases."""
    cases = engine.get_cases(member_id=args.member_id, status=args.status, severity=args.severity)
    _dump([c.to_dict() for c in cases])


def cmd_resolve(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Resolve a case."""
    case = engine.cases.resolve_case(args.case_id, args.resolution, args.by, args.notes)
    _dump(case.to_dict())


def cmd_stats(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Summary counts for the dashboard."""
    _dump(engine.get_compliance_stats())


def cmd_purge(args: argparse.Namespace, engine: ComplianceEngine) -> None:
    """Drop durable audit records past the org's retention window."""
    removed = engine.apply_retention()
    sys.stderr.write(f"Purged {removed} audit records older than "
                     f"{engine.settings.retention_days} days\n")


def _bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes", "on")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="content-guard",
        description="PII and content compliance screening",
    )
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite audit store path")
    parser.add_argument("--config", default=None, help="YAML config file (overrides --db/--market)")
    parser.add_argument("--org-id", default="org-1", help="Organization ID")
    parser.add_argument("--market", default=None, choices=["business", "education"],
                        help="Market context preset (default: $CONTENT_GUARD_MARKET or business)")
    parser.add_argument("--block-on-pii", type=_bool, default=None,
                        help="Override the preset's block_on_pii (true/false)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("scan", help="Screen chat message(s) (JSON stdin)")
    sub.add_parser("scan-ledger", help="Scan a ledger item (JSON stdin)")
    sub.add_parser("redact-text", help="Redact plain text (stdin)")
    audit = sub.add_parser("audit", help="Query the audit trail")
    audit.add_argument("--member-id", default=None)
    audit.add_argument("--status", default=None,
                       choices=["ALLOWED", "FLAGGED", "BLOCKED", "QUARANTINED", "PENDING"])
    audit.add_argument("--risk-level", default=None, choices=["LOW", "MEDIUM", "HIGH", "CRITICAL"])
    audit.add_argument("--flagged-only", action="store_true")
    audit.add_argument("--limit", type=int, default=None)
    cases = sub.add_parser("cases", help="List compliance cases")
    cases.add_argument("--member-id", default=None)
    cases.add_argument("--status", default=None,
                       choices=["open", "investigating", "resolved", "escalated"])
    cases.add_argument("--severity", default=None, choices=["LOW", "MEDIUM", "HIGH", "CRITICAL"])
    resolve = sub.add_parser("resolve", help="Resolve a case")
    resolve.add_argument("case_id")
    resolve.add_argument("resolution", choices=["allowed", "blocked", "quarantined"])
    resolve.add_argument("--by", required=True, help="Who resolved it")
    resolve.add_argument("--notes", default=None)
    sub.add_parser("stats", help="Compliance summary counts")
    sub.add_parser("purge", help="Apply the retention window to the audit store")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "scan": cmd_scan,
        "scan-ledger": cmd_scan_ledger,
        "redact-text": cmd_redact_text,
        "audit": cmd_audit,
        "cases": cmd_cases,
        "resolve": cmd_resolve,
        "stats": cmd_stats,
        "purge": cmd_purge,
    }
    engine = _build_engine(args)
    try:
        cmds[args.command](args, engine)
    except ContentGuardError as exc:
        sys.stderr.write(f"error: {exc}\n")
        raise SystemExit(1) from exc
    finally:
        engine.close()


if __name__ == "__main__":
    main()
