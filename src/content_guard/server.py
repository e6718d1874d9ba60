"""HTTP sidecar server for content-guard.

Runs as a lightweight stdlib HTTP server on localhost.  The host app calls
this instead of embedding the engine in-process.

Endpoints:
    GET  /health            — Health check
    GET  /audit             — Audit log (query: memberId, status, riskLevel, flaggedOnly, limit)
    GET  /cases             — Cases (query: memberId, status, severity)
    GET  /stats             — Compliance summary counts
    POST /messages          — Screen chat messages   {"messages": [...]}
    POST /ledger            — Scan a ledger item     {"item": {...}}
    POST /redact-text       — Redact plain text      {"text": "..."}
    POST /cases/resolve     — {"caseId", "resolution", "resolvedBy", "notes"}
    POST /consent/request   — {"studentId", "guardianEmail", "categories"}
    POST /consent/grant     — {"studentId", "guardianId", "categories", "consentType", "consentId"}
    POST /consent/revoke    — {"consentId", "reason"}
    POST /consent/check     — {"subject": {...}, "feature": "chat"}

All endpoints expect/return JSON.
"""

from __future__ import annotations
import json
import logging
import os
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from .config import DEFAULT_DB, create_engine, load_config, load_from_yaml
from .engine import ComplianceEngine
from .errors import CaseNotFoundError, ConsentNotFoundError, ContentGuardError
from .types import Subject

logger = logging.getLogger(__name__)

DEFAULT_PORT = int(os.environ.get("CONTENT_GUARD_PORT", "18792"))


class ComplianceHandler(BaseHTTPRequestHandler):
    """HTTP request handler.  `engine` is bound by make_server()."""

    engine: ComplianceEngine

    def _read_json(self) -> dict[str, Any]:
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length).decode("utf-8")
        return json.loads(body) if body else {}

    def _respond(self, status: int, data: Any) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self) -> None:
        url = urlparse(self.path)
        q = {k: v[-1] for k, v in parse_qs(url.query).items()}
        try:
            if url.path == "/health":
                self._respond(200, {
                    "status": "ok",
                    "audit_entries": len(self.engine.audit),
                    "pending_writes": self.engine.writer.pending,
                })
            elif url.path == "/audit":
                entries = self.engine.get_audit_log(
                    member_id=q.get("memberId"),
                    status=q.get("status"),
                    risk_level=q.get("riskLevel"),
                    flagged_only=q.get("flaggedOnly", "").lower() in ("1", "true"),
                    limit=int(q["limit"]) if q.get("limit") else None,
                )
                self._respond(200, {"entries": [e.to_dict() for e in entries]})
            elif url.path == "/cases":
                cases = self.engine.get_cases(
                    member_id=q.get("memberId"),
                    status=q.get("status"),
                    severity=q.get("severity"),
                )
                self._respond(200, {"cases": [c.to_dict() for c in cases]})
            elif url.path == "/stats":
                self._respond(200, self.engine.get_compliance_stats())
            else:
                self._respond(404, {"error": "not found"})
        except ValueError as e:
            self._respond(400, {"error": str(e)})

    def do_POST(self) -> None:
        route = _POST_ROUTES.get(urlparse(self.path).path)
        if route is None:
            self._respond(404, {"error": "not found"})
            return
        try:
            body = self._read_json()
            self._respond(200, route(self.engine, body))
        except (CaseNotFoundError, ConsentNotFoundError) as e:
            self._respond(404, {"error": str(e)})
        except (ContentGuardError, ValueError, KeyError) as e:
            self._respond(400, {"error": str(e)})
        except Exception as e:
            logger.exception("Unhandled error on %s", self.path)
            self._respond(500, {"error": str(e)})


# ── POST routes ──────────────────────────────────────────────────────

def _messages(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    return {"messages": engine.pipeline.process_messages(body.get("messages", []))}


def _ledger(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    return {"item": engine.process_ledger_item(body["item"]).to_dict()}


def _redact_text(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    text = body.get("text", "")
    flags = engine.detector.detect(text)
    result = engine.redactor.redact_detailed(text, flags)
    return {
        "text": result.text,
        "flags": [f.to_dict() for f in flags],
        "redactions": result.counts,
    }


def _resolve_case(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    case = engine.cases.resolve_case(
        body["caseId"], body["resolution"], body["resolvedBy"], body.get("notes"),
    )
    return {"case": case.to_dict()}


def _consent_request(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    record = engine.consents.request_consent(
        body["studentId"], body["guardianEmail"], body.get("categories", []),
        org_id=body.get("organizationId"),
    )
    return {"record": record.to_dict()}


def _consent_grant(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    record = engine.consents.grant_consent(
        body["studentId"],
        body["guardianId"],
        body.get("categories", []),
        consent_type=body.get("consentType", "full"),
        guardian_name=body.get("guardianName", ""),
        consent_id=body.get("consentId"),
        expires_at=body.get("expiresAt"),
        org_id=body.get("organizationId"),
    )
    return {"record": record.to_dict()}


def _consent_revoke(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    record = engine.consents.revoke_consent(body["consentId"], body.get("reason"))
    return {"record": record.to_dict()}


def _consent_check(engine: ComplianceEngine, body: dict[str, Any]) -> dict[str, Any]:
    subject = Subject.from_dict(body["subject"])
    return engine.check_feature_access(subject, body["feature"]).to_dict()


_POST_ROUTES: dict[str, Callable[[ComplianceEngine, dict[str, Any]], dict[str, Any]]] = {
    "/messages": _messages,
    "/ledger": _ledger,
    "/redact-text": _redact_text,
    "/cases/resolve": _resolve_case,
    "/consent/request": _consent_request,
    "/consent/grant": _consent_grant,
    "/consent/revoke": _consent_revoke,
    "/consent/check": _consent_check,
}


def make_server(engine: ComplianceEngine, host: str = "127.0.0.1",
                port: int = DEFAULT_PORT) -> ThreadingHTTPServer:
    """Bind a server to `engine`.  Port 0 picks a free port."""
    handler = type("BoundComplianceHandler", (ComplianceHandler,), {"engine": engine})
    return ThreadingHTTPServer((host, port), handler)


def serve(port: int = DEFAULT_PORT, db_path: str = DEFAULT_DB,
          config_path: str | None = None) -> None:
    """Start the content-guard HTTP sidecar."""
    if config_path:
        cfg = load_from_yaml(config_path)
    else:
        cfg = load_config({"store": {"backend": "sqlite", "path": db_path}})
    engine = create_engine(cfg)
    engine.restore()

    server = make_server(engine, port=port)
    logger.info("content-guard sidecar listening on http://127.0.0.1:%d", port)
    logger.info("  store: %s, market: %s", cfg["store_backend"], cfg["market_context"])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        server.server_close()
        engine.close()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="content-guard HTTP sidecar")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--db", default=DEFAULT_DB)
    parser.add_argument("--config", default=None)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    serve(port=args.port, db_path=args.db, config_path=args.config)
