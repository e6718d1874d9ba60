"""Tests for config loading and the CLI."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import io
import json

import pytest

from content_guard import ComplianceSettings, MemoryStore, SqliteStore, create_engine, load_config, load_from_yaml
from content_guard.cli import main
from content_guard.config import create_store
from content_guard.settings import settings_for
from content_guard.store import AUDIT_COLLECTION


@pytest.fixture(autouse=True)
def _no_market_env(monkeypatch):
    monkeypatch.delenv("CONTENT_GUARD_MARKET", raising=False)


# ── Settings ─────────────────────────────────────────────────────────

def test_market_presets():
    assert settings_for("business") == ComplianceSettings(False, False, False, 2555)
    assert settings_for("education") == ComplianceSettings(True, True, True, 365)


def test_unknown_market():
    with pytest.raises(ValueError):
        settings_for("government")


def test_overrides_ignore_unknown_keys():
    s = settings_for("business").with_overrides({"block_on_pii": True, "colour": "red"})
    assert s.block_on_pii
    assert s.retention_days == 2555


# ── load_config ──────────────────────────────────────────────────────

def test_defaults(monkeypatch):
    monkeypatch.delenv("CONTENT_GUARD_MARKET", raising=False)
    cfg = load_config({})
    assert cfg["org_id"] == "org-1"
    assert cfg["market_context"] == "business"
    assert cfg["settings"] == settings_for("business")
    assert cfg["store_backend"] == "memory"
    assert cfg["audit_capacity"] == 1000
    assert not cfg["async_writes"]


def test_nested_config_with_overrides():
    cfg = load_config({
        "content_guard": {
            "org_id": "school-42",
            "market_context": "education",
            "compliance": {"retention_days": 180},
            "audit": {"capacity": 50},
            "redaction": {"skip_types": ["DATE_OF_BIRTH"], "allow_list": ["help@school.edu"]},
        }
    })
    assert cfg["org_id"] == "school-42"
    assert cfg["settings"].block_on_pii
    assert cfg["settings"].retention_days == 180
    assert cfg["audit_capacity"] == 50
    assert cfg["skip_types"] == {"DATE_OF_BIRTH"}
    assert cfg["allow_list"] == {"help@school.edu"}


def test_market_from_environment(monkeypatch):
    monkeypatch.setenv("CONTENT_GUARD_MARKET", "education")
    assert load_config({})["settings"].require_consent


def test_load_from_yaml(tmp_path):
    path = tmp_path / "guard.yaml"
    path.write_text(
        "content_guard:\n"
        "  market_context: education\n"
        "  store:\n"
        "    backend: sqlite\n"
        f"    path: {tmp_path / 'audit.db'}\n"
        "  custom_patterns:\n"
        "    - name: STUDENT_ID\n"
        "      category: PII\n"
        "      severity: HIGH\n"
        "      pattern: '\\bSID-\\d{6}\\b'\n"
        "      label: Student ID\n"
    )
    cfg = load_from_yaml(path)
    assert cfg["store_backend"] == "sqlite"
    assert cfg["custom_patterns"][0]["name"] == "STUDENT_ID"


def test_empty_yaml(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_from_yaml(path)["store_backend"] == "memory"


# ── create_engine ────────────────────────────────────────────────────

def test_create_engine_with_custom_patterns():
    engine = create_engine({
        "market_context": "education",
        "custom_patterns": [
            {"name": "STUDENT_ID", "severity": "HIGH", "pattern": r"\bSID-\d{6}\b",
             "label": "Student ID"},
        ],
    })
    out = engine.process_message({"senderId": "u1", "channelId": "c1", "content": "I am SID-123456"})
    assert out.is_blocked
    assert out.redacted_content == "I am [REDACTED]"
    assert engine.get_audit_log()[0].trigger == "Student ID detected"


def test_create_engine_redaction_config():
    engine = create_engine({"redaction": {"allow_list": ["help@school.edu"]}})
    out = engine.process_message({"senderId": "u1", "channelId": "c1",
                                  "content": "write help@school.edu"})
    assert out.redacted_content == "write help@school.edu"


def test_create_engine_sqlite(tmp_path):
    engine = create_engine({"store": {"backend": "sqlite", "path": str(tmp_path / "a.db")}})
    assert isinstance(engine.store, SqliteStore)
    engine.close()


def test_create_engine_async_writes():
    store = MemoryStore()
    engine = create_engine({"audit": {"async_writes": True}}, store=store)
    engine.process_message({"senderId": "u1", "channelId": "c1", "content": "SSN 123-45-6789"})
    engine.close()
    assert len(store.list(AUDIT_COLLECTION)) == 1


def test_create_store_errors():
    with pytest.raises(ValueError):
        create_store(load_config({"store": {"backend": "http"}}))
    with pytest.raises(ValueError):
        create_store(load_config({"store": {"backend": "mongo"}}))


def test_create_store_http():
    store = create_store(load_config({"store": {"backend": "http", "url": "https://ds.test/rest/v1"}}))
    assert hasattr(store, "create")
    store.close()


# ── CLI ──────────────────────────────────────────────────────────────

def _run(monkeypatch, capsys, db, *args, stdin=""):
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    main(["--db", str(db), *args])
    return capsys.readouterr()


def test_cli_scan_blocks_in_education(tmp_path, monkeypatch, capsys):
    msg = json.dumps({"senderId": "u1", "channelId": "c1", "content": "My SSN is 123-45-6789"})
    out = _run(monkeypatch, capsys, tmp_path / "a.db", "--market", "education", "scan", stdin=msg)
    data = json.loads(out.out)
    assert data["isBlocked"] is True
    assert data["redactedContent"] == "My SSN is XXX-XX-XXXX"


def test_cli_scan_plain_text(tmp_path, monkeypatch, capsys):
    out = _run(monkeypatch, capsys, tmp_path / "a.db", "scan", stdin="email me at a@b.com\n")
    data = json.loads(out.out)
    assert data["isBlocked"] is False
    assert data["redactedContent"] == "email me at [EMAIL REDACTED]"


def test_cli_market_from_environment(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("CONTENT_GUARD_MARKET", "education")
    out = _run(monkeypatch, capsys, tmp_path / "a.db", "scan", stdin="My SSN is 123-45-6789")
    assert json.loads(out.out)["isBlocked"] is True

    out = _run(monkeypatch, capsys, tmp_path / "b.db", "--market", "business", "scan",
               stdin="My SSN is 123-45-6789")
    assert json.loads(out.out)["isBlocked"] is False


def test_cli_block_on_pii_override(tmp_path, monkeypatch, capsys):
    out = _run(monkeypatch, capsys, tmp_path / "a.db", "--block-on-pii", "true", "scan",
               stdin="call me at 555-123-4567")
    assert json.loads(out.out)["isBlocked"] is True


def test_cli_audit_survives_between_calls(tmp_path, monkeypatch, capsys):
    db = tmp_path / "a.db"
    _run(monkeypatch, capsys, db, "scan", stdin="My SSN is 123-45-6789")
    _run(monkeypatch, capsys, db, "scan", stdin="have a great day")

    entries = json.loads(_run(monkeypatch, capsys, db, "audit").out)
    assert len(entries) == 1
    assert entries[0]["status"] == "FLAGGED"

    stats = json.loads(_run(monkeypatch, capsys, db, "stats").out)
    assert stats["total_events"] == 1


def test_cli_redact_text(tmp_path, monkeypatch, capsys):
    out = _run(monkeypatch, capsys, tmp_path / "a.db", "redact-text", stdin="call me at 555-123-4567")
    data = json.loads(out.out)
    assert data["text"] == "call me at (XXX) XXX-XXXX"
    assert data["redactions"] == {"PHONE": 1}


def test_cli_ledger_case_and_resolve(tmp_path, monkeypatch, capsys):
    db = tmp_path / "a.db"
    item = json.dumps({"memberId": "m1", "title": "Refund", "description": "card 4111 1111 1111 1111"})
    scanned = json.loads(_run(monkeypatch, capsys, db, "scan-ledger", stdin=item).out)
    case_id = scanned["caseId"]

    cases = json.loads(_run(monkeypatch, capsys, db, "cases", "--status", "escalated").out)
    assert [c["id"] for c in cases] == [case_id]

    resolved = json.loads(_run(monkeypatch, capsys, db, "resolve", case_id, "blocked", "--by", "admin").out)
    assert resolved["status"] == "resolved"

    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, capsys, db, "resolve", case_id, "allowed", "--by", "admin")
    assert exc.value.code == 1
    assert "error:" in capsys.readouterr().err


def test_cli_purge(tmp_path, monkeypatch, capsys):
    db = tmp_path / "a.db"
    _run(monkeypatch, capsys, db, "scan", stdin="My SSN is 123-45-6789")
    out = _run(monkeypatch, capsys, db, "purge")
    assert "Purged 0 audit records" in out.err


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
