"""Tests for the audit journal. Append-only JSON lines, never raises."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from execution.models import OrderStatus
from journal.writer import AuditJournal


def test_audit_journal_append_only(tmp_path: Path) -> None:
    path = tmp_path / "audit" / "trail.jsonl"
    j = AuditJournal(path)
    j.record("CreateOrder", "Order", 1, None, {"quantity": 10, "limit_price": Decimal("95.50")})
    j.record("CancelOrder", "Order", 1, {"status": OrderStatus.PENDING}, {"status": OrderStatus.CANCELLED})

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    r0 = json.loads(lines[0])
    assert r0["action"] == "CreateOrder"
    assert r0["entity_type"] == "Order"
    assert r0["entity_id"] == 1
    assert r0["before"] is None
    assert r0["after"]["limit_price"] == "95.50"
    assert "ts_utc" in r0
    r1 = json.loads(lines[1])
    assert r1["before"] == {"status": "pending"}
    assert r1["after"] == {"status": "cancelled"}


def test_serializes_datetimes(tmp_path: Path) -> None:
    j = AuditJournal(tmp_path / "a.jsonl")
    ts = datetime(2025, 3, 3, 2, 0, tzinfo=timezone.utc)
    j.record("ExecuteTrade", "Trade", 7, after={"executed_at": ts})
    assert j.read()[0]["after"]["executed_at"] == "2025-03-03T02:00:00+00:00"


def test_echo_stdout(tmp_path: Path, capsys) -> None:
    AuditJournal(tmp_path / "a.jsonl", echo_stdout=True).record("CreateOrder", "Order", 3)
    assert '"CreateOrder"' in capsys.readouterr().out


def test_write_failure_is_logged_not_raised(tmp_path: Path, caplog) -> None:
    j = AuditJournal(tmp_path / "a.jsonl")
    j.record("CreateOrder", "Order", 1, after={"bad": object()})
    assert j.read() == []
    assert "Audit write failed" in caplog.text


def test_read_missing_file(tmp_path: Path) -> None:
    j = AuditJournal(tmp_path / "a.jsonl")
    assert j.read() == []
