"""Tests for journal writer. Append-only JSON lines fed by the change notifier."""

import json
import tempfile
from pathlib import Path

from journal import JournalWriter
from market_core.contracts import Order
from market_core.service import Market


def _lines(path: Path) -> list[dict]:
    with open(path) as f:
        return [json.loads(line) for line in f]


def test_journal_writer_append_only() -> None:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".jsonl", delete=False) as f:
        path = Path(f.name)
    try:
        j = JournalWriter(path)
        j.session("start", "S1", "active")
        j.trade("T1", "U1", "buy", "AAA", 10, 100.0, "S1", total=1000.0)
        j.rejection("insufficient_balance", "Insufficient balance: need 1,100.00, have 1,000.00")
        records = _lines(path)
        assert [r["event"] for r in records] == ["session", "trade", "rejection"]
        assert records[1]["qty"] == 10
        assert records[1]["total"] == 1000.0
        assert records[2]["kind"] == "insufficient_balance"
        assert all("ts_utc" in r for r in records)
    finally:
        path.unlink(missing_ok=True)


def test_journal_creates_parent_dirs(tmp_path: Path) -> None:
    path = tmp_path / "a" / "b" / "journal.jsonl"
    JournalWriter(path).reset("trades")
    record = _lines(path)[0]
    assert record["event"] == "reset"
    assert record["scope"] == "trades"


def test_echo_stdout(tmp_path: Path, capsys) -> None:
    JournalWriter(tmp_path / "j.jsonl", echo_stdout=True).session("end", "S1", "completed")
    assert '"event": "session"' in capsys.readouterr().out


def test_journal_follows_market_changes(market: Market, tmp_path: Path) -> None:
    path = tmp_path / "journal.jsonl"
    journal = JournalWriter(path)
    market.notifier.subscribe("*", journal.on_change)

    market.scheduler.start()
    trade = market.executor.submit(Order("U1", "AAA", "buy", 2))
    market.executor.clear()

    records = _lines(path)
    assert [r["event"] for r in records if r["event"] != "session"] == ["trade", "reset"]
    session = next(r for r in records if r["event"] == "session")
    assert session["session_id"] == "S1"
    assert session["statuses"] == {"S1": "active", "S2": "pending", "S3": "pending"}
    journaled = next(r for r in records if r["event"] == "trade")
    assert journaled["trade_id"] == trade.id
    assert journaled["price"] == 100.0
