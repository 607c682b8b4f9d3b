"""Tests for roster loading: schema validation, cross-checks, seeding."""

import json
from pathlib import Path

import pytest

from config.roster import DEFAULT_ROSTER_PATH, RosterError, load_roster
from market_core.contracts import SessionStatus
from market_core.service import Market


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "roster.json"
    path.write_text(json.dumps(data))
    return path


def test_default_roster_loads() -> None:
    roster = load_roster()
    assert DEFAULT_ROSTER_PATH.name == "roster.default.json"
    assert len(roster.sessions) == 6
    assert {s.id for s in roster.stocks} == {"ALPHA001", "BETA002", "GAMMA003"}
    assert all(len(s.session_prices) == 6 for s in roster.stocks)
    assert all(a.balance == a.initial_balance for a in roster.accounts)


def test_small_roster_contracts(roster_file: Path) -> None:
    roster = load_roster(roster_file)
    assert [s.status for s in roster.sessions] == [SessionStatus.PENDING] * 3
    aaa, bbb = roster.stocks
    assert aaa.shares == 100 and aaa.total_shares == 100
    assert bbb.shares is None
    assert aaa.current_price == 100.0
    assert roster.accounts[1].initial_balance == 1000.0


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(RosterError, match="not found"):
        load_roster(tmp_path / "nope.json")


def test_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "roster.json"
    path.write_text("{not json")
    with pytest.raises(RosterError, match="not valid JSON"):
        load_roster(path)


def test_schema_rejects_non_positive_price(tmp_path: Path, roster_data: dict) -> None:
    data = roster_data
    data["stocks"][0]["sessionPrices"][0]["price"] = 0
    with pytest.raises(RosterError, match="validation failed"):
        load_roster(_write(tmp_path, data))


def test_schema_rejects_unknown_fields(tmp_path: Path, roster_data: dict) -> None:
    data = roster_data
    data["users"][0]["isAdmin"] = True
    with pytest.raises(RosterError, match="validation failed"):
        load_roster(_write(tmp_path, data))


def test_stock_must_price_every_session(tmp_path: Path, roster_data: dict) -> None:
    data = roster_data
    data["stocks"][1]["sessionPrices"].pop()
    with pytest.raises(RosterError, match="BBB has no price for session"):
        load_roster(_write(tmp_path, data))


def test_stock_prices_unknown_session(tmp_path: Path, roster_data: dict) -> None:
    data = roster_data
    data["stocks"][0]["sessionPrices"].append({"sessionId": "S9", "price": 1})
    with pytest.raises(RosterError, match="unknown session"):
        load_roster(_write(tmp_path, data))


def test_duplicate_ids(tmp_path: Path, roster_data: dict) -> None:
    data = roster_data
    data["users"].append(dict(data["users"][0]))
    with pytest.raises(RosterError, match="Duplicate users ids: U1"):
        load_roster(_write(tmp_path, data))


def test_seed_keeps_existing_data_unless_forced(market: Market, roster) -> None:
    market.scheduler.start()
    assert market.seed(roster) == {}
    assert market.scheduler.current().id == "S1"

    counts = market.seed(roster, replace_existing=True)
    assert counts == {"brokers": 1, "sessions": 3, "stocks": 2, "users": 2}
    assert market.scheduler.current() is None
