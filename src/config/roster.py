"""
Roster loader: JSON seed file -> contracts, validated against JSON Schema.

The roster is what administration would otherwise create by hand: brokers,
the ordered session list, stocks with one price per session, and users with
their starting balance.

Default roster: docs/config/roster.default.json
Schema:         docs/config/roster.schema.json

Usage:
    from config.roster import load_roster
    roster = load_roster()                     # default roster
    roster = load_roster("classroom.json")     # custom file
    roster.stocks[0].session_prices[0].price
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema

from market_core.contracts import Account, Broker, Session, Stock

logger = logging.getLogger("market.config")

# ---------------------------------------------------------------------------
# Project root detection (walk up from this file to find pyproject.toml)
# ---------------------------------------------------------------------------


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml.

    When installed as a package pyproject.toml won't exist; fall back to CWD.
    """
    candidate = Path(__file__).resolve().parent
    for _ in range(10):
        if (candidate / "pyproject.toml").exists():
            return candidate
        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent
    return Path.cwd()


_PROJECT_ROOT = _find_project_root()

DEFAULT_ROSTER_PATH = _PROJECT_ROOT / "docs" / "config" / "roster.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "roster.schema.json"


@dataclass(frozen=True)
class Roster:
    version: str
    brokers: tuple[Broker, ...]
    sessions: tuple[Session, ...]
    stocks: tuple[Stock, ...]
    accounts: tuple[Account, ...]


class RosterError(Exception):
    """Raised when roster loading, validation or cross-checking fails."""


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    """Validate *data* against the JSON Schema at *schema_path*."""
    if not schema_path.exists():
        raise RosterError(f"Schema file not found: {schema_path}")
    with open(schema_path) as f:
        schema = json.load(f)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise RosterError(f"Roster validation failed: {exc.message}") from exc


def _check_references(data: dict[str, Any]) -> None:
    """Unique ids per collection; every stock prices every session exactly once."""
    for name in ("brokers", "sessions", "stocks", "users"):
        ids = [item["id"] for item in data.get(name, [])]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise RosterError(f"Duplicate {name} ids: {', '.join(dupes)}")

    session_ids = [s["id"] for s in data["sessions"]]
    for stock in data["stocks"]:
        priced = [sp["sessionId"] for sp in stock["sessionPrices"]]
        if sorted(set(priced)) != sorted(priced):
            raise RosterError(f"Stock {stock['id']} prices a session more than once")
        missing = [sid for sid in session_ids if sid not in priced]
        unknown = [sid for sid in priced if sid not in session_ids]
        if missing:
            raise RosterError(f"Stock {stock['id']} has no price for session(s): {', '.join(missing)}")
        if unknown:
            raise RosterError(f"Stock {stock['id']} prices unknown session(s): {', '.join(unknown)}")


def _build_roster(data: dict[str, Any]) -> Roster:
    """Convert a raw dict (already validated) into contracts."""
    stocks = []
    for raw in data["stocks"]:
        raw = dict(raw)
        if raw.get("totalShares") is not None and raw.get("shares") is None:
            raw["shares"] = raw["totalShares"]
        stocks.append(Stock.from_record(raw))

    accounts = []
    for raw in data["users"]:
        accounts.append(
            Account.from_record(
                {
                    "id": raw["id"],
                    "name": raw.get("name", raw["id"]),
                    "brokerId": raw.get("brokerId"),
                    "balance": raw["initialBalance"],
                    "initialBalance": raw["initialBalance"],
                }
            )
        )

    return Roster(
        version=str(data.get("version", "1")),
        brokers=tuple(Broker.from_record(b) for b in data.get("brokers", [])),
        sessions=tuple(Session.from_record({**s, "status": "pending"}) for s in data["sessions"]),
        stocks=tuple(stocks),
        accounts=tuple(accounts),
    )


def load_roster(
    roster_path: str | Path | None = None,
    schema_path: str | Path | None = None,
) -> Roster:
    """Load and validate a roster.

    Parameters
    ----------
    roster_path:
        Path to a roster JSON file.  Defaults to ``docs/config/roster.default.json``.
    schema_path:
        Path to the JSON Schema file.  Defaults to ``docs/config/roster.schema.json``.

    Raises
    ------
    RosterError
        If the file is missing, unparseable, fails schema validation, or a
        stock does not price every session.
    """
    path = Path(roster_path) if roster_path else DEFAULT_ROSTER_PATH
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH

    if not path.exists():
        raise RosterError(f"Roster file not found: {path}")

    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise RosterError(f"Roster is not valid JSON: {exc}") from exc

    _validate_schema(data, sch_path)
    _check_references(data)
    roster = _build_roster(data)
    logger.info(
        "Loaded roster %s: %d sessions, %d stocks, %d users",
        path.name, len(roster.sessions), len(roster.stocks), len(roster.accounts),
    )
    return roster
