"""Pytest fixtures: a small roster, a controllable clock and a temp-store market."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from config.roster import Roster, load_roster
from data.store import MarketStore
from market_core.service import Market, MarketService

ADMIN_KEY = "test-admin-key"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def small_roster_data() -> dict:
    """Three sessions, two stocks (one with a borrow pool), two users."""
    return {
        "version": "test",
        "brokers": [{"id": "B1", "name": "Test Broker", "balance": 0}],
        "sessions": [
            {"id": "S1", "name": "Session 1", "story": "Opening bell."},
            {"id": "S2", "name": "Session 2"},
            {"id": "S3", "name": "Session 3"},
        ],
        "stocks": [
            {
                "id": "AAA", "name": "Alpha", "brokerId": "B1", "totalShares": 100,
                "sessionPrices": [
                    {"sessionId": "S1", "price": 100},
                    {"sessionId": "S2", "price": 120},
                    {"sessionId": "S3", "price": 90},
                ],
            },
            {
                "id": "BBB", "name": "Beta", "brokerId": "B1",
                "sessionPrices": [
                    {"sessionId": "S1", "price": 50},
                    {"sessionId": "S2", "price": 40},
                    {"sessionId": "S3", "price": 60},
                ],
            },
        ],
        "users": [
            {"id": "U1", "name": "Asha", "brokerId": "B1", "initialBalance": 10000},
            {"id": "U2", "name": "Ben", "brokerId": "B1", "initialBalance": 1000},
        ],
    }


@pytest.fixture
def roster_data() -> dict:
    return small_roster_data()


@pytest.fixture
def roster_file(tmp_path: Path, roster_data: dict) -> Path:
    path = tmp_path / "roster.json"
    path.write_text(json.dumps(roster_data))
    return path


@pytest.fixture
def roster(roster_file: Path) -> Roster:
    return load_roster(roster_file)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def market(tmp_path: Path, roster: Roster, clock: FakeClock, sleeps: list[float]) -> Market:
    m = Market(
        MarketStore(tmp_path / "market.db"),
        admin_key=ADMIN_KEY,
        clock=clock,
        sleep=sleeps.append,
        retry_backoff_s=0.01,
    )
    m.seed(roster)
    return m


@pytest.fixture
def service(market: Market) -> MarketService:
    return MarketService(market)


@pytest.fixture
def token(market: Market) -> str:
    return market.access.issue(ADMIN_KEY)
