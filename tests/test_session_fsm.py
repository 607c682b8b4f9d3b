"""Tests for the session scheduler state machine and its price cut."""

import random
from datetime import timedelta
from pathlib import Path

import pytest

from data.store import MarketStore
from market_core.contracts import SessionStatus
from market_core.errors import InvalidInput, NoActiveSession, NoMoreSessions, NoPendingSessions, NotFound
from market_core.service import Market

PENDING, ACTIVE, COMPLETED = SessionStatus.PENDING, SessionStatus.ACTIVE, SessionStatus.COMPLETED


def _statuses(market: Market) -> list[SessionStatus]:
    return [s.status for s in market.scheduler.sessions()]


def _stored_price(market: Market, stock_id: str) -> float:
    return market.store.get("stocks", stock_id)["currentPrice"]


def test_seeded_sessions_start_pending(market: Market) -> None:
    assert _statuses(market) == [PENDING, PENDING, PENDING]
    assert market.scheduler.current() is None


def test_start_activates_first_pending_with_window(market: Market, clock) -> None:
    session = market.scheduler.start()
    assert session.id == "S1"
    assert session.start_time == clock.now
    assert session.end_time == clock.now + timedelta(minutes=10)
    assert _statuses(market) == [ACTIVE, PENDING, PENDING]


def test_start_commits_price_cut(market: Market) -> None:
    market.scheduler.start()
    market.scheduler.advance()
    assert _stored_price(market, "AAA") == 120.0
    assert _stored_price(market, "BBB") == 40.0
    assert market.prices.current_price("AAA") == 120.0


def test_start_force_completes_active(market: Market, clock) -> None:
    market.scheduler.start()
    clock.advance(minutes=3)
    market.scheduler.start()
    s1, s2, _ = market.scheduler.sessions()
    assert s1.status is COMPLETED
    assert s1.end_time == clock.now
    assert s2.status is ACTIVE


def test_advance_without_active_starts_first(market: Market) -> None:
    assert market.scheduler.advance().id == "S1"


def test_advance_through_all_sessions(market: Market) -> None:
    market.scheduler.start()
    assert market.scheduler.advance().id == "S2"
    assert market.scheduler.advance().id == "S3"
    with pytest.raises(NoMoreSessions, match="No more sessions available"):
        market.scheduler.advance()
    # completion of the last session is kept
    assert _statuses(market) == [COMPLETED, COMPLETED, COMPLETED]
    assert market.scheduler.current() is None


def test_advance_when_exhausted_changes_nothing(market: Market) -> None:
    market.scheduler.start()
    market.scheduler.end()
    market.scheduler.start()
    market.scheduler.end()
    market.scheduler.start()
    market.scheduler.end()
    before = market.store.list("sessions")
    with pytest.raises(NoMoreSessions):
        market.scheduler.advance()
    assert market.store.list("sessions") == before


def test_end_completes_active(market: Market, clock) -> None:
    market.scheduler.start()
    clock.advance(minutes=1)
    ended = market.scheduler.end()
    assert ended.status is COMPLETED
    assert ended.end_time == clock.now
    with pytest.raises(NoActiveSession):
        market.scheduler.end()


def test_start_with_no_pending_leaves_state_unchanged(market: Market) -> None:
    for _ in range(3):
        market.scheduler.start()
    market.scheduler.end()
    before = market.store.list("sessions")
    with pytest.raises(NoPendingSessions, match="No pending sessions available"):
        market.scheduler.start()
    assert market.store.list("sessions") == before


def test_reset_returns_everything_to_pending(market: Market) -> None:
    market.scheduler.start()
    market.scheduler.advance()
    sessions = market.scheduler.reset()
    assert all(s.status is PENDING and s.start_time is None and s.end_time is None for s in sessions)
    # last price set does not revert
    assert _stored_price(market, "AAA") == 120.0
    assert market.prices.current_price("AAA") == 120.0


def test_active_session_not_found(market: Market) -> None:
    with pytest.raises(NotFound, match="No active session found"):
        market.scheduler.active_session()


def test_add_session_appends_and_rejects_duplicates(market: Market) -> None:
    added = market.scheduler.add_session("S4", "Session 4", "Extra time.")
    assert added.status is PENDING
    assert [s.id for s in market.scheduler.sessions()][-1] == "S4"
    with pytest.raises(InvalidInput):
        market.scheduler.add_session("S1", "Again")


def test_transitions_publish_sessions_and_stocks(market: Market) -> None:
    market.scheduler.start()
    seen: list[str] = []
    market.notifier.subscribe("*", lambda e: seen.append(e.entity))
    market.scheduler.advance()
    assert seen == ["sessions", "stocks"]


def test_transition_without_price_change_skips_stock_event(market: Market) -> None:
    # seeded currentPrice already equals the first session's price
    seen: list[str] = []
    market.notifier.subscribe("*", lambda e: seen.append(e.entity))
    market.scheduler.start()
    assert seen == ["sessions"]


def test_at_most_one_active_over_random_commands(market: Market, clock) -> None:
    rng = random.Random(20260302)
    commands = ["start", "advance", "end", "reset"]
    for _ in range(300):
        command = rng.choice(commands)
        clock.advance(seconds=rng.randint(1, 900))
        try:
            getattr(market.scheduler, command)()
        except (NoPendingSessions, NoMoreSessions, NoActiveSession):
            pass
        sessions = market.scheduler.sessions()
        active = [s for s in sessions if s.status is ACTIVE]
        assert len(active) <= 1
        if active:
            session = active[0]
            assert _stored_price(market, "AAA") == market.store.get("stocks", "AAA")["sessionPrices"][
                int(session.id[1:]) - 1
            ]["price"]


class TestWindowExpiry:
    @pytest.fixture
    def timed_market(self, tmp_path: Path, roster, clock) -> Market:
        m = Market(MarketStore(tmp_path / "timed.db"), enforce_window=True, clock=clock)
        m.seed(roster)
        return m

    def test_active_session_expires_lazily(self, timed_market: Market, clock) -> None:
        timed_market.scheduler.start()
        clock.advance(minutes=9)
        assert timed_market.scheduler.current().id == "S1"
        clock.advance(minutes=2)
        assert timed_market.scheduler.current() is None
        assert timed_market.scheduler.expire_overdue().id == "S1"
        assert _statuses(timed_market)[0] is COMPLETED

    def test_overdue_read_does_not_write(self, timed_market: Market, clock, monkeypatch: pytest.MonkeyPatch) -> None:
        timed_market.scheduler.start()
        clock.advance(minutes=11)

        def no_commit(changes) -> None:
            raise AssertionError("read path committed")

        monkeypatch.setattr(timed_market.store, "commit", no_commit)
        assert timed_market.scheduler.current() is None
        with pytest.raises(NotFound):
            timed_market.scheduler.active_session()
        assert _statuses(timed_market)[0] is ACTIVE

    def test_advance_past_last_expired_session_persists_completion(self, timed_market: Market, clock) -> None:
        for _ in range(3):
            timed_market.scheduler.start()
        clock.advance(minutes=11)
        with pytest.raises(NoMoreSessions):
            timed_market.scheduler.advance()
        assert _statuses(timed_market) == [COMPLETED, COMPLETED, COMPLETED]

    def test_end_after_expiry_persists_completion(self, timed_market: Market, clock) -> None:
        timed_market.scheduler.start()
        clock.advance(minutes=11)
        with pytest.raises(NoActiveSession):
            timed_market.scheduler.end()
        assert _statuses(timed_market)[0] is COMPLETED

    def test_start_after_expiry_picks_next(self, timed_market: Market, clock) -> None:
        timed_market.scheduler.start()
        clock.advance(minutes=15)
        assert timed_market.scheduler.start().id == "S2"

    def test_window_ignored_when_not_enforced(self, market: Market, clock) -> None:
        market.scheduler.start()
        clock.advance(hours=1)
        assert market.scheduler.current().id == "S1"
