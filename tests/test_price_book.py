"""Tests for price resolution, the admin override and price history."""

import pytest

from market_core.contracts import Session, SessionPrice, SessionStatus, Stock
from market_core.errors import InvalidInput, NotFound
from market_core.price_book import price_cut, resolve_price
from market_core.service import Market


def _stock(current: float = 10.0) -> Stock:
    return Stock(
        id="X",
        name="X Corp",
        broker_id=None,
        session_prices=(SessionPrice("S1", 11.0), SessionPrice("S2", 12.0)),
        current_price=current,
    )


def test_resolve_price_prefers_active_session() -> None:
    assert resolve_price(_stock(), Session("S2", "Two", SessionStatus.ACTIVE)) == 12.0


def test_resolve_price_falls_back_to_current() -> None:
    assert resolve_price(_stock(), None) == 10.0
    assert resolve_price(_stock(), Session("S9", "Unpriced", SessionStatus.ACTIVE)) == 10.0


def test_price_cut_skips_unchanged_stocks() -> None:
    moved, same = _stock(10.0), _stock(11.0)
    cut = price_cut([moved, same], Session("S1", "One"))
    assert [s.current_price for s in cut] == [11.0]


def test_current_price_without_session_uses_stored_price(market: Market) -> None:
    assert market.prices.current_price("AAA") == 100.0


def test_current_price_tracks_active_session(market: Market) -> None:
    market.scheduler.start()
    market.scheduler.advance()
    assert market.prices.prices() == {"AAA": 120.0, "BBB": 40.0}
    market.scheduler.end()
    # last price set stays in effect
    assert market.prices.current_price("AAA") == 120.0


def test_unknown_stock(market: Market) -> None:
    with pytest.raises(NotFound, match="Stock not found: NOPE"):
        market.prices.current_price("NOPE")


def test_snapshot_for_session(market: Market) -> None:
    s2 = market.scheduler.sessions()[1]
    assert {s.id: s.current_price for s in market.prices.snapshot_for(s2)} == {"AAA": 120.0, "BBB": 40.0}


def test_set_default_prices_outside_session(market: Market) -> None:
    events = []
    market.notifier.subscribe("stocks", events.append)
    market.prices.set_default_prices({"AAA": 99.5, "BBB": 51})
    assert market.prices.prices() == {"AAA": 99.5, "BBB": 51.0}
    assert len(events) == 1


def test_active_session_overrides_default_price(market: Market) -> None:
    market.scheduler.start()
    market.prices.set_default_price("AAA", 5.0)
    assert market.prices.current_price("AAA") == 100.0
    market.scheduler.end()
    assert market.prices.current_price("AAA") == 5.0


@pytest.mark.parametrize("bad", [0, -1, "10", True, None, float("nan"), float("inf"), float("-inf")])
def test_set_default_price_rejects_non_positive(market: Market, bad) -> None:
    with pytest.raises(InvalidInput):
        market.prices.set_default_prices({"AAA": bad})
    assert market.prices.current_price("AAA") == 100.0


def test_set_default_price_unknown_stock(market: Market) -> None:
    with pytest.raises(NotFound):
        market.prices.set_default_price("NOPE", 1.0)


def test_price_history_and_change(market: Market) -> None:
    assert market.prices.price_history("AAA") == []
    market.scheduler.start()
    market.scheduler.advance()
    assert market.prices.price_history("AAA") == [("S1", 100.0), ("S2", 120.0)]
    delta, pct = market.prices.price_change("AAA")
    assert delta == 20.0
    assert pct == pytest.approx(20.0)
