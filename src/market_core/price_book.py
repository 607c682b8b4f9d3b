"""
PriceBook: per-stock session prices and the currently effective price.

The effective price is the active session's entry in ``sessionPrices``. With no
active session (or no entry for it) it is the stored ``currentPrice``: the last
price a session transition or an admin override left behind. It never reverts
on its own.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from threading import RLock
from typing import Mapping, Sequence

from data.store import Change, MarketStore
from market_core.contracts import Session, SessionStatus, Stock
from market_core.errors import InvalidInput, NotFound
from market_core.notifier import ChangeNotifier

logger = logging.getLogger("market.prices")


def active_session_in(sessions: Sequence[Session]) -> Session | None:
    for s in sessions:
        if s.status is SessionStatus.ACTIVE:
            return s
    return None


def resolve_price(stock: Stock, session: Session | None) -> float:
    if session is not None:
        price = stock.price_for(session.id)
        if price is not None:
            return price
    return stock.current_price


def price_cut(stocks: Sequence[Stock], session: Session) -> list[Stock]:
    """Stocks whose ``currentPrice`` moves to *session*'s price. Unchanged stocks are skipped."""
    out: list[Stock] = []
    for stock in stocks:
        price = stock.price_for(session.id)
        if price is not None and price != stock.current_price:
            out.append(replace(stock, current_price=price))
    return out


class PriceBook:
    """Read side over the ``stocks`` collection, plus the admin price override."""

    def __init__(self, store: MarketStore, *, gate: RLock | None = None, notifier: ChangeNotifier | None = None) -> None:
        self._store = store
        self._gate = gate or RLock()
        self._notifier = notifier

    def _sessions(self) -> list[Session]:
        return [Session.from_record(r) for r in self._store.list("sessions")]

    def _load(self, stock_id: str) -> Stock:
        raw = self._store.get("stocks", stock_id)
        if raw is None:
            raise NotFound(f"Stock not found: {stock_id}")
        return Stock.from_record(raw)

    def stock(self, stock_id: str) -> Stock:
        """One stock with ``currentPrice`` resolved against the active session."""
        return self.resolve(self._load(stock_id))

    def stocks(self) -> list[Stock]:
        """All stocks with ``currentPrice`` resolved (the ``GET stocks`` view)."""
        active = active_session_in(self._sessions())
        out = []
        for raw in self._store.list("stocks"):
            stock = Stock.from_record(raw)
            out.append(replace(stock, current_price=resolve_price(stock, active)))
        return out

    def current_price(self, stock_id: str) -> float:
        return self.stock(stock_id).current_price

    def resolve(self, stock: Stock) -> Stock:
        return replace(stock, current_price=resolve_price(stock, active_session_in(self._sessions())))

    def snapshot_for(self, session: Session) -> list[Stock]:
        """The price cut a transition into *session* commits alongside it."""
        return price_cut([Stock.from_record(r) for r in self._store.list("stocks")], session)

    def prices(self) -> dict[str, float]:
        return {s.id: s.current_price for s in self.stocks()}

    # ---------- admin override ----------

    def set_default_prices(self, prices: Mapping[str, float]) -> list[Stock]:
        """Push explicit current prices. Not gated by session state."""
        for stock_id, price in prices.items():
            if not isinstance(price, (int, float)) or isinstance(price, bool) or not math.isfinite(price) or price <= 0:
                raise InvalidInput(f"Price for {stock_id} must be a positive number, got {price!r}")
        with self._gate:
            updated = [replace(self._load(sid), current_price=float(p)) for sid, p in prices.items()]
            self._store.commit([Change("stocks", upserts=[s.to_record() for s in updated])])
        logger.info("Default prices set for %s", ", ".join(prices))
        if self._notifier is not None:
            self._notifier.publish("stocks", [s.to_record() for s in self.stocks()])
        return updated

    def set_default_price(self, stock_id: str, price: float) -> Stock:
        return self.set_default_prices({stock_id: price})[0]

    # ---------- history ----------

    def price_history(self, stock_id: str) -> list[tuple[str, float]]:
        """(sessionId, price) for every session already started, in session order."""
        stock = self._load(stock_id)
        started = [s for s in self._sessions() if s.status is not SessionStatus.PENDING]
        history = []
        for s in started:
            price = stock.price_for(s.id)
            if price is not None:
                history.append((s.id, price))
        return history

    def price_change(self, stock_id: str) -> tuple[float, float]:
        """(absolute, percent) change of the current price versus the first session's price."""
        stock = self.stock(stock_id)
        if not stock.session_prices:
            return 0.0, 0.0
        base = stock.session_prices[0].price
        delta = stock.current_price - base
        return delta, (delta / base * 100.0) if base else 0.0
