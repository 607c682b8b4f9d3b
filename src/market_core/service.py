"""
Market wiring and the protocol-neutral service surface.

``Market`` builds the components around one store, one write gate and one
notifier. ``MarketService`` exposes the query/command contract (sessions,
stocks, trades, clear) as plain dict payloads with camelCase fields; any
transport can sit in front of it. ``handle`` maps errors to a status code and
the ``{error, kind}`` body.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from threading import RLock
from typing import TYPE_CHECKING, Any, Callable, Mapping

from data.store import Change, MarketStore
from market_core.access import AdminAuthority
from market_core.contracts import Account, Order
from market_core.errors import (
    CommitFailed,
    InvalidInput,
    MarketError,
    NotFound,
    Unauthorized,
)
from market_core.executor import TradeExecutor
from market_core.notifier import ChangeNotifier
from market_core.price_book import PriceBook
from market_core.scheduler import DEFAULT_WINDOW, SessionScheduler

if TYPE_CHECKING:
    from config.loader import AppConfig
    from config.roster import Roster

logger = logging.getLogger("market.service")


class Market:
    """Composition root: store + gate + notifier + components."""

    def __init__(
        self,
        store: MarketStore,
        *,
        window: timedelta = DEFAULT_WINDOW,
        enforce_window: bool = False,
        margin_ratio: float = 0.5,
        commit_retries: int = 3,
        retry_backoff_s: float = 0.05,
        admin_key: str = "",
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[int, float], None] | None = None,
    ) -> None:
        self.store = store
        self.gate = RLock()
        self.notifier = ChangeNotifier()
        self.prices = PriceBook(store, gate=self.gate, notifier=self.notifier)
        self.scheduler = SessionScheduler(
            store,
            gate=self.gate,
            notifier=self.notifier,
            window=window,
            enforce_window=enforce_window,
            clock=clock,
        )
        self.executor = TradeExecutor(
            store,
            self.scheduler,
            gate=self.gate,
            notifier=self.notifier,
            margin_ratio=margin_ratio,
            commit_retries=commit_retries,
            retry_backoff_s=retry_backoff_s,
            clock=clock,
            sleep=sleep,
            on_retry=on_retry,
        )
        self.access = AdminAuthority(admin_key)

    @classmethod
    def from_config(cls, cfg: AppConfig, **overrides: Any) -> Market:
        kwargs: dict[str, Any] = {
            "window": timedelta(minutes=cfg.sessions.window_minutes),
            "enforce_window": cfg.sessions.enforce_window,
            "margin_ratio": cfg.execution.margin_ratio,
            "commit_retries": cfg.execution.commit_retries,
            "retry_backoff_s": cfg.execution.retry_backoff_s,
            "admin_key": cfg.admin_key,
        }
        kwargs.update(overrides)
        return cls(MarketStore(cfg.store.path), **kwargs)

    def seed(self, roster: Roster, *, replace_existing: bool = False) -> dict[str, int]:
        """Load a roster into the store. Existing collections are kept unless *replace_existing*."""
        sets = {
            "brokers": [b.to_record() for b in roster.brokers],
            "sessions": [s.to_record() for s in roster.sessions],
            "stocks": [s.to_record() for s in roster.stocks],
            "users": [a.to_record() for a in roster.accounts],
        }
        with self.gate:
            changes = [
                Change(name, upserts=records, clear=replace_existing)
                for name, records in sets.items()
                if replace_existing or self.store.count(name) == 0
            ]
            if replace_existing:
                changes += [Change("trades", clear=True), Change("transactions", clear=True)]
            self.store.commit(changes)
        counts = {ch.collection: len(ch.upserts) for ch in changes if ch.upserts}
        logger.info("Roster seeded: %s", counts or "nothing to load")
        for name in counts:
            self.notifier.publish(name, self.store.list(name))
        return counts


# HTTP-style status per error family.
_STATUS = (
    (NotFound, 404),
    (Unauthorized, 401),
    (CommitFailed, 503),
    (MarketError, 400),
)


class MarketService:
    """Query/command surface. Every method returns JSON-ready payloads."""

    SESSION_COMMANDS = ("start", "end", "next", "reset")

    def __init__(self, market: Market) -> None:
        self._m = market

    # ---------- queries ----------

    def get_sessions(self) -> list[dict[str, Any]]:
        return [s.to_record() for s in self._m.scheduler.sessions()]

    def get_active_session(self) -> dict[str, Any]:
        return self._m.scheduler.active_session().to_record()

    def get_stocks(self) -> list[dict[str, Any]]:
        return [s.to_record() for s in self._m.prices.stocks()]

    def get_trades(self, account_id: str | None = None) -> list[dict[str, Any]]:
        return [t.to_record() for t in self._m.executor.trades(account_id=account_id)]

    def get_account(self, account_id: str) -> dict[str, Any]:
        account: Account = self._m.executor.account(account_id)
        return account.to_record()

    def get_accounts(self) -> list[dict[str, Any]]:
        return [a.to_record() for a in self._m.executor.accounts()]

    def get_transactions(self, account_id: str | None = None) -> list[dict[str, Any]]:
        return [t.to_record() for t in self._m.executor.transactions(account_id)]

    # ---------- commands ----------

    def issue_token(self, admin_key: str) -> dict[str, str]:
        return {"token": self._m.access.issue(admin_key)}

    def post_session(self, command: str, token: str | None) -> Any:
        self._m.access.require(token)
        scheduler = self._m.scheduler
        if command == "start":
            return scheduler.start().to_record()
        if command == "end":
            return scheduler.end().to_record()
        if command == "next":
            return scheduler.advance().to_record()
        if command == "reset":
            sessions = scheduler.reset()
            return {"message": "All sessions have been reset", "sessions": [s.to_record() for s in sessions]}
        raise InvalidInput(f"Unknown session command {command!r} (expected one of {', '.join(self.SESSION_COMMANDS)})")

    def post_trade(self, body: Mapping[str, Any]) -> dict[str, Any]:
        """Settle a Trade-shaped body. ``userId`` is accepted as an alias of ``accountId``."""
        account_id = body.get("accountId") or body.get("userId")
        if not account_id or not body.get("stockId"):
            raise InvalidInput("accountId and stockId are required")
        order = Order(
            account_id=str(account_id),
            stock_id=str(body["stockId"]),
            type=body.get("type", ""),
            quantity=body.get("quantity"),
            broker_id=body.get("brokerId"),
            order_id=str(body["id"]) if body.get("id") is not None else None,
        )
        return self._m.executor.submit(order).to_record()

    def clear_trades(self, token: str | None) -> dict[str, str]:
        self._m.access.require(token)
        self._m.executor.clear()
        return {"message": "All trades cleared and data reset successfully"}

    def set_default_prices(self, prices: Mapping[str, float], token: str | None) -> list[dict[str, Any]]:
        self._m.access.require(token)
        return [s.to_record() for s in self._m.prices.set_default_prices(prices)]

    # ---------- transport helper ----------

    def handle(self, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> tuple[int, Any]:
        """Run *operation*; return (status, payload). Errors become ``{error, kind}``."""
        try:
            return 200, operation(*args, **kwargs)
        except MarketError as exc:
            status = next(code for cls, code in _STATUS if isinstance(exc, cls))
            logger.info("%s rejected (%s): %s", getattr(operation, "__name__", operation), exc.kind, exc.message)
            return status, exc.to_payload()
