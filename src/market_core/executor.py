"""
TradeExecutor: validate an order and settle it against the ledger.

Settlement is one atomic unit: the trade record, the updated account, the cash
transactions and (for shorts) the stock borrow pool are committed in a single
store transaction. Validation failures have no side effects. Only CommitFailed
is retried, a bounded number of times with exponential backoff.

All writes run under the shared write gate, which the scheduler also holds for
transitions: the session and price read during validation are the ones the
trade is committed with.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable

from data.store import Change, MarketStore
from market_core import ledger
from market_core.contracts import Account, CashTransaction, Order, Stock, Trade, TradeType
from market_core.errors import (
    CommitFailed,
    InsufficientShares,
    InvalidInput,
    InvalidQuantity,
    MarketError,
    NotFound,
    TradingClosed,
)
from market_core.notifier import ChangeNotifier
from market_core.price_book import resolve_price
from market_core.scheduler import SessionScheduler

logger = logging.getLogger("market.executor")

DEFAULT_MARGIN_RATIO = 0.5


def parse_quantity(raw: Any) -> int:
    """Accept a positive whole number (int or integral string/float). Bools are rejected."""
    if isinstance(raw, bool):
        raise InvalidQuantity(f"Quantity must be a positive integer, got {raw!r}")
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw.isdecimal() or not raw.isascii():
            raise InvalidQuantity(f"Quantity must be a positive integer, got {raw!r}")
        raw = int(raw)
    if isinstance(raw, float):
        if not math.isfinite(raw) or not raw.is_integer():
            raise InvalidQuantity(f"Quantity must be a positive integer, got {raw!r}")
        raw = int(raw)
    if not isinstance(raw, int) or raw <= 0:
        raise InvalidQuantity(f"Quantity must be a positive integer, got {raw!r}")
    return raw


def parse_trade_type(raw: Any) -> TradeType:
    try:
        return TradeType(raw)
    except ValueError:
        valid = ", ".join(t.value for t in TradeType)
        raise InvalidInput(f"Unknown trade type {raw!r} (expected one of {valid})") from None


@dataclass(frozen=True)
class AuditFinding:
    """Stored account state versus a replay of its trade log."""

    account_id: str
    stored_balance: float
    replayed_balance: float | None
    mismatched_positions: tuple[str, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        if self.error is not None or self.replayed_balance is None:
            return False
        return math.isclose(self.stored_balance, self.replayed_balance, abs_tol=1e-6) and not self.mismatched_positions


class TradeExecutor:
    """Single entry point for order settlement and ledger-wide resets."""

    def __init__(
        self,
        store: MarketStore,
        scheduler: SessionScheduler,
        *,
        gate: RLock | None = None,
        notifier: ChangeNotifier | None = None,
        margin_ratio: float = DEFAULT_MARGIN_RATIO,
        commit_retries: int = 3,
        retry_backoff_s: float = 0.05,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[int, float], None] | None = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._gate = gate or RLock()
        self._notifier = notifier
        self._margin_ratio = margin_ratio
        self._commit_retries = max(1, commit_retries)
        self._retry_backoff_s = retry_backoff_s
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._on_retry = on_retry

    # ---------- reads (lock-free) ----------

    def account(self, account_id: str) -> Account:
        raw = self._store.get("users", account_id)
        if raw is None:
            raise NotFound(f"User not found: {account_id}")
        return Account.from_record(raw)

    def accounts(self) -> list[Account]:
        return [Account.from_record(r) for r in self._store.list("users")]

    def trades(
        self,
        *,
        account_id: str | None = None,
        stock_id: str | None = None,
        session_id: str | None = None,
    ) -> list[Trade]:
        """Trade log in commit order, optionally filtered."""
        out = []
        for raw in self._store.list("trades"):
            t = Trade.from_record(raw)
            if account_id is not None and t.account_id != account_id:
                continue
            if stock_id is not None and t.stock_id != stock_id:
                continue
            if session_id is not None and t.session_id != session_id:
                continue
            out.append(t)
        return out

    def transactions(self, account_id: str | None = None) -> list[CashTransaction]:
        txs = [CashTransaction.from_record(r) for r in self._store.list("transactions")]
        if account_id is not None:
            txs = [t for t in txs if t.account_id == account_id]
        return txs

    # ---------- settlement ----------

    def submit(self, order: Order) -> Trade:
        """Validate and settle *order*. Returns the committed Trade.

        Checks run in order and the first failure wins: active session,
        quantity, trade type, account/stock existence, affordability.
        """
        with self._gate:
            if order.order_id:
                existing = self._store.get("trades", order.order_id)
                if existing is not None:
                    stored = Trade.from_record(existing)
                    if (stored.account_id, stored.stock_id, stored.type.value) != (
                        order.account_id,
                        order.stock_id,
                        getattr(order.type, "value", order.type),
                    ):
                        raise InvalidInput(
                            f"Order id {order.order_id} already used for a different order "
                            f"({stored.account_id} {stored.type.value} {stored.stock_id})"
                        )
                    logger.info("Order %s already settled; returning stored trade", order.order_id)
                    return stored

            session = self._scheduler.current()
            if session is None:
                raise TradingClosed("Trading is currently disabled. Please wait for an active session.")
            quantity = parse_quantity(order.quantity)
            trade_type = parse_trade_type(order.type)

            account = self.account(order.account_id)
            raw_stock = self._store.get("stocks", order.stock_id)
            if raw_stock is None:
                raise NotFound(f"Stock not found: {order.stock_id}")
            stock = Stock.from_record(raw_stock)
            price = resolve_price(stock, session)

            rule = ledger.SETTLEMENT_RULES[trade_type]
            position = account.position(stock.id)
            rule.check_affordability(account.balance, position, quantity, price, self._margin_ratio)
            if trade_type is TradeType.SHORT_SELL and stock.shares is not None and stock.shares < quantity:
                raise InsufficientShares(
                    f"Insufficient shares to borrow: {stock.shares} available, {quantity} requested"
                )

            result = rule.transition(stock.id, position, quantity, price)

            positions = dict(account.positions)
            if result.position is None:
                positions.pop(stock.id, None)
            else:
                positions[stock.id] = result.position
            updated = replace(account, balance=account.balance + result.cash_delta, positions=positions)

            now = self._clock()
            trade = Trade(
                id=order.order_id or str(uuid.uuid4()),
                timestamp=now,
                type=trade_type,
                account_id=account.id,
                broker_id=order.broker_id or account.broker_id,
                stock_id=stock.id,
                stock_name=stock.name,
                quantity=quantity,
                price=price,
                total=price * quantity,
                session_id=session.id,
                session_name=session.name,
            )
            txs = [
                CashTransaction(
                    id=f"{trade.id}-{i}",
                    account_id=account.id,
                    trade_id=trade.id,
                    amount=amount,
                    kind=kind,
                    timestamp=now,
                )
                for i, (kind, amount) in enumerate(result.cash_moves, 1)
            ]

            changes = [
                Change("trades", upserts=[trade.to_record()]),
                Change("users", upserts=[updated.to_record()]),
            ]
            if txs:
                changes.append(Change("transactions", upserts=[t.to_record() for t in txs]))
            new_stock = None
            if stock.shares is not None and (result.shares_borrowed or result.shares_returned):
                shares = stock.shares - result.shares_borrowed + result.shares_returned
                if stock.total_shares is not None:
                    shares = min(shares, stock.total_shares)
                new_stock = replace(stock, shares=shares)
                changes.append(Change("stocks", upserts=[new_stock.to_record()]))

            self._commit_with_retry(changes)
            logger.info(
                "Trade %s committed: %s %s %d @ %.2f (session %s, balance %.2f)",
                trade.id, account.id, trade.type.value, quantity, price, session.id, updated.balance,
            )

        # subscribers run after the gate is released
        events = [("trades", trade.to_record()), ("users", updated.to_record())]
        if new_stock is not None:
            events.append(("stocks", new_stock.to_record()))
        self._publish(events)
        return trade

    def _publish(self, events: list[tuple[str, Any]]) -> None:
        if self._notifier is None:
            return
        for entity, payload in events:
            self._notifier.publish(entity, payload)

    def _commit_with_retry(self, changes: list[Change]) -> None:
        for attempt in range(1, self._commit_retries + 1):
            try:
                self._store.commit(changes)
                return
            except CommitFailed:
                if attempt == self._commit_retries:
                    logger.error("Commit failed after %d attempt(s); giving up", attempt)
                    raise
                delay = self._retry_backoff_s * (2 ** (attempt - 1))
                logger.warning("Commit attempt %d failed; retrying in %.3fs", attempt, delay)
                if self._on_retry is not None:
                    self._on_retry(attempt, delay)
                self._sleep(delay)

    # ---------- bulk ----------

    def clear(self) -> None:
        """Wipe trades and transactions; accounts and stocks back to baseline."""
        with self._gate:
            accounts = [
                replace(a, balance=a.initial_balance, positions={}) for a in self.accounts()
            ]
            stocks = [
                replace(s, shares=s.total_shares) if s.total_shares is not None else s
                for s in (Stock.from_record(r) for r in self._store.list("stocks"))
            ]
            self._commit_with_retry(
                [
                    Change("trades", clear=True),
                    Change("transactions", clear=True),
                    Change("users", upserts=[a.to_record() for a in accounts]),
                    Change("stocks", upserts=[s.to_record() for s in stocks]),
                ]
            )
            logger.info("All trades cleared; %d account(s) and %d stock(s) reset", len(accounts), len(stocks))
        self._publish(
            [
                ("trades", []),
                ("users", [a.to_record() for a in accounts]),
                ("stocks", [s.to_record() for s in stocks]),
            ]
        )

    def audit(self) -> list[AuditFinding]:
        """Replay every account's trade log from its initial balance and compare."""
        by_account: dict[str, list[Trade]] = {}
        for t in self.trades():
            by_account.setdefault(t.account_id, []).append(t)
        findings = []
        for account in self.accounts():
            try:
                balance, positions = ledger.replay(account.initial_balance, by_account.get(account.id, []))
            except MarketError as exc:
                logger.warning("Trade log for %s does not replay: %s", account.id, exc.message)
                findings.append(
                    AuditFinding(
                        account_id=account.id,
                        stored_balance=account.balance,
                        replayed_balance=None,
                        error=exc.message,
                    )
                )
                continue
            mismatched = []
            for stock_id in sorted(set(positions) | set(account.positions)):
                want, got = positions.get(stock_id), account.positions.get(stock_id)
                if want is None or got is None:
                    mismatched.append(stock_id)
                elif want.quantity != got.quantity or not math.isclose(want.total_cost, got.total_cost, abs_tol=1e-6):
                    mismatched.append(stock_id)
            findings.append(
                AuditFinding(
                    account_id=account.id,
                    stored_balance=account.balance,
                    replayed_balance=balance,
                    mismatched_positions=tuple(mismatched),
                )
            )
        return findings
