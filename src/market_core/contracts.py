"""
Data contracts for market-core: Stock, Session, Account, Position, Trade.

Plain frozen dataclasses; no I/O. Every contract converts to and from the
camelCase record layout used by the store and the external interfaces
(``to_record`` / ``from_record``), so field names there are the stable contract.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _ts_out(ts: datetime | None) -> str | None:
    return utc(ts).isoformat() if ts is not None else None


def _ts_in(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SessionStatus(str, Enum):
    """Lifecycle of a trading window: pending -> active -> completed."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class TradeType(str, Enum):
    """Order side. Settlement rules are looked up per member, never by string."""

    BUY = "buy"
    SELL = "sell"
    SHORT_SELL = "short_sell"


class CashKind(str, Enum):
    """Why a settlement moved cash."""

    DEBIT = "debit"
    CREDIT = "credit"
    REALIZED_PNL = "realized_pnl"


# ---------------------------------------------------------------------------
# Roster entities (created by administration)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionPrice:
    session_id: str
    price: float


@dataclass(frozen=True)
class Stock:
    """A listed stock with one price per session.

    ``current_price`` is the last price set: the active session's price while a
    session runs, otherwise whatever the last transition or admin override left.
    ``shares`` is the float available for short-sell borrowing, ``None`` when the
    stock does not track a borrow pool.
    """

    id: str
    name: str
    broker_id: str | None
    session_prices: tuple[SessionPrice, ...] = ()
    current_price: float = 0.0
    shares: int | None = None
    total_shares: int | None = None

    def price_for(self, session_id: str) -> float | None:
        for sp in self.session_prices:
            if sp.session_id == session_id:
                return sp.price
        return None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "brokerId": self.broker_id,
            "sessionPrices": [{"sessionId": sp.session_id, "price": sp.price} for sp in self.session_prices],
            "currentPrice": self.current_price,
            "shares": self.shares,
            "totalShares": self.total_shares,
        }

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> Stock:
        prices = tuple(SessionPrice(str(sp["sessionId"]), float(sp["price"])) for sp in r.get("sessionPrices") or [])
        current = r.get("currentPrice")
        if current is None:
            current = prices[0].price if prices else 0.0
        return cls(
            id=str(r["id"]),
            name=str(r.get("name", r["id"])),
            broker_id=r.get("brokerId"),
            session_prices=prices,
            current_price=float(current),
            shares=r.get("shares"),
            total_shares=r.get("totalShares"),
        )


@dataclass(frozen=True)
class Session:
    id: str
    name: str
    status: SessionStatus = SessionStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    story: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "startTime": _ts_out(self.start_time),
            "endTime": _ts_out(self.end_time),
            "story": self.story,
        }

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> Session:
        return cls(
            id=str(r["id"]),
            name=str(r.get("name", r["id"])),
            status=SessionStatus(r.get("status", "pending")),
            start_time=_ts_in(r.get("startTime")),
            end_time=_ts_in(r.get("endTime")),
            story=r.get("story"),
        )


@dataclass(frozen=True)
class Broker:
    id: str
    name: str
    balance: float = 0.0

    def to_record(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "balance": self.balance}

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> Broker:
        return cls(id=str(r["id"]), name=str(r.get("name", r["id"])), balance=float(r.get("balance") or 0.0))


# ---------------------------------------------------------------------------
# Ledger entities (owned by settlement)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Net holding in one stock. Negative quantity = net short."""

    stock_id: str
    quantity: int
    average_price: float
    total_cost: float
    is_short: bool = False
    short_price: float | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "stockId": self.stock_id,
            "quantity": self.quantity,
            "averagePrice": self.average_price,
            "totalCost": self.total_cost,
            "isShort": self.is_short,
            "shortPrice": self.short_price,
        }

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> Position:
        short_price = r.get("shortPrice")
        return cls(
            stock_id=str(r["stockId"]),
            quantity=int(r["quantity"]),
            average_price=float(r.get("averagePrice") or 0.0),
            total_cost=float(r.get("totalCost") or 0.0),
            is_short=bool(r.get("isShort", False)),
            short_price=float(short_price) if short_price is not None else None,
        )


@dataclass(frozen=True)
class Account:
    """An end user. ``balance`` only changes through a committed trade or a reset."""

    id: str
    name: str
    balance: float
    initial_balance: float
    broker_id: str | None = None
    positions: dict[str, Position] = field(default_factory=dict)

    def position(self, stock_id: str) -> Position | None:
        return self.positions.get(stock_id)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "brokerId": self.broker_id,
            "balance": self.balance,
            "initialBalance": self.initial_balance,
            "positions": {sid: p.to_record() for sid, p in self.positions.items()},
        }

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> Account:
        balance = float(r.get("balance") or 0.0)
        initial = r.get("initialBalance")
        return cls(
            id=str(r["id"]),
            name=str(r.get("name", r["id"])),
            balance=balance,
            initial_balance=float(initial) if initial is not None else balance,
            broker_id=r.get("brokerId"),
            positions={sid: Position.from_record(p) for sid, p in (r.get("positions") or {}).items()},
        )


@dataclass(frozen=True)
class Order:
    """Incoming order. ``order_id`` is an optional client idempotency key."""

    account_id: str
    stock_id: str
    type: TradeType | str
    quantity: Any
    broker_id: str | None = None
    order_id: str | None = None


@dataclass(frozen=True)
class Trade:
    """Immutable, append-only trade record."""

    id: str
    timestamp: datetime
    type: TradeType
    account_id: str
    broker_id: str | None
    stock_id: str
    stock_name: str
    quantity: int
    price: float
    total: float
    session_id: str
    session_name: str

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": _ts_out(self.timestamp),
            "type": self.type.value,
            "accountId": self.account_id,
            "brokerId": self.broker_id,
            "stockId": self.stock_id,
            "stockName": self.stock_name,
            "quantity": self.quantity,
            "price": self.price,
            "total": self.total,
            "sessionId": self.session_id,
            "sessionName": self.session_name,
        }

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> Trade:
        return cls(
            id=str(r["id"]),
            timestamp=_ts_in(r["timestamp"]),
            type=TradeType(r["type"]),
            account_id=str(r["accountId"]),
            broker_id=r.get("brokerId"),
            stock_id=str(r["stockId"]),
            stock_name=str(r.get("stockName", r["stockId"])),
            quantity=int(r["quantity"]),
            price=float(r["price"]),
            total=float(r["total"]),
            session_id=str(r["sessionId"]),
            session_name=str(r.get("sessionName", r["sessionId"])),
        )


@dataclass(frozen=True)
class CashTransaction:
    """One cash movement caused by a settlement (``transactions`` collection)."""

    id: str
    account_id: str
    trade_id: str
    amount: float  # signed: + credits the account
    kind: CashKind
    timestamp: datetime

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "accountId": self.account_id,
            "tradeId": self.trade_id,
            "amount": self.amount,
            "kind": self.kind.value,
            "timestamp": _ts_out(self.timestamp),
        }

    @classmethod
    def from_record(cls, r: dict[str, Any]) -> CashTransaction:
        return cls(
            id=str(r["id"]),
            account_id=str(r["accountId"]),
            trade_id=str(r["tradeId"]),
            amount=float(r["amount"]),
            kind=CashKind(r["kind"]),
            timestamp=_ts_in(r["timestamp"]),
        )
