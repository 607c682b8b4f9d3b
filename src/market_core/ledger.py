"""
PositionLedger: trade history + price -> position, cash effect, P/L.

Pure computation. No I/O, no clock, no store. The same history always folds to
the same position, which is what lets ``replay`` check a stored account
against its trade log.

Transition rules per trade type (q = trade quantity, p = execution price):

    buy        flat      -> long q @ p, cost p*q, cash -p*q
    buy        long      -> qty+q, cost c+p*q, avg = cost/qty, cash -p*q
    buy        short -s  -> cover min(q, s) at (shortPrice - p) realized P/L;
                            remainder q-s (if any) opens a fresh long @ p, cash -p*(q-s)
    sell       long      -> qty-q, cost -= avg*q, avg unchanged, cash +p*q
    short_sell flat      -> -q, shortPrice p, cost p*q, cash unchanged
    short_sell short -s  -> -(s+q), shortPrice reset to p, cost p*(s+q)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol

from market_core.contracts import Account, CashKind, Position, Trade, TradeType
from market_core.errors import (
    InsufficientBalance,
    InsufficientMargin,
    InsufficientPosition,
    InvalidInput,
)


@dataclass(frozen=True)
class Transition:
    """Result of applying one trade to one position."""

    position: Position | None          # None = flat, entry removed from the map
    cash_delta: float
    realized_pnl: float = 0.0
    shares_borrowed: int = 0
    shares_returned: int = 0
    cash_moves: tuple[tuple[CashKind, float], ...] = field(default_factory=tuple)


def _is_long(position: Position | None) -> bool:
    return position is not None and position.quantity > 0


def _is_short(position: Position | None) -> bool:
    return position is not None and position.quantity < 0


def _short_price(position: Position) -> float:
    return position.short_price if position.short_price is not None else position.average_price


def _open_long(stock_id: str, quantity: int, price: float) -> Position:
    return Position(stock_id=stock_id, quantity=quantity, average_price=price, total_cost=price * quantity)


# ---------------------------------------------------------------------------
# Settlement rules, one per TradeType
# ---------------------------------------------------------------------------


class Settleable(Protocol):
    def check_affordability(
        self,
        balance: float,
        position: Position | None,
        quantity: int,
        price: float,
        margin_ratio: float,
    ) -> None: ...

    def transition(self, stock_id: str, position: Position | None, quantity: int, price: float) -> Transition: ...


class BuyRule:
    """Buy: open/extend a long, or cover a short (and flip long with the rest)."""

    def check_affordability(self, balance, position, quantity, price, margin_ratio) -> None:
        if _is_short(position):
            # Covered units are paid from realized P/L; only the flip remainder needs cash.
            needed = price * max(0, quantity - abs(position.quantity))
        else:
            needed = price * quantity
        if needed > 0 and balance < needed:
            raise InsufficientBalance(
                f"Insufficient balance: need {needed:,.2f}, have {balance:,.2f}"
            )

    def transition(self, stock_id, position, quantity, price) -> Transition:
        if position is None or position.quantity == 0:
            cost = price * quantity
            return Transition(
                position=_open_long(stock_id, quantity, price),
                cash_delta=-cost,
                cash_moves=((CashKind.DEBIT, -cost),),
            )

        if position.quantity > 0:
            cost = price * quantity
            new_qty = position.quantity + quantity
            new_cost = position.total_cost + cost
            return Transition(
                position=Position(
                    stock_id=stock_id,
                    quantity=new_qty,
                    average_price=new_cost / new_qty,
                    total_cost=new_cost,
                ),
                cash_delta=-cost,
                cash_moves=((CashKind.DEBIT, -cost),),
            )

        short_qty = abs(position.quantity)
        sp = _short_price(position)
        if quantity <= short_qty:
            pnl = (sp - price) * quantity
            remaining = short_qty - quantity
            new_position = None
            if remaining:
                new_position = Position(
                    stock_id=stock_id,
                    quantity=-remaining,
                    average_price=position.average_price,
                    total_cost=position.total_cost * (remaining / short_qty),
                    is_short=True,
                    short_price=sp,
                )
            return Transition(
                position=new_position,
                cash_delta=pnl,
                realized_pnl=pnl,
                shares_returned=quantity,
                cash_moves=((CashKind.REALIZED_PNL, pnl),),
            )

        pnl = (sp - price) * short_qty
        flip = quantity - short_qty
        cost = price * flip
        return Transition(
            position=_open_long(stock_id, flip, price),
            cash_delta=pnl - cost,
            realized_pnl=pnl,
            shares_returned=short_qty,
            cash_moves=((CashKind.REALIZED_PNL, pnl), (CashKind.DEBIT, -cost)),
        )


class SellRule:
    """Sell: reduce a held long position. Never opens a short."""

    def check_affordability(self, balance, position, quantity, price, margin_ratio) -> None:
        held = position.quantity if _is_long(position) else 0
        if held < quantity:
            raise InsufficientPosition(f"Insufficient position: hold {held}, selling {quantity}")

    def transition(self, stock_id, position, quantity, price) -> Transition:
        self.check_affordability(0.0, position, quantity, price, 0.0)
        remaining = position.quantity - quantity
        proceeds = price * quantity
        new_position = None
        if remaining:
            new_position = Position(
                stock_id=stock_id,
                quantity=remaining,
                average_price=position.average_price,
                total_cost=position.total_cost - position.average_price * quantity,
            )
        return Transition(
            position=new_position,
            cash_delta=proceeds,
            cash_moves=((CashKind.CREDIT, proceeds),),
        )


class ShortSellRule:
    """Short sell: open or extend a short. Cash is untouched; margin is checked only."""

    def check_affordability(self, balance, position, quantity, price, margin_ratio) -> None:
        margin = margin_ratio * price * quantity
        if balance < margin:
            raise InsufficientMargin(
                f"Insufficient balance for margin requirement: need {margin:,.2f}, have {balance:,.2f}"
            )
        if _is_long(position):
            raise InvalidInput(
                f"Cannot short {position.stock_id} while holding a long position of {position.quantity}; sell it first"
            )

    def transition(self, stock_id, position, quantity, price) -> Transition:
        if _is_long(position):
            raise InvalidInput(f"Cannot short {stock_id} while holding a long position")
        short_qty = abs(position.quantity) if _is_short(position) else 0
        new_qty = short_qty + quantity
        return Transition(
            position=Position(
                stock_id=stock_id,
                quantity=-new_qty,
                average_price=price,
                total_cost=price * new_qty,
                is_short=True,
                short_price=price,  # latest short price wins
            ),
            cash_delta=0.0,
            shares_borrowed=quantity,
        )


SETTLEMENT_RULES: dict[TradeType, Settleable] = {
    TradeType.BUY: BuyRule(),
    TradeType.SELL: SellRule(),
    TradeType.SHORT_SELL: ShortSellRule(),
}


def apply(position: Position | None, trade_type: TradeType, quantity: int, price: float, *, stock_id: str | None = None) -> Transition:
    """Apply one trade to a position. *stock_id* is required when *position* is None."""
    sid = stock_id or (position.stock_id if position is not None else None)
    if sid is None:
        raise ValueError("stock_id is required when opening a position from flat")
    return SETTLEMENT_RULES[TradeType(trade_type)].transition(sid, position, quantity, price)


# ---------------------------------------------------------------------------
# Folds over trade history
# ---------------------------------------------------------------------------


def project(trades: Iterable[Trade]) -> Position | None:
    """Left-fold one stock's chronologically ordered trades into its position."""
    position: Position | None = None
    for t in trades:
        position = apply(position, t.type, t.quantity, t.price, stock_id=t.stock_id).position
    return position


def replay(initial_balance: float, trades: Iterable[Trade]) -> tuple[float, dict[str, Position]]:
    """Rebuild an account's balance and positions from its full trade log."""
    balance = initial_balance
    positions: dict[str, Position] = {}
    for t in trades:
        result = apply(positions.get(t.stock_id), t.type, t.quantity, t.price, stock_id=t.stock_id)
        balance += result.cash_delta
        if result.position is None:
            positions.pop(t.stock_id, None)
        else:
            positions[t.stock_id] = result.position
    return balance, positions


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def unrealized_pnl(position: Position, current_price: float) -> float:
    """Paper gain/loss versus *current_price*; not credited to the balance."""
    if position.quantity < 0:
        return (_short_price(position) - current_price) * abs(position.quantity)
    return (current_price - position.average_price) * position.quantity


@dataclass(frozen=True)
class PositionValuation:
    stock_id: str
    quantity: int
    average_price: float
    current_price: float
    market_value: float
    unrealized_pnl: float
    is_short: bool


@dataclass(frozen=True)
class AccountValuation:
    account_id: str
    balance: float
    positions: tuple[PositionValuation, ...]
    total_unrealized_pnl: float


def valuation(account: Account, prices: Mapping[str, float]) -> AccountValuation:
    """Per-position market value and unrealized P/L at *prices* (stock id -> price)."""
    rows: list[PositionValuation] = []
    for stock_id, pos in account.positions.items():
        price = prices.get(stock_id, pos.average_price)
        rows.append(
            PositionValuation(
                stock_id=stock_id,
                quantity=pos.quantity,
                average_price=_short_price(pos) if pos.quantity < 0 else pos.average_price,
                current_price=price,
                market_value=price * pos.quantity,
                unrealized_pnl=unrealized_pnl(pos, price),
                is_short=pos.quantity < 0,
            )
        )
    return AccountValuation(
        account_id=account.id,
        balance=account.balance,
        positions=tuple(rows),
        total_unrealized_pnl=sum(r.unrealized_pnl for r in rows),
    )
