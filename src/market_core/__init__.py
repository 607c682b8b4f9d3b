"""
market-core: session scheduler and settlement ledger for the trading exercise.

Contracts and errors are re-exported here. Components that touch the store
(scheduler, executor, service) are imported from their modules directly.
"""

from market_core.contracts import (
    Account,
    Broker,
    CashTransaction,
    Order,
    Position,
    Session,
    SessionPrice,
    SessionStatus,
    Stock,
    Trade,
    TradeType,
)
from market_core.errors import MarketError

__all__ = [
    "Account",
    "Broker",
    "CashTransaction",
    "MarketError",
    "Order",
    "Position",
    "Session",
    "SessionPrice",
    "SessionStatus",
    "Stock",
    "Trade",
    "TradeType",
]
