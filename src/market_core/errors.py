"""
Error taxonomy. Every error has a stable machine-readable ``kind`` and a
human-readable message; ``to_payload`` is the ``{error: ...}`` wire shape.

Only ``CommitFailed`` is retryable. Everything else is a logical rejection and
is returned to the caller unchanged.
"""

from __future__ import annotations


class MarketError(Exception):
    """Base class for all market-core errors."""

    kind = "market_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message, "kind": self.kind}


class NotFound(MarketError):
    kind = "not_found"


class InvalidInput(MarketError):
    kind = "invalid_input"


class InvalidQuantity(InvalidInput):
    kind = "invalid_quantity"


class TradingClosed(MarketError):
    kind = "trading_closed"


class InsufficientBalance(MarketError):
    kind = "insufficient_balance"


class InsufficientMargin(MarketError):
    kind = "insufficient_margin"


class InsufficientPosition(MarketError):
    kind = "insufficient_position"


class InsufficientShares(MarketError):
    """Not enough float left to borrow for a short sale."""

    kind = "insufficient_shares"


class NoPendingSessions(MarketError):
    kind = "no_pending_sessions"


class NoActiveSession(MarketError):
    kind = "no_active_session"


class NoMoreSessions(MarketError):
    kind = "no_more_sessions"


class Unauthorized(MarketError):
    kind = "unauthorized"


class CommitFailed(MarketError):
    """Storage contention or failure; nothing from the attempt is visible."""

    kind = "commit_failed"
    retryable = True
