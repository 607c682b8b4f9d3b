"""
Persistence substrate: SQLite collections behind a read/commit interface.

Depends on market_core.errors for CommitFailed; market_core never imports data
except through the store handed to it.
"""

from data.store import COLLECTIONS, Change, MarketStore

__all__ = [
    "COLLECTIONS",
    "Change",
    "MarketStore",
]
