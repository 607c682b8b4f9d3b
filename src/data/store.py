"""
Persist market state (SQLite). One table per collection, each a mapping from a
stable string id to a JSON record.

Writes go through ``commit``: every change in one call lands in a single
``BEGIN IMMEDIATE`` transaction, so a settlement or a session transition is all
or nothing. WAL mode lets point reads proceed while a write is in flight.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator

from market_core.errors import CommitFailed

logger = logging.getLogger("market.store")

COLLECTIONS = ("sessions", "stocks", "users", "brokers", "trades", "transactions")


@dataclass
class Change:
    """Pending writes for one collection. ``clear`` runs before upserts."""

    collection: str
    upserts: list[dict[str, Any]] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    clear: bool = False


class MarketStore:
    """SQLite-backed collection store. One file per path."""

    def __init__(self, path: str | Path, *, timeout: float = 10.0) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _conn(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly in _tx().
        return sqlite3.connect(str(self._path), timeout=self._timeout, isolation_level=None)

    def _init_schema(self) -> None:
        with closing(self._conn()) as c:
            c.execute("PRAGMA journal_mode=WAL")
            for name in COLLECTIONS:
                c.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {name} (
                        id TEXT PRIMARY KEY,
                        seq INTEGER NOT NULL,
                        record TEXT NOT NULL
                    )
                    """
                )

    @staticmethod
    def _check(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection!r}")
        return collection

    # ---------- reads ----------

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        table = self._check(collection)
        with closing(self._conn()) as c:
            row = c.execute(f"SELECT record FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return json.loads(row[0]) if row else None

    def list(self, collection: str) -> list[dict[str, Any]]:
        """All records in definition/append order."""
        table = self._check(collection)
        with closing(self._conn()) as c:
            rows = c.execute(f"SELECT record FROM {table} ORDER BY seq ASC").fetchall()
        return [json.loads(r[0]) for r in rows]

    def count(self, collection: str) -> int:
        table = self._check(collection)
        with closing(self._conn()) as c:
            row = c.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return row[0] if row else 0

    def exists(self, collection: str, record_id: str) -> bool:
        table = self._check(collection)
        with closing(self._conn()) as c:
            row = c.execute(f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return row is not None

    # ---------- writes ----------

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with closing(self._conn()) as c:
            c.execute("BEGIN IMMEDIATE")
            try:
                yield c
            except BaseException:
                if c.in_transaction:
                    c.execute("ROLLBACK")
                raise
            else:
                c.execute("COMMIT")

    def _apply(self, c: sqlite3.Connection, change: Change) -> None:
        table = self._check(change.collection)
        if change.clear:
            c.execute(f"DELETE FROM {table}")
        for record_id in change.deletes:
            c.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        for record in change.upserts:
            c.execute(
                f"""
                INSERT INTO {table} (id, seq, record)
                VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM {table}), ?)
                ON CONFLICT(id) DO UPDATE SET record = excluded.record
                """,
                (str(record["id"]), json.dumps(record)),
            )

    def commit(self, changes: Iterable[Change]) -> None:
        """Apply all changes atomically. Raises CommitFailed on any storage error."""
        changes = list(changes)
        try:
            with self._tx() as c:
                for change in changes:
                    self._apply(c, change)
        except sqlite3.Error as exc:
            logger.warning("Commit of %s failed: %s", [ch.collection for ch in changes], exc)
            raise CommitFailed(f"Storage commit failed: {exc}") from exc

    def put(self, collection: str, records: Iterable[dict[str, Any]]) -> None:
        """Upsert records into one collection (administration seeding)."""
        self.commit([Change(collection, upserts=list(records))])
