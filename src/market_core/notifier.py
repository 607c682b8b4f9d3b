"""
ChangeNotifier: post-commit publish/subscribe keyed by entity name.

Delivery is best-effort. A subscriber that raises is logged and skipped; a
publish never fails the write that triggered it. Authoritative state is always
re-derivable from a fresh query, so a missed event is not a correctness issue.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable

logger = logging.getLogger("market.notifier")

ENTITIES = ("sessions", "stocks", "trades", "users", "brokers")


@dataclass(frozen=True)
class ChangeEvent:
    entity: str
    payload: Any
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, Any]:
        return {"entity": self.entity, "payload": self.payload, "ts": self.ts.isoformat()}


Subscriber = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """In-process pub/sub. Subscribers join by entity name or ``"*"`` for all."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._lock = RLock()

    def subscribe(self, entity: str, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that removes it again."""
        if entity != "*" and entity not in ENTITIES:
            raise ValueError(f"Unknown entity: {entity!r} (expected one of {', '.join(ENTITIES)})")
        with self._lock:
            self._subscribers[entity].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[entity]:
                    self._subscribers[entity].remove(callback)

        return unsubscribe

    def subscriber_count(self, entity: str) -> int:
        with self._lock:
            return len(self._subscribers[entity])

    def publish(self, entity: str, payload: Any) -> ChangeEvent:
        event = ChangeEvent(entity=entity, payload=payload)
        with self._lock:
            targets = list(self._subscribers[entity]) + list(self._subscribers["*"])
        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s event", callback, entity)
        return event
