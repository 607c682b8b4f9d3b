"""
SessionScheduler: finite-state gate over the trading windows.

    pending --start/advance--> active --end/advance/start--> completed
    any --reset--> pending

At most one session is active at any time. Each transition is committed
together with the PriceBook price cut for every stock in one store transaction,
so no reader sees session N's prices alongside session N+1 as active.

Transitions are serialized by the shared write gate; the same gate covers trade
settlement, so a trade never straddles a session change. Change events are
published after the gate is released.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Callable

from data.store import Change, MarketStore
from market_core.contracts import Session, SessionStatus, Stock
from market_core.errors import InvalidInput, NoActiveSession, NoMoreSessions, NoPendingSessions, NotFound
from market_core.notifier import ChangeNotifier
from market_core.price_book import active_session_in, price_cut

logger = logging.getLogger("market.scheduler")

DEFAULT_WINDOW = timedelta(minutes=10)


class SessionScheduler:
    """Drive session lifecycle against the ``sessions`` collection.

    Parameters
    ----------
    window:
        Length of a trading window; ``endTime = startTime + window``.
    enforce_window:
        When True, an active session whose ``endTime`` has passed reads as
        closed and is completed by the next transition (or ``expire_overdue``).
        Off by default: ``endTime`` is then informational only.
    clock:
        Returns "now" as an aware UTC datetime. Injected for tests.
    """

    def __init__(
        self,
        store: MarketStore,
        *,
        gate: RLock | None = None,
        notifier: ChangeNotifier | None = None,
        window: timedelta = DEFAULT_WINDOW,
        enforce_window: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._gate = gate or RLock()
        self._notifier = notifier
        self._window = window
        self._enforce_window = enforce_window
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def window(self) -> timedelta:
        return self._window

    def _now(self) -> datetime:
        return self._clock()

    # ---------- reads (lock-free) ----------

    def sessions(self) -> list[Session]:
        """All sessions in definition order."""
        return [Session.from_record(r) for r in self._store.list("sessions")]

    def current(self) -> Session | None:
        """Active session or None. An overdue session reads as closed when windows are enforced."""
        return active_session_in(self._expired(self.sessions()))

    def active_session(self) -> Session:
        session = self.current()
        if session is None:
            raise NotFound("No active session found")
        return session

    # ---------- administration ----------

    def add_session(self, session_id: str, name: str, story: str | None = None) -> Session:
        """Define a new pending session at the end of the sequence."""
        with self._gate:
            if self._store.exists("sessions", session_id):
                raise InvalidInput(f"Session already exists: {session_id}")
            session = Session(id=session_id, name=name, story=story)
            self._store.commit([Change("sessions", upserts=[session.to_record()])])
        self._publish_sessions()
        return session

    # ---------- transitions ----------

    def start(self) -> Session:
        """Activate the earliest pending session; force-complete any active one."""
        with self._gate:
            stored = self.sessions()
            sessions = self._expired(stored)
            nxt = next((s for s in sessions if s.status is SessionStatus.PENDING), None)
            if nxt is None:
                events = self._commit_expiry(stored, sessions)
            else:
                now = self._now()
                sessions = [self._complete(s, now) if s.is_active else s for s in sessions]
                started = self._activate(nxt, now)
                sessions = [started if s.id == started.id else s for s in sessions]
                events = self._commit(sessions, started)
                logger.info("Session %s started (ends %s)", started.id, started.end_time.isoformat())
        self._publish(events)
        if nxt is None:
            raise NoPendingSessions("No pending sessions available")
        return started

    def advance(self) -> Session:
        """Complete the active session (if any), then start the next pending one.

        With no pending session left, the completion is still committed and
        NoMoreSessions is raised, leaving no session active.
        """
        with self._gate:
            stored = self.sessions()
            sessions = self._expired(stored)
            now = self._now()
            sessions = [self._complete(s, now) if s.is_active else s for s in sessions]
            nxt = next((s for s in sessions if s.status is SessionStatus.PENDING), None)
            if nxt is None:
                events = self._commit_expiry(stored, sessions)
                if events:
                    logger.warning("Session completed but no pending session remains")
            else:
                started = self._activate(nxt, now)
                sessions = [started if s.id == started.id else s for s in sessions]
                events = self._commit(sessions, started)
                logger.info("Advanced to session %s", started.id)
        self._publish(events)
        if nxt is None:
            raise NoMoreSessions("No more sessions available")
        return started

    def end(self) -> Session:
        with self._gate:
            stored = self.sessions()
            sessions = self._expired(stored)
            active = active_session_in(sessions)
            if active is None:
                events = self._commit_expiry(stored, sessions)
            else:
                ended = self._complete(active, self._now())
                sessions = [ended if s.id == ended.id else s for s in sessions]
                events = self._commit(sessions, None)
                logger.info("Session %s ended", ended.id)
        self._publish(events)
        if active is None:
            raise NoActiveSession("No active session found")
        return ended

    def reset(self) -> list[Session]:
        """Every session back to pending with cleared times. Always succeeds."""
        with self._gate:
            sessions = [
                replace(s, status=SessionStatus.PENDING, start_time=None, end_time=None)
                for s in self.sessions()
            ]
            events = self._commit(sessions, None)
            logger.info("All %d sessions reset to pending", len(sessions))
        self._publish(events)
        return sessions

    def expire_overdue(self) -> Session | None:
        """Complete the active session if its window has closed. Returns it, else None."""
        with self._gate:
            sessions = self.sessions()
            active = active_session_in(sessions)
            if active is None or active.end_time is None or self._now() < active.end_time:
                return None
            expired = replace(active, status=SessionStatus.COMPLETED)
            events = self._commit([expired if s.id == expired.id else s for s in sessions], None)
            logger.info("Session %s expired at %s", expired.id, expired.end_time.isoformat())
        self._publish(events)
        return expired

    # ---------- internals ----------

    def _expired(self, sessions: list[Session]) -> list[Session]:
        if not self._enforce_window:
            return sessions
        now = self._now()
        return [
            replace(s, status=SessionStatus.COMPLETED)
            if s.is_active and s.end_time is not None and now >= s.end_time
            else s
            for s in sessions
        ]

    def _activate(self, session: Session, now: datetime) -> Session:
        return replace(session, status=SessionStatus.ACTIVE, start_time=now, end_time=now + self._window)

    @staticmethod
    def _complete(session: Session, now: datetime) -> Session:
        return replace(session, status=SessionStatus.COMPLETED, end_time=now)

    def _commit_expiry(self, stored: list[Session], sessions: list[Session]) -> list[tuple[str, Any]]:
        """Persist completions made on the way to a refused transition."""
        if sessions == stored:
            return []
        return self._commit(sessions, None)

    def _commit(self, sessions: list[Session], activated: Session | None) -> list[tuple[str, Any]]:
        """Commit *sessions* with the price cut for *activated*. Returns the events to publish."""
        active = [s.id for s in sessions if s.is_active]
        if len(active) > 1:
            raise RuntimeError(f"Refusing to commit more than one active session: {active}")
        changes = [Change("sessions", upserts=[s.to_record() for s in sessions])]
        cut: list[Stock] = []
        if activated is not None:
            cut = price_cut([Stock.from_record(r) for r in self._store.list("stocks")], activated)
            if cut:
                changes.append(Change("stocks", upserts=[s.to_record() for s in cut]))
        self._store.commit(changes)
        events: list[tuple[str, Any]] = [("sessions", [s.to_record() for s in sessions])]
        if cut:
            events.append(("stocks", self._store.list("stocks")))
        return events

    def _publish(self, events: list[tuple[str, Any]]) -> None:
        if self._notifier is None:
            return
        for entity, payload in events:
            self._notifier.publish(entity, payload)

    def _publish_sessions(self) -> None:
        self._publish([("sessions", [s.to_record() for s in self.sessions()])])
