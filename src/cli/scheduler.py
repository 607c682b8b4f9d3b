"""
Session clock: wall-clock loop that drives the session FSM.

Each active session lasts one trading window. When the window closes the clock
advances to the next pending session; after the last session it ends the
active one and stops. Ctrl+C for graceful shutdown.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

import click

from market_core.contracts import Session, SessionStatus
from market_core.errors import NoMoreSessions
from market_core.service import Market

logger = logging.getLogger("market.clock")

MAX_SLEEP_SECONDS = 30.0


def seconds_until_close(session: Session, now: datetime) -> float:
    """Seconds until *session*'s window closes (0 when already past or open-ended)."""
    if session.end_time is None:
        return 0.0
    return max(0.0, (session.end_time - now).total_seconds())


def next_action(sessions: list[Session], now: datetime) -> str:
    """
    What the clock should do next:

    ``start``    nothing active, a pending session waits
    ``advance``  the active session's window has closed
    ``wait``     the active session is still open
    ``done``     nothing active and nothing pending
    """
    active = next((s for s in sessions if s.status is SessionStatus.ACTIVE), None)
    if active is None:
        if any(s.status is SessionStatus.PENDING for s in sessions):
            return "start"
        return "done"
    if active.end_time is not None and now >= active.end_time:
        return "advance"
    return "wait"


def run_session_clock(
    market: Market,
    *,
    max_ticks: int | None = None,
    clock: Callable[[], datetime] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_tick: Callable[[str, Session | None], None] | None = None,
) -> int:
    """
    Main loop: start the first pending session, sleep until its window closes,
    advance, repeat. Returns the number of transitions performed.
    """
    now_fn = clock or (lambda: datetime.now(timezone.utc))
    scheduler = market.scheduler
    transitions = 0
    ticks = 0

    click.echo(f"Session clock started (window {scheduler.window})  |  Ctrl+C to stop\n")

    try:
        while max_ticks is None or ticks < max_ticks:
            ticks += 1
            now = now_fn()
            sessions = scheduler.sessions()
            action = next_action(sessions, now)

            if action == "done":
                click.echo(f"[{now:%H:%M:%S}] All sessions completed.")
                break

            if action == "start":
                session = scheduler.start()
                transitions += 1
                click.echo(f"[{now:%H:%M:%S}] Started {session.id} ({session.name}), closes {session.end_time:%H:%M:%S}")
            elif action == "advance":
                try:
                    session = scheduler.advance()
                except NoMoreSessions:
                    transitions += 1
                    click.echo(f"[{now:%H:%M:%S}] Final session closed. No more sessions.")
                    if on_tick is not None:
                        on_tick(action, None)
                    break
                transitions += 1
                click.echo(f"[{now:%H:%M:%S}] Advanced to {session.id} ({session.name}), closes {session.end_time:%H:%M:%S}")
            else:
                session = scheduler.current()
                if session is None:
                    # expired lazily between the read and now
                    continue

            if on_tick is not None:
                on_tick(action, session)

            wait = min(MAX_SLEEP_SECONDS, seconds_until_close(session, now))
            if wait > 0 and (max_ticks is None or ticks < max_ticks):
                logger.debug("Sleeping %.0fs until %s closes", wait, session.id)
                sleep(wait)

    except KeyboardInterrupt:
        click.echo(f"\n\nShutting down after {transitions} transition(s). Goodbye.")

    return transitions
