"""
Human-readable terminal output for the market CLI.

Every command prints through these formatters; the journal and the structured
event log receive the same data in machine form.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from market_core.contracts import Session, SessionStatus, Stock, Trade

if TYPE_CHECKING:
    from market_core.executor import AuditFinding
    from market_core.ledger import AccountValuation

_STATUS_MARK = {
    SessionStatus.PENDING: " ",
    SessionStatus.ACTIVE: "*",
    SessionStatus.COMPLETED: "x",
}


def _fmt_money(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def _fmt_signed(value: float) -> str:
    return f"{'+' if value >= 0 else '-'}{abs(value):,.2f}"


def format_session(session: Session) -> str:
    start = session.start_time.strftime("%H:%M:%S") if session.start_time else "--:--:--"
    end = session.end_time.strftime("%H:%M:%S") if session.end_time else "--:--:--"
    return f"[{_STATUS_MARK[session.status]}] {session.id:8s} {session.name:20s} {session.status.value:9s} {start} -> {end}"


def format_sessions(sessions: list[Session]) -> str:
    if not sessions:
        return "No sessions defined. Run 'market init' first."
    lines = ["--- Sessions ---"]
    lines += [f"  {format_session(s)}" for s in sessions]
    active = next((s for s in sessions if s.is_active), None)
    if active is not None and active.story:
        lines += ["", f"  Now trading: {active.name}", f"  {active.story}"]
    return "\n".join(lines)


def format_stocks(stocks: list[Stock], changes: dict[str, tuple[float, float]] | None = None) -> str:
    if not stocks:
        return "No stocks listed."
    lines = [
        "--- Stocks ---",
        f"  {'ID':10s} {'Name':22s} {'Price':>11s} {'Change':>10s} {'%':>8s} {'Shares':>8s}",
    ]
    for s in stocks:
        delta, pct = (changes or {}).get(s.id, (0.0, 0.0))
        shares = f"{s.shares:,d}" if s.shares is not None else "-"
        lines.append(
            f"  {s.id:10s} {s.name:22s} {_fmt_money(s.current_price):>11s} "
            f"{_fmt_signed(delta):>10s} {pct:>7.2f}% {shares:>8s}"
        )
    return "\n".join(lines)


def format_trade(trade: Trade) -> str:
    return (
        f"{trade.timestamp:%Y-%m-%d %H:%M:%S}  {trade.account_id:6s} {trade.type.value:10s} "
        f"{trade.quantity:>5d} {trade.stock_id:10s} @ {trade.price:,.2f}  = {_fmt_money(trade.total)}  "
        f"[{trade.session_id}]"
    )


def format_trades(trades: list[Trade]) -> str:
    if not trades:
        return "No trades yet."
    lines = [f"--- Trades ({len(trades)}) ---"]
    lines += [f"  {format_trade(t)}" for t in trades]
    return "\n".join(lines)


def format_account(name: str, valuation: AccountValuation) -> str:
    """Balance plus every open position marked to the current price."""
    lines = [
        f"--- Account {valuation.account_id} ({name}) ---",
        f"Balance        : {_fmt_money(valuation.balance)}",
    ]
    if not valuation.positions:
        lines.append("Positions      : FLAT")
        return "\n".join(lines)

    lines.append("Positions      :")
    for p in valuation.positions:
        side = "SHORT" if p.is_short else "LONG"
        lines.append(
            f"  {p.stock_id:10s} {side:5s} {abs(p.quantity):>6d} @ {p.average_price:,.2f}  "
            f"now {p.current_price:,.2f}  unrealized {_fmt_signed(p.unrealized_pnl)}"
        )
    lines.append(f"Unrealized P/L : {_fmt_signed(valuation.total_unrealized_pnl)}")
    return "\n".join(lines)


def format_audit(findings: list[AuditFinding]) -> str:
    if not findings:
        return "No accounts to audit."
    lines = ["--- Ledger audit ---"]
    for f in findings:
        status = "OK" if f.ok else "MISMATCH"
        if f.error is not None:
            lines.append(f"  [{status}] {f.account_id}: trade log does not replay ({f.error})")
            continue
        line = (
            f"  [{status}] {f.account_id}: stored {_fmt_money(f.stored_balance)}, "
            f"replayed {_fmt_money(f.replayed_balance)}"
        )
        if f.mismatched_positions:
            line += f", positions differ: {', '.join(f.mismatched_positions)}"
        lines.append(line)
    return "\n".join(lines)
