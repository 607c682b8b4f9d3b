"""
CLI entry point: market init | sessions | stocks | trade | trades | status |
price | clear | audit | clock | health.

Every command loads config from --config (default config.yaml), prints a
human-readable view, and journals what changed. Admin commands obtain a
token with the MARKET_ADMIN_KEY environment variable.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import click
from dotenv import load_dotenv

from config import load_config
from config.loader import ADMIN_KEY_ENV, AppConfig
from market_core.errors import MarketError

load_dotenv()

logger = logging.getLogger("market")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """market: session-based trading exercise with a settlement ledger."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- wiring ----------


def _config(ctx: click.Context) -> AppConfig:
    if "cfg" not in ctx.obj:
        ctx.obj["cfg"] = load_config(ctx.obj["config_path"])
    return ctx.obj["cfg"]


def _market(ctx: click.Context):
    """Open the market for this invocation with the journal and event log attached."""
    if "market" in ctx.obj:
        return ctx.obj["market"]
    from cli.structured_log import StructuredEventLogger
    from journal import JournalWriter
    from market_core.service import Market

    cfg = _config(ctx)
    events = StructuredEventLogger(
        enabled=cfg.alerting.structured_logs,
        webhook_url=cfg.alerting.webhook_url,
    )
    journal = JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout)
    market = Market.from_config(cfg, on_retry=events.commit_retry)
    events.attach(market.notifier)
    market.notifier.subscribe("*", journal.on_change)

    ctx.obj.update(market=market, events=events, journal=journal)
    return market


def _service(ctx: click.Context):
    from market_core.service import MarketService

    return MarketService(_market(ctx))


def _admin_token(ctx: click.Context) -> str:
    cfg = _config(ctx)
    if not cfg.admin_key:
        click.echo(f"Admin command refused: set {ADMIN_KEY_ENV} in the environment or .env.", err=True)
        raise SystemExit(1)
    return _market(ctx).access.issue(cfg.admin_key)


@contextmanager
def _reporting(ctx: click.Context, action: str) -> Iterator[None]:
    """Print a MarketError as ``Error [kind]: message`` and exit 1."""
    try:
        yield
    except MarketError as exc:
        events = ctx.obj.get("events")
        journal = ctx.obj.get("journal")
        if events is not None:
            if exc.retryable:
                events.error(f"{action} failed", exc.message)
            else:
                events.order_rejected(exc.kind, exc.message)
        if journal is not None:
            journal.rejection(exc.kind, exc.message, action=action)
        click.echo(f"Error [{exc.kind}]: {exc.message}", err=True)
        raise SystemExit(1)


# ---------- market init ----------


@cli.command()
@click.option("--roster", "roster_path", default=None, help="Roster JSON file (defaults to config 'roster' or the bundled roster).")
@click.option("--force", is_flag=True, default=False, help="Replace existing data and clear all trades.")
@click.pass_context
def init(ctx: click.Context, roster_path: str | None, force: bool) -> None:
    """Seed brokers, sessions, stocks and users from a roster file."""
    from config.roster import RosterError, load_roster

    cfg = _config(ctx)
    try:
        roster = load_roster(roster_path or cfg.roster_path or None)
    except RosterError as exc:
        click.echo(f"Roster error: {exc}", err=True)
        raise SystemExit(1)

    market = _market(ctx)
    counts = market.seed(roster, replace_existing=force)
    if not counts:
        click.echo(f"Store {cfg.store.path} already seeded. Use --force to replace it.")
        return
    click.echo(f"Seeded {cfg.store.path}:")
    for name, n in counts.items():
        click.echo(f"  {name:10s} {n}")


# ---------- market sessions ----------


@cli.group(invoke_without_command=True)
@click.pass_context
def sessions(ctx: click.Context) -> None:
    """Show sessions, or drive them with start | end | next | reset."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(sessions_list)


@sessions.command("list")
@click.pass_context
def sessions_list(ctx: click.Context) -> None:
    """List every session with its status and window."""
    from cli.output import format_sessions

    click.echo(format_sessions(_market(ctx).scheduler.sessions()))


@sessions.command("active")
@click.pass_context
def sessions_active(ctx: click.Context) -> None:
    """Show the active session."""
    from cli.output import format_session

    with _reporting(ctx, "sessions active"):
        session = _market(ctx).scheduler.active_session()
    click.echo(format_session(session))
    if session.story:
        click.echo(f"  {session.story}")


def _session_command(ctx: click.Context, command: str) -> None:
    from cli.output import format_session, format_sessions
    from market_core.contracts import Session

    service = _service(ctx)
    with _reporting(ctx, f"sessions {command}"):
        result = service.post_session(command, _admin_token(ctx))
    if command == "reset":
        click.echo(result["message"])
        click.echo(format_sessions([Session.from_record(r) for r in result["sessions"]]))
    else:
        click.echo(format_session(Session.from_record(result)))


@sessions.command("start")
@click.pass_context
def sessions_start(ctx: click.Context) -> None:
    """Activate the earliest pending session."""
    _session_command(ctx, "start")


@sessions.command("end")
@click.pass_context
def sessions_end(ctx: click.Context) -> None:
    """Complete the active session."""
    _session_command(ctx, "end")


@sessions.command("next")
@click.pass_context
def sessions_next(ctx: click.Context) -> None:
    """Complete the active session and start the next pending one."""
    _session_command(ctx, "next")


@sessions.command("reset")
@click.pass_context
def sessions_reset(ctx: click.Context) -> None:
    """Put every session back to pending."""
    _session_command(ctx, "reset")


# ---------- market stocks ----------


@cli.command()
@click.pass_context
def stocks(ctx: click.Context) -> None:
    """List stocks at their current price, with change since the first session."""
    from cli.output import format_stocks

    market = _market(ctx)
    listed = market.prices.stocks()
    changes = {s.id: market.prices.price_change(s.id) for s in listed}
    click.echo(format_stocks(listed, changes))


# ---------- market price ----------


@cli.command()
@click.argument("stock_id")
@click.argument("price", type=float)
@click.pass_context
def price(ctx: click.Context, stock_id: str, price: float) -> None:
    """Override a stock's current price (admin)."""
    service = _service(ctx)
    with _reporting(ctx, "price"):
        updated = service.set_default_prices({stock_id: price}, _admin_token(ctx))
    click.echo(f"{updated[0]['id']} current price set to {updated[0]['currentPrice']:,.2f}")


# ---------- market trade ----------


@cli.command()
@click.argument("account_id")
@click.argument("stock_id")
@click.argument("trade_type", metavar="TYPE")
@click.argument("quantity", metavar="QTY")
@click.option("--id", "order_id", default=None, help="Idempotency key; resubmitting it returns the stored trade.")
@click.pass_context
def trade(ctx: click.Context, account_id: str, stock_id: str, trade_type: str, quantity: str, order_id: str | None) -> None:
    """Place a buy, sell or short_sell order at the current session price."""
    from cli.output import format_trade
    from market_core.contracts import Trade

    service = _service(ctx)
    body = {"accountId": account_id, "stockId": stock_id, "type": trade_type, "quantity": quantity}
    if order_id:
        body["id"] = order_id
    with _reporting(ctx, "trade"):
        record = service.post_trade(body)
        account = service.get_account(account_id)
    click.echo(f"Trade committed: {format_trade(Trade.from_record(record))}")
    click.echo(f"Balance now {account['balance']:,.2f}")


# ---------- market trades ----------


@cli.command()
@click.option("--account", "account_id", default=None, help="Only trades by this account.")
@click.pass_context
def trades(ctx: click.Context, account_id: str | None) -> None:
    """Show the trade log in commit order."""
    from cli.output import format_trades

    click.echo(format_trades(_market(ctx).executor.trades(account_id=account_id)))


# ---------- market status ----------


@cli.command()
@click.argument("account_id")
@click.pass_context
def status(ctx: click.Context, account_id: str) -> None:
    """Show an account's balance and open positions marked to market."""
    from cli.output import format_account
    from market_core.ledger import valuation

    market = _market(ctx)
    with _reporting(ctx, "status"):
        account = market.executor.account(account_id)
    click.echo(format_account(account.name, valuation(account, market.prices.prices())))


# ---------- market clear ----------


@cli.command()
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Delete all trades and restore every account to its initial balance (admin)."""
    if not yes:
        click.confirm("Clear every trade and reset all accounts?", abort=True)
    service = _service(ctx)
    with _reporting(ctx, "clear"):
        result = service.clear_trades(_admin_token(ctx))
    click.echo(result["message"])


# ---------- market audit ----------


@cli.command()
@click.pass_context
def audit(ctx: click.Context) -> None:
    """Replay every account's trade log and compare with the stored state.

    Exit code 0 = ledger consistent, 1 = mismatch found.
    """
    from cli.output import format_audit

    findings = _market(ctx).executor.audit()
    click.echo(format_audit(findings))
    raise SystemExit(0 if all(f.ok for f in findings) else 1)


# ---------- market clock ----------


@cli.command()
@click.option("--ticks", default=None, type=int, help="Stop after N clock ticks (default: run until sessions are exhausted).")
@click.pass_context
def clock(ctx: click.Context, ticks: int | None) -> None:
    """Run the session clock: start, then advance each session when its window closes."""
    from cli.scheduler import run_session_clock

    market = _market(ctx)
    with _reporting(ctx, "clock"):
        transitions = run_session_clock(market, max_ticks=ticks)
    ctx.obj["events"].shutdown(transitions)


# ---------- market health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, store access, active sessions, ledger audit.

    Exit code 0 = healthy, 1 = unhealthy.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = _config(ctx)
        checks.append(("config", True, f"loaded (window {cfg.sessions.window_minutes:g}m)"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    checks.append(("admin_key", True, "set" if cfg.admin_key else f"{ADMIN_KEY_ENV} not set (admin commands disabled)"))

    try:
        market = _market(ctx)
        counts = {name: market.store.count(name) for name in ("sessions", "stocks", "users", "trades")}
        seeded = counts["sessions"] > 0 and counts["stocks"] > 0
        detail = ", ".join(f"{n} {name}" for name, n in counts.items())
        checks.append(("store", seeded, detail if seeded else f"not seeded ({detail}); run 'market init'"))
    except Exception as e:
        checks.append(("store", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    active = [s.id for s in market.scheduler.sessions() if s.is_active]
    checks.append(("sessions", len(active) <= 1, f"active: {', '.join(active) or 'none'}"))

    findings = market.executor.audit()
    bad = [f.account_id for f in findings if not f.ok]
    checks.append(("ledger", not bad, f"{len(findings)} account(s) consistent" if not bad else f"mismatch: {', '.join(bad)}"))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
