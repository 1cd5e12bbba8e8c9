"""
CLI entry point: papertrade instrument | watchlist | buy | sell | cancel | match |
process | orders | trades | portfolio | watch | health.

Every command loads config from --config (default config.yaml, optional),
prints a human-readable result, and records business actions in the audit
journal. Rejections exit with status 1.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING

import click
from dotenv import load_dotenv

from config import AppConfig, load_config

if TYPE_CHECKING:
    from execution import OrderEngine, PortfolioLedger
    from journal import AuditJournal
    from market import MarketHours
    from store import InstrumentStore, TradingDatabase

load_dotenv()

logger = logging.getLogger("papertrade")

DEFAULT_CONFIG = "config.yaml"


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


class DecimalParam(click.ParamType):
    """Exact decimal prices on the command line."""

    name = "decimal"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        from execution.costs import as_decimal

        try:
            return as_decimal(value)
        except ValueError:
            self.fail(f"{value!r} is not a valid decimal number", param, ctx)


DECIMAL = DecimalParam()


@dataclass
class Services:
    config: AppConfig
    db: "TradingDatabase"
    instruments: "InstrumentStore"
    market_hours: "MarketHours"
    ledger: "PortfolioLedger"
    engine: "OrderEngine"
    audit: "AuditJournal"


def _load(ctx: click.Context) -> AppConfig:
    path = ctx.obj["config_path"]
    if path == DEFAULT_CONFIG and not Path(path).exists():
        logger.debug("No %s found; using built-in defaults", path)
        return AppConfig()
    return load_config(path)


def _services(ctx: click.Context) -> Services:
    """Wire storage, calendar, ledger and engine from config."""
    if "services" in ctx.obj:
        return ctx.obj["services"]
    from config.calendar_config import load_calendar
    from execution import OrderEngine, PortfolioLedger
    from journal import AuditJournal
    from market import MarketHours
    from store import InstrumentStore, TradingDatabase

    cfg = _load(ctx)
    db = TradingDatabase(cfg.database.path)
    instruments = InstrumentStore(db)
    calendar = load_calendar(
        cfg.market.calendar_path or None,
        extra_holidays_path=cfg.market.extra_holidays_path or None,
    )
    hours = MarketHours(calendar)
    audit = AuditJournal(cfg.audit.path, echo_stdout=cfg.audit.echo_stdout)
    ledger = PortfolioLedger(db, instruments, discount_rate=cfg.trading.commission_discount)
    engine = OrderEngine(
        db,
        instruments,
        hours,
        ledger,
        audit=audit,
        discount_rate=cfg.trading.commission_discount,
        duplicate_window_seconds=cfg.trading.duplicate_window_seconds,
        max_trade_amount=cfg.trading.max_trade_amount,
    )
    services = Services(cfg, db, instruments, hours, ledger, engine, audit)
    ctx.obj["services"] = services
    return services


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _fail(message: str) -> None:
    click.echo(message, err=True)
    raise SystemExit(1)


@click.group()
@click.option("--config", "config_path", default=DEFAULT_CONFIG, help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """papertrade: simulated equity orders with a weighted-average cost ledger."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- papertrade instrument ----------


@cli.group()
def instrument() -> None:
    """Manage tradable instruments and their quotes."""


@instrument.command("add")
@click.argument("symbol")
@click.argument("name")
@click.argument("price", type=DECIMAL)
@click.pass_context
def instrument_add(ctx: click.Context, symbol: str, name: str, price: Decimal) -> None:
    """Register SYMBOL (or update its name and price)."""
    svc = _services(ctx)
    try:
        inst = svc.instruments.add(symbol, name, price)
    except ValueError as e:
        _fail(f"Error: {e}")
    click.echo(f"Instrument #{inst.id} {inst.symbol} ({inst.name}) @ {inst.current_price}")


@instrument.command("price")
@click.argument("symbol")
@click.argument("price", type=DECIMAL)
@click.pass_context
def instrument_price(ctx: click.Context, symbol: str, price: Decimal) -> None:
    """Record a new quote for SYMBOL."""
    svc = _services(ctx)
    inst = svc.instruments.get_by_symbol(symbol)
    if inst is None:
        _fail(f"Unknown instrument: {symbol}")
    try:
        updated = svc.instruments.update_price(inst.id, price)
    except ValueError as e:
        _fail(f"Error: {e}")
    click.echo(f"{updated.symbol} @ {updated.current_price}")


@instrument.command("list")
@click.pass_context
def instrument_list(ctx: click.Context) -> None:
    """List instruments with their latest price."""
    from cli.output import format_instruments

    click.echo(format_instruments(_services(ctx).instruments.list()))


@instrument.command("search")
@click.argument("keyword", required=False)
@click.pass_context
def instrument_search(ctx: click.Context, keyword: str | None) -> None:
    """Find instruments whose symbol or name contains KEYWORD."""
    from cli.output import format_instruments

    click.echo(format_instruments(_services(ctx).instruments.search(keyword)))


def _require_instrument(svc: Services, symbol: str):
    inst = svc.instruments.get_by_symbol(symbol)
    if inst is None:
        _fail(f"Unknown instrument: {symbol}")
    return inst


@instrument.command("close")
@click.argument("symbol")
@click.argument("day", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.argument("open_", metavar="OPEN", type=DECIMAL)
@click.argument("high", type=DECIMAL)
@click.argument("low", type=DECIMAL)
@click.argument("close", type=DECIMAL)
@click.argument("volume", type=int)
@click.pass_context
def instrument_close(
    ctx: click.Context, symbol: str, day: datetime, open_: Decimal, high: Decimal, low: Decimal, close: Decimal, volume: int
) -> None:
    """Record SYMBOL's daily bar for DAY (YYYY-MM-DD). An existing day is kept."""
    from store import PriceHistoryStore

    svc = _services(ctx)
    inst = _require_instrument(svc, symbol)
    try:
        written = PriceHistoryStore(svc.db).write_daily_close(inst.id, day.date(), open_, high, low, close, volume)
    except ValueError as e:
        _fail(f"Error: {e}")
    if written:
        click.echo(f"{inst.symbol} {day:%Y-%m-%d}: close {close} recorded")
    else:
        click.echo(f"{inst.symbol} {day:%Y-%m-%d}: already recorded, left unchanged")


@instrument.command("history")
@click.argument("symbol")
@click.option("--since", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="First day (inclusive).")
@click.option("--until", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Last day (inclusive).")
@click.pass_context
def instrument_history(ctx: click.Context, symbol: str, since: datetime | None, until: datetime | None) -> None:
    """Show SYMBOL's daily bars with high, low, average close and change."""
    from cli.output import format_history
    from store import PriceHistoryStore

    svc = _services(ctx)
    inst = _require_instrument(svc, symbol)
    store = PriceHistoryStore(svc.db)
    window = {"since": since.date() if since else None, "until": until.date() if until else None}
    click.echo(format_history(inst.symbol, store.price_history(inst.id, **window), store.price_statistics(inst.id, **window)))


# ---------- papertrade watchlist ----------


@cli.group()
def watchlist() -> None:
    """Symbols you are following, with notes."""


@watchlist.command("add")
@click.argument("symbol")
@click.argument("name")
@click.option("--notes", default=None)
@click.pass_context
def watchlist_add(ctx: click.Context, symbol: str, name: str, notes: str | None) -> None:
    from store import Watchlist

    try:
        entry = Watchlist(_services(ctx).db).add(symbol, name, notes)
    except ValueError as e:
        _fail(f"Error: {e}")
    click.echo(f"Watching {entry.symbol} ({entry.name})")


@watchlist.command("note")
@click.argument("symbol")
@click.argument("notes")
@click.pass_context
def watchlist_note(ctx: click.Context, symbol: str, notes: str) -> None:
    """Replace the notes on SYMBOL ("" clears them)."""
    from store import Watchlist

    try:
        entry = Watchlist(_services(ctx).db).update(symbol, notes=notes)
    except ValueError as e:
        _fail(f"Error: {e}")
    if entry is None:
        _fail(f"Not on the watchlist: {symbol}")
    click.echo(f"{entry.symbol}: {entry.notes or '(no notes)'}")


@watchlist.command("remove")
@click.argument("symbol")
@click.pass_context
def watchlist_remove(ctx: click.Context, symbol: str) -> None:
    from store import Watchlist

    if not Watchlist(_services(ctx).db).remove(symbol):
        _fail(f"Not on the watchlist: {symbol}")
    click.echo(f"Stopped watching {symbol}")


@watchlist.command("list")
@click.pass_context
def watchlist_list(ctx: click.Context) -> None:
    from cli.output import format_watchlist
    from store import Watchlist

    click.echo(format_watchlist(Watchlist(_services(ctx).db).list()))


# ---------- papertrade buy / sell ----------


def _submit(ctx: click.Context, side: str, symbol: str, quantity: int, limit: Decimal | None, token: str | None) -> None:
    from cli.output import format_error, format_order
    from execution.errors import TradingError

    svc = _services(ctx)
    inst = svc.instruments.get_by_symbol(symbol)
    if inst is None:
        _fail(format_error(TradingError.INVALID_STOCK))
    order_type = "limit" if limit is not None else "market"
    result = svc.engine.create_order(inst.id, side, order_type, quantity, limit, client_token=token)
    if not result.ok:
        _fail(format_error(result.error))
    click.echo(format_order(result.value))
    if result.value.status.value == "pending" and order_type == "market":
        click.echo("  Market closed: order queued until the next session.")


@cli.command()
@click.argument("symbol")
@click.argument("quantity", type=int)
@click.option("--limit", "limit", type=DECIMAL, default=None, help="Limit price; omit for a market order.")
@click.option("--token", default=None, help="Client token; a repeated token is rejected as a duplicate.")
@click.pass_context
def buy(ctx: click.Context, symbol: str, quantity: int, limit: Decimal | None, token: str | None) -> None:
    """Buy QUANTITY shares of SYMBOL."""
    _submit(ctx, "buy", symbol, quantity, limit, token)


@cli.command()
@click.argument("symbol")
@click.argument("quantity", type=int)
@click.option("--limit", "limit", type=DECIMAL, default=None, help="Limit price; omit for a market order.")
@click.option("--token", default=None, help="Client token; a repeated token is rejected as a duplicate.")
@click.pass_context
def sell(ctx: click.Context, symbol: str, quantity: int, limit: Decimal | None, token: str | None) -> None:
    """Sell QUANTITY shares of SYMBOL."""
    _submit(ctx, "sell", symbol, quantity, limit, token)


# ---------- papertrade cancel / match / process ----------


@cli.command()
@click.argument("order_id", type=int)
@click.pass_context
def cancel(ctx: click.Context, order_id: int) -> None:
    """Cancel a pending order."""
    from cli.output import format_error, format_order

    result = _services(ctx).engine.cancel_order(order_id)
    if not result.ok:
        _fail(format_error(result.error))
    click.echo(format_order(result.value))


@cli.command()
@click.argument("order_id", type=int)
@click.option("--price", type=DECIMAL, default=None, help="Execution price (default: instrument's current price).")
@click.pass_context
def match(ctx: click.Context, order_id: int, price: Decimal | None) -> None:
    """Fill one pending order now, regardless of market hours."""
    from cli.output import format_error, format_trade
    from execution.errors import TradingError

    svc = _services(ctx)
    if price is None:
        order = svc.engine.get_order(order_id)
        if order is None:
            _fail(format_error(TradingError.ORDER_NOT_FOUND))
        price = svc.instruments.current_price(order.instrument_id)
    result = svc.engine.execute_match(order_id, price)
    if not result.ok:
        _fail(format_error(result.error))
    click.echo(format_trade(result.value))


@cli.command()
@click.pass_context
def process(ctx: click.Context) -> None:
    """Sweep all pending orders once against current prices."""
    from cli.output import format_sweep_report

    report = _services(ctx).engine.process_pending_orders()
    click.echo(format_sweep_report(report))
    if report.failed:
        raise SystemExit(1)


# ---------- papertrade orders / trades / portfolio ----------


@cli.command()
@click.option("--status", type=click.Choice(["pending", "executed", "cancelled"]), default=None)
@click.option("--symbol", default=None, help="Only orders for this instrument.")
@click.option("--since", "since_str", default=None, help="Created at or after (ISO).")
@click.option("--until", "until_str", default=None, help="Created at or before (ISO).")
@click.pass_context
def orders(ctx: click.Context, status: str | None, symbol: str | None, since_str: str | None, until_str: str | None) -> None:
    """List orders, newest first."""
    from cli.output import format_orders
    from execution.models import OrderFilter

    svc = _services(ctx)
    instrument_id = None
    if symbol:
        inst = svc.instruments.get_by_symbol(symbol)
        if inst is None:
            _fail(f"Unknown instrument: {symbol}")
        instrument_id = inst.id
    flt = OrderFilter(
        status=status,
        instrument_id=instrument_id,
        from_date=_parse_date(since_str),
        to_date=_parse_date(until_str),
    )
    click.echo(format_orders(svc.engine.get_orders(flt)))


@cli.command()
@click.option("--symbol", default=None)
@click.option("--since", "since_str", default=None, help="Executed at or after (ISO).")
@click.option("--until", "until_str", default=None, help="Executed at or before (ISO).")
@click.pass_context
def trades(ctx: click.Context, symbol: str | None, since_str: str | None, until_str: str | None) -> None:
    """List trades, newest first."""
    from cli.output import format_trades
    from execution.models import TradeFilter

    flt = TradeFilter(symbol=symbol, from_date=_parse_date(since_str), to_date=_parse_date(until_str))
    click.echo(format_trades(_services(ctx).engine.get_trades(flt)))


@cli.command()
@click.pass_context
def portfolio(ctx: click.Context) -> None:
    """Show open positions marked to market, with realized and unrealized P&L."""
    from cli.output import format_portfolio

    ledger = _services(ctx).ledger
    click.echo(format_portfolio(ledger.snapshot(), ledger.summary()))


# ---------- papertrade watch ----------


@cli.command()
@click.option("--cycles", default=None, type=int, help="Stop after N loop iterations (default: run until Ctrl+C).")
@click.pass_context
def watch(ctx: click.Context, cycles: int | None) -> None:
    """Run the pending-order sweep continuously during market hours."""
    from cli.scheduler import run_sweep_loop
    from cli.structured_log import StructuredEventLogger

    svc = _services(ctx)
    events = StructuredEventLogger(
        enabled=svc.config.alerting.structured_logs,
        webhook_url=svc.config.alerting.webhook_url,
    )
    run_sweep_loop(
        svc.engine,
        svc.instruments,
        svc.market_hours,
        events,
        interval_seconds=svc.config.scheduler.interval_seconds,
        max_cycles=cycles,
    )


# ---------- papertrade health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, trading calendar, database.

    Exit code 0 = healthy, 1 = unhealthy.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = _load(ctx)
        checks.append(("config", True, f"loaded (db={cfg.database.path})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        from config.calendar_config import load_calendar
        from market import MarketHours

        hours = MarketHours(load_calendar(
            cfg.market.calendar_path or None,
            extra_holidays_path=cfg.market.extra_holidays_path or None,
        ))
        state = "open" if hours.is_open() else "closed"
        checks.append(("calendar", True, f"{hours.calendar.timezone}, market {state}, "
                                         f"{len(hours.calendar.holidays)} holidays"))
    except Exception as e:
        checks.append(("calendar", False, str(e)))

    try:
        from store import InstrumentStore, TradingDatabase

        db = TradingDatabase(cfg.database.path)
        count = len(InstrumentStore(db).list())
        checks.append(("database", True, f"{db.path} ({count} instruments)"))
    except Exception as e:
        checks.append(("database", False, str(e)))

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
