"""
Sweep scheduler: market-aware loop that fills pending orders.

While the market is open every cycle sweeps all pending orders, so an order
placed mid-session whose limit already crosses the last price fills on the
next cycle without waiting for a tick. The price-update channel is drained
each cycle and the moved symbols are reported with the sweep. Sleeps through
closed hours until the calendar's next open.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

import click

from cli.structured_log import StructuredEventLogger
from execution.engine import OrderEngine, SweepReport
from market.hours import MarketHours
from store.database import utc_now
from store.instruments import InstrumentStore, PriceSubscription

logger = logging.getLogger("papertrade.scheduler")

CLOSED_RECHECK_SECONDS = 3600.0


def _emit_report(report: SweepReport, events: StructuredEventLogger) -> None:
    for t in report.executed:
        events.trade_executed(t.order_id, t.instrument_symbol, t.side.value, t.quantity, t.executed_price, t.net_amount)
    for f in report.failed:
        events.order_rejected(f.order_id, f.error)
    events.sweep_complete(len(report.executed), len(report.skipped), len(report.failed))


def _run_sweep_cycle(
    engine: OrderEngine,
    subscription: PriceSubscription,
    events: StructuredEventLogger,
) -> SweepReport:
    """One evaluation: drain the price channel, then sweep every pending order."""
    updates = subscription.poll()
    events.sweep_start(len(updates), sorted({u.symbol for u in updates}))
    report = engine.process_pending_orders()
    _emit_report(report, events)
    return report


def run_sweep_loop(
    engine: OrderEngine,
    prices: InstrumentStore,
    market_hours: MarketHours,
    events: StructuredEventLogger,
    *,
    interval_seconds: float,
    max_cycles: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """
    Main loop: sweep while open, sleep until next open while closed.
    Ctrl+C for graceful shutdown. Returns the number of sweep cycles run.
    """
    subscription = prices.subscribe()
    cycles = 0
    iterations = 0
    cal = market_hours.calendar

    click.echo(f"Sweep loop started: every {interval_seconds:g}s during market hours")
    click.echo(f"Market hours: {cal.session_open:%H:%M}-{cal.session_close:%H:%M} {cal.timezone}  |  Ctrl+C to stop\n")

    try:
        while max_cycles is None or iterations < max_cycles:
            iterations += 1
            now = clock()

            if not market_hours.is_open(now):
                nxt = market_hours.next_open(now)
                if nxt is None:
                    events.error("No market open found within the calendar search window")
                    wait = CLOSED_RECHECK_SECONDS
                else:
                    wait = max(0.0, (nxt - now).total_seconds())
                    events.market_closed(nxt.isoformat(), wait / 3600)
                    local = market_hours.local(nxt)
                    click.echo(f"[{market_hours.local(now):%H:%M:%S}] Market closed. "
                               f"Sleeping until {local:%Y-%m-%d %H:%M} ({wait / 3600:.1f}h)")
                sleep(wait)
                continue

            try:
                report = _run_sweep_cycle(engine, subscription, events)
            except Exception as exc:
                logger.exception("Sweep cycle failed")
                events.error("Sweep cycle failed", detail=f"{type(exc).__name__}: {exc}")
            else:
                cycles += 1
                for t in report.executed:
                    click.echo(f"[{market_hours.local(now):%H:%M:%S}] Filled order #{t.order_id}: "
                               f"{t.side.value.upper()} {t.quantity} {t.instrument_symbol} @ {t.executed_price}")
            sleep(interval_seconds)

    except KeyboardInterrupt:
        click.echo(f"\n\nShutting down after {cycles} sweep(s). Goodbye.")
    events.shutdown(cycles)
    return cycles
