"""Tests for the sweep scheduler loop (no real sleep, fake clock)."""

import io
import json
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cli.scheduler import run_sweep_loop
from cli.structured_log import StructuredEventLogger
from config.calendar_config import load_calendar
from execution.engine import OrderEngine
from execution.models import OrderStatus
from market.hours import MarketHours


@pytest.fixture
def market(clock) -> MarketHours:
    return MarketHours(load_calendar(), clock=clock)


@pytest.fixture
def live_engine(db, instruments, market, ledger, clock) -> OrderEngine:
    return OrderEngine(db, instruments, market, ledger, clock=clock)


@pytest.fixture
def buf() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def events(buf: io.StringIO) -> StructuredEventLogger:
    return StructuredEventLogger(stream=buf)


def _events(buf: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buf.getvalue().splitlines()]


def test_every_cycle_sweeps_all_pending_orders(
    live_engine: OrderEngine, instruments, market, events, buf, clock, tsmc
) -> None:
    queued = live_engine.create_order(tsmc.id, "buy", "limit", 10, Decimal("100")).value
    waiting = live_engine.create_order(tsmc.id, "buy", "limit", 20, Decimal("90")).value
    sleeps: list[float] = []

    def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock.advance(seconds)
        if len(sleeps) == 1:
            instruments.update_price(tsmc.id, Decimal("90"))

    cycles = run_sweep_loop(
        live_engine, instruments, market, events,
        interval_seconds=5, max_cycles=3, sleep=sleep, clock=clock,
    )

    assert cycles == 3
    assert sleeps == [5, 5, 5]
    assert live_engine.get_order(queued.id).trades[0].executed_price == Decimal("100")
    assert live_engine.get_order(waiting.id).trades[0].executed_price == Decimal("90")
    log = _events(buf)
    assert [e["event"] for e in log] == [
        "sweep_start", "trade_executed", "sweep_complete",
        "sweep_start", "trade_executed", "sweep_complete",
        "sweep_start", "sweep_complete",
        "shutdown",
    ]
    assert log[0]["instruments"] == []
    assert log[3]["instruments"] == ["2330"]
    assert log[6]["price_updates"] == 0


def test_crossing_limit_placed_mid_session_fills_without_tick(
    live_engine: OrderEngine, instruments, market, events, clock, tsmc
) -> None:
    placed = []

    def sleep(seconds: float) -> None:
        clock.advance(seconds)
        if not placed:
            # price stays at 100; nothing is published on the channel
            placed.append(live_engine.create_order(tsmc.id, "buy", "limit", 5, Decimal("105")).value)

    run_sweep_loop(
        live_engine, instruments, market, events,
        interval_seconds=5, max_cycles=2, sleep=sleep, clock=clock,
    )

    order = live_engine.get_order(placed[0].id)
    assert order.status == OrderStatus.EXECUTED
    assert order.trades[0].executed_price == Decimal("100")


def test_sleeps_until_next_open_when_closed(live_engine, instruments, market, events, buf, clock) -> None:
    clock.now = datetime(2025, 3, 8, 2, 0, tzinfo=timezone.utc)  # Saturday 10:00 Taipei
    sleeps: list[float] = []
    cycles = run_sweep_loop(
        live_engine, instruments, market, events,
        interval_seconds=5, max_cycles=1, sleep=sleeps.append, clock=clock,
    )
    assert cycles == 0
    assert sleeps == [47 * 3600]
    closed = _events(buf)[0]
    assert closed["event"] == "market_closed"
    assert closed["next_open"] == "2025-03-10T01:00:00+00:00"


def test_orders_queued_overnight_fill_at_open(
    db, instruments, ledger, events, clock, tsmc
) -> None:
    clock.now = datetime(2025, 3, 3, 0, 0, tzinfo=timezone.utc)  # Monday 08:00 Taipei
    market = MarketHours(load_calendar(), clock=clock)
    engine = OrderEngine(db, instruments, market, ledger, clock=clock)
    order = engine.create_order(tsmc.id, "buy", "market", 10).value
    assert order.status == OrderStatus.PENDING

    run_sweep_loop(
        engine, instruments, market, events,
        interval_seconds=5, max_cycles=2, sleep=clock.advance, clock=clock,
    )
    assert engine.get_order(order.id).status == OrderStatus.EXECUTED
    assert ledger.held_quantity(tsmc.id) == 10


def test_keyboard_interrupt_shuts_down(live_engine, instruments, market, events, buf, clock) -> None:
    def sleep(seconds: float) -> None:
        raise KeyboardInterrupt

    cycles = run_sweep_loop(
        live_engine, instruments, market, events,
        interval_seconds=5, sleep=sleep, clock=clock,
    )
    assert cycles == 1
    last = _events(buf)[-1]
    assert last["event"] == "shutdown"
    assert last["cycles"] == 1


def test_cycle_failure_reported_and_loop_continues(instruments, market, events, buf, clock) -> None:
    class LockedEngine:
        def process_pending_orders(self, instrument_ids=None):
            raise sqlite3.OperationalError("database is locked")

    sleeps: list[float] = []
    cycles = run_sweep_loop(
        LockedEngine(), instruments, market, events,
        interval_seconds=5, max_cycles=2, sleep=sleeps.append, clock=clock,
    )
    assert cycles == 0
    assert sleeps == [5, 5]
    errors = [e for e in _events(buf) if e["event"] == "error"]
    assert len(errors) == 2
    assert "database is locked" in errors[0]["detail"]
