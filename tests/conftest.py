"""Pytest fixtures: temporary trading database, fake clock, static market hours."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from execution.engine import OrderEngine
from execution.ledger import PortfolioLedger
from journal.writer import AuditJournal
from store.database import TradingDatabase
from store.instruments import Instrument, InstrumentStore

# Monday 2025-03-03 10:00 Asia/Taipei
MARKET_MORNING = datetime(2025, 3, 3, 2, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; advances only when told to."""

    def __init__(self, start: datetime = MARKET_MORNING) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class StaticHours:
    """Market-hours oracle whose answer is set by the test."""

    def __init__(self, open_: bool = True) -> None:
        self.open = open_

    def is_open(self, ts: datetime | None = None) -> bool:
        return self.open


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hours() -> StaticHours:
    return StaticHours(open_=True)


@pytest.fixture
def db(tmp_path: Path) -> TradingDatabase:
    return TradingDatabase(tmp_path / "trading.db")


@pytest.fixture
def instruments(db: TradingDatabase, clock: FakeClock) -> InstrumentStore:
    return InstrumentStore(db, clock=clock)


@pytest.fixture
def audit(tmp_path: Path) -> AuditJournal:
    return AuditJournal(tmp_path / "audit.jsonl")


@pytest.fixture
def ledger(db: TradingDatabase, instruments: InstrumentStore, clock: FakeClock) -> PortfolioLedger:
    return PortfolioLedger(db, instruments, clock=clock)


@pytest.fixture
def engine(
    db: TradingDatabase,
    instruments: InstrumentStore,
    hours: StaticHours,
    ledger: PortfolioLedger,
    audit: AuditJournal,
    clock: FakeClock,
) -> OrderEngine:
    return OrderEngine(db, instruments, hours, ledger, audit=audit, clock=clock)


@pytest.fixture
def tsmc(instruments: InstrumentStore) -> Instrument:
    """One listed instrument priced at 100."""
    return instruments.add("2330", "TSMC", Decimal("100"))
