"""
Instrument registry and price source.

Each price update bumps a monotonically increasing ``price_seq``. A
PriceSubscription remembers the last sequence it has seen and ``poll()``
returns the instruments whose price moved since then, so consumers pull
updates explicitly instead of registering callbacks.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable

from execution.costs import Number, as_decimal
from store.database import TradingDatabase, from_db_ts, to_db_ts, utc_now

logger = logging.getLogger("papertrade.store")


@dataclass(frozen=True)
class Instrument:
    id: int
    symbol: str
    name: str
    current_price: Decimal
    updated_at: datetime


@dataclass(frozen=True)
class PriceUpdate:
    instrument_id: int
    symbol: str
    price: Decimal
    seq: int
    updated_at: datetime


def _row_to_instrument(row: sqlite3.Row) -> Instrument:
    return Instrument(
        id=row["id"],
        symbol=row["symbol"],
        name=row["name"],
        current_price=Decimal(row["current_price"]),
        updated_at=from_db_ts(row["updated_at"]),
    )


class InstrumentStore:
    """SQLite-backed instruments with their latest quote."""

    def __init__(self, db: TradingDatabase, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def add(self, symbol: str, name: str, price: Number) -> Instrument:
        """Insert an instrument, or update name and price if the symbol exists."""
        symbol = symbol.strip().upper()
        if not symbol:
            raise ValueError("Instrument symbol must not be empty")
        px = as_decimal(price)
        if px <= 0:
            raise ValueError(f"Price must be positive, got {px}")
        ts = to_db_ts(self._clock())
        with self._db.transaction() as tx:
            seq = self._next_seq(tx)
            tx.execute(
                """
                INSERT INTO instruments (symbol, name, current_price, price_seq, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(symbol) DO UPDATE SET
                    name = excluded.name,
                    current_price = excluded.current_price,
                    price_seq = excluded.price_seq,
                    updated_at = excluded.updated_at
                """,
                (symbol, name, str(px), seq, ts),
            )
            row = tx.execute("SELECT * FROM instruments WHERE symbol = ?", (symbol,)).fetchone()
        return _row_to_instrument(row)

    def get(self, instrument_id: int) -> Instrument | None:
        with self._db.read() as c:
            row = c.execute("SELECT * FROM instruments WHERE id = ?", (instrument_id,)).fetchone()
        return _row_to_instrument(row) if row else None

    def get_by_symbol(self, symbol: str) -> Instrument | None:
        with self._db.read() as c:
            row = c.execute(
                "SELECT * FROM instruments WHERE symbol = ?", (symbol.strip().upper(),)
            ).fetchone()
        return _row_to_instrument(row) if row else None

    def list(self) -> list[Instrument]:
        with self._db.read() as c:
            rows = c.execute("SELECT * FROM instruments ORDER BY symbol ASC").fetchall()
        return [_row_to_instrument(r) for r in rows]

    def search(self, keyword: str | None = None) -> list[Instrument]:
        """Instruments whose symbol or name contains *keyword* (any case), by symbol.

        A blank keyword matches everything.
        """
        kw = (keyword or "").strip()
        if not kw:
            return self.list()
        pattern = "%" + kw.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        with self._db.read() as c:
            rows = c.execute(
                "SELECT * FROM instruments "
                "WHERE lower(symbol) LIKE ? ESCAPE '\\' OR lower(name) LIKE ? ESCAPE '\\' "
                "ORDER BY symbol ASC",
                (pattern, pattern),
            ).fetchall()
        return [_row_to_instrument(r) for r in rows]

    def current_price(self, instrument_id: int) -> Decimal:
        instrument = self.get(instrument_id)
        if instrument is None:
            raise KeyError(f"Unknown instrument id {instrument_id}")
        return instrument.current_price

    def update_price(self, instrument_id: int, price: Number) -> Instrument | None:
        """Record a new quote. Returns None if the instrument does not exist."""
        px = as_decimal(price)
        if px <= 0:
            raise ValueError(f"Price must be positive, got {px}")
        ts = to_db_ts(self._clock())
        with self._db.transaction() as tx:
            seq = self._next_seq(tx)
            cur = tx.execute(
                "UPDATE instruments SET current_price = ?, price_seq = ?, updated_at = ? WHERE id = ?",
                (str(px), seq, ts, instrument_id),
            )
            if cur.rowcount == 0:
                return None
            row = tx.execute("SELECT * FROM instruments WHERE id = ?", (instrument_id,)).fetchone()
        logger.debug("Price update %s -> %s (seq %d)", row["symbol"], px, seq)
        return _row_to_instrument(row)

    def subscribe(self, *, from_start: bool = False) -> PriceSubscription:
        """Open a price-update channel. By default only updates after this call are seen."""
        start = 0 if from_start else self._current_seq()
        return PriceSubscription(self._db, start)

    def _current_seq(self) -> int:
        with self._db.read() as c:
            row = c.execute("SELECT COALESCE(MAX(price_seq), 0) FROM instruments").fetchone()
        return int(row[0])

    @staticmethod
    def _next_seq(tx: sqlite3.Connection) -> int:
        row = tx.execute("SELECT COALESCE(MAX(price_seq), 0) FROM instruments").fetchone()
        return int(row[0]) + 1


class PriceSubscription:
    """Cursor over instrument price updates."""

    def __init__(self, db: TradingDatabase, last_seq: int) -> None:
        self._db = db
        self._last_seq = last_seq

    @property
    def last_seq(self) -> int:
        return self._last_seq

    def poll(self) -> list[PriceUpdate]:
        """Return instruments repriced since the previous poll, in update order."""
        with self._db.read() as c:
            rows = c.execute(
                "SELECT id, symbol, current_price, price_seq, updated_at FROM instruments "
                "WHERE price_seq > ? ORDER BY price_seq ASC",
                (self._last_seq,),
            ).fetchall()
        updates = [
            PriceUpdate(
                instrument_id=r["id"],
                symbol=r["symbol"],
                price=Decimal(r["current_price"]),
                seq=r["price_seq"],
                updated_at=from_db_ts(r["updated_at"]),
            )
            for r in rows
        ]
        if updates:
            self._last_seq = updates[-1].seq
        return updates
