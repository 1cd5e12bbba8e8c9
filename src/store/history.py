"""
Daily OHLCV history per instrument (SQLite). One bar per instrument and day.

A day that is already recorded is never overwritten: the first close written
for a day wins, so re-running an end-of-day job is harmless.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal

from execution.costs import Number, as_decimal
from store.database import TradingDatabase

logger = logging.getLogger("papertrade.store")

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class DailyBar:
    instrument_id: int
    day: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int


@dataclass(frozen=True)
class PriceStatistics:
    """Range summary over a window of daily bars. All zero when the window is empty."""

    highest: Decimal = ZERO
    lowest: Decimal = ZERO
    average: Decimal = ZERO  # mean close, to the cent
    change: Decimal = ZERO  # last close - first close
    change_percent: Decimal = ZERO  # change / first close * 100, to the cent
    days: int = 0


def _row_to_bar(row: sqlite3.Row) -> DailyBar:
    return DailyBar(
        instrument_id=row["instrument_id"],
        day=date.fromisoformat(row["day"]),
        open=Decimal(row["open"]),
        high=Decimal(row["high"]),
        low=Decimal(row["low"]),
        close=Decimal(row["close"]),
        volume=row["volume"],
    )


class PriceHistoryStore:
    """Daily closes written at end of day and read back for charts and statistics."""

    def __init__(self, db: TradingDatabase) -> None:
        self._db = db

    def write_daily_close(
        self,
        instrument_id: int,
        day: date,
        open: Number,
        high: Number,
        low: Number,
        close: Number,
        volume: int,
    ) -> bool:
        """Record one day's bar. Returns False (and writes nothing) if the day exists.

        Raises KeyError for an unknown instrument and ValueError for a bar that
        cannot be real (non-positive price, high below low, negative volume).
        """
        o, h, l, c = (as_decimal(v) for v in (open, high, low, close))
        if min(o, h, l, c) <= 0:
            raise ValueError("Bar prices must be positive")
        if not (l <= o <= h and l <= c <= h):
            raise ValueError(f"Bar out of range: high {h} low {l} open {o} close {c}")
        if volume < 0:
            raise ValueError(f"Volume must not be negative, got {volume}")

        with self._db.transaction() as tx:
            known = tx.execute("SELECT 1 FROM instruments WHERE id = ?", (instrument_id,)).fetchone()
            if known is None:
                raise KeyError(f"Unknown instrument id {instrument_id}")
            cur = tx.execute(
                """
                INSERT INTO price_history (instrument_id, day, open, high, low, close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(instrument_id, day) DO NOTHING
                """,
                (instrument_id, day.isoformat(), str(o), str(h), str(l), str(c), volume),
            )
            written = cur.rowcount == 1
        if written:
            logger.debug("Daily close %d %s: %s", instrument_id, day, c)
        else:
            logger.info("Daily close for instrument %d on %s already recorded; skipped", instrument_id, day)
        return written

    def price_history(
        self,
        instrument_id: int,
        *,
        since: date | None = None,
        until: date | None = None,
    ) -> list[DailyBar]:
        """Bars in the inclusive window, newest first."""
        return self._bars(instrument_id, since, until, "DESC")

    def price_statistics(
        self,
        instrument_id: int,
        *,
        since: date | None = None,
        until: date | None = None,
    ) -> PriceStatistics:
        bars = self._bars(instrument_id, since, until, "ASC")
        if not bars:
            return PriceStatistics()
        first, last = bars[0].close, bars[-1].close
        change = last - first
        percent = (change / first * 100).quantize(CENT, rounding=ROUND_HALF_EVEN) if first else ZERO
        average = sum((b.close for b in bars), ZERO) / len(bars)
        return PriceStatistics(
            highest=max(b.high for b in bars),
            lowest=min(b.low for b in bars),
            average=average.quantize(CENT, rounding=ROUND_HALF_EVEN),
            change=change,
            change_percent=percent,
            days=len(bars),
        )

    def _bars(self, instrument_id: int, since: date | None, until: date | None, order: str) -> list[DailyBar]:
        q = "SELECT * FROM price_history WHERE instrument_id = ?"
        params: list = [instrument_id]
        if since is not None:
            q += " AND day >= ?"
            params.append(since.isoformat())
        if until is not None:
            q += " AND day <= ?"
            params.append(until.isoformat())
        q += f" ORDER BY day {order}"
        with self._db.read() as c:
            rows = c.execute(q, params).fetchall()
        return [_row_to_bar(r) for r in rows]
