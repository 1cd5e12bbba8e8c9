"""
Watchlist: symbols the user is following, with free-form notes.

Entries are independent of the tradable instrument registry, so a symbol can
be watched before it is listed. Symbols are four-digit exchange codes and
appear at most once.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from store.database import TradingDatabase, from_db_ts, to_db_ts, utc_now

logger = logging.getLogger("papertrade.store")

SYMBOL_PATTERN = re.compile(r"^\d{4}$")
MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 500


@dataclass(frozen=True)
class WatchlistEntry:
    id: int
    symbol: str
    name: str
    notes: str | None
    created_at: datetime
    updated_at: datetime


def _row_to_entry(row: sqlite3.Row) -> WatchlistEntry:
    return WatchlistEntry(
        id=row["id"],
        symbol=row["symbol"],
        name=row["name"],
        notes=row["notes"],
        created_at=from_db_ts(row["created_at"]),
        updated_at=from_db_ts(row["updated_at"]),
    )


def _check_symbol(symbol: str) -> str:
    symbol = symbol.strip()
    if not SYMBOL_PATTERN.match(symbol):
        raise ValueError(f"Watchlist symbol must be four digits, got {symbol!r}")
    return symbol


def _check_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValueError("Watchlist name must not be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Watchlist name longer than {MAX_NAME_LENGTH} characters")
    return name


def _check_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    notes = notes.strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValueError(f"Watchlist notes longer than {MAX_NOTES_LENGTH} characters")
    return notes or None


class Watchlist:
    """SQLite-backed watchlist entries, ordered by symbol."""

    def __init__(self, db: TradingDatabase, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._db = db
        self._clock = clock

    def add(self, symbol: str, name: str, notes: str | None = None) -> WatchlistEntry:
        """Start watching *symbol*. Raises ValueError if it is invalid or already watched."""
        symbol, name, notes = _check_symbol(symbol), _check_name(name), _check_notes(notes)
        ts = to_db_ts(self._clock())
        try:
            with self._db.transaction() as tx:
                tx.execute(
                    "INSERT INTO watchlist (symbol, name, notes, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (symbol, name, notes, ts, ts),
                )
                row = tx.execute("SELECT * FROM watchlist WHERE symbol = ?", (symbol,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"{symbol} is already on the watchlist") from exc
        logger.info("Watching %s (%s)", symbol, name)
        return _row_to_entry(row)

    def update(self, symbol: str, *, name: str | None = None, notes: str | None = None) -> WatchlistEntry | None:
        """Change the name and/or notes. An empty *notes* string clears them.

        Returns None if the symbol is not watched.
        """
        symbol = _check_symbol(symbol)
        sets: list[str] = []
        params: list = []
        if name is not None:
            sets.append("name = ?")
            params.append(_check_name(name))
        if notes is not None:
            sets.append("notes = ?")
            params.append(_check_notes(notes))
        sets.append("updated_at = ?")
        params.append(to_db_ts(self._clock()))
        with self._db.transaction() as tx:
            cur = tx.execute(f"UPDATE watchlist SET {', '.join(sets)} WHERE symbol = ?", (*params, symbol))
            if cur.rowcount == 0:
                return None
            row = tx.execute("SELECT * FROM watchlist WHERE symbol = ?", (symbol,)).fetchone()
        return _row_to_entry(row)

    def remove(self, symbol: str) -> bool:
        with self._db.transaction() as tx:
            removed = tx.execute("DELETE FROM watchlist WHERE symbol = ?", (symbol.strip(),)).rowcount == 1
        if removed:
            logger.info("Stopped watching %s", symbol.strip())
        return removed

    def get(self, symbol: str) -> WatchlistEntry | None:
        with self._db.read() as c:
            row = c.execute("SELECT * FROM watchlist WHERE symbol = ?", (symbol.strip(),)).fetchone()
        return _row_to_entry(row) if row else None

    def list(self) -> list[WatchlistEntry]:
        with self._db.read() as c:
            rows = c.execute("SELECT * FROM watchlist ORDER BY symbol ASC").fetchall()
        return [_row_to_entry(r) for r in rows]
