"""
SQLite storage for instruments, orders, trades, positions, daily price
history and the watchlist.

Timestamps are stored as UTC ISO strings, money as Decimal text so values
round-trip exactly. Every state change runs inside ``transaction()``, which
opens with BEGIN IMMEDIATE: the write lock is taken up front, so concurrent
writers queue instead of interleaving their read-modify-write of a position.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS instruments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        symbol TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        current_price TEXT NOT NULL,
        price_seq INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        instrument_id INTEGER NOT NULL REFERENCES instruments(id),
        side TEXT NOT NULL,
        order_type TEXT NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        limit_price TEXT,
        status TEXT NOT NULL,
        commission TEXT NOT NULL DEFAULT '0',
        transaction_tax TEXT NOT NULL DEFAULT '0',
        client_token TEXT UNIQUE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_orders_shape
        ON orders (instrument_id, side, order_type, quantity, created_at)
    """,
    "CREATE INDEX IF NOT EXISTS ix_orders_status ON orders (status)",
    """
    CREATE TABLE IF NOT EXISTS trades (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL REFERENCES orders(id),
        instrument_symbol TEXT NOT NULL,
        side TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        executed_price TEXT NOT NULL,
        total_amount TEXT NOT NULL,
        commission TEXT NOT NULL,
        transaction_tax TEXT NOT NULL,
        net_amount TEXT NOT NULL,
        executed_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_trades_order ON trades (order_id)",
    """
    CREATE TABLE IF NOT EXISTS positions (
        instrument_id INTEGER PRIMARY KEY REFERENCES instruments(id),
        quantity INTEGER NOT NULL CHECK (quantity >= 0),
        average_cost TEXT NOT NULL,
        total_cost TEXT NOT NULL,
        realized_pnl TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS price_history (
        instrument_id INTEGER NOT NULL REFERENCES instruments(id),
        day TEXT NOT NULL,
        open TEXT NOT NULL,
        high TEXT NOT NULL,
        low TEXT NOT NULL,
        close TEXT NOT NULL,
        volume INTEGER NOT NULL,
        PRIMARY KEY (instrument_id, day)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS watchlist (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        symbol TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


def utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_ts(ts: datetime) -> str:
    # Fixed width so string comparison in SQL matches time order
    return utc(ts).isoformat(timespec="microseconds")


def from_db_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def to_db_decimal(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def from_db_decimal(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


class TradingDatabase:
    """One SQLite file holding the whole trading state."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(str(self._path), timeout=10.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_schema(self) -> None:
        with self.transaction() as tx:
            for stmt in SCHEMA:
                tx.execute(stmt)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Atomic unit of work. Commits on exit, rolls back and re-raises on error."""
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Read-only connection (autocommit reads, no write lock)."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()
