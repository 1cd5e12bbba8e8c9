"""
Portfolio ledger: weighted-average cost positions with realized P&L.

``apply_fill`` is the only writer of position rows and always runs on the
caller's transaction, so the order status change, the trade row and the
position update commit together.

Buy:  total += price*qty + commission; qty += delta; avg = total / qty
Sell: basis = avg*delta; realized += price*delta - basis - commission;
      qty -= delta; total -= basis; avg unchanged (both reset to 0 on a full close)
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Callable

from execution.costs import DEFAULT_DISCOUNT_RATE, Number, as_decimal, estimate_pnl
from execution.errors import LedgerError
from execution.models import OrderSide, PortfolioItem, PortfolioSummary, Position
from execution.ports import PriceSource
from store.database import TradingDatabase, from_db_ts, to_db_ts, utc_now

logger = logging.getLogger("papertrade.ledger")

ZERO = Decimal("0")


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        instrument_id=row["instrument_id"],
        quantity=row["quantity"],
        average_cost=Decimal(row["average_cost"]),
        total_cost=Decimal(row["total_cost"]),
        realized_pnl=Decimal(row["realized_pnl"]),
        updated_at=from_db_ts(row["updated_at"]),
    )


class PortfolioLedger:
    """Per-instrument positions. Rows are created on first buy and never deleted."""

    def __init__(
        self,
        db: TradingDatabase,
        prices: PriceSource,
        *,
        discount_rate: Number = DEFAULT_DISCOUNT_RATE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._prices = prices
        self._discount_rate = as_decimal(discount_rate)
        self._clock = clock

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_fill(
        self,
        tx: sqlite3.Connection,
        instrument_id: int,
        quantity_delta: int,
        execution_price: Number,
        side: OrderSide,
        commission: Number,
    ) -> Position:
        """Apply one execution to the instrument's position inside *tx*.

        Raises LedgerError (aborting the caller's transaction) on a non-positive
        delta or a sell larger than the held quantity. Nothing is clamped.
        """
        if quantity_delta <= 0:
            raise LedgerError(f"Fill quantity must be positive, got {quantity_delta}")
        price = as_decimal(execution_price)
        fee = as_decimal(commission)

        row = tx.execute(
            "SELECT * FROM positions WHERE instrument_id = ?", (instrument_id,)
        ).fetchone()
        current = _row_to_position(row) if row else None

        if side == OrderSide.BUY:
            held = current.quantity if current else 0
            total = (current.total_cost if current else ZERO) + price * quantity_delta + fee
            quantity = held + quantity_delta
            average = total / quantity if quantity > 0 else ZERO
            realized = current.realized_pnl if current else ZERO
        else:
            if current is None or quantity_delta > current.quantity:
                held = current.quantity if current else 0
                raise LedgerError(
                    f"Sell of {quantity_delta} exceeds held quantity {held} for instrument {instrument_id}"
                )
            cost_basis_sold = current.average_cost * quantity_delta
            realized = current.realized_pnl + (price * quantity_delta - cost_basis_sold - fee)
            quantity = current.quantity - quantity_delta
            total = current.total_cost - cost_basis_sold
            average = current.average_cost
            if quantity == 0:
                # A closed position carries no cost basis into the next buy.
                total = ZERO
                average = ZERO

        ts = to_db_ts(self._clock())
        tx.execute(
            """
            INSERT INTO positions (instrument_id, quantity, average_cost, total_cost, realized_pnl, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(instrument_id) DO UPDATE SET
                quantity = excluded.quantity,
                average_cost = excluded.average_cost,
                total_cost = excluded.total_cost,
                realized_pnl = excluded.realized_pnl,
                updated_at = excluded.updated_at
            """,
            (instrument_id, quantity, str(average), str(total), str(realized), ts),
        )
        logger.debug(
            "Position %d %s %d @ %s -> qty=%d avg=%s realized=%s",
            instrument_id, side.value, quantity_delta, price, quantity, average, realized,
        )
        return Position(
            instrument_id=instrument_id,
            quantity=quantity,
            average_cost=average,
            total_cost=total,
            realized_pnl=realized,
            updated_at=from_db_ts(ts),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_position(self, instrument_id: int, tx: sqlite3.Connection | None = None) -> Position | None:
        """Position row for an instrument (including closed ones), or None."""
        if tx is not None:
            row = tx.execute(
                "SELECT * FROM positions WHERE instrument_id = ?", (instrument_id,)
            ).fetchone()
            return _row_to_position(row) if row else None
        with self._db.read() as c:
            row = c.execute(
                "SELECT * FROM positions WHERE instrument_id = ?", (instrument_id,)
            ).fetchone()
        return _row_to_position(row) if row else None

    def held_quantity(self, instrument_id: int, tx: sqlite3.Connection | None = None) -> int:
        position = self.get_position(instrument_id, tx)
        return position.quantity if position else 0

    def positions(self, *, include_closed: bool = False) -> list[Position]:
        q = "SELECT * FROM positions"
        if not include_closed:
            q += " WHERE quantity > 0"
        q += " ORDER BY instrument_id ASC"
        with self._db.read() as c:
            rows = c.execute(q).fetchall()
        return [_row_to_position(r) for r in rows]

    def snapshot(self) -> list[PortfolioItem]:
        """Open positions marked to the latest price, net of estimated sell costs."""
        items: list[PortfolioItem] = []
        for pos in self.positions():
            instrument = self._prices.get(pos.instrument_id)
            if instrument is None:
                raise LedgerError(f"Position references unknown instrument {pos.instrument_id}")
            price = self._prices.current_price(pos.instrument_id)
            est = estimate_pnl(price, pos.quantity, pos.average_cost, self._discount_rate)
            items.append(
                PortfolioItem(
                    instrument_id=pos.instrument_id,
                    symbol=instrument.symbol,
                    name=instrument.name,
                    quantity=pos.quantity,
                    average_cost=pos.average_cost,
                    current_price=price,
                    market_value=est.market_value,
                    cost_basis=est.cost_basis,
                    unrealized_pnl=est.unrealized_pnl,
                    return_rate=est.return_rate,
                    realized_pnl=pos.realized_pnl,
                )
            )
        items.sort(key=lambda item: item.symbol)
        return items

    def summary(self) -> PortfolioSummary:
        items = self.snapshot()
        market_value = sum((i.market_value for i in items), ZERO)
        cost = sum((i.cost_basis for i in items), ZERO)
        unrealized = sum((i.unrealized_pnl for i in items), ZERO)
        # realized P&L survives on closed (quantity 0) rows too
        realized = sum((p.realized_pnl for p in self.positions(include_closed=True)), ZERO)
        return PortfolioSummary(
            total_market_value=market_value,
            total_cost=cost,
            total_unrealized_pnl=unrealized,
            total_realized_pnl=realized,
            total_return_rate=unrealized / cost if cost != 0 else ZERO,
        )
