"""
Order engine: validation, order state machine, fills, pending-order sweep.

Single writer per transaction. Each state change (create and maybe fill,
cancel, match, one sweep item) is one ``TradingDatabase.transaction()``;
the fill path threads that transaction handle into the ledger so the order
status, trade row and position update commit or roll back together.

Business rejections are returned as ``Result.failure(TradingError)``;
storage and ledger failures raise.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable

from execution.costs import DEFAULT_DISCOUNT_RATE, Number, as_decimal, total_cost
from execution.errors import Result, TradingError
from execution.ledger import PortfolioLedger
from execution.models import (
    Order,
    OrderFilter,
    OrderSide,
    OrderStatus,
    OrderType,
    Trade,
    TradeFilter,
)
from execution.ports import AuditSink, MarketHoursOracle, PriceSource
from store.database import (
    TradingDatabase,
    from_db_decimal,
    from_db_ts,
    to_db_decimal,
    to_db_ts,
    utc_now,
)

logger = logging.getLogger("papertrade.engine")

DUPLICATE_WINDOW_SECONDS = 5


class StaleOrderError(Exception):
    """Raised when an order left PENDING before its fill could be written."""


@dataclass(frozen=True)
class SweepFailure:
    order_id: int
    error: str


@dataclass
class SweepReport:
    """Outcome of one pass over pending orders."""

    market_open: bool
    executed: list[Trade] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)  # not triggered, or no longer pending
    failed: list[SweepFailure] = field(default_factory=list)


def limit_triggered(side: OrderSide, limit_price: Decimal, market_price: Decimal) -> bool:
    """Buy limits fill at or below the limit, sell limits at or above it."""
    if side == OrderSide.BUY:
        return market_price <= limit_price
    return market_price >= limit_price


def _row_to_order(row: sqlite3.Row) -> Order:
    return Order(
        id=row["id"],
        instrument_id=row["instrument_id"],
        side=OrderSide(row["side"]),
        order_type=OrderType(row["order_type"]),
        quantity=row["quantity"],
        status=OrderStatus(row["status"]),
        created_at=from_db_ts(row["created_at"]),
        updated_at=from_db_ts(row["updated_at"]),
        limit_price=from_db_decimal(row["limit_price"]),
        commission=Decimal(row["commission"]),
        transaction_tax=Decimal(row["transaction_tax"]),
        client_token=row["client_token"],
    )


def _row_to_trade(row: sqlite3.Row) -> Trade:
    return Trade(
        id=row["id"],
        order_id=row["order_id"],
        instrument_symbol=row["instrument_symbol"],
        side=OrderSide(row["side"]),
        quantity=row["quantity"],
        executed_price=Decimal(row["executed_price"]),
        total_amount=Decimal(row["total_amount"]),
        commission=Decimal(row["commission"]),
        transaction_tax=Decimal(row["transaction_tax"]),
        net_amount=Decimal(row["net_amount"]),
        executed_at=from_db_ts(row["executed_at"]),
    )


def _order_audit(order: Order) -> dict[str, Any]:
    return {
        "instrument_id": order.instrument_id,
        "side": order.side.value,
        "type": order.order_type.value,
        "quantity": order.quantity,
        "limit_price": order.limit_price,
        "status": order.status.value,
    }


def _trade_audit(trade: Trade) -> dict[str, Any]:
    return {
        "order_id": trade.order_id,
        "symbol": trade.instrument_symbol,
        "side": trade.side.value,
        "quantity": trade.quantity,
        "executed_price": trade.executed_price,
        "net_amount": trade.net_amount,
    }


class OrderEngine:
    """
    Create, fill, match and cancel orders for a single account.

    Collaborators: a price source (instrument lookup + latest price), a
    market-hours oracle, the portfolio ledger, and an optional audit sink.
    """

    def __init__(
        self,
        db: TradingDatabase,
        prices: PriceSource,
        market_hours: MarketHoursOracle,
        ledger: PortfolioLedger,
        *,
        audit: AuditSink | None = None,
        discount_rate: Number = DEFAULT_DISCOUNT_RATE,
        duplicate_window_seconds: float = DUPLICATE_WINDOW_SECONDS,
        max_trade_amount: Number | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._prices = prices
        self._market_hours = market_hours
        self._ledger = ledger
        self._audit = audit
        self._discount_rate = as_decimal(discount_rate)
        self._duplicate_window = timedelta(seconds=duplicate_window_seconds)
        limit = as_decimal(max_trade_amount) if max_trade_amount is not None else None
        self._max_trade_amount = limit if limit else None  # 0 disables the cap
        self._clock = clock

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_order(
        self,
        instrument_id: int,
        side: OrderSide | str,
        order_type: OrderType | str,
        quantity: int,
        limit_price: Number | None = None,
        *,
        client_token: str | None = None,
    ) -> Result[Order]:
        """Validate and persist an order; market orders fill at once while the market is open.

        With a client_token, a repeated token is the duplicate guard. Without
        one, the same instrument/side/type/quantity inside the duplicate
        window is rejected.
        """
        side = OrderSide(side)
        order_type = OrderType(order_type)

        if quantity <= 0:
            return self._reject(TradingError.INVALID_QUANTITY, instrument_id, quantity)

        instrument = self._prices.get(instrument_id)
        if instrument is None:
            return self._reject(TradingError.INVALID_STOCK, instrument_id, quantity)

        limit: Decimal | None = None
        if order_type == OrderType.LIMIT:
            if limit_price is None:
                return self._reject(TradingError.INVALID_LIMIT_PRICE, instrument_id, quantity)
            try:
                limit = as_decimal(limit_price)
            except ValueError:
                return self._reject(TradingError.INVALID_LIMIT_PRICE, instrument_id, quantity)
            if not limit.is_finite() or limit <= 0:
                return self._reject(TradingError.INVALID_LIMIT_PRICE, instrument_id, quantity)

        now = self._clock()
        trade: Trade | None = None
        with self._db.transaction() as tx:
            if side == OrderSide.SELL and quantity > self._ledger.held_quantity(instrument_id, tx):
                return self._reject(TradingError.INSUFFICIENT_HOLDINGS, instrument_id, quantity)

            if self._max_trade_amount is not None:
                reference = limit if limit is not None else self._prices.current_price(instrument_id)
                if reference * quantity > self._max_trade_amount:
                    return self._reject(TradingError.EXCEEDS_TRADE_LIMIT, instrument_id, quantity)

            if self._is_duplicate(tx, instrument_id, side, order_type, quantity, client_token, now):
                return self._reject(TradingError.DUPLICATE_ORDER, instrument_id, quantity)

            order = self._insert_order(tx, instrument_id, side, order_type, quantity, limit, client_token, now)

            if order_type == OrderType.MARKET and self._market_hours.is_open(now):
                price = self._prices.current_price(instrument_id)
                trade = self._execute_fill(tx, order, instrument.symbol, price)

        logger.info(
            "Order %d created: %s %s %d %s -> %s",
            order.id, order.side.value, order.order_type.value, order.quantity,
            instrument.symbol, order.status.value,
        )
        self._record("CreateOrder", "Order", order.id, None, _order_audit(order))
        if trade is not None:
            self._record("ExecuteTrade", "Trade", trade.id, None, _trade_audit(trade))
        return Result.success(order)

    def cancel_order(self, order_id: int) -> Result[Order]:
        """Cancel a pending order. Never touches the ledger."""
        with self._db.transaction() as tx:
            order = self._load_order(tx, order_id)
            if order is None:
                return Result.failure(TradingError.ORDER_NOT_FOUND)
            if order.status != OrderStatus.PENDING:
                return Result.failure(TradingError.ORDER_NOT_CANCELLABLE)
            now = self._clock()
            tx.execute(
                "UPDATE orders SET status = ?, updated_at = ? WHERE id = ?",
                (OrderStatus.CANCELLED.value, to_db_ts(now), order_id),
            )
            previous = order.status
            order.status = OrderStatus.CANCELLED
            order.updated_at = now

        logger.info("Order %d cancelled", order_id)
        self._record(
            "CancelOrder", "Order", order_id,
            {"status": previous.value}, {"status": order.status.value},
        )
        return Result.success(order)

    def match_limit(self, order: Order, market_price: Number) -> Result[bool]:
        """Would *order* fill at *market_price*?

        Only pending limit orders are eligible: anything not pending is
        OrderNotCancellable, a non-limit order is InvalidLimitPrice.
        """
        if order.status != OrderStatus.PENDING:
            return Result.failure(TradingError.ORDER_NOT_CANCELLABLE)
        if order.order_type != OrderType.LIMIT or order.limit_price is None:
            return Result.failure(TradingError.INVALID_LIMIT_PRICE)
        return Result.success(limit_triggered(order.side, order.limit_price, as_decimal(market_price)))

    def execute_match(self, order_id: int, price: Number) -> Result[Trade]:
        """Fill one pending order at *price* in its own transaction.

        Limit orders must trigger at *price* (InvalidLimitPrice otherwise);
        market orders fill unconditionally.
        """
        px = as_decimal(price)
        with self._db.transaction() as tx:
            order = self._load_order(tx, order_id)
            if order is None:
                return Result.failure(TradingError.ORDER_NOT_FOUND)
            if order.order_type == OrderType.LIMIT:
                matched = self.match_limit(order, px)
                if not matched.ok:
                    return Result.failure(matched.error)
                if not matched.value:
                    return Result.failure(TradingError.INVALID_LIMIT_PRICE)
            elif order.status != OrderStatus.PENDING:
                return Result.failure(TradingError.ORDER_NOT_CANCELLABLE)
            trade = self._execute_fill(tx, order, self._symbol(tx, order.instrument_id), px)

        self._record("ExecuteTrade", "Trade", trade.id, None, _trade_audit(trade))
        return Result.success(trade)

    def process_pending_orders(self, instrument_ids: Iterable[int] | None = None) -> SweepReport:
        """Try to fill every pending order (optionally only for some instruments).

        Does nothing while the market is closed. Each order is its own
        transaction; a failure is logged, reported, and the sweep moves on.
        """
        if not self._market_hours.is_open(self._clock()):
            logger.info("Market closed; pending-order sweep skipped")
            return SweepReport(market_open=False)

        report = SweepReport(market_open=True)
        for order_id in self._pending_order_ids(instrument_ids):
            try:
                trade = self._fill_pending(order_id)
            except Exception as exc:
                logger.exception("Fill failed for pending order %d", order_id)
                report.failed.append(SweepFailure(order_id=order_id, error=f"{type(exc).__name__}: {exc}"))
                continue
            if trade is None:
                report.skipped.append(order_id)
                continue
            report.executed.append(trade)
            self._record("ExecuteTrade", "Trade", trade.id, None, _trade_audit(trade))

        logger.info(
            "Sweep complete: %d executed, %d skipped, %d failed",
            len(report.executed), len(report.skipped), len(report.failed),
        )
        return report

    def on_price_updates(self, updates: Iterable[Any]) -> SweepReport:
        """Sweep only the instruments named in a batch of polled price updates."""
        ids = {u.instrument_id for u in updates}
        if not ids:
            return SweepReport(market_open=self._market_hours.is_open(self._clock()))
        return self.process_pending_orders(instrument_ids=ids)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: int) -> Order | None:
        """Order by id with its trades attached."""
        with self._db.read() as c:
            order = self._load_order(c, order_id)
            if order is None:
                return None
            rows = c.execute(
                "SELECT * FROM trades WHERE order_id = ? ORDER BY id ASC", (order_id,)
            ).fetchall()
        order.trades = [_row_to_trade(r) for r in rows]
        return order

    def get_orders(self, filter: OrderFilter | None = None) -> list[Order]:
        """Orders newest first; filter fields combine with AND."""
        f = filter or OrderFilter()
        q = "SELECT * FROM orders WHERE 1 = 1"
        params: list = []
        if f.status is not None:
            q += " AND status = ?"
            params.append(OrderStatus(f.status).value)
        if f.instrument_id is not None:
            q += " AND instrument_id = ?"
            params.append(f.instrument_id)
        if f.from_date is not None:
            q += " AND created_at >= ?"
            params.append(to_db_ts(f.from_date))
        if f.to_date is not None:
            q += " AND created_at <= ?"
            params.append(to_db_ts(f.to_date))
        q += " ORDER BY created_at DESC, id DESC"
        with self._db.read() as c:
            rows = c.execute(q, params).fetchall()
        return [_row_to_order(r) for r in rows]

    def get_trades(self, filter: TradeFilter | None = None) -> list[Trade]:
        """Trades newest first; filter fields combine with AND."""
        f = filter or TradeFilter()
        q = "SELECT * FROM trades WHERE 1 = 1"
        params: list = []
        if f.symbol:
            q += " AND instrument_symbol = ?"
            params.append(f.symbol.strip().upper())
        if f.from_date is not None:
            q += " AND executed_at >= ?"
            params.append(to_db_ts(f.from_date))
        if f.to_date is not None:
            q += " AND executed_at <= ?"
            params.append(to_db_ts(f.to_date))
        q += " ORDER BY executed_at DESC, id DESC"
        with self._db.read() as c:
            rows = c.execute(q, params).fetchall()
        return [_row_to_trade(r) for r in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reject(self, error: TradingError, instrument_id: int, quantity: int) -> Result[Any]:
        logger.info("Order rejected (%s): instrument=%s qty=%s", error.value, instrument_id, quantity)
        return Result.failure(error)

    def _is_duplicate(
        self,
        tx: sqlite3.Connection,
        instrument_id: int,
        side: OrderSide,
        order_type: OrderType,
        quantity: int,
        client_token: str | None,
        now: datetime,
    ) -> bool:
        if client_token is not None:
            row = tx.execute("SELECT 1 FROM orders WHERE client_token = ?", (client_token,)).fetchone()
            return row is not None
        if not self._duplicate_window:
            return False
        cutoff = to_db_ts(now - self._duplicate_window)
        row = tx.execute(
            """
            SELECT 1 FROM orders
            WHERE instrument_id = ? AND side = ? AND order_type = ? AND quantity = ?
              AND created_at >= ?
            LIMIT 1
            """,
            (instrument_id, side.value, order_type.value, quantity, cutoff),
        ).fetchone()
        return row is not None

    def _insert_order(
        self,
        tx: sqlite3.Connection,
        instrument_id: int,
        side: OrderSide,
        order_type: OrderType,
        quantity: int,
        limit_price: Decimal | None,
        client_token: str | None,
        now: datetime,
    ) -> Order:
        ts = to_db_ts(now)
        cur = tx.execute(
            """
            INSERT INTO orders (instrument_id, side, order_type, quantity, limit_price, status,
                                client_token, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                instrument_id,
                side.value,
                order_type.value,
                quantity,
                to_db_decimal(limit_price),
                OrderStatus.PENDING.value,
                client_token,
                ts,
                ts,
            ),
        )
        return Order(
            id=cur.lastrowid,
            instrument_id=instrument_id,
            side=side,
            order_type=order_type,
            quantity=quantity,
            status=OrderStatus.PENDING,
            created_at=from_db_ts(ts),
            updated_at=from_db_ts(ts),
            limit_price=limit_price,
            client_token=client_token,
        )

    def _execute_fill(self, tx: sqlite3.Connection, order: Order, symbol: str, price: Decimal) -> Trade:
        """Write the trade, mark the order executed and update the position, all on *tx*."""
        amount = price * order.quantity
        costs = total_cost(amount, order.side, self._discount_rate)
        if order.side == OrderSide.BUY:
            net = amount + costs.commission
        else:
            net = amount - costs.commission - costs.transaction_tax
        now = self._clock()
        ts = to_db_ts(now)

        updated = tx.execute(
            """
            UPDATE orders SET status = ?, commission = ?, transaction_tax = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                OrderStatus.EXECUTED.value,
                str(costs.commission),
                str(costs.transaction_tax),
                ts,
                order.id,
                OrderStatus.PENDING.value,
            ),
        )
        if updated.rowcount != 1:
            raise StaleOrderError(f"Order {order.id} is no longer pending")

        cur = tx.execute(
            """
            INSERT INTO trades (order_id, instrument_symbol, side, quantity, executed_price, total_amount,
                                commission, transaction_tax, net_amount, executed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.id,
                symbol,
                order.side.value,
                order.quantity,
                str(price),
                str(amount),
                str(costs.commission),
                str(costs.transaction_tax),
                str(net),
                ts,
            ),
        )
        self._ledger.apply_fill(tx, order.instrument_id, order.quantity, price, order.side, costs.commission)

        trade = Trade(
            id=cur.lastrowid,
            order_id=order.id,
            instrument_symbol=symbol,
            side=order.side,
            quantity=order.quantity,
            executed_price=price,
            total_amount=amount,
            commission=costs.commission,
            transaction_tax=costs.transaction_tax,
            net_amount=net,
            executed_at=from_db_ts(ts),
        )
        order.status = OrderStatus.EXECUTED
        order.commission = costs.commission
        order.transaction_tax = costs.transaction_tax
        order.updated_at = trade.executed_at
        order.trades.append(trade)
        logger.info(
            "Order %d executed: %s %d %s @ %s (commission %s, tax %s)",
            order.id, order.side.value, order.quantity, symbol, price,
            costs.commission, costs.transaction_tax,
        )
        return trade

    def _fill_pending(self, order_id: int) -> Trade | None:
        """One sweep item. Status is re-read under the write lock."""
        with self._db.transaction() as tx:
            order = self._load_order(tx, order_id)
            if order is None or order.status != OrderStatus.PENDING:
                return None
            price = self._prices.current_price(order.instrument_id)
            if order.order_type == OrderType.LIMIT:
                matched = self.match_limit(order, price)
                if not matched.ok or not matched.value:
                    return None
            return self._execute_fill(tx, order, self._symbol(tx, order.instrument_id), price)

    def _pending_order_ids(self, instrument_ids: Iterable[int] | None) -> list[int]:
        q = "SELECT id FROM orders WHERE status = ?"
        params: list = [OrderStatus.PENDING.value]
        if instrument_ids is not None:
            ids = sorted(set(instrument_ids))
            if not ids:
                return []
            q += f" AND instrument_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        q += " ORDER BY id ASC"
        with self._db.read() as c:
            return [r["id"] for r in c.execute(q, params).fetchall()]

    @staticmethod
    def _load_order(conn: sqlite3.Connection, order_id: int) -> Order | None:
        row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return _row_to_order(row) if row else None

    @staticmethod
    def _symbol(tx: sqlite3.Connection, instrument_id: int) -> str:
        row = tx.execute("SELECT symbol FROM instruments WHERE id = ?", (instrument_id,)).fetchone()
        if row is None:
            raise KeyError(f"Unknown instrument id {instrument_id}")
        return row["symbol"]

    def _record(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(action, entity_type, entity_id, before, after)
        except Exception:
            # The sink contract is never to raise; a misbehaving one must not
            # undo a committed business operation.
            logger.warning("Audit sink failed for %s %s %d", action, entity_type, entity_id, exc_info=True)
