"""
Human-readable terminal output for orders, trades and the portfolio.

Every CLI command prints through these formatters; the audit journal
receives the same facts as JSON.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from execution.errors import TradingError

if TYPE_CHECKING:
    from execution.engine import SweepReport
    from execution.models import Order, PortfolioItem, PortfolioSummary, Trade
    from store.history import DailyBar, PriceStatistics
    from store.instruments import Instrument
    from store.watchlist import WatchlistEntry

ERROR_MESSAGES = {
    TradingError.INVALID_QUANTITY: "quantity must be a positive whole number of shares",
    TradingError.INVALID_STOCK: "unknown instrument",
    TradingError.INVALID_LIMIT_PRICE: "limit price missing, not positive, or not reached",
    TradingError.INSUFFICIENT_HOLDINGS: "not enough shares held to sell",
    TradingError.DUPLICATE_ORDER: "identical order submitted moments ago",
    TradingError.ORDER_NOT_FOUND: "order not found",
    TradingError.ORDER_NOT_CANCELLABLE: "order is no longer pending",
    TradingError.EXCEEDS_TRADE_LIMIT: "order notional exceeds the configured trade limit",
}


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


def _pct(rate: Decimal) -> str:
    return f"{rate * 100:+.2f}%"


def format_error(error: TradingError) -> str:
    return f"Rejected: {error.value} ({ERROR_MESSAGES.get(error, error.value)})"


def format_instruments(instruments: list[Instrument]) -> str:
    if not instruments:
        return "No instruments. Add one with 'papertrade instrument add'."
    lines = [f"{'ID':>4}  {'Symbol':<8} {'Price':>12}  Name"]
    for i in instruments:
        lines.append(f"{i.id:>4}  {i.symbol:<8} {_money(i.current_price):>12}  {i.name}")
    return "\n".join(lines)


def format_order(order: Order) -> str:
    """One-line order summary, plus its fill when executed."""
    price = f"limit {_money(order.limit_price)}" if order.limit_price is not None else "market"
    line = (
        f"#{order.id} {order.side.value.upper()} {order.quantity} "
        f"(instrument {order.instrument_id}) {price}  [{order.status.value}]  "
        f"{order.created_at.isoformat()}"
    )
    for t in order.trades:
        line += "\n" + "  " + format_trade(t)
    return line


def format_orders(orders: list[Order]) -> str:
    if not orders:
        return "No orders."
    return "\n".join(format_order(o) for o in orders)


def format_trade(trade: Trade) -> str:
    fees = f"commission {_money(trade.commission)}"
    if trade.transaction_tax:
        fees += f", tax {_money(trade.transaction_tax)}"
    return (
        f"Trade #{trade.id}: {trade.side.value.upper()} {trade.quantity} {trade.instrument_symbol} "
        f"@ {_money(trade.executed_price)} = {_money(trade.total_amount)} ({fees}) "
        f"net {_money(trade.net_amount)}  {trade.executed_at.isoformat()}"
    )


def format_trades(trades: list[Trade]) -> str:
    if not trades:
        return "No trades."
    return "\n".join(format_trade(t) for t in trades)


def format_portfolio(items: list[PortfolioItem], summary: PortfolioSummary) -> str:
    """Open positions marked to market, then account totals."""
    lines = ["=== Portfolio ==="]
    if not items:
        lines.append("No open positions.")
    for i in items:
        lines.append(
            f"{i.symbol:<8} {i.quantity:>8} sh  avg {_money(i.average_cost):>10}  "
            f"last {_money(i.current_price):>10}  value {_money(i.market_value):>14}  "
            f"P&L {_money(i.unrealized_pnl):>12} ({_pct(i.return_rate)})"
        )
    lines += [
        "",
        f"Market value : {_money(summary.total_market_value)}",
        f"Cost basis   : {_money(summary.total_cost)}",
        f"Unrealized   : {_money(summary.total_unrealized_pnl)} ({_pct(summary.total_return_rate)})",
        f"Realized     : {_money(summary.total_realized_pnl)}",
        "===",
    ]
    return "\n".join(lines)


def format_sweep_report(report: SweepReport) -> str:
    if not report.market_open:
        return "Market closed; pending orders left untouched."
    lines = [
        f"Sweep: {len(report.executed)} executed, {len(report.skipped)} waiting, {len(report.failed)} failed"
    ]
    for t in report.executed:
        lines.append("  " + format_trade(t))
    for f in report.failed:
        lines.append(f"  Order #{f.order_id} failed: {f.error}")
    return "\n".join(lines)


def format_history(symbol: str, bars: list[DailyBar], stats: PriceStatistics) -> str:
    """Daily bars newest first, then the range statistics for the same window."""
    if not bars:
        return f"No daily history for {symbol}."
    lines = [f"{'Date':<10} {'Open':>10} {'High':>10} {'Low':>10} {'Close':>10} {'Volume':>12}"]
    for b in bars:
        lines.append(
            f"{b.day.isoformat():<10} {_money(b.open):>10} {_money(b.high):>10} "
            f"{_money(b.low):>10} {_money(b.close):>10} {b.volume:>12,}"
        )
    lines += [
        "",
        f"{symbol} over {stats.days} day(s): high {_money(stats.highest)}, low {_money(stats.lowest)}, "
        f"avg close {_money(stats.average)}",
        f"Change: {stats.change:+,.2f} ({stats.change_percent:+.2f}%)",
    ]
    return "\n".join(lines)


def format_watchlist(entries: list[WatchlistEntry]) -> str:
    if not entries:
        return "Watchlist is empty."
    lines = []
    for e in entries:
        line = f"{e.symbol}  {e.name}"
        if e.notes:
            line += f"  - {e.notes}"
        lines.append(line)
    return "\n".join(lines)
