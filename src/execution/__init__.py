"""
Paper trading core: cost calculator, order engine, portfolio ledger.
Single account, simulated fills, Decimal money throughout.
"""

from execution.costs import TradingCost, PnLEstimate, commission, estimate_pnl, total_cost, transaction_tax
from execution.errors import LedgerError, Result, TradingError
from execution.models import (
    Order,
    OrderFilter,
    OrderSide,
    OrderStatus,
    OrderType,
    PortfolioItem,
    PortfolioSummary,
    Position,
    Trade,
    TradeFilter,
)
from execution.ledger import PortfolioLedger
from execution.engine import OrderEngine, SweepFailure, SweepReport

__all__ = [
    "LedgerError",
    "Order",
    "OrderEngine",
    "OrderFilter",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "PnLEstimate",
    "PortfolioItem",
    "PortfolioLedger",
    "PortfolioSummary",
    "Position",
    "Result",
    "SweepFailure",
    "SweepReport",
    "Trade",
    "TradeFilter",
    "TradingCost",
    "TradingError",
    "commission",
    "estimate_pnl",
    "total_cost",
    "transaction_tax",
]
