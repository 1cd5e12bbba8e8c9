"""Order, Trade, Position and the portfolio read models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """PENDING -> EXECUTED | CANCELLED. Both targets are terminal."""

    PENDING = "pending"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


@dataclass
class Order:
    id: int
    instrument_id: int
    side: OrderSide
    order_type: OrderType
    quantity: int
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    limit_price: Decimal | None = None  # set iff order_type is LIMIT
    commission: Decimal = Decimal("0")
    transaction_tax: Decimal = Decimal("0")
    client_token: str | None = None
    trades: list[Trade] = field(default_factory=list)


@dataclass(frozen=True)
class Trade:
    id: int
    order_id: int
    instrument_symbol: str
    side: OrderSide
    quantity: int
    executed_price: Decimal
    total_amount: Decimal
    commission: Decimal
    transaction_tax: Decimal
    net_amount: Decimal
    executed_at: datetime


@dataclass(frozen=True)
class Position:
    instrument_id: int
    quantity: int
    average_cost: Decimal
    total_cost: Decimal
    realized_pnl: Decimal
    updated_at: datetime


@dataclass(frozen=True)
class PortfolioItem:
    """One open position marked to the latest known price."""

    instrument_id: int
    symbol: str
    name: str
    quantity: int
    average_cost: Decimal
    current_price: Decimal
    market_value: Decimal
    cost_basis: Decimal
    unrealized_pnl: Decimal
    return_rate: Decimal
    realized_pnl: Decimal


@dataclass(frozen=True)
class PortfolioSummary:
    total_market_value: Decimal
    total_cost: Decimal
    total_unrealized_pnl: Decimal
    total_realized_pnl: Decimal  # includes closed positions
    total_return_rate: Decimal


@dataclass(frozen=True)
class OrderFilter:
    status: OrderStatus | None = None
    instrument_id: int | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


@dataclass(frozen=True)
class TradeFilter:
    symbol: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
