"""
Trading cost calculator: commission, transaction tax, P&L estimate.

Pure functions, no I/O. All arithmetic is Decimal so fees reconcile exactly.

    commission   = amount * 0.001425 * discount_rate, floored at 20
    tax          = amount * 0.003 (sell side only)
    unrealized   = market_value - cost_basis - (sell commission + sell tax)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Union

from execution.models import OrderSide

COMMISSION_RATE = Decimal("0.001425")
MINIMUM_COMMISSION = Decimal("20")
TRANSACTION_TAX_RATE = Decimal("0.003")
DEFAULT_DISCOUNT_RATE = Decimal("0.6")

Number = Union[Decimal, int, str, float]


@dataclass(frozen=True)
class TradingCost:
    commission: Decimal
    transaction_tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class PnLEstimate:
    market_value: Decimal
    cost_basis: Decimal
    unrealized_pnl: Decimal
    return_rate: Decimal


def as_decimal(value: Number) -> Decimal:
    """Coerce *value* to Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def commission(amount: Number, discount_rate: Number = DEFAULT_DISCOUNT_RATE) -> Decimal:
    """Broker commission with the minimum fee applied.

    The discount rate is taken as given; values outside (0, 1] are not rejected.
    """
    fee = as_decimal(amount) * COMMISSION_RATE * as_decimal(discount_rate)
    return MINIMUM_COMMISSION if fee < MINIMUM_COMMISSION else fee


def transaction_tax(amount: Number) -> Decimal:
    """Securities transaction tax. Only sells are taxed; callers must not use it for buys."""
    return as_decimal(amount) * TRANSACTION_TAX_RATE


def total_cost(amount: Number, side: OrderSide, discount_rate: Number = DEFAULT_DISCOUNT_RATE) -> TradingCost:
    fee = commission(amount, discount_rate)
    tax = transaction_tax(amount) if side == OrderSide.SELL else Decimal("0")
    return TradingCost(commission=fee, transaction_tax=tax, total=fee + tax)


def estimate_pnl(
    current_price: Number,
    quantity: int,
    average_cost: Number,
    discount_rate: Number = DEFAULT_DISCOUNT_RATE,
) -> PnLEstimate:
    """Mark a holding to market, net of what it would cost to sell it now.

    return_rate is a fraction (0.05 == 5%) and is 0 when there is no cost basis.
    """
    market_value = as_decimal(current_price) * quantity
    cost_basis = as_decimal(average_cost) * quantity
    sell_cost = total_cost(market_value, OrderSide.SELL, discount_rate).total
    unrealized = market_value - cost_basis - sell_cost
    return_rate = unrealized / cost_basis if cost_basis != 0 else Decimal("0")
    return PnLEstimate(
        market_value=market_value,
        cost_basis=cost_basis,
        unrealized_pnl=unrealized,
        return_rate=return_rate,
    )
