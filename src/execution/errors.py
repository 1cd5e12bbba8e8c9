"""
Business error taxonomy and the Result wrapper returned by the order engine.

Expected business outcomes (bad quantity, unknown instrument, duplicate
submission, ...) are returned as values so callers can branch on them.
Infrastructure failures are exceptions and propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class TradingError(str, Enum):
    """Expected rejection reasons for order operations."""

    INVALID_QUANTITY = "InvalidQuantity"
    INVALID_STOCK = "InvalidStock"
    INVALID_LIMIT_PRICE = "InvalidLimitPrice"
    INSUFFICIENT_HOLDINGS = "InsufficientHoldings"
    DUPLICATE_ORDER = "DuplicateOrder"
    ORDER_NOT_FOUND = "OrderNotFound"
    ORDER_NOT_CANCELLABLE = "OrderNotCancellable"
    EXCEEDS_TRADE_LIMIT = "ExceedsTradeLimit"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value (ok) or a TradingError."""

    value: T | None = None
    error: TradingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: TradingError) -> Result[T]:
        return cls(error=error)


class LedgerError(Exception):
    """Raised when a fill would break a position invariant (e.g. negative quantity)."""
