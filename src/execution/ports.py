"""
Collaborator interfaces consumed by the order engine and ledger.

Concrete implementations: store.InstrumentStore (prices),
market.MarketHours (session oracle), journal.AuditJournal (audit sink).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol


class InstrumentInfo(Protocol):
    id: int
    symbol: str
    name: str
    current_price: Decimal


class PriceSource(Protocol):
    def get(self, instrument_id: int) -> InstrumentInfo | None:
        ...

    def current_price(self, instrument_id: int) -> Decimal:
        """Latest known price. Staleness is not the engine's concern."""
        ...


class MarketHoursOracle(Protocol):
    def is_open(self, ts: datetime | None = None) -> bool:
        """True if the market is open at *ts* (now when omitted)."""
        ...


class AuditSink(Protocol):
    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        """Best effort. Must never raise into the caller."""
        ...
