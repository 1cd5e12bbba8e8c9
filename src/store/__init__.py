"""
Persistence: SQLite trading database, instrument registry, price updates,
daily price history and the watchlist.

execution depends on store for transactions; store depends on execution only
for Decimal coercion.
"""

from store.database import TradingDatabase
from store.history import DailyBar, PriceHistoryStore, PriceStatistics
from store.instruments import Instrument, InstrumentStore, PriceSubscription, PriceUpdate
from store.watchlist import Watchlist, WatchlistEntry

__all__ = [
    "DailyBar",
    "Instrument",
    "InstrumentStore",
    "PriceHistoryStore",
    "PriceStatistics",
    "PriceSubscription",
    "PriceUpdate",
    "TradingDatabase",
    "Watchlist",
    "WatchlistEntry",
]
