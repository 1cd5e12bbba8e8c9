"""
Exchange session calendar: open/closed checks and next-open lookup.
"""

from market.hours import MarketHours

__all__ = ["MarketHours"]
