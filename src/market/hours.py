"""
Market-hours oracle backed by a MarketCalendar.

Default calendar: Asia/Taipei, 09:00 to 13:25 local time with the close
minute inclusive (13:25:00 is open, 13:25:01 is not). Weekends and listed
holidays are closed. Naive datetimes are taken as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from config.calendar_config import MarketCalendar
from store.database import utc, utc_now


class MarketHours:
    """Answers "is the market open" and "when does it next open" for one calendar."""

    def __init__(self, calendar: MarketCalendar, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._calendar = calendar
        self._tz = ZoneInfo(calendar.timezone)
        self._clock = clock

    @property
    def calendar(self) -> MarketCalendar:
        return self._calendar

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def local(self, ts: datetime | None = None) -> datetime:
        """*ts* (default: now) converted to the exchange time zone."""
        return utc(ts or self._clock()).astimezone(self._tz)

    def is_holiday(self, day: date) -> bool:
        return day in self._calendar.holidays

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() not in self._calendar.weekend_days and not self.is_holiday(day)

    def is_open(self, ts: datetime | None = None) -> bool:
        now = self.local(ts)
        if not self.is_trading_day(now.date()):
            return False
        time_of_day = now.time().replace(tzinfo=None)
        return self._calendar.session_open <= time_of_day <= self._calendar.session_close

    def next_open(self, ts: datetime | None = None) -> datetime | None:
        """Next session open (UTC) strictly after *ts*.

        Same-day open is returned when *ts* is before it on a trading day.
        Otherwise following days are searched, up to the calendar's
        ``next_open_search_days``; None if nothing is found in that range.
        """
        now = self.local(ts)
        today_open = self._session_open_on(now.date())
        if now < today_open and self.is_trading_day(now.date()):
            return today_open.astimezone(timezone.utc)

        for offset in range(1, self._calendar.next_open_search_days + 1):
            day = now.date() + timedelta(days=offset)
            if self.is_trading_day(day):
                return self._session_open_on(day).astimezone(timezone.utc)
        return None

    def _session_open_on(self, day: date) -> datetime:
        return datetime.combine(day, self._calendar.session_open, tzinfo=self._tz)
