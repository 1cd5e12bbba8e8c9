"""
Configuration loaders.

App config:       reads config.yaml, resolves the webhook URL from the environment.
Trading calendar: reads calendar.default.json (or override), validates against JSON Schema.
"""

from config.calendar_config import CalendarConfigError, MarketCalendar, load_calendar
from config.loader import (
    AlertingConfig,
    AppConfig,
    AuditConfig,
    DatabaseConfig,
    MarketConfig,
    SchedulerConfig,
    TradingConfig,
    load_config,
)

__all__ = [
    # App config (YAML)
    "AlertingConfig",
    "AppConfig",
    "AuditConfig",
    "DatabaseConfig",
    "MarketConfig",
    "SchedulerConfig",
    "TradingConfig",
    "load_config",
    # Trading calendar (JSON + schema)
    "CalendarConfigError",
    "MarketCalendar",
    "load_calendar",
]
