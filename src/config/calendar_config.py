"""
Trading calendar loader: JSON file -> frozen MarketCalendar, validated against JSON Schema.

Default values:  docs/config/calendar.default.json
Schema:          docs/config/calendar.schema.json

Extra holidays: place a JSON file containing ``{"holidays": [...]}`` next to
the calendar and pass its path as ``extra_holidays_path``. Its dates are
appended to the base list before validation, so a new year's closures can be
added without editing the default calendar.

Usage:
    from config.calendar_config import load_calendar
    cal = load_calendar()                      # loads default
    cal = load_calendar("my_calendar.json")    # loads custom file
    cal.session_close  # -> datetime.time(13, 25)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, time
from pathlib import Path
from typing import Any

import jsonschema

logger = logging.getLogger("papertrade.config")


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml.

    Installed outside a source checkout there is no pyproject.toml; fall back
    to the current working directory.
    """
    candidate = Path(__file__).resolve().parent
    for _ in range(10):
        if (candidate / "pyproject.toml").exists():
            return candidate
        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent
    return Path.cwd()


_PROJECT_ROOT = _find_project_root()

DEFAULT_CALENDAR_PATH = _PROJECT_ROOT / "docs" / "config" / "calendar.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "calendar.schema.json"

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


@dataclass(frozen=True)
class MarketCalendar:
    timezone: str
    session_open: time
    session_close: time                  # inclusive: the close minute still trades
    weekend_days: frozenset[int]         # datetime.weekday() numbers
    holidays: frozenset[date]
    next_open_search_days: int = 30


class CalendarConfigError(Exception):
    """Raised when calendar loading or validation fails."""


def _read_json(path: Path, label: str) -> dict[str, Any]:
    if not path.exists():
        raise CalendarConfigError(f"{label} not found: {path}")
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise CalendarConfigError(f"{label} is not valid JSON: {exc}") from exc


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    schema = _read_json(schema_path, "Calendar schema file")
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise CalendarConfigError(f"Calendar validation failed: {exc.message}") from exc


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def _build_calendar(data: dict[str, Any]) -> MarketCalendar:
    session = data["session"]
    opens = _parse_hhmm(session["open"])
    closes = _parse_hhmm(session["close"])
    if closes <= opens:
        raise CalendarConfigError(f"Session close {closes} must be after open {opens}")

    holidays: set[date] = set()
    for entry in data.get("holidays", []):
        try:
            holidays.add(date.fromisoformat(entry))
        except ValueError as exc:
            raise CalendarConfigError(f"Invalid holiday date {entry!r}: {exc}") from exc

    return MarketCalendar(
        timezone=data["timezone"],
        session_open=opens,
        session_close=closes,
        weekend_days=frozenset(WEEKDAY_NAMES.index(d) for d in data.get("weekend", ["sat", "sun"])),
        holidays=frozenset(holidays),
        next_open_search_days=data.get("next_open_search_days", 30),
    )


def load_calendar(
    config_path: str | Path | None = None,
    schema_path: str | Path | None = None,
    extra_holidays_path: str | Path | None = None,
) -> MarketCalendar:
    """Load and validate the trading calendar.

    Parameters
    ----------
    config_path:
        Calendar JSON file. Defaults to ``docs/config/calendar.default.json``.
    schema_path:
        JSON Schema file. Defaults to ``docs/config/calendar.schema.json``.
    extra_holidays_path:
        Optional JSON file with a ``holidays`` list merged into the base list.

    Raises
    ------
    CalendarConfigError
        If a file is missing, unparseable, fails schema validation, or
        describes an empty session.
    """
    cfg_path = Path(config_path) if config_path else DEFAULT_CALENDAR_PATH
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH

    data = _read_json(cfg_path, "Calendar file")

    if extra_holidays_path:
        extra = _read_json(Path(extra_holidays_path), "Extra holidays file")
        data = {**data, "holidays": list(data.get("holidays", [])) + list(extra.get("holidays", []))}
        logger.info("Merged %d extra holiday(s) from %s", len(extra.get("holidays", [])), extra_holidays_path)

    _validate_schema(data, sch_path)
    return _build_calendar(data)
