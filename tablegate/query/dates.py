"""
Pacific-time calendar bounds -> UTC instants.

Users think in Pacific calendar days; timestamps are stored in UTC.  A date
``YYYY-MM-DD`` used as a lower bound means 00:00 Pacific of that day; used
as an upper bound it means 00:00 Pacific of the *next* day, so the whole
last day is covered without a 23:59:59 truncation.  The offset comes from
the tz database, so -08:00 / -07:00 switches correctly across DST.
"""
from __future__ import annotations

import datetime
import re
from zoneinfo import ZoneInfo

from tablegate.core.errors import InvalidValue

PACIFIC = ZoneInfo("America/Los_Angeles")
UTC = datetime.timezone.utc

DATE_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
DATETIME_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})\s+(\d{2}):(\d{2}):(\d{2})")


def pacific_today() -> datetime.date:
    """Current calendar day in Pacific time."""
    return datetime.datetime.now(PACIFIC).date()


def _pacific_midnight_utc(day: datetime.date) -> datetime.datetime:
    return datetime.datetime(day.year, day.month, day.day, tzinfo=PACIFIC).astimezone(UTC)


def _to_date(year: str, month: str, day: str, raw: str) -> datetime.date:
    try:
        return datetime.date(int(year), int(month), int(day))
    except ValueError as exc:
        raise InvalidValue(f"Invalid date: {raw}") from exc


def is_date_like(value: object) -> bool:
    return isinstance(value, str) and (DATE_RE.fullmatch(value) is not None or DATETIME_RE.fullmatch(value) is not None)


def pacific_bound_to_utc(value: str, end_of_range: bool = False) -> datetime.datetime:
    """Convert a Pacific date or datetime string to an aware UTC datetime.

    ``YYYY-MM-DD``: start of that day, or start of the next day when
    *end_of_range* is set.

    ``YYYY-MM-DD HH:MM:SS``: ``00:00:00`` is a start-of-day bound,
    ``23:59:59`` is an exclusive next-day bound, any other time is taken
    as Pacific wall time.
    """
    m = DATE_RE.fullmatch(value)
    if m:
        day = _to_date(*m.groups(), raw=value)
        if end_of_range:
            day += datetime.timedelta(days=1)
        return _pacific_midnight_utc(day)

    m = DATETIME_RE.fullmatch(value)
    if m:
        year, month, dom, hour, minute, second = m.groups()
        day = _to_date(year, month, dom, raw=value)
        hms = (int(hour), int(minute), int(second))
        if hms == (0, 0, 0):
            return _pacific_midnight_utc(day)
        if hms == (23, 59, 59):
            return _pacific_midnight_utc(day + datetime.timedelta(days=1))
        try:
            local = datetime.datetime(day.year, day.month, day.day, *hms, tzinfo=PACIFIC)
        except ValueError as exc:
            raise InvalidValue(f"Invalid datetime: {value}") from exc
        return local.astimezone(UTC)

    raise InvalidValue(f"Not a date value: {value}")
