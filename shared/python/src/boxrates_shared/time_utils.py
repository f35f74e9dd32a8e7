"""
time_utils.py — Business-date helpers.

The upstream API and every scheduled run work in calendar days of the
business timezone (Europe/Moscow, UTC+3). Dates travel as ISO strings at
the API boundary and as datetime.date everywhere else.

Usage:
    from boxrates_shared.time_utils import business_today, parse_iso_date

    d = business_today()                  # date in Europe/Moscow
    d = parse_iso_date("2025-11-12")      # date(2025, 11, 12)
    parse_iso_date("2025-02-30")          # None
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

from boxrates_shared.constants import DEFAULT_TIMEZONE

_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def resolve_timezone(name: str | None = None) -> tzinfo:
    """
    Return a tzinfo for an IANA name, defaulting to the business timezone.

    Falls back to a fixed UTC+3 offset when the tz database is missing
    (slim containers without tzdata).
    """
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except ZoneInfoNotFoundError:
        return timezone(timedelta(hours=3), name="UTC+03:00")


def business_now(tz: tzinfo | None = None) -> datetime:
    return datetime.now(tz or resolve_timezone())


def business_today(tz: tzinfo | None = None) -> date:
    """Current calendar date in the business timezone."""
    return business_now(tz).date()


def parse_iso_date(raw: str | None) -> date | None:
    """
    Strictly parse a YYYY-MM-DD string.

    Returns None unless the string matches the pattern exactly and names a
    real calendar day.
    """
    if not isinstance(raw, str) or not _ISO_DATE_RE.fullmatch(raw):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def parse_loose_date(raw: object) -> date | None:
    """
    Parse the metadata dates the API returns ("2025-11-12",
    "2025-11-12T00:00:00Z", ...). Unparseable values yield None.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return dateutil_parser.isoparse(raw.strip()).date()
    except (ValueError, OverflowError):
        return None


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current = current + relativedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
