"""Date expressions for filters: absolute dates, relative offsets and "now".

Accepted forms (case-insensitive, surrounding whitespace ignored)::

    now
    2024-02-16        2024/02/16
    30d  30 days ago  2w from now  3 months  1y ago

Relative offsets default to ``ago``. Month and year offsets keep the day of
month and let it overflow into the following month, so 2023-01-31 plus one
month is 2023-03-03 and 2024-02-29 plus one year is 2025-03-01.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, TypeVar, Union
from zoneinfo import ZoneInfo

from config import get_settings
from schemas import DateFilterConfig

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]
_D = TypeVar("_D", date, datetime)

_ABSOLUTE_RE = re.compile(r"^(\d{4})[-/](\d{2})[-/](\d{2})$", re.ASCII)
_RELATIVE_RE = re.compile(
    r"^(\d+)\s*(d|day|w|week|m|month|y|year)s?\s*(ago|from\s+now)?$",
    re.ASCII,
)
_UNIT_ALIASES = {
    "d": "d",
    "day": "d",
    "w": "w",
    "week": "w",
    "m": "m",
    "month": "m",
    "y": "y",
    "year": "y",
}


class ParseError(ValueError):
    pass


@dataclass(frozen=True)
class DateRange:
    start: Optional[datetime]
    end: Optional[datetime]


def local_now() -> datetime:
    """Wall-clock time in the configured timezone, without tzinfo."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def shift_months(value: _D, months: int) -> _D:
    """Move ``value`` by whole months, rolling overflowing days forward."""
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    first = value.replace(year=year, month=month, day=1)
    return first + timedelta(days=value.day - 1)


def parse_date_expression(
    expr: Optional[str], *, now: Optional[datetime] = None
) -> Optional[datetime]:
    if expr is None or not expr.strip():
        return None

    text = expr.strip().lower()
    if text == "now":
        return now or local_now()

    absolute = _ABSOLUTE_RE.match(text)
    if absolute:
        year, month, day = (int(part) for part in absolute.groups())
        try:
            return datetime(year, month, day)
        except ValueError as exc:
            raise ParseError(f'Invalid date filter format: "{expr}"') from exc

    relative = _RELATIVE_RE.match(text)
    if not relative:
        raise ParseError(f'Invalid date filter format: "{expr}"')

    unit = _UNIT_ALIASES[relative.group(2)]
    direction = relative.group(3) or "ago"
    sign = -1 if direction == "ago" else 1
    base = now or local_now()

    try:
        amount = int(relative.group(1))
        if unit == "d":
            return base + timedelta(days=amount * sign)
        if unit == "w":
            return base + timedelta(weeks=amount * sign)
        if unit == "m":
            return shift_months(base, amount * sign)
        return shift_months(base, 12 * amount * sign)
    except (OverflowError, ValueError) as exc:
        raise ParseError(f'Date offset out of range: "{expr}"') from exc


def resolve_range(
    config: Optional[DateFilterConfig], *, now: Optional[datetime] = None
) -> DateRange:
    """Resolve a ``DateFilterConfig`` into concrete bounds.

    Both sides are parsed against the same ``now``. A side that fails to
    parse is logged and left open instead of failing the whole range.
    """
    if config is None:
        return DateRange(None, None)
    now = now or local_now()

    bounds: dict[str, Optional[datetime]] = {}
    for side in ("start_date", "end_date"):
        expr = getattr(config, side, None)
        try:
            bounds[side] = parse_date_expression(expr, now=now)
        except ParseError as exc:
            logger.warning(f"date_filter: ignoring {side}={expr!r}: {exc}")
            bounds[side] = None
    return DateRange(bounds["start_date"], bounds["end_date"])


def _as_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def in_range(
    value: Optional[DateLike],
    start: Optional[DateLike],
    end: Optional[DateLike],
) -> bool:
    """Inclusive day-granularity range check.

    ``start`` counts from its midnight and ``end`` through its last
    millisecond, so only the calendar day of each bound matters. A missing
    or unreadable ``value`` never matches, even with both bounds open.
    """
    day = _as_date(value)
    if day is None:
        return False
    start_day = _as_date(start)
    if start_day is not None and day < start_day:
        return False
    end_day = _as_date(end)
    if end_day is not None and day > end_day:
        return False
    return True


def filter_by_date_range(
    records: Iterable,
    field: str,
    start: Optional[DateLike],
    end: Optional[DateLike],
) -> list:
    if records is None:
        return []
    records = list(records)
    if start is None and end is None:
        return records
    return [r for r in records if in_range(getattr(r, field, None), start, end)]


def format_date(value: Optional[DateLike]) -> str:
    day = _as_date(value)
    return day.isoformat() if day else ""


def date_range_label(start: Optional[DateLike], end: Optional[DateLike]) -> str:
    start_text = format_date(start)
    end_text = format_date(end)
    if start_text and end_text:
        return f"{start_text} to {end_text}"
    if start_text:
        return f"From {start_text}"
    if end_text:
        return f"Until {end_text}"
    return ""
