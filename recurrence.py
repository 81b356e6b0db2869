import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from date_filters import local_now, shift_months
from models import IntervalUnit
from schemas import RecordView

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 1000
DEFAULT_RANGE_START = date(1970, 1, 1)


def default_range_end(today: Optional[date] = None) -> date:
    """Projections stop at the end of next year unless told otherwise."""
    today = today or local_now().date()
    return date(today.year + 1, 12, 31)


def advance_occurrence(
    current: date, interval_value: int, interval_unit: Optional[IntervalUnit]
) -> date:
    if interval_unit == IntervalUnit.days:
        return current + timedelta(days=interval_value)
    if interval_unit == IntervalUnit.months:
        return shift_months(current, interval_value)
    if interval_unit == IntervalUnit.years:
        return shift_months(current, 12 * interval_value)
    # Unknown units stand still; the iteration cap ends the walk.
    return current


def _as_day(value: Union[date, datetime, str, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _occurrence_dates(
    record: RecordView, range_start: date, range_end: date
) -> list[date]:
    rule = record.recurring
    start = rule.start_date or record.date
    if start is None:
        return []
    stop = min(rule.end_date, range_end) if rule.end_date else range_end
    step = rule.interval_value if rule.interval_value is not None else 1
    unit = rule.interval_unit or IntervalUnit.months

    dates: list[date] = []
    current = start
    iterations = 0
    while current <= stop and iterations < MAX_ITERATIONS:
        if range_start <= current <= range_end:
            dates.append(current)
        try:
            current = advance_occurrence(current, step, unit)
        except (OverflowError, ValueError):
            logger.warning(
                f"recurrence: record={record.id} stepped outside the calendar "
                f"after {iterations + 1} iterations"
            )
            break
        iterations += 1

    if iterations >= MAX_ITERATIONS:
        logger.warning(
            f"recurrence: record={record.id} hit the {MAX_ITERATIONS} iteration cap "
            f"(interval={step} {unit.value})"
        )
    return dates


def expand_recurring(
    records: Iterable[RecordView],
    from_date: Union[date, datetime, str, None] = None,
    to_date: Union[date, datetime, str, None] = None,
    *,
    today: Optional[date] = None,
) -> list[RecordView]:
    """Replace each enabled recurring record by its occurrences in range.

    Non-recurring records pass through untouched. Occurrences are shallow
    copies of the source record carrying their own ``date`` and
    ``projected=True``; the source is never modified. ``from_date`` and
    ``to_date`` accept ``date`` or ``datetime`` objects or ``YYYY-MM-DD``
    strings; only the calendar day counts.
    """
    range_start = _as_day(from_date) or DEFAULT_RANGE_START
    range_end = _as_day(to_date) or default_range_end(today)

    expanded: list[RecordView] = []
    for record in records:
        if not record.recurring or not record.recurring.enabled:
            expanded.append(record)
            continue
        for occurrence in _occurrence_dates(record, range_start, range_end):
            expanded.append(
                record.model_copy(update={"date": occurrence, "projected": True})
            )
    return expanded
