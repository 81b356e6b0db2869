import re
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from date_filters import DateRange, format_date, in_range, local_now, resolve_range
from recurrence import expand_recurring
from schemas import AmountOp, FilterSpec, RecordView, SortOrder, TagMatchMode

_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_amount_value(value: Any) -> Decimal:
    """Read a saved amount bound the way the filter forms always have.

    Takes the leading number of the text and falls back to 0 for anything
    missing or unreadable, so an empty upper bound on ``between`` is 0.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, (int, float)):
        value = repr(value)
    match = _LEADING_NUMBER_RE.match(str(value).strip())
    if not match:
        return Decimal("0")
    try:
        parsed = Decimal(match.group(0))
    except InvalidOperation:
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def resolve_spec_range(
    spec: FilterSpec, *, now: Optional[datetime] = None
) -> DateRange:
    if spec.date_filter is not None:
        return resolve_range(spec.date_filter, now=now)
    # Filters saved before expressions existed only carry plain from/to dates.
    start = datetime.combine(spec.from_date, time.min) if spec.from_date else None
    end = datetime.combine(spec.to_date, time.min) if spec.to_date else None
    return DateRange(start, end)


def matches_tags(record_tags: Iterable[str], spec: FilterSpec) -> bool:
    if not spec.tags:
        return True
    have = {t.lower() for t in record_tags or []}
    wanted = [t.lower() for t in spec.tags]
    if spec.tag_match_mode == TagMatchMode.all:
        return all(t in have for t in wanted)
    return any(t in have for t in wanted)


def matches_amount(amount: Optional[Decimal], spec: FilterSpec) -> bool:
    op = spec.amount_op
    if op is None:
        return True
    a = amount or Decimal("0")
    bound = parse_amount_value(spec.amount_value)
    if op == AmountOp.eq and a != bound:
        return False
    if op == AmountOp.lt and a >= bound:
        return False
    if op == AmountOp.lte and a > bound:
        return False
    if op == AmountOp.gt and a <= bound:
        return False
    if op == AmountOp.gte and a < bound:
        return False
    if op == AmountOp.between:
        upper = parse_amount_value(spec.amount_value2)
        if a < bound or a > upper:
            return False
    return True


def matches_search(record: RecordView, search: Optional[str]) -> bool:
    needle = (search or "").strip().lower()
    if not needle:
        return True
    parts = [
        record.description or "",
        record.type.value if record.type else "",
        " ".join(record.tags),
    ]
    haystack = " ".join(parts).lower()
    return needle in haystack


def apply_filters(
    records: Iterable[RecordView],
    spec: FilterSpec,
    *,
    date_field: str = "date",
    now: Optional[datetime] = None,
) -> list[RecordView]:
    """Keep the records satisfying every predicate set on ``spec``.

    The date check always runs, so records without a value in
    ``date_field`` are dropped even when the range is fully open.
    """
    window = resolve_spec_range(spec, now=now)
    kept: list[RecordView] = []
    for record in records:
        if not in_range(getattr(record, date_field, None), window.start, window.end):
            continue
        if spec.type and record.type != spec.type:
            continue
        if not matches_tags(record.tags, spec):
            continue
        if not matches_amount(record.amount, spec):
            continue
        if not matches_search(record, spec.search):
            continue
        kept.append(record)
    return kept


def project_and_filter(
    records: Iterable[RecordView],
    spec: FilterSpec,
    *,
    now: Optional[datetime] = None,
) -> list[RecordView]:
    """Expand recurring records over the filter window, then filter them."""
    now = now or local_now()
    window = resolve_spec_range(spec, now=now)
    expanded = expand_recurring(
        records,
        format_date(window.start) or None,
        format_date(window.end) or None,
        today=now.date(),
    )
    return apply_filters(expanded, spec, now=now)


def _sort_key(record: RecordView, field: str) -> Any:
    rule = record.recurring
    if field == "amount":
        return record.amount or Decimal("0")
    if field == "description":
        return (record.description or "").lower()
    if field == "type":
        return record.type.value if record.type else ""
    if field == "startDate":
        return format_date(rule.start_date) if rule else ""
    if field == "endDate":
        return format_date(rule.end_date) if rule else ""
    if field == "createdAt":
        return record.created_at.isoformat() if record.created_at else ""
    if field == "modifiedAt":
        return record.updated_at.isoformat() if record.updated_at else ""
    return format_date(record.date)


def sort_records(
    records: Iterable[RecordView],
    field: str = "date",
    order: SortOrder = SortOrder.desc,
) -> list[RecordView]:
    return sorted(
        records,
        key=lambda r: _sort_key(r, field),
        reverse=order == SortOrder.desc,
    )
