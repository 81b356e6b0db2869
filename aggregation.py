from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Union

from models import RecordType
from schemas import Aggregation, Interval, RecordView

UNKNOWN_BUCKET = "Unknown"


@dataclass
class IntervalSeries:
    labels: list[str] = field(default_factory=list)
    credits: list[Decimal] = field(default_factory=list)
    debits: list[Decimal] = field(default_factory=list)
    nets: list[Decimal] = field(default_factory=list)


@dataclass
class Totals:
    credits: Decimal
    debits: Decimal
    net: Decimal


def bucket_key(record: RecordView, interval: Interval) -> str:
    if record.date is None:
        return UNKNOWN_BUCKET
    iso = record.date.isoformat()
    if interval == Interval.daily:
        return iso
    if interval == Interval.monthly:
        return iso[:7]
    return iso[:4]


def group_by_interval(
    records: Iterable[RecordView], interval: Interval = Interval.monthly
) -> IntervalSeries:
    """Credit/debit sums per bucket with a running net.

    ``nets[i]`` is the cumulative balance up to and including bucket ``i``,
    not the net of that bucket alone. Labels are fixed-width so sorting them
    as text is chronological.
    """
    buckets: dict[str, list[Decimal]] = {}
    for record in records:
        key = bucket_key(record, interval)
        sums = buckets.setdefault(key, [Decimal("0"), Decimal("0")])
        if record.type == RecordType.credit:
            sums[0] += record.amount
        else:
            sums[1] += record.amount

    series = IntervalSeries()
    running = Decimal("0")
    for label in sorted(buckets):
        credit, debit = buckets[label]
        running += credit - debit
        series.labels.append(label)
        series.credits.append(credit)
        series.debits.append(debit)
        series.nets.append(running)
    return series


def summarize_totals(records: Iterable[RecordView]) -> Totals:
    credits = Decimal("0")
    debits = Decimal("0")
    for record in records:
        if record.type == RecordType.credit:
            credits += record.amount
        else:
            debits += record.amount
    return Totals(credits=credits, debits=debits, net=credits - debits)


def reduce_widget_value(
    records: Iterable[RecordView], aggregation: Union[Aggregation, str]
) -> Union[int, Decimal]:
    # Sums are signed: credits add, everything else subtracts.
    if aggregation == Aggregation.count:
        return sum(1 for _ in records)
    if aggregation == Aggregation.sum:
        total = Decimal("0")
        for record in records:
            sign = 1 if record.type == RecordType.credit else -1
            total += (record.amount or Decimal("0")) * sign
        return total
    return 0
