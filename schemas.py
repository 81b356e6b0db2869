import datetime as dt
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from models import IntervalUnit, RecordType


class AmountOp(str, Enum):
    eq = "eq"
    lt = "lt"
    lte = "lte"
    gt = "gt"
    gte = "gte"
    between = "between"


class TagMatchMode(str, Enum):
    any = "any"
    all = "all"


class Aggregation(str, Enum):
    sum = "sum"
    count = "count"


class Interval(str, Enum):
    daily = "daily"
    monthly = "monthly"
    yearly = "yearly"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class Recurrence(BaseModel):
    """Recurrence as the projection engine sees it.

    Deliberately unvalidated: rows written before input validation existed,
    or built in code, may carry a zero/negative interval and the expander
    has to cope with them.
    """

    enabled: bool = False
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    interval_value: Optional[int] = None
    interval_unit: Optional[IntervalUnit] = None


class RecurrenceIn(BaseModel):
    enabled: bool = True
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    interval_value: int = Field(default=1, gt=0)
    interval_unit: IntervalUnit = IntervalUnit.months

    @model_validator(mode="after")
    def _check_bounds(self) -> "RecurrenceIn":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Recurrence end date must not be before its start date")
        return self


class RecordIn(BaseModel):
    type: RecordType
    amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    recurring: Optional[RecurrenceIn] = None


class RecordView(BaseModel):
    """A record detached from the session.

    Projected occurrences are copies of a stored record with ``date``
    replaced and ``projected`` set; they are never written back.
    """

    id: Optional[int] = None
    type: RecordType
    amount: Decimal = Decimal("0")
    date: Optional[dt.date] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    recurring: Optional[Recurrence] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    projected: bool = False


class DateFilterConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: OptionalText = Field(default=None, alias="startDate")
    end_date: OptionalText = Field(default=None, alias="endDate")

    def is_set(self) -> bool:
        return bool(self.start_date or self.end_date)


class FilterSpec(BaseModel):
    """Compound record predicate plus the page state saved alongside it.

    Validates the persisted camelCase shape (``dateFilter``, ``amtOp``,
    ``amtVal``...) and dumps back to it with ``to_storage``. Empty strings,
    which unset form fields persist, read as absent.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_filter: Optional[DateFilterConfig] = Field(default=None, alias="dateFilter")
    type: Annotated[Optional[RecordType], BeforeValidator(_blank_to_none)] = None
    amount_op: Optional[AmountOp] = Field(
        default=None,
        alias="amtOp",
        validation_alias=AliasChoices("amtOp", "amountOp", "amount_op"),
    )
    amount_value: Optional[str] = Field(
        default=None,
        alias="amtVal",
        validation_alias=AliasChoices("amtVal", "amountValue", "amount_value"),
    )
    amount_value2: Optional[str] = Field(
        default=None,
        alias="amtVal2",
        validation_alias=AliasChoices("amtVal2", "amountValue2", "amount_value2"),
    )
    tags: list[str] = Field(default_factory=list)
    tag_match_mode: TagMatchMode = Field(
        default=TagMatchMode.any,
        alias="tagOp",
        validation_alias=AliasChoices("tagOp", "tagMatchMode", "tag_match_mode"),
    )
    search: OptionalText = None
    from_date: Annotated[Optional[dt.date], BeforeValidator(_blank_to_none)] = Field(
        default=None, alias="from"
    )
    to_date: Annotated[Optional[dt.date], BeforeValidator(_blank_to_none)] = Field(
        default=None, alias="to"
    )
    include_deleted: bool = Field(default=False, alias="includeDeleted")
    interval: Annotated[Optional[Interval], BeforeValidator(_blank_to_none)] = None
    sort_field: str = Field(default="date", alias="sortField")
    sort_order: SortOrder = Field(default=SortOrder.desc, alias="sortOrder")

    @field_validator("amount_op", mode="before")
    @classmethod
    def _known_op(cls, value: Any) -> Any:
        # Unknown operators never constrained anything; treat them as absent.
        if isinstance(value, str) and value in AmountOp._value2member_map_:
            return value
        return None

    @field_validator("amount_value", "amount_value2", mode="before")
    @classmethod
    def _amount_text(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        return _blank_to_none(value)

    @field_validator("tag_match_mode", mode="before")
    @classmethod
    def _tag_mode(cls, value: Any) -> Any:
        return TagMatchMode.all if value == "all" else TagMatchMode.any

    @field_validator("sort_field", mode="before")
    @classmethod
    def _sort_field(cls, value: Any) -> Any:
        return _blank_to_none(value) or "date"

    @field_validator("sort_order", mode="before")
    @classmethod
    def _sort_order(cls, value: Any) -> Any:
        return SortOrder.asc if value == "asc" else SortOrder.desc

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [t.strip() for t in value if isinstance(t, str) and t.strip()]

    def active_count(self) -> int:
        count = 0
        if self.date_filter and self.date_filter.is_set():
            count += 1
        if self.type:
            count += 1
        if self.tags:
            count += 1
        if self.amount_op:
            count += 1
        if self.include_deleted:
            count += 1
        if self.search and self.search.strip():
            count += 1
        return count

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WidgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    aggregation: Aggregation = Aggregation.sum
    filter: FilterSpec = Field(default_factory=FilterSpec)


class Widget(WidgetIn):
    id: str


class WidgetReorderIn(BaseModel):
    from_index: int
    to_index: int
