from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class RecordType(str, Enum):
    credit = "Credit"
    debit = "Debit"


class IntervalUnit(str, Enum):
    days = "Days"
    months = "Months"
    years = "Years"


RECORD_TYPE_ENUM = SAEnum(
    RecordType,
    name="recordtype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

INTERVAL_UNIT_ENUM = SAEnum(
    IntervalUnit,
    name="intervalunit",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    records: Mapped[list["Record"]] = relationship(
        "Record", secondary="record_tags", back_populates="tags"
    )


record_tags = Table(
    "record_tags",
    Base.metadata,
    Column("record_id", Integer, ForeignKey("records.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class Record(Base, TimestampMixin):
    """A stored financial transaction.

    The recurrence rule is embedded in the row (``recurring_*`` columns); it
    has no identity of its own and is only meaningful while
    ``recurring_enabled`` is set.
    """

    __tablename__ = "records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[RecordType] = mapped_column(RECORD_TYPE_ENUM, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    date: Mapped[Optional[date]] = mapped_column(Date)
    description: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    recurring_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    recurring_start_date: Mapped[Optional[date]] = mapped_column(Date)
    recurring_end_date: Mapped[Optional[date]] = mapped_column(Date)
    recurring_interval_value: Mapped[Optional[int]] = mapped_column(Integer)
    recurring_interval_unit: Mapped[Optional[IntervalUnit]] = mapped_column(
        INTERVAL_UNIT_ENUM
    )

    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary="record_tags", back_populates="records"
    )

    __table_args__ = (
        Index("ix_records_user_date", "user_id", "date"),
        Index("ix_records_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount >= 0", name="ck_records_amount_positive"),
    )


class Setting(Base, TimestampMixin):
    """Key/value store for saved page filters and dashboard widgets."""

    __tablename__ = "settings"
    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_setting_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    key: Mapped[str] = mapped_column(String(120), nullable=False)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
