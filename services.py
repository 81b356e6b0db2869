from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from aggregation import group_by_interval, reduce_widget_value, summarize_totals
from date_filters import date_range_label, local_now
from filtering import (
    apply_filters,
    project_and_filter,
    resolve_spec_range,
    sort_records,
)
from models import Record, Setting, Tag
from schemas import (
    FilterSpec,
    Interval,
    RecordIn,
    RecordView,
    Recurrence,
    RecurrenceIn,
    Widget,
    WidgetIn,
)

logger = logging.getLogger(__name__)

WIDGETS_KEY = "dashboard_widgets"
FILTER_KEY_PREFIX = "filter_"


def get_current_user_id() -> int:
    return 1


class TagService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.user_id == self.user_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def get_or_create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == clean_name.lower()
        )
        existing = self.session.scalar(stmt)
        if existing:
            return existing

        tag = Tag(user_id=self.user_id, name=clean_name)
        self.session.add(tag)
        self.session.flush()
        return tag

    def suggest(self, query: str, exclude: Optional[list[str]] = None) -> list[str]:
        """Autocomplete: tag names containing ``query``, minus ones already picked."""
        needle = query.strip().lower()
        if not needle:
            return []
        taken = {t.lower() for t in exclude or []}
        return [
            tag.name
            for tag in self.list_all()
            if needle in tag.name.lower() and tag.name.lower() not in taken
        ]


class RecordService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    @staticmethod
    def to_view(record: Record) -> RecordView:
        recurring = None
        if record.recurring_enabled or record.recurring_interval_unit is not None:
            recurring = Recurrence(
                enabled=record.recurring_enabled,
                start_date=record.recurring_start_date,
                end_date=record.recurring_end_date,
                interval_value=record.recurring_interval_value,
                interval_unit=record.recurring_interval_unit,
            )
        return RecordView(
            id=record.id,
            type=record.type,
            amount=record.amount,
            date=record.date,
            description=record.description,
            tags=[tag.name for tag in record.tags],
            recurring=recurring,
            created_at=record.created_at,
            updated_at=record.updated_at,
            deleted_at=record.deleted_at,
        )

    def _rows(self, include_deleted: bool) -> list[Record]:
        stmt = (
            select(Record)
            .options(selectinload(Record.tags))
            .where(Record.user_id == self.user_id)
            .order_by(Record.date.desc(), Record.id.desc())
        )
        if not include_deleted:
            stmt = stmt.where(Record.deleted_at.is_(None))
        return self.session.scalars(stmt).all()

    def list_all(self, include_deleted: bool = False) -> list[RecordView]:
        return [self.to_view(r) for r in self._rows(include_deleted)]

    def get(self, record_id: int, *, include_deleted: bool = False) -> Record:
        stmt = (
            select(Record)
            .options(selectinload(Record.tags))
            .where(Record.user_id == self.user_id, Record.id == record_id)
        )
        if not include_deleted:
            stmt = stmt.where(Record.deleted_at.is_(None))
        record = self.session.scalar(stmt)
        if not record:
            raise ValueError("Record not found")
        return record

    def _apply_tags(self, record: Record, names: list[str]) -> None:
        tag_service = TagService(self.session, self.user_id)
        tags: list[Tag] = []
        tag_ids: set[int] = set()
        for name in names:
            if not name.strip():
                continue
            tag = tag_service.get_or_create(name)
            if tag.id not in tag_ids:
                tags.append(tag)
                tag_ids.add(tag.id)
        record.tags = tags

    @staticmethod
    def _apply_recurrence(record: Record, rule: Optional[RecurrenceIn]) -> None:
        if rule is None:
            record.recurring_enabled = False
            record.recurring_start_date = None
            record.recurring_end_date = None
            record.recurring_interval_value = None
            record.recurring_interval_unit = None
            return
        record.recurring_enabled = rule.enabled
        record.recurring_start_date = rule.start_date
        record.recurring_end_date = rule.end_date
        record.recurring_interval_value = rule.interval_value
        record.recurring_interval_unit = rule.interval_unit

    def create(self, data: RecordIn) -> Record:
        record = Record(
            user_id=self.user_id,
            type=data.type,
            amount=data.amount,
            date=data.date,
            description=data.description,
        )
        self._apply_recurrence(record, data.recurring)
        self._apply_tags(record, data.tags)
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(f"record_created: id={record.id} type={record.type.value}")
        return record

    def update(self, record_id: int, data: RecordIn) -> Record:
        record = self.get(record_id)
        record.type = data.type
        record.amount = data.amount
        record.date = data.date
        record.description = data.description
        self._apply_recurrence(record, data.recurring)
        self._apply_tags(record, data.tags)
        self.session.commit()
        self.session.refresh(record)
        return record

    def remove(self, record_id: int) -> bool:
        """Soft-delete a live record; hard-delete one already in the bin.

        Returns True when the row was removed for good.
        """
        record = self.get(record_id, include_deleted=True)
        if record.deleted_at is None:
            record.deleted_at = datetime.utcnow()
            self.session.commit()
            logger.info(f"record_deleted: id={record_id} mode=soft")
            return False
        record.tags = []
        self.session.delete(record)
        self.session.commit()
        logger.info(f"record_deleted: id={record_id} mode=hard")
        return True

    def restore(self, record_id: int) -> Record:
        record = self.get(record_id, include_deleted=True)
        if record.deleted_at is not None:
            record.deleted_at = None
            self.session.commit()
            self.session.refresh(record)
        return record

    def list_filtered(
        self, spec: FilterSpec, *, now: Optional[datetime] = None
    ) -> list[RecordView]:
        """Records page: stored rows only, no projected occurrences."""
        records = self.list_all(include_deleted=spec.include_deleted)
        kept = apply_filters(records, spec, now=now)
        return sort_records(kept, spec.sort_field, spec.sort_order)


class SettingsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _row(self, key: str) -> Optional[Setting]:
        stmt = select(Setting).where(
            Setting.user_id == self.user_id, Setting.key == key
        )
        return self.session.scalar(stmt)

    def get(self, key: str) -> Any:
        row = self._row(key)
        if row is None:
            return None
        try:
            return json.loads(row.value_json)
        except json.JSONDecodeError:
            logger.warning(f"settings: unreadable value for key={key}")
            return None

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        row = self._row(key)
        if row is None:
            self.session.add(
                Setting(user_id=self.user_id, key=key, value_json=payload)
            )
        else:
            row.value_json = payload
        self.session.commit()

    def get_filter(self, page: str) -> Optional[FilterSpec]:
        saved = self.get(FILTER_KEY_PREFIX + page)
        if not isinstance(saved, dict):
            return None
        try:
            return FilterSpec.model_validate(saved)
        except ValidationError as exc:
            logger.warning(f"settings: discarding saved filter page={page}: {exc}")
            return None

    def save_filter(self, page: str, spec: FilterSpec) -> FilterSpec:
        self.set(FILTER_KEY_PREFIX + page, spec.to_storage())
        return spec


class WidgetService:
    """Dashboard widgets: saved filters reduced to a single number.

    Widgets live as one ordered list in the settings store; list position is
    display order.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = SettingsService(session, self.user_id)

    def list_all(self) -> list[Widget]:
        widgets: list[Widget] = []
        for raw in self.settings.get(WIDGETS_KEY) or []:
            try:
                widgets.append(Widget.model_validate(raw))
            except ValidationError as exc:
                logger.warning(f"widgets: skipping unreadable widget: {exc}")
        return widgets

    def _save(self, widgets: list[Widget]) -> None:
        self.settings.set(
            WIDGETS_KEY,
            [
                {
                    "id": w.id,
                    "name": w.name,
                    "aggregation": w.aggregation.value,
                    "filter": w.filter.to_storage(),
                }
                for w in widgets
            ],
        )

    def get(self, widget_id: str) -> Widget:
        for widget in self.list_all():
            if widget.id == widget_id:
                return widget
        raise ValueError("Widget not found")

    def add(self, data: WidgetIn) -> Widget:
        widgets = self.list_all()
        widget = Widget(
            id=uuid.uuid4().hex,
            name=data.name,
            aggregation=data.aggregation,
            filter=data.filter,
        )
        widgets.append(widget)
        self._save(widgets)
        logger.info(f"widget_added: id={widget.id} name={widget.name!r}")
        return widget

    def update(self, widget_id: str, data: WidgetIn) -> Widget:
        widgets = self.list_all()
        for index, existing in enumerate(widgets):
            if existing.id == widget_id:
                widgets[index] = Widget(
                    id=widget_id,
                    name=data.name,
                    aggregation=data.aggregation,
                    filter=data.filter,
                )
                self._save(widgets)
                return widgets[index]
        raise ValueError("Widget not found")

    def remove(self, widget_id: str) -> None:
        widgets = self.list_all()
        remaining = [w for w in widgets if w.id != widget_id]
        if len(remaining) == len(widgets):
            raise ValueError("Widget not found")
        self._save(remaining)
        logger.info(f"widget_removed: id={widget_id}")

    def reorder(self, from_index: int, to_index: int) -> list[Widget]:
        widgets = self.list_all()
        size = len(widgets)
        if not (0 <= from_index < size and 0 <= to_index < size):
            return widgets
        moved = widgets.pop(from_index)
        widgets.insert(to_index, moved)
        self._save(widgets)
        return widgets

    def calculate_value(
        self, widget: Widget, *, now: Optional[datetime] = None
    ) -> Union[int, Decimal]:
        records = RecordService(self.session, self.user_id).list_all(
            include_deleted=False
        )
        matched = project_and_filter(records, widget.filter, now=now)
        return reduce_widget_value(matched, widget.aggregation)


class DashboardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def summary(
        self, spec: FilterSpec, *, now: Optional[datetime] = None
    ) -> dict[str, object]:
        now = now or local_now()
        interval = spec.interval or Interval.monthly
        records = RecordService(self.session, self.user_id).list_all()
        matched = project_and_filter(records, spec, now=now)
        totals = summarize_totals(matched)
        series = group_by_interval(matched, interval)
        window = resolve_spec_range(spec, now=now)
        return {
            "interval": interval.value,
            "range_label": date_range_label(window.start, window.end),
            "active_filters": spec.active_count(),
            "record_count": len(matched),
            "totals": {
                "credits": totals.credits,
                "debits": totals.debits,
                "net": totals.net,
            },
            "series": {
                "labels": series.labels,
                "credits": series.credits,
                "debits": series.debits,
                "nets": series.nets,
            },
        }

    def widget_values(
        self, *, now: Optional[datetime] = None
    ) -> list[dict[str, object]]:
        now = now or local_now()
        widgets = WidgetService(self.session, self.user_id)
        return [
            {
                "id": w.id,
                "name": w.name,
                "aggregation": w.aggregation.value,
                "value": widgets.calculate_value(w, now=now),
            }
            for w in widgets.list_all()
        ]
