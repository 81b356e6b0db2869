from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import IntervalUnit, RecordType, Setting
from schemas import (
    Aggregation,
    FilterSpec,
    RecordIn,
    RecurrenceIn,
    WidgetIn,
)
from services import (
    WIDGETS_KEY,
    DashboardService,
    RecordService,
    SettingsService,
    TagService,
    WidgetService,
)

NOW = datetime(2024, 6, 15, 12, 0)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _salary(**overrides) -> RecordIn:
    data = dict(
        type=RecordType.credit,
        amount=Decimal("1000.00"),
        date=date(2024, 1, 1),
        description="Salary",
        tags=["Income"],
        recurring=RecurrenceIn(
            start_date=date(2024, 1, 1),
            interval_value=1,
            interval_unit=IntervalUnit.months,
        ),
    )
    data.update(overrides)
    return RecordIn(**data)


def _expense(amount: str, day: date, tags=None, description=None) -> RecordIn:
    return RecordIn(
        type=RecordType.debit,
        amount=Decimal(amount),
        date=day,
        description=description,
        tags=tags or [],
    )


def test_record_tags_deduplicated_case_insensitive() -> None:
    with make_session() as session:
        record = RecordService(session).create(
            _expense("12.99", date(2024, 1, 5), tags=["Dining", "dining", " DINING "])
        )
        assert [tag.name for tag in record.tags] == ["Dining"]
        assert [tag.name for tag in TagService(session).list_all()] == ["Dining"]


def test_record_view_carries_recurrence() -> None:
    with make_session() as session:
        record = RecordService(session).create(_salary())
        view = RecordService.to_view(record)
        assert view.amount == Decimal("1000.00")
        assert view.recurring.enabled is True
        assert view.recurring.interval_unit == IntervalUnit.months
        assert view.tags == ["Income"]
        assert view.projected is False


def test_plain_record_has_no_recurrence() -> None:
    with make_session() as session:
        record = RecordService(session).create(_expense("5", date(2024, 1, 1)))
        assert RecordService.to_view(record).recurring is None


def test_update_replaces_fields_and_clears_recurrence() -> None:
    with make_session() as session:
        service = RecordService(session)
        record = service.create(_salary())
        updated = service.update(
            record.id, _salary(amount=Decimal("1200"), recurring=None, tags=["Work"])
        )
        assert updated.amount == Decimal("1200")
        assert updated.recurring_enabled is False
        assert updated.recurring_interval_unit is None
        assert [tag.name for tag in updated.tags] == ["Work"]


def test_missing_record_raises() -> None:
    with make_session() as session:
        with pytest.raises(ValueError, match="Record not found"):
            RecordService(session).get(999)
        with pytest.raises(ValueError):
            RecordService(session).update(999, _salary())


def test_remove_soft_then_hard_and_restore() -> None:
    with make_session() as session:
        service = RecordService(session)
        record = service.create(_expense("20", date(2024, 2, 2)))

        assert service.remove(record.id) is False
        assert service.list_all() == []
        assert len(service.list_all(include_deleted=True)) == 1

        restored = service.restore(record.id)
        assert restored.deleted_at is None
        assert len(service.list_all()) == 1

        service.remove(record.id)
        assert service.remove(record.id) is True
        assert service.list_all(include_deleted=True) == []


def test_list_filtered_does_not_project() -> None:
    with make_session() as session:
        service = RecordService(session)
        service.create(_salary())
        service.create(_expense("30", date(2024, 3, 1), description="Books"))
        service.create(_expense("300", date(2024, 2, 1), description="Rent"))

        spec = FilterSpec(type="Debit", sortField="amount", sortOrder="asc")
        kept = service.list_filtered(spec, now=NOW)
        assert [r.description for r in kept] == ["Books", "Rent"]

        everything = service.list_filtered(FilterSpec(), now=NOW)
        assert len(everything) == 3
        assert not any(r.projected for r in everything)
        assert [r.date for r in everything] == [
            date(2024, 3, 1),
            date(2024, 2, 1),
            date(2024, 1, 1),
        ]


def test_list_filtered_include_deleted() -> None:
    with make_session() as session:
        service = RecordService(session)
        record = service.create(_expense("30", date(2024, 3, 1)))
        service.remove(record.id)
        assert service.list_filtered(FilterSpec(), now=NOW) == []
        spec = FilterSpec(includeDeleted=True)
        assert len(service.list_filtered(spec, now=NOW)) == 1


def test_tag_suggestions_skip_picked_tags() -> None:
    with make_session() as session:
        service = TagService(session)
        for name in ["Food", "Fast food", "Fuel", "Rent"]:
            service.get_or_create(name)
        session.commit()

        assert service.suggest("foo") == ["Fast food", "Food"]
        assert service.suggest("FOO", exclude=["food"]) == ["Fast food"]
        assert service.suggest("  ") == []
        with pytest.raises(ValueError):
            service.get_or_create("   ")


def test_saved_filter_round_trip_keeps_stored_shape() -> None:
    with make_session() as session:
        settings = SettingsService(session)
        spec = FilterSpec.model_validate(
            {
                "dateFilter": {"startDate": "30d ago", "endDate": ""},
                "type": "",
                "amtOp": "between",
                "amtVal": "10",
                "amtVal2": "",
                "tags": ["Food", " "],
                "tagOp": "all",
                "search": "",
            }
        )
        settings.save_filter("records", spec)

        stored = settings.get("filter_records")
        assert stored["dateFilter"] == {"startDate": "30d ago"}
        assert stored["amtOp"] == "between"
        assert stored["tagOp"] == "all"
        assert stored["tags"] == ["Food"]
        assert "type" not in stored and "amtVal2" not in stored

        loaded = settings.get_filter("records")
        assert loaded == spec
        assert loaded.active_count() == 3


def test_unreadable_saved_filter_is_discarded() -> None:
    with make_session() as session:
        settings = SettingsService(session)
        assert settings.get_filter("records") is None

        settings.set("filter_records", ["not", "a", "filter"])
        assert settings.get_filter("records") is None

        settings.set("filter_records", {"dateFilter": "yesterday"})
        assert settings.get_filter("records") is None

        session.add(Setting(user_id=1, key="broken", value_json="{nope"))
        session.commit()
        assert settings.get("broken") is None


def test_active_count() -> None:
    assert FilterSpec().active_count() == 0
    spec = FilterSpec(
        dateFilter={"startDate": "1y ago"},
        type="Credit",
        tags=["Food"],
        amtOp="gt",
        includeDeleted=True,
        search="x",
    )
    assert spec.active_count() == 6
    assert FilterSpec(dateFilter={"startDate": "", "endDate": ""}).active_count() == 0


def test_widget_crud_and_reorder() -> None:
    with make_session() as session:
        service = WidgetService(session)
        first = service.add(WidgetIn(name="Income"))
        second = service.add(WidgetIn(name="Spending", aggregation=Aggregation.count))
        third = service.add(WidgetIn(name="Food"))
        assert [w.id for w in service.list_all()] == [first.id, second.id, third.id]
        assert len({first.id, second.id, third.id}) == 3

        renamed = service.update(second.id, WidgetIn(name="Purchases"))
        assert renamed.id == second.id
        assert service.get(second.id).name == "Purchases"

        service.reorder(2, 0)
        assert [w.id for w in service.list_all()] == [third.id, first.id, second.id]

        unchanged = service.reorder(0, 7)
        assert [w.id for w in unchanged] == [third.id, first.id, second.id]

        service.remove(first.id)
        assert [w.id for w in service.list_all()] == [third.id, second.id]

        with pytest.raises(ValueError, match="Widget not found"):
            service.remove(first.id)
        with pytest.raises(ValueError):
            service.update(first.id, WidgetIn(name="Gone"))
        with pytest.raises(ValueError):
            service.get(first.id)


def test_widget_storage_uses_saved_filter_shape() -> None:
    with make_session() as session:
        service = WidgetService(session)
        service.add(
            WidgetIn(name="Food", filter=FilterSpec(tags=["Food"], tagOp="all"))
        )
        raw = SettingsService(session).get(WIDGETS_KEY)
        assert raw[0]["name"] == "Food"
        assert raw[0]["aggregation"] == "sum"
        assert raw[0]["filter"]["tagOp"] == "all"
        assert raw[0]["filter"]["tags"] == ["Food"]


def test_unreadable_widgets_are_skipped() -> None:
    with make_session() as session:
        SettingsService(session).set(
            WIDGETS_KEY,
            [{"id": "a", "name": "Ok"}, {"name": "no id"}],
        )
        widgets = WidgetService(session).list_all()
        assert [w.id for w in widgets] == ["a"]


def test_widget_value_includes_projected_occurrences() -> None:
    with make_session() as session:
        records = RecordService(session)
        records.create(_salary())
        records.create(_expense("250", date(2024, 2, 10), tags=["Food"]))
        deleted = records.create(_expense("999", date(2024, 2, 11)))
        records.remove(deleted.id)

        window = {"startDate": "2024-01-01", "endDate": "2024-03-31"}
        widgets = WidgetService(session)
        net = widgets.add(WidgetIn(name="Net", filter=FilterSpec(dateFilter=window)))
        count = widgets.add(
            WidgetIn(
                name="Entries",
                aggregation=Aggregation.count,
                filter=FilterSpec(dateFilter=window),
            )
        )
        food = widgets.add(
            WidgetIn(name="Food", filter=FilterSpec(dateFilter=window, tags=["food"]))
        )

        assert widgets.calculate_value(net, now=NOW) == Decimal("2750.00")
        assert widgets.calculate_value(count, now=NOW) == 4
        assert widgets.calculate_value(food, now=NOW) == Decimal("-250.00")


def test_dashboard_summary() -> None:
    with make_session() as session:
        records = RecordService(session)
        records.create(_salary())
        records.create(_expense("400", date(2024, 1, 20)))

        spec = FilterSpec(dateFilter={"startDate": "2024-01-01", "endDate": "2024-02-29"})
        summary = DashboardService(session).summary(spec, now=NOW)

        assert summary["interval"] == "monthly"
        assert summary["range_label"] == "2024-01-01 to 2024-02-29"
        assert summary["active_filters"] == 1
        assert summary["record_count"] == 3
        assert summary["totals"] == {
            "credits": Decimal("2000.00"),
            "debits": Decimal("400.00"),
            "net": Decimal("1600.00"),
        }
        assert summary["series"]["labels"] == ["2024-01", "2024-02"]
        assert summary["series"]["nets"] == [Decimal("600.00"), Decimal("1600.00")]


def test_dashboard_widget_values() -> None:
    with make_session() as session:
        RecordService(session).create(_expense("10", date(2024, 5, 1)))
        WidgetService(session).add(
            WidgetIn(name="All", aggregation=Aggregation.count)
        )
        values = DashboardService(session).widget_values(now=NOW)
        assert [(v["name"], v["value"]) for v in values] == [("All", 1)]
