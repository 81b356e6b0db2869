import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db, init_db
from date_filters import ParseError, format_date, local_now, parse_date_expression
from schemas import FilterSpec, RecordIn, WidgetIn, WidgetReorderIn
from services import (
    DashboardService,
    RecordService,
    SettingsService,
    TagService,
    WidgetService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")

PAGES = {"records", "dashboard"}


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("Finance tracker API started")


def _page_or_404(page: str) -> str:
    if page not in PAGES:
        raise HTTPException(status_code=404, detail=f"Unknown page: {page}")
    return page


def _serialize_record(record) -> dict[str, object]:
    return RecordService.to_view(record).model_dump(mode="json")


@app.get("/api/records")
def api_records(
    q: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
):
    spec = SettingsService(db).get_filter("records") or FilterSpec()
    if q is not None:
        spec = spec.model_copy(update={"search": q})
    page = max(page, 1)
    if limit is None:
        limit = get_settings().page_size
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit

    records = RecordService(db).list_filtered(spec)
    items = records[offset : offset + limit]
    return {
        "items": [r.model_dump(mode="json") for r in items],
        "total": len(records),
        "page": page,
        "limit": limit,
        "has_more": offset + limit < len(records),
        "active_filters": spec.active_count(),
    }


@app.post("/api/records", status_code=201)
def create_record(data: RecordIn, db: Session = Depends(get_db)):
    try:
        record = RecordService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_record(record)


@app.get("/api/records/{record_id}")
def get_record(record_id: int, db: Session = Depends(get_db)):
    try:
        record = RecordService(db).get(record_id, include_deleted=True)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_record(record)


@app.put("/api/records/{record_id}")
def update_record(record_id: int, data: RecordIn, db: Session = Depends(get_db)):
    try:
        record = RecordService(db).update(record_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_record(record)


@app.delete("/api/records/{record_id}")
def delete_record(record_id: int, db: Session = Depends(get_db)):
    try:
        hard = RecordService(db).remove(record_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": record_id, "deleted": "hard" if hard else "soft"}


@app.post("/api/records/{record_id}/restore")
def restore_record(record_id: int, db: Session = Depends(get_db)):
    try:
        record = RecordService(db).restore(record_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_record(record)


@app.get("/api/tags")
def api_tags(
    q: Optional[str] = None,
    exclude: Optional[str] = None,
    db: Session = Depends(get_db),
):
    service = TagService(db)
    if q:
        picked = [t for t in (exclude or "").split(",") if t.strip()]
        return {"items": service.suggest(q, picked)}
    return {"items": [tag.name for tag in service.list_all()]}


@app.get("/api/filters/{page}")
def get_filter(page: str, db: Session = Depends(get_db)):
    _page_or_404(page)
    spec = SettingsService(db).get_filter(page) or FilterSpec()
    return {"filter": spec.to_storage(), "active_filters": spec.active_count()}


@app.put("/api/filters/{page}")
def save_filter(page: str, spec: FilterSpec, db: Session = Depends(get_db)):
    _page_or_404(page)
    SettingsService(db).save_filter(page, spec)
    return {"filter": spec.to_storage(), "active_filters": spec.active_count()}


@app.get("/api/dashboard")
def api_dashboard(db: Session = Depends(get_db)):
    spec = SettingsService(db).get_filter("dashboard") or FilterSpec()
    now = local_now()
    service = DashboardService(db)
    summary = service.summary(spec, now=now)
    summary["widgets"] = service.widget_values(now=now)
    return summary


@app.post("/api/dashboard/preview")
def api_dashboard_preview(spec: FilterSpec, db: Session = Depends(get_db)):
    return DashboardService(db).summary(spec)


@app.get("/api/widgets")
def list_widgets(db: Session = Depends(get_db)):
    widgets = WidgetService(db).list_all()
    return {"items": [w.model_dump(mode="json") for w in widgets]}


@app.post("/api/widgets", status_code=201)
def add_widget(data: WidgetIn, db: Session = Depends(get_db)):
    widget = WidgetService(db).add(data)
    return widget.model_dump(mode="json")


@app.put("/api/widgets/{widget_id}")
def update_widget(widget_id: str, data: WidgetIn, db: Session = Depends(get_db)):
    try:
        widget = WidgetService(db).update(widget_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return widget.model_dump(mode="json")


@app.delete("/api/widgets/{widget_id}")
def delete_widget(widget_id: str, db: Session = Depends(get_db)):
    try:
        WidgetService(db).remove(widget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": widget_id, "deleted": True}


@app.post("/api/widgets/reorder")
def reorder_widgets(data: WidgetReorderIn, db: Session = Depends(get_db)):
    widgets = WidgetService(db).reorder(data.from_index, data.to_index)
    return {"items": [w.id for w in widgets]}


@app.get("/api/widgets/{widget_id}/value")
def widget_value(widget_id: str, db: Session = Depends(get_db)):
    service = WidgetService(db)
    try:
        widget = service.get(widget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": widget.id, "value": service.calculate_value(widget)}


@app.get("/api/date-expressions/parse")
def parse_expression(expr: str = ""):
    try:
        parsed = parse_date_expression(expr)
    except ParseError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "expr": expr,
        "date": format_date(parsed) or None,
        "datetime": parsed.isoformat() if parsed else None,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
