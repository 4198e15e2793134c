from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from timekeeping.audit import log_audit_event, record_audit
from timekeeping.errors import ValidationError
from timekeeping.models import AuditActionType, WorkCalendarDay
from timekeeping.services.classification import CalendarDaySnapshot

logger = logging.getLogger("timekeeping.work_calendar")

CALENDAR_ENTITY = "work_calendar"

_ALLOWED_WORK_UNITS = (0.0, 0.5, 1.0)


def default_calendar_day(day: date) -> WorkCalendarDay:
    is_working = day.weekday() < 5
    return WorkCalendarDay(
        work_date=day,
        is_working_day=is_working,
        work_unit=1.0 if is_working else 0.0,
    )


def _validate_year(year: int) -> None:
    if year < 1970 or year > 9999:
        raise ValidationError("year is out of range")


def ensure_year(db: Session, year: int) -> int:
    """Generate Mon-Fri working days for ``year`` unless the year already has rows."""
    _validate_year(year)
    start = date(year, 1, 1)
    end = date(year + 1, 1, 1)
    existing = db.scalar(
        select(func.count())
        .select_from(WorkCalendarDay)
        .where(WorkCalendarDay.work_date >= start, WorkCalendarDay.work_date < end)
    )
    if existing:
        return 0

    created = 0
    cursor = start
    while cursor < end:
        db.add(default_calendar_day(cursor))
        created += 1
        cursor += timedelta(days=1)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("work_calendar_year_generated", extra={"year": year, "days": created})
    return created


def generate_year(db: Session, *, year: int, admin_user_id: int, request_id: str | None = None) -> int:
    created = ensure_year(db, year)
    if created:
        entry = record_audit(
            db,
            admin_user_id=admin_user_id,
            action_type=AuditActionType.GENERATE,
            entity_type=CALENDAR_ENTITY,
            entity_id=str(year),
            after={"year": year, "days": created},
        )
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        log_audit_event(entry, request_id=request_id)
    return created


def list_range(db: Session, start_date: date, end_date: date) -> list[CalendarDaySnapshot]:
    rows = db.scalars(
        select(WorkCalendarDay)
        .where(WorkCalendarDay.work_date >= start_date, WorkCalendarDay.work_date <= end_date)
        .order_by(WorkCalendarDay.work_date.asc())
    ).all()
    return [CalendarDaySnapshot.from_model(row) for row in rows]


def list_calendar_days(db: Session, start_date: date, end_date: date) -> list[WorkCalendarDay]:
    if end_date < start_date:
        raise ValidationError("end must not be before start")
    if (end_date - start_date).days > 366:
        raise ValidationError("range must not exceed one year")
    return list(
        db.scalars(
            select(WorkCalendarDay)
            .where(WorkCalendarDay.work_date >= start_date, WorkCalendarDay.work_date <= end_date)
            .order_by(WorkCalendarDay.work_date.asc())
        ).all()
    )


def _day_payload(row: WorkCalendarDay) -> dict[str, object]:
    return {
        "work_date": row.work_date.isoformat(),
        "is_working_day": bool(row.is_working_day),
        "work_unit": float(row.work_unit),
        "note": row.note,
    }


def upsert_calendar_day(
    db: Session,
    *,
    work_date: date,
    is_working_day: bool,
    work_unit: float,
    admin_user_id: int,
    note: str | None = None,
    request_id: str | None = None,
) -> WorkCalendarDay:
    """Override one calendar day. Stored summaries are not recalculated."""
    if work_unit not in _ALLOWED_WORK_UNITS:
        raise ValidationError("work_unit must be one of 0, 0.5, 1.0")
    if not is_working_day:
        work_unit = 0.0

    # Fill the rest of the year first; a lone override would stop generation.
    ensure_year(db, work_date.year)

    row = db.get(WorkCalendarDay, work_date)
    before = _day_payload(row) if row is not None else None
    if row is None:
        row = WorkCalendarDay(work_date=work_date)
        db.add(row)
    row.is_working_day = is_working_day
    row.work_unit = work_unit
    row.note = note
    entry = record_audit(
        db,
        admin_user_id=admin_user_id,
        action_type=AuditActionType.UPDATE,
        entity_type=CALENDAR_ENTITY,
        entity_id=work_date.isoformat(),
        before=before,
        after=_day_payload(row),
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)

    log_audit_event(entry, request_id=request_id)
    logger.info(
        "work_calendar_day_updated",
        extra={
            "request_id": request_id,
            "work_date": work_date.isoformat(),
            "work_unit": float(row.work_unit),
            "recalculation_required": True,
        },
    )
    return row
