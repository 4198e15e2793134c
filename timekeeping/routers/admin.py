from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from timekeeping.audit import list_audit_logs
from timekeeping.db import get_db
from timekeeping.schemas import (
    AdjustPaidLeaveRequest,
    AuditLogRead,
    DayClassificationRead,
    LeaveGrantCreateRequest,
    LeaveGrantRead,
    LeaveMonthlySummaryRead,
    MonthClassificationResponse,
    RecalculateRequest,
    SessionCloseRequest,
    SessionEditRequest,
    SessionEditResponse,
    WorkCalendarDayRead,
    WorkCalendarDayUpsertRequest,
    WorkCalendarGenerateRequest,
    WorkCalendarGenerateResponse,
)
from timekeeping.services.adjustments import (
    adjust_paid_leave,
    classify_user_month,
    close_session,
    edit_session,
    get_summary,
    grant_paid_leave,
    list_grants,
    recalculate,
)
from timekeeping.services.classification import DayClassification, DayStatus
from timekeeping.services.work_calendar import generate_year, list_calendar_days, upsert_calendar_day
from timekeeping.settings import get_settings

router = APIRouter(tags=["admin"])

_LATE_STATUSES = {
    DayStatus.LATE_MORNING,
    DayStatus.LATE_AFTERNOON,
    DayStatus.LATE_MORNING_ABSENT_AFTERNOON,
    DayStatus.LATE_MORNING_EARLY_LEAVE_AFTERNOON,
    DayStatus.ABSENT_MORNING_LATE_AFTERNOON,
    DayStatus.LATE_AFTERNOON_EARLY_LEAVE_AFTERNOON,
}


def _admin_id(x_admin_id: int | None = Header(default=None, alias="X-Admin-Id")) -> int:
    if x_admin_id is None:
        return get_settings().default_admin_id
    return x_admin_id


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _to_day_read(item: DayClassification) -> DayClassificationRead:
    return DayClassificationRead(**item.to_dict())


@router.get(
    "/api/admin/attendance/{user_id}/{year}/{month}/days",
    response_model=MonthClassificationResponse,
)
def list_month_classifications(
    user_id: int,
    year: int,
    month: int,
    db: Session = Depends(get_db),
) -> MonthClassificationResponse:
    days = classify_user_month(db, user_id=user_id, year=year, month=month)
    return MonthClassificationResponse(
        user_id=user_id,
        year=year,
        month=month,
        days=[_to_day_read(item) for item in days],
        late_days=sum(1 for item in days if item.status in _LATE_STATUSES),
        early_leave_days=sum(1 for item in days if item.early_leave_minutes > 0),
        absent_days=sum(1 for item in days if item.status == DayStatus.ABSENT),
    )


@router.get(
    "/api/admin/leave/summary/{user_id}/{year}/{month}",
    response_model=LeaveMonthlySummaryRead,
)
def read_summary(
    user_id: int,
    year: int,
    month: int,
    db: Session = Depends(get_db),
) -> LeaveMonthlySummaryRead:
    return get_summary(db, user_id=user_id, year=year, month=month)


@router.post(
    "/api/admin/leave/summary/{user_id}/{year}/{month}/recalculate",
    response_model=LeaveMonthlySummaryRead,
)
def recalculate_summary(
    user_id: int,
    year: int,
    month: int,
    request: Request,
    payload: RecalculateRequest | None = None,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> LeaveMonthlySummaryRead:
    return recalculate(
        db,
        user_id=user_id,
        year=year,
        month=month,
        admin_user_id=admin_id,
        reason=payload.reason if payload is not None else None,
        request_id=_request_id(request),
    )


@router.patch(
    "/api/admin/leave/summary/{user_id}/{year}/{month}",
    response_model=LeaveMonthlySummaryRead,
)
def adjust_summary_paid_leave(
    user_id: int,
    year: int,
    month: int,
    payload: AdjustPaidLeaveRequest,
    request: Request,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> LeaveMonthlySummaryRead:
    return adjust_paid_leave(
        db,
        user_id=user_id,
        year=year,
        month=month,
        new_paid_leave=payload.paid_leave,
        reason=payload.reason,
        admin_user_id=admin_id,
        request_id=_request_id(request),
    )


@router.patch(
    "/api/admin/attendance/sessions/{session_id}",
    response_model=SessionEditResponse,
)
def edit_attendance_session(
    session_id: int,
    payload: SessionEditRequest,
    request: Request,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> SessionEditResponse:
    classification = edit_session(
        db,
        session_id=session_id,
        check_in=payload.check_in,
        check_out=payload.check_out,
        reason=payload.reason,
        admin_user_id=admin_id,
        request_id=_request_id(request),
    )
    return SessionEditResponse(
        session_id=session_id,
        classification=_to_day_read(classification),
    )


@router.get(
    "/api/admin/audit-logs",
    response_model=list[AuditLogRead],
)
def read_audit_logs(
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    return list_audit_logs(db, entity_type=entity_type, entity_id=entity_id, limit=limit)


@router.post(
    "/api/admin/attendance/sessions/{session_id}/close",
    response_model=SessionEditResponse,
)
def close_attendance_session(
    session_id: int,
    payload: SessionCloseRequest,
    request: Request,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> SessionEditResponse:
    classification = close_session(
        db,
        session_id=session_id,
        check_out=payload.check_out,
        reason=payload.reason,
        admin_user_id=admin_id,
        request_id=_request_id(request),
    )
    return SessionEditResponse(
        session_id=session_id,
        classification=_to_day_read(classification),
    )


@router.post(
    "/api/admin/leave/grants",
    response_model=LeaveGrantRead,
    status_code=201,
)
def create_leave_grant(
    payload: LeaveGrantCreateRequest,
    request: Request,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> LeaveGrantRead:
    return grant_paid_leave(
        db,
        user_id=payload.user_id,
        year=payload.year,
        month=payload.month,
        units=payload.units,
        admin_user_id=admin_id,
        note=payload.note,
        request_id=_request_id(request),
    )


@router.get(
    "/api/admin/leave/grants",
    response_model=list[LeaveGrantRead],
)
def read_leave_grants(
    user_id: int = Query(),
    year: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[LeaveGrantRead]:
    return list_grants(db, user_id=user_id, year=year)


@router.get(
    "/api/admin/work-calendar",
    response_model=list[WorkCalendarDayRead],
)
def read_work_calendar(
    start: date = Query(),
    end: date = Query(),
    db: Session = Depends(get_db),
) -> list[WorkCalendarDayRead]:
    return list_calendar_days(db, start, end)


@router.post(
    "/api/admin/work-calendar/generate",
    response_model=WorkCalendarGenerateResponse,
)
def generate_work_calendar(
    payload: WorkCalendarGenerateRequest,
    request: Request,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> WorkCalendarGenerateResponse:
    created = generate_year(db, year=payload.year, admin_user_id=admin_id, request_id=_request_id(request))
    return WorkCalendarGenerateResponse(year=payload.year, created_days=created)


@router.put(
    "/api/admin/work-calendar/day",
    response_model=WorkCalendarDayRead,
)
def upsert_work_calendar_day(
    payload: WorkCalendarDayUpsertRequest,
    request: Request,
    admin_id: int = Depends(_admin_id),
    db: Session = Depends(get_db),
) -> WorkCalendarDayRead:
    return upsert_calendar_day(
        db,
        work_date=payload.work_date,
        is_working_day=payload.is_working_day,
        work_unit=payload.work_unit,
        admin_user_id=admin_id,
        note=payload.note,
        request_id=_request_id(request),
    )
