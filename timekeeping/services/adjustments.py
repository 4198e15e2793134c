"""Audited admin mutations: recalculate, adjust paid leave, edit/close sessions, grant leave.

Each mutation validates its input first, then runs under the per-summary lock
and commits the change together with its audit row. Editing a session does not
recalculate the owning month; callers batch their edits and then call
:func:`recalculate` explicitly.
"""

from __future__ import annotations

import logging
import math
from calendar import monthrange
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from timekeeping.audit import log_audit_event, record_audit
from timekeeping.errors import NotFoundError, ValidationError
from timekeeping.models import (
    AttendanceSession,
    AuditActionType,
    AuditLog,
    LeaveGrant,
    LeaveGrantStatus,
    LeaveMonthlySummary,
    SessionStatus,
    SummaryState,
    User,
    WorkCalendarDay,
)
from timekeeping.settings import get_attendance_timezone
from timekeeping.services.classification import (
    CalendarDaySnapshot,
    DayClassification,
    SessionSnapshot,
    classify_day,
    classify_month,
    compute_day_unit,
    compute_worked_minutes,
)
from timekeeping.services.leave_summary import (
    LeaveGrantSnapshot,
    MonthlyLeaveSummary,
    aggregate_month,
    empty_summary,
    is_birthday_month,
    with_paid_leave,
)
from timekeeping.services.locks import summary_lock
from timekeeping.services.time_of_day import combine_local, parse_hhmm, to_utc
from timekeeping.services.work_calendar import ensure_year, list_range

logger = logging.getLogger("timekeeping.adjustments")

SUMMARY_ENTITY = "leave_monthly_summary"
SESSION_ENTITY = "attendance_session"
GRANT_ENTITY = "leave_grant"


@dataclass(frozen=True)
class MonthInputs:
    user: User
    sessions: list[SessionSnapshot]
    calendar_days: list[CalendarDaySnapshot]
    leave_grants: list[LeaveGrantSnapshot]


def _require_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("reason is required", code="REASON_REQUIRED")
    return cleaned


def _validate_period(year: int, month: int) -> None:
    if month < 1 or month > 12:
        raise ValidationError("month must be between 1 and 12")
    if year < 1970 or year > 9999:
        raise ValidationError("year is out of range")


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def summary_entity_id(user_id: int, year: int, month: int) -> str:
    return f"{user_id}:{year:04d}-{month:02d}"


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def load_month_inputs(db: Session, *, user_id: int, year: int, month: int) -> MonthInputs:
    """Read an independent snapshot of everything one month's aggregation needs.

    The default calendar for ``year`` is generated on first use.
    """
    user = _get_user(db, user_id)
    ensure_year(db, year)
    start_date, end_date = _month_bounds(year, month)

    session_rows = db.scalars(
        select(AttendanceSession)
        .where(
            AttendanceSession.user_id == user_id,
            AttendanceSession.work_date >= start_date,
            AttendanceSession.work_date <= end_date,
        )
        .order_by(AttendanceSession.work_date.asc(), AttendanceSession.id.asc())
    ).all()
    grant_rows = db.scalars(
        select(LeaveGrant)
        .where(LeaveGrant.user_id == user_id, LeaveGrant.year == year, LeaveGrant.month == month)
        .order_by(LeaveGrant.id.asc())
    ).all()

    return MonthInputs(
        user=user,
        sessions=[_session_snapshot(row) for row in session_rows],
        calendar_days=list_range(db, start_date, end_date),
        leave_grants=[LeaveGrantSnapshot.from_model(row) for row in grant_rows],
    )


def _session_snapshot(row: AttendanceSession) -> SessionSnapshot:
    # SQLite hands back naive UTC; the classifier needs aware values to localize.
    snapshot = SessionSnapshot.from_model(row)
    return SessionSnapshot(
        work_date=snapshot.work_date,
        check_in_at=to_utc(row.check_in_at),
        check_out_at=to_utc(row.check_out_at),
        status=snapshot.status,
        user_id=snapshot.user_id,
        session_id=snapshot.session_id,
    )


def realtime_cutoff(year: int, month: int, today: date) -> date | None:
    if today.year == year and today.month == month:
        return today
    return None


def classify_user_month(
    db: Session,
    *,
    user_id: int,
    year: int,
    month: int,
    tz: tzinfo | None = None,
) -> list[DayClassification]:
    _validate_period(year, month)
    inputs = load_month_inputs(db, user_id=user_id, year=year, month=month)
    return classify_month(
        inputs.sessions,
        inputs.calendar_days,
        year=year,
        month=month,
        tz=tz or get_attendance_timezone(),
    )


def _summary_payload(row: LeaveMonthlySummary) -> dict[str, Any]:
    payload = MonthlyLeaveSummary.from_model(row).to_dict()
    payload["state"] = SummaryState(row.state).value
    return payload


def _session_payload(row: AttendanceSession) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "work_date": row.work_date.isoformat(),
        "check_in_at": to_utc(row.check_in_at).isoformat() if row.check_in_at else None,
        "check_out_at": to_utc(row.check_out_at).isoformat() if row.check_out_at else None,
        "status": SessionStatus(row.status).value,
        "worked_minutes": row.worked_minutes,
        "day_unit": float(row.day_unit),
    }


def _apply_summary(row: LeaveMonthlySummary, summary: MonthlyLeaveSummary) -> None:
    row.expected_units = float(summary.expected_units)
    row.worked_units = float(summary.worked_units)
    row.missing_units = float(summary.missing_units)
    row.paid_used_units = float(summary.paid_used_units)
    row.unpaid_units = float(summary.unpaid_units)
    row.is_birthday = summary.is_birthday
    row.updated_at = datetime.now(timezone.utc)


def compute_summary(
    db: Session,
    *,
    user_id: int,
    year: int,
    month: int,
    tz: tzinfo | None = None,
    today: date | None = None,
) -> MonthlyLeaveSummary:
    """Derive the month's summary from current source data without persisting it."""
    _validate_period(year, month)
    zone = tz or get_attendance_timezone()
    inputs = load_month_inputs(db, user_id=user_id, year=year, month=month)
    as_of = realtime_cutoff(year, month, today or datetime.now(zone).date())
    if not inputs.calendar_days and not inputs.sessions:
        logger.info(
            "summary_without_source_data",
            extra={"user_id": user_id, "year": year, "month": month},
        )
        return empty_summary(
            user_id,
            year,
            month,
            is_birthday=is_birthday_month(inputs.user.birthday, year, month),
        )
    return aggregate_month(
        user_id,
        year,
        month,
        inputs.sessions,
        inputs.calendar_days,
        inputs.leave_grants,
        paid_leave_balance=inputs.user.paid_leave_balance,
        birthday=inputs.user.birthday,
        tz=zone,
        as_of=as_of,
    )


def get_summary(db: Session, *, user_id: int, year: int, month: int) -> LeaveMonthlySummary:
    _validate_period(year, month)
    row = db.get(LeaveMonthlySummary, (user_id, year, month), populate_existing=True)
    if row is None:
        raise NotFoundError("Monthly leave summary not found")
    return row


def recalculate(
    db: Session,
    *,
    user_id: int,
    year: int,
    month: int,
    admin_user_id: int,
    reason: str | None = None,
    tz: tzinfo | None = None,
    today: date | None = None,
    request_id: str | None = None,
) -> LeaveMonthlySummary:
    """Re-derive and store the summary, discarding any manual paid-leave override."""
    _validate_period(year, month)
    _get_user(db, user_id)

    with summary_lock(user_id, year, month):
        computed = compute_summary(db, user_id=user_id, year=year, month=month, tz=tz, today=today)
        row = db.get(LeaveMonthlySummary, (user_id, year, month), populate_existing=True)
        before = _summary_payload(row) if row is not None else None
        if row is None:
            row = LeaveMonthlySummary(user_id=user_id, year=year, month=month)
            db.add(row)

        _apply_summary(row, computed)
        row.state = SummaryState.COMPUTED
        row.adjust_reason = None
        entry = record_audit(
            db,
            admin_user_id=admin_user_id,
            action_type=AuditActionType.RECALCULATE,
            entity_type=SUMMARY_ENTITY,
            entity_id=summary_entity_id(user_id, year, month),
            before=before,
            after=_summary_payload(row),
            reason=(reason or "").strip() or None,
        )
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(row)

    log_audit_event(entry, request_id=request_id)
    logger.info(
        "summary_recalculated",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "year": year,
            "month": month,
            "summary": computed.to_dict(),
        },
    )
    return row


def adjust_paid_leave(
    db: Session,
    *,
    user_id: int,
    year: int,
    month: int,
    new_paid_leave: float,
    reason: str | None,
    admin_user_id: int,
    request_id: str | None = None,
) -> LeaveMonthlySummary:
    cleaned_reason = _require_reason(reason)
    _validate_period(year, month)
    if new_paid_leave is None or not math.isfinite(float(new_paid_leave)) or float(new_paid_leave) < 0:
        raise ValidationError("paid leave must be a non-negative number")

    with summary_lock(user_id, year, month):
        row = get_summary(db, user_id=user_id, year=year, month=month)
        current = MonthlyLeaveSummary.from_model(row)
        adjusted = with_paid_leave(current, float(new_paid_leave))
        if adjusted.paid_used_units > current.missing_units:
            raise ValidationError(
                f"paid leave cannot exceed missing units ({current.missing_units})",
                code="PAID_LEAVE_EXCEEDS_MISSING",
            )

        before = _summary_payload(row)
        row.paid_used_units = float(adjusted.paid_used_units)
        row.unpaid_units = float(adjusted.unpaid_units)
        row.state = SummaryState.ADJUSTED
        row.adjust_reason = cleaned_reason
        row.updated_at = datetime.now(timezone.utc)
        entry = record_audit(
            db,
            admin_user_id=admin_user_id,
            action_type=AuditActionType.ADJUST,
            entity_type=SUMMARY_ENTITY,
            entity_id=summary_entity_id(user_id, year, month),
            before=before,
            after=_summary_payload(row),
            reason=cleaned_reason,
        )
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(row)

    log_audit_event(entry, request_id=request_id)
    logger.info(
        "paid_leave_adjusted",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "year": year,
            "month": month,
            "paid_used_units": float(adjusted.paid_used_units),
            "unpaid_units": float(adjusted.unpaid_units),
        },
    )
    return row


def _calendar_snapshot(db: Session, work_date: date) -> CalendarDaySnapshot | None:
    row = db.get(WorkCalendarDay, work_date)
    if row is None:
        return None
    return CalendarDaySnapshot.from_model(row)


def _derive_session_fields(row: AttendanceSession, tz: tzinfo) -> None:
    if row.check_in_at is not None and row.check_out_at is not None:
        row.status = SessionStatus.CLOSED
        row.worked_minutes = compute_worked_minutes(to_utc(row.check_in_at), to_utc(row.check_out_at), tz)
    elif row.check_in_at is not None:
        row.status = SessionStatus.OPEN
        row.worked_minutes = 0
    else:
        row.worked_minutes = 0
    row.day_unit = float(compute_day_unit(to_utc(row.check_in_at), to_utc(row.check_out_at), tz))


@contextmanager
def _locked_session_row(db: Session, session_id: int) -> Iterator[AttendanceSession]:
    """Yield the session row re-read under its month's summary lock.

    ``user_id`` and ``work_date`` never change, so the first read only picks the
    lock key; times and status come from the read taken inside the lock.
    """
    key_row = db.get(AttendanceSession, session_id)
    if key_row is None:
        raise NotFoundError("Attendance session not found")
    user_id, work_date = key_row.user_id, key_row.work_date

    with summary_lock(user_id, work_date.year, work_date.month):
        row = db.get(AttendanceSession, session_id, populate_existing=True)
        if row is None:
            raise NotFoundError("Attendance session not found")
        yield row


def _commit_session_change(
    db: Session,
    row: AttendanceSession,
    *,
    action_type: AuditActionType,
    before: dict[str, Any],
    reason: str,
    admin_user_id: int,
    tz: tzinfo,
) -> AuditLog:
    _derive_session_fields(row, tz)
    row.checkout_reason = reason
    entry = record_audit(
        db,
        admin_user_id=admin_user_id,
        action_type=action_type,
        entity_type=SESSION_ENTITY,
        entity_id=str(row.id),
        before=before,
        after=_session_payload(row),
        reason=reason,
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return entry


def edit_session(
    db: Session,
    *,
    session_id: int,
    check_in: str | None = None,
    check_out: str | None = None,
    reason: str | None,
    admin_user_id: int,
    tz: tzinfo | None = None,
    request_id: str | None = None,
) -> DayClassification:
    """Rewrite a session's times and return the day's new classification.

    Fields that are not given keep the value committed at the time the lock is
    taken. The month summary is left untouched; call :func:`recalculate` afterwards.
    """
    cleaned_reason = _require_reason(reason)
    if check_in is None and check_out is None:
        raise ValidationError("check_in or check_out must be provided")
    if check_in is not None:
        parse_hhmm(check_in)
    if check_out is not None:
        parse_hhmm(check_out)

    zone = tz or get_attendance_timezone()
    with _locked_session_row(db, session_id) as row:
        new_in = combine_local(row.work_date, check_in, zone) if check_in is not None else to_utc(row.check_in_at)
        new_out = combine_local(row.work_date, check_out, zone) if check_out is not None else to_utc(row.check_out_at)
        if new_out is not None and new_in is None:
            raise ValidationError("check_out requires a check_in")
        if new_in is not None and new_out is not None and new_out < new_in:
            raise ValidationError("Out time must be greater than or equal to in time")

        before = _session_payload(row)
        row.check_in_at = new_in
        row.check_out_at = new_out
        entry = _commit_session_change(
            db,
            row,
            action_type=AuditActionType.UPDATE,
            before=before,
            reason=cleaned_reason,
            admin_user_id=admin_user_id,
            tz=zone,
        )

    log_audit_event(entry, request_id=request_id)
    logger.info(
        "session_edited",
        extra={
            "request_id": request_id,
            "session_id": row.id,
            "user_id": row.user_id,
            "work_date": row.work_date.isoformat(),
            "recalculation_required": True,
        },
    )
    return classify_day(_session_snapshot(row), _calendar_snapshot(db, row.work_date), tz=zone)


def close_session(
    db: Session,
    *,
    session_id: int,
    check_out: str,
    reason: str | None,
    admin_user_id: int,
    tz: tzinfo | None = None,
    request_id: str | None = None,
) -> DayClassification:
    """Close an OPEN session on the admin's behalf (forgotten check-out)."""
    cleaned_reason = _require_reason(reason)
    parse_hhmm(check_out)

    zone = tz or get_attendance_timezone()
    with _locked_session_row(db, session_id) as row:
        if SessionStatus(row.status) != SessionStatus.OPEN or row.check_in_at is None:
            raise ValidationError("Only open sessions can be closed", code="SESSION_NOT_OPEN")
        new_out = combine_local(row.work_date, check_out, zone)
        if new_out is not None and new_out < to_utc(row.check_in_at):
            raise ValidationError("Out time must be greater than or equal to in time")

        before = _session_payload(row)
        row.check_out_at = new_out
        entry = _commit_session_change(
            db,
            row,
            action_type=AuditActionType.CLOSE,
            before=before,
            reason=cleaned_reason,
            admin_user_id=admin_user_id,
            tz=zone,
        )

    log_audit_event(entry, request_id=request_id)
    logger.info(
        "session_closed",
        extra={
            "request_id": request_id,
            "session_id": row.id,
            "user_id": row.user_id,
            "work_date": row.work_date.isoformat(),
            "recalculation_required": True,
        },
    )
    return classify_day(_session_snapshot(row), _calendar_snapshot(db, row.work_date), tz=zone)


def grant_paid_leave(
    db: Session,
    *,
    user_id: int,
    year: int,
    month: int,
    units: float,
    admin_user_id: int,
    note: str | None = None,
    request_id: str | None = None,
) -> LeaveGrant:
    """Record an approved paid-leave grant and credit the user's balance.

    The balance is incremented in SQL, so grants for different months of the
    same user cannot overwrite each other.
    """
    _validate_period(year, month)
    if units is None or not math.isfinite(float(units)) or float(units) <= 0:
        raise ValidationError("units must be a positive number")
    amount = float(units)

    with summary_lock(user_id, year, month):
        user = _get_user(db, user_id)
        grant = LeaveGrant(
            user_id=user_id,
            year=year,
            month=month,
            units=amount,
            status=LeaveGrantStatus.APPROVED,
            note=note,
        )
        db.add(grant)
        user.paid_leave_balance = User.paid_leave_balance + amount
        try:
            db.flush()
            db.refresh(user, ["paid_leave_balance"])
            balance_after = float(user.paid_leave_balance)
            entry = record_audit(
                db,
                admin_user_id=admin_user_id,
                action_type=AuditActionType.GRANT,
                entity_type=GRANT_ENTITY,
                entity_id=str(grant.id),
                before={"user_id": user_id, "paid_leave_balance": balance_after - amount},
                after={
                    "user_id": user_id,
                    "year": year,
                    "month": month,
                    "units": amount,
                    "paid_leave_balance": balance_after,
                },
                reason=note,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(grant)

    log_audit_event(entry, request_id=request_id)
    return grant


def list_grants(db: Session, *, user_id: int, year: int | None = None) -> list[LeaveGrant]:
    _get_user(db, user_id)
    stmt = select(LeaveGrant).where(LeaveGrant.user_id == user_id)
    if year is not None:
        stmt = stmt.where(LeaveGrant.year == year)
    return list(db.scalars(stmt.order_by(LeaveGrant.year.asc(), LeaveGrant.month.asc(), LeaveGrant.id.asc())).all())
