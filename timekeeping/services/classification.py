"""Per-day attendance classification.

Every caller that needs a day status (month calendar, dashboard counters,
exports, the monthly leave summary) goes through :func:`classify_day`, so
there is exactly one set of thresholds and one priority order.
"""

from __future__ import annotations

import enum
from calendar import monthrange
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from decimal import Decimal
from typing import Any

from timekeeping.models import AttendanceSession, SessionStatus, WorkCalendarDay
from timekeeping.services.time_of_day import hm, minutes_since_midnight

MORNING_LATE_BASE = hm(8, 30)
MORNING_LATE_FROM = hm(8, 31)
MORNING_ABSENT_AFTER = hm(9, 30)
NOON_EARLY_LEAVE_BEFORE = hm(12, 0)
LUNCH_END = hm(13, 30)
AFTERNOON_LATE_BASE = hm(13, 30)
AFTERNOON_LATE_AFTER = hm(13, 31)
AFTERNOON_ABSENT_BEFORE = hm(15, 30)
AFTERNOON_EARLY_LEAVE_BEFORE = hm(18, 0)

WORK_START_CALC = hm(8, 30)
WORK_END_CALC = hm(18, 0)
FULL_DAY_WORKED_MINUTES = 480

HALF_UNIT = Decimal("0.5")
FULL_UNIT = Decimal("1.0")
ZERO_UNIT = Decimal("0.0")


class DayStatus(str, enum.Enum):
    PRESENT = "present"
    WORKING = "working"
    LATE_MORNING = "lateMorning"
    ABSENT_MORNING = "absentMorning"
    EARLY_LEAVE_MORNING = "earlyLeaveMorning"
    LATE_AFTERNOON = "lateAfternoon"
    ABSENT_AFTERNOON = "absentAfternoon"
    EARLY_LEAVE_AFTERNOON = "earlyLeaveAfternoon"
    LATE_MORNING_EARLY_LEAVE_AFTERNOON = "lateMorning_earlyLeaveAfternoon"
    LATE_MORNING_ABSENT_AFTERNOON = "lateMorning_absentAfternoon"
    ABSENT_MORNING_LATE_AFTERNOON = "absentMorning_lateAfternoon"
    ABSENT_MORNING_EARLY_LEAVE_AFTERNOON = "absentMorning_earlyLeaveAfternoon"
    ABSENT_AFTERNOON_EARLY_LEAVE_MORNING = "absentAfternoon_earlyLeaveMorning"
    LATE_AFTERNOON_EARLY_LEAVE_AFTERNOON = "lateAfternoon_earlyLeaveAfternoon"
    MISSING = "missing"
    ABSENT = "absent"


NOT_WORKED_STATUSES = frozenset({DayStatus.MISSING, DayStatus.ABSENT})


class DayCredit(str, enum.Enum):
    FULL = "FULL"
    HALF = "HALF"
    NONE = "NONE"

    @property
    def units(self) -> Decimal:
        if self is DayCredit.FULL:
            return FULL_UNIT
        if self is DayCredit.HALF:
            return HALF_UNIT
        return ZERO_UNIT


@dataclass(frozen=True)
class SessionSnapshot:
    work_date: date
    check_in_at: datetime | str | None
    check_out_at: datetime | str | None
    status: SessionStatus
    user_id: int | None = None
    session_id: int | None = None

    @classmethod
    def from_model(cls, session: AttendanceSession) -> SessionSnapshot:
        return cls(
            work_date=session.work_date,
            check_in_at=session.check_in_at,
            check_out_at=session.check_out_at,
            status=SessionStatus(session.status),
            user_id=session.user_id,
            session_id=session.id,
        )


@dataclass(frozen=True)
class CalendarDaySnapshot:
    work_date: date
    is_working_day: bool
    work_unit: Decimal

    @property
    def effective_unit(self) -> Decimal:
        if not self.is_working_day or self.work_unit <= 0:
            return ZERO_UNIT
        return self.work_unit

    @classmethod
    def from_model(cls, day: WorkCalendarDay) -> CalendarDaySnapshot:
        return cls(
            work_date=day.work_date,
            is_working_day=bool(day.is_working_day),
            work_unit=to_units(day.work_unit),
        )


@dataclass(frozen=True)
class DayClassification:
    work_date: date
    status: DayStatus
    late_minutes: int
    early_leave_minutes: int
    day_credit: DayCredit

    @property
    def credit_units(self) -> Decimal:
        return self.day_credit.units

    @property
    def counts_as_worked(self) -> bool:
        return self.status not in NOT_WORKED_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_date": self.work_date.isoformat(),
            "status": self.status.value,
            "late_minutes": self.late_minutes,
            "early_leave_minutes": self.early_leave_minutes,
            "day_credit": self.day_credit.value,
            "credit_units": float(self.credit_units),
        }


@dataclass
class _HalfDayFlags:
    absent_morning: bool = False
    late_morning: bool = False
    early_leave_morning: bool = False
    absent_afternoon: bool = False
    late_afternoon: bool = False
    early_leave_afternoon: bool = False
    late_minutes: int = 0
    early_leave_minutes: int = 0


def to_units(value: object) -> Decimal:
    if value is None:
        return ZERO_UNIT
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def resolve_day_credit(work_unit: object) -> DayCredit:
    units = to_units(work_unit)
    if units >= FULL_UNIT:
        return DayCredit.FULL
    if units >= HALF_UNIT:
        return DayCredit.HALF
    return DayCredit.NONE


def _earned_unit_from_minutes(check_in: int | None, check_out: int | None) -> Decimal:
    if check_in is None:
        return ZERO_UNIT
    morning_ok = check_in <= MORNING_ABSENT_AFTER
    afternoon_ok = (
        check_out is not None
        and check_in <= AFTERNOON_ABSENT_BEFORE
        and check_out >= AFTERNOON_ABSENT_BEFORE
    )
    if morning_ok and afternoon_ok:
        return FULL_UNIT
    if morning_ok or afternoon_ok:
        return HALF_UNIT
    return ZERO_UNIT


def compute_day_unit(check_in: object, check_out: object, tz: tzinfo | None = None) -> Decimal:
    """Half-day model: morning half for check-in by 09:30, afternoon half for
    check-out at or after 15:30 when check-in was no later than 15:30."""
    return _earned_unit_from_minutes(
        minutes_since_midnight(check_in, tz),
        minutes_since_midnight(check_out, tz),
    )


def compute_worked_minutes(check_in: object, check_out: object, tz: tzinfo | None = None) -> int:
    ci = minutes_since_midnight(check_in, tz)
    co = minutes_since_midnight(check_out, tz)
    if ci is None or co is None or co < ci:
        return 0

    # one minute of grace on the morning start
    if ci <= WORK_START_CALC + 1 and co >= WORK_END_CALC:
        return FULL_DAY_WORKED_MINUTES

    start = max(ci, WORK_START_CALC)
    end = min(co, WORK_END_CALC)
    if end <= start:
        return 0

    lunch_overlap = max(0, min(end, LUNCH_END) - max(start, NOON_EARLY_LEAVE_BEFORE))
    return max(0, end - start - lunch_overlap)


def _derive_flags(check_in: int, check_out: int | None) -> _HalfDayFlags:
    flags = _HalfDayFlags()

    if check_in > MORNING_ABSENT_AFTER:
        flags.absent_morning = True
    elif check_in >= MORNING_LATE_FROM:
        flags.late_morning = True
        flags.late_minutes = check_in - MORNING_LATE_BASE

    if check_out is not None:
        if check_out < NOON_EARLY_LEAVE_BEFORE:
            flags.absent_afternoon = True
            flags.early_leave_morning = True
            flags.early_leave_minutes = NOON_EARLY_LEAVE_BEFORE - check_out
        elif check_out < AFTERNOON_ABSENT_BEFORE:
            flags.absent_afternoon = True
        elif check_out < AFTERNOON_EARLY_LEAVE_BEFORE:
            flags.early_leave_afternoon = True
            flags.early_leave_minutes = AFTERNOON_EARLY_LEAVE_BEFORE - check_out

    if flags.absent_morning and check_in > AFTERNOON_LATE_AFTER:
        if check_out is not None and check_out < AFTERNOON_ABSENT_BEFORE:
            flags.absent_afternoon = True
        else:
            flags.late_afternoon = True
            flags.late_morning = False
            flags.late_minutes = check_in - AFTERNOON_LATE_BASE

    return flags


def _compose_status(flags: _HalfDayFlags, *, fallback: DayStatus) -> DayStatus:
    f = flags
    if f.absent_morning and f.absent_afternoon:
        return DayStatus.ABSENT
    if f.absent_morning and f.late_afternoon:
        return DayStatus.ABSENT_MORNING_LATE_AFTERNOON
    if f.absent_morning and f.early_leave_afternoon:
        return DayStatus.ABSENT_MORNING_EARLY_LEAVE_AFTERNOON
    if f.absent_afternoon and f.late_morning:
        return DayStatus.LATE_MORNING_ABSENT_AFTERNOON
    if f.absent_afternoon and f.early_leave_morning:
        return DayStatus.ABSENT_AFTERNOON_EARLY_LEAVE_MORNING
    if f.late_morning and f.early_leave_afternoon:
        return DayStatus.LATE_MORNING_EARLY_LEAVE_AFTERNOON
    if f.late_afternoon and f.early_leave_afternoon:
        return DayStatus.LATE_AFTERNOON_EARLY_LEAVE_AFTERNOON
    if f.late_morning:
        return DayStatus.LATE_MORNING
    if f.absent_morning:
        return DayStatus.ABSENT_MORNING
    if f.absent_afternoon:
        return DayStatus.ABSENT_AFTERNOON
    if f.late_afternoon:
        return DayStatus.LATE_AFTERNOON
    if f.early_leave_morning:
        return DayStatus.EARLY_LEAVE_MORNING
    if f.early_leave_afternoon:
        return DayStatus.EARLY_LEAVE_AFTERNOON
    return fallback


def classify_day(
    session: SessionSnapshot | None,
    calendar_day: CalendarDaySnapshot | None,
    *,
    work_date: date | None = None,
    tz: tzinfo | None = None,
) -> DayClassification:
    """Classify one (session, calendar day) pair.

    ``session`` may be ``None`` for a day with no attendance row; ``calendar_day``
    may be ``None`` when the calendar has no entry for the date, which is read as
    a non-working day.
    """
    day = work_date
    if day is None:
        day = session.work_date if session is not None else calendar_day.work_date  # type: ignore[union-attr]

    calendar_unit = calendar_day.effective_unit if calendar_day is not None else ZERO_UNIT
    session_status = session.status if session is not None else SessionStatus.NOT_CHECKED_IN

    if session_status == SessionStatus.MISSING:
        return DayClassification(day, DayStatus.MISSING, 0, 0, DayCredit.NONE)

    check_in = minutes_since_midnight(session.check_in_at, tz) if session is not None else None
    check_out = minutes_since_midnight(session.check_out_at, tz) if session is not None else None

    if check_in is None:
        status = DayStatus.ABSENT if calendar_unit > 0 else DayStatus.MISSING
        return DayClassification(day, status, 0, 0, DayCredit.NONE)

    flags = _derive_flags(check_in, check_out)
    fallback = DayStatus.WORKING if check_out is None else DayStatus.PRESENT
    status = _compose_status(flags, fallback=fallback)

    early_leave_minutes = 0
    if session_status == SessionStatus.CLOSED and check_out is not None:
        early_leave_minutes = flags.early_leave_minutes

    if calendar_unit <= 0:
        return DayClassification(day, DayStatus.MISSING, flags.late_minutes, early_leave_minutes, DayCredit.NONE)

    earned = _earned_unit_from_minutes(check_in, check_out)
    credit = resolve_day_credit(min(earned, calendar_unit))
    return DayClassification(day, status, flags.late_minutes, early_leave_minutes, credit)


def month_dates(year: int, month: int) -> list[date]:
    first = date(year, month, 1)
    return [first + timedelta(days=offset) for offset in range(monthrange(year, month)[1])]


def classify_month(
    sessions: Iterable[SessionSnapshot],
    calendar_days: Iterable[CalendarDaySnapshot],
    *,
    year: int,
    month: int,
    tz: tzinfo | None = None,
    until: date | None = None,
) -> list[DayClassification]:
    sessions_by_date: dict[date, SessionSnapshot] = {}
    for item in sessions:
        sessions_by_date.setdefault(item.work_date, item)
    calendar_by_date = {item.work_date: item for item in calendar_days}

    result: list[DayClassification] = []
    for day in month_dates(year, month):
        if until is not None and day > until:
            break
        result.append(
            classify_day(
                sessions_by_date.get(day),
                calendar_by_date.get(day),
                work_date=day,
                tz=tz,
            )
        )
    return result
