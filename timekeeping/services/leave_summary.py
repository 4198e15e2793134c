from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from timekeeping.errors import InconsistentDataError
from timekeeping.models import LeaveGrant, LeaveGrantStatus, LeaveMonthlySummary
from timekeeping.services.classification import (
    ZERO_UNIT,
    CalendarDaySnapshot,
    DayClassification,
    SessionSnapshot,
    classify_month,
    month_dates,
    to_units,
)

logger = logging.getLogger("timekeeping.leave_summary")

UNIT_PRECISION = Decimal("0.1")
BIRTHDAY_LEAVE_UNITS = Decimal("1.0")


def round_units(value: Decimal) -> Decimal:
    return value.quantize(UNIT_PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LeaveGrantSnapshot:
    year: int
    month: int
    units: Decimal
    status: LeaveGrantStatus

    @classmethod
    def from_model(cls, grant: LeaveGrant) -> LeaveGrantSnapshot:
        return cls(
            year=grant.year,
            month=grant.month,
            units=to_units(grant.units),
            status=LeaveGrantStatus(grant.status),
        )


@dataclass(frozen=True)
class MonthlyLeaveSummary:
    user_id: int
    year: int
    month: int
    expected_units: Decimal
    worked_units: Decimal
    missing_units: Decimal
    paid_used_units: Decimal
    unpaid_units: Decimal
    is_birthday: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "year": self.year,
            "month": self.month,
            "expected_units": float(self.expected_units),
            "worked_units": float(self.worked_units),
            "missing_units": float(self.missing_units),
            "paid_used_units": float(self.paid_used_units),
            "unpaid_units": float(self.unpaid_units),
            "is_birthday": self.is_birthday,
        }

    @classmethod
    def from_model(cls, row: LeaveMonthlySummary) -> MonthlyLeaveSummary:
        return cls(
            user_id=row.user_id,
            year=row.year,
            month=row.month,
            expected_units=round_units(to_units(row.expected_units)),
            worked_units=round_units(to_units(row.worked_units)),
            missing_units=round_units(to_units(row.missing_units)),
            paid_used_units=round_units(to_units(row.paid_used_units)),
            unpaid_units=round_units(to_units(row.unpaid_units)),
            is_birthday=bool(row.is_birthday),
        )


def empty_summary(user_id: int, year: int, month: int, *, is_birthday: bool = False) -> MonthlyLeaveSummary:
    return MonthlyLeaveSummary(
        user_id=user_id,
        year=year,
        month=month,
        expected_units=round_units(ZERO_UNIT),
        worked_units=round_units(ZERO_UNIT),
        missing_units=round_units(ZERO_UNIT),
        paid_used_units=round_units(ZERO_UNIT),
        unpaid_units=round_units(ZERO_UNIT),
        is_birthday=is_birthday,
    )


def is_birthday_month(birthday: date | None, year: int, month: int) -> bool:
    # Matches every year from the birth year onwards; see DESIGN.md open questions.
    if birthday is None:
        return False
    return birthday.month == month and birthday.year <= year


def granted_units_for_month(grants: Iterable[LeaveGrantSnapshot], year: int, month: int) -> Decimal:
    total = ZERO_UNIT
    for grant in grants:
        if grant.status != LeaveGrantStatus.APPROVED:
            continue
        if grant.year != year or grant.month != month:
            continue
        if grant.units > 0:
            total += grant.units
    return total


def split_missing_units(
    missing_units: Decimal,
    *,
    granted_units: Decimal,
    paid_leave_balance: Decimal,
    is_birthday: bool,
) -> tuple[Decimal, Decimal]:
    """Return ``(paid_used, unpaid)`` for the missing units of a month.

    Birthday leave is consumed first and never draws on the balance; the rest
    is covered by approved grants for the month, capped at the balance.
    """
    if missing_units <= 0:
        return ZERO_UNIT, ZERO_UNIT

    remaining = missing_units
    birthday_used = ZERO_UNIT
    if is_birthday:
        birthday_used = min(remaining, BIRTHDAY_LEAVE_UNITS)
        remaining -= birthday_used

    coverage = min(max(granted_units, ZERO_UNIT), max(paid_leave_balance, ZERO_UNIT))
    paid_from_balance = min(remaining, coverage)

    paid_used = round_units(birthday_used + paid_from_balance)
    unpaid = round_units(max(missing_units - paid_used, ZERO_UNIT))
    return paid_used, unpaid


def _report_calendar_gaps(
    user_id: int,
    year: int,
    month: int,
    calendar_days: Sequence[CalendarDaySnapshot],
    until: date | None,
) -> None:
    known = {item.work_date for item in calendar_days}
    missing_dates = [
        day.isoformat()
        for day in month_dates(year, month)
        if day not in known and (until is None or day <= until)
    ]
    if not missing_dates:
        return
    advisory = InconsistentDataError(
        "Work calendar is incomplete; missing days are treated as non-working",
        missing_dates=missing_dates,
    )
    logger.warning(
        "calendar_incomplete",
        extra={
            "user_id": user_id,
            "year": year,
            "month": month,
            "code": advisory.code,
            "missing_dates": advisory.missing_dates,
        },
    )


def aggregate_month(
    user_id: int,
    year: int,
    month: int,
    sessions: Iterable[SessionSnapshot],
    calendar_days: Iterable[CalendarDaySnapshot],
    leave_grants: Iterable[LeaveGrantSnapshot],
    *,
    paid_leave_balance: object = ZERO_UNIT,
    birthday: date | None = None,
    tz: tzinfo | None = None,
    as_of: date | None = None,
) -> MonthlyLeaveSummary:
    """Fold one user's month into a :class:`MonthlyLeaveSummary`.

    Pure: no clock, no I/O. The same inputs always give the same summary.
    ``as_of`` limits the month to days up to and including that date.
    """
    month_days = set(month_dates(year, month))
    calendar_in_month = [item for item in calendar_days if item.work_date in month_days]
    sessions_in_month = [item for item in sessions if item.work_date in month_days]
    _report_calendar_gaps(user_id, year, month, calendar_in_month, as_of)

    expected = ZERO_UNIT
    for item in calendar_in_month:
        if as_of is not None and item.work_date > as_of:
            continue
        expected += item.effective_unit

    classifications: list[DayClassification] = classify_month(
        sessions_in_month,
        calendar_in_month,
        year=year,
        month=month,
        tz=tz,
        until=as_of,
    )
    worked = ZERO_UNIT
    for classification in classifications:
        if classification.counts_as_worked:
            worked += classification.credit_units

    expected = round_units(expected)
    worked = round_units(worked)
    missing = round_units(max(expected - worked, ZERO_UNIT))

    birthday_month = is_birthday_month(birthday, year, month)
    paid_used, unpaid = split_missing_units(
        missing,
        granted_units=granted_units_for_month(leave_grants, year, month),
        paid_leave_balance=to_units(paid_leave_balance),
        is_birthday=birthday_month,
    )

    return MonthlyLeaveSummary(
        user_id=user_id,
        year=year,
        month=month,
        expected_units=expected,
        worked_units=worked,
        missing_units=missing,
        paid_used_units=paid_used,
        unpaid_units=unpaid,
        is_birthday=birthday_month,
    )


def with_paid_leave(summary: MonthlyLeaveSummary, paid_used_units: object) -> MonthlyLeaveSummary:
    """Manual override of the paid-leave figure; only paid-derived fields change."""
    paid_used = round_units(max(to_units(paid_used_units), ZERO_UNIT))
    unpaid = round_units(max(summary.missing_units - paid_used, ZERO_UNIT))
    return replace(summary, paid_used_units=paid_used, unpaid_units=unpaid)
