from __future__ import annotations

import json
import unittest
from datetime import date, timedelta
from decimal import Decimal

from timekeeping.models import LeaveGrantStatus, SessionStatus
from timekeeping.services.classification import CalendarDaySnapshot, SessionSnapshot
from timekeeping.services.leave_summary import (
    LeaveGrantSnapshot,
    aggregate_month,
    empty_summary,
    is_birthday_month,
    round_units,
    split_missing_units,
    with_paid_leave,
)

YEAR = 2026
MONTH = 3  # 31 days, 22 weekdays, starts on a Sunday


def _march_calendar(*, skip: tuple[date, ...] = ()) -> list[CalendarDaySnapshot]:
    days = []
    cursor = date(YEAR, MONTH, 1)
    while cursor.month == MONTH:
        if cursor not in skip:
            working = cursor.weekday() < 5
            days.append(
                CalendarDaySnapshot(
                    work_date=cursor,
                    is_working_day=working,
                    work_unit=Decimal("1.0") if working else Decimal("0"),
                )
            )
        cursor += timedelta(days=1)
    return days


def _full_sessions(*, absent: tuple[date, ...] = ()) -> list[SessionSnapshot]:
    sessions = []
    for day in _march_calendar():
        if not day.is_working_day or day.work_date in absent:
            continue
        sessions.append(
            SessionSnapshot(
                work_date=day.work_date,
                check_in_at="08:30",
                check_out_at="18:00",
                status=SessionStatus.CLOSED,
            )
        )
    return sessions


def _grant(units: str, *, status: LeaveGrantStatus = LeaveGrantStatus.APPROVED, month: int = MONTH) -> LeaveGrantSnapshot:
    return LeaveGrantSnapshot(year=YEAR, month=month, units=Decimal(units), status=status)


THREE_ABSENCES = (date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 6))


class AggregateMonthTests(unittest.TestCase):
    def test_full_attendance_has_nothing_missing(self) -> None:
        summary = aggregate_month(1, YEAR, MONTH, _full_sessions(), _march_calendar(), [])
        self.assertEqual(summary.expected_units, Decimal("22.0"))
        self.assertEqual(summary.worked_units, Decimal("22.0"))
        self.assertEqual(summary.missing_units, Decimal("0.0"))
        self.assertEqual(summary.paid_used_units, Decimal("0.0"))
        self.assertEqual(summary.unpaid_units, Decimal("0.0"))
        self.assertFalse(summary.is_birthday)

    def test_approved_grant_covers_missing_units(self) -> None:
        summary = aggregate_month(
            1,
            YEAR,
            MONTH,
            _full_sessions(absent=THREE_ABSENCES),
            _march_calendar(),
            [_grant("2")],
            paid_leave_balance=5,
        )
        self.assertEqual(summary.missing_units, Decimal("3.0"))
        self.assertEqual(summary.paid_used_units, Decimal("2.0"))
        self.assertEqual(summary.unpaid_units, Decimal("1.0"))

    def test_paid_coverage_is_capped_by_balance(self) -> None:
        summary = aggregate_month(
            1,
            YEAR,
            MONTH,
            _full_sessions(absent=THREE_ABSENCES),
            _march_calendar(),
            [_grant("5")],
            paid_leave_balance=1,
        )
        self.assertEqual(summary.paid_used_units, Decimal("1.0"))
        self.assertEqual(summary.unpaid_units, Decimal("2.0"))

    def test_pending_and_other_month_grants_are_ignored(self) -> None:
        summary = aggregate_month(
            1,
            YEAR,
            MONTH,
            _full_sessions(absent=THREE_ABSENCES),
            _march_calendar(),
            [_grant("2", status=LeaveGrantStatus.PENDING), _grant("2", month=4)],
            paid_leave_balance=10,
        )
        self.assertEqual(summary.paid_used_units, Decimal("0.0"))
        self.assertEqual(summary.unpaid_units, Decimal("3.0"))

    def test_birthday_month_covers_one_unit_without_balance(self) -> None:
        summary = aggregate_month(
            1,
            YEAR,
            MONTH,
            _full_sessions(absent=THREE_ABSENCES),
            _march_calendar(),
            [],
            birthday=date(1990, 3, 14),
        )
        self.assertTrue(summary.is_birthday)
        self.assertEqual(summary.paid_used_units, Decimal("1.0"))
        self.assertEqual(summary.unpaid_units, Decimal("2.0"))

    def test_birthday_and_grant_stack(self) -> None:
        summary = aggregate_month(
            1,
            YEAR,
            MONTH,
            _full_sessions(absent=THREE_ABSENCES),
            _march_calendar(),
            [_grant("2")],
            paid_leave_balance=2,
            birthday=date(1990, 3, 14),
        )
        self.assertEqual(summary.paid_used_units, Decimal("3.0"))
        self.assertEqual(summary.unpaid_units, Decimal("0.0"))

    def test_accounting_identity_holds(self) -> None:
        cases = [
            ([], 0, None),
            ([_grant("1.5")], 4, None),
            ([_grant("9")], 0.5, date(1985, 3, 1)),
        ]
        for grants, balance, birthday in cases:
            with self.subTest(grants=grants, balance=balance, birthday=birthday):
                summary = aggregate_month(
                    7,
                    YEAR,
                    MONTH,
                    _full_sessions(absent=THREE_ABSENCES),
                    _march_calendar(),
                    grants,
                    paid_leave_balance=balance,
                    birthday=birthday,
                )
                self.assertEqual(summary.missing_units, summary.expected_units - summary.worked_units)
                self.assertEqual(summary.missing_units, summary.paid_used_units + summary.unpaid_units)
                self.assertLessEqual(summary.worked_units, summary.expected_units)

    def test_aggregation_is_idempotent(self) -> None:
        kwargs = dict(paid_leave_balance=3, birthday=date(2000, 3, 1))
        first = aggregate_month(1, YEAR, MONTH, _full_sessions(absent=THREE_ABSENCES), _march_calendar(), [_grant("1")], **kwargs)
        second = aggregate_month(1, YEAR, MONTH, _full_sessions(absent=THREE_ABSENCES), _march_calendar(), [_grant("1")], **kwargs)
        self.assertEqual(json.dumps(first.to_dict(), sort_keys=True), json.dumps(second.to_dict(), sort_keys=True))

    def test_half_day_credit_counts_half_unit(self) -> None:
        sessions = [
            SessionSnapshot(
                work_date=item.work_date,
                check_in_at="10:00" if item.work_date == date(2026, 3, 3) else "08:30",
                check_out_at="18:00",
                status=SessionStatus.CLOSED,
            )
            for item in _full_sessions()
        ]
        summary = aggregate_month(1, YEAR, MONTH, sessions, _march_calendar(), [])
        self.assertEqual(summary.worked_units, Decimal("21.5"))
        self.assertEqual(summary.missing_units, Decimal("0.5"))

    def test_attendance_on_non_working_day_earns_nothing(self) -> None:
        weekend = SessionSnapshot(
            work_date=date(2026, 3, 7),
            check_in_at="08:30",
            check_out_at="18:00",
            status=SessionStatus.CLOSED,
        )
        summary = aggregate_month(1, YEAR, MONTH, _full_sessions() + [weekend], _march_calendar(), [])
        self.assertEqual(summary.worked_units, Decimal("22.0"))

    def test_sessions_outside_month_are_ignored(self) -> None:
        stray = SessionSnapshot(
            work_date=date(2026, 4, 1),
            check_in_at="08:30",
            check_out_at="18:00",
            status=SessionStatus.CLOSED,
        )
        summary = aggregate_month(1, YEAR, MONTH, [stray], _march_calendar(), [])
        self.assertEqual(summary.worked_units, Decimal("0.0"))
        self.assertEqual(summary.missing_units, Decimal("22.0"))

    def test_as_of_limits_current_month(self) -> None:
        summary = aggregate_month(1, YEAR, MONTH, [], _march_calendar(), [], as_of=date(2026, 3, 10))
        self.assertEqual(summary.expected_units, Decimal("7.0"))
        self.assertEqual(summary.missing_units, Decimal("7.0"))

    def test_calendar_gap_is_logged_and_read_as_non_working(self) -> None:
        gap = date(2026, 3, 16)
        with self.assertLogs("timekeeping.leave_summary", level="WARNING") as captured:
            summary = aggregate_month(1, YEAR, MONTH, _full_sessions(), _march_calendar(skip=(gap,)), [])
        self.assertEqual(summary.expected_units, Decimal("21.0"))
        self.assertEqual(summary.worked_units, Decimal("21.0"))
        self.assertEqual(summary.missing_units, Decimal("0.0"))
        self.assertEqual(captured.records[0].getMessage(), "calendar_incomplete")
        self.assertEqual(captured.records[0].missing_dates, [gap.isoformat()])


class LeaveSplitTests(unittest.TestCase):
    def test_nothing_missing_means_nothing_paid(self) -> None:
        paid, unpaid = split_missing_units(
            Decimal("0"),
            granted_units=Decimal("3"),
            paid_leave_balance=Decimal("3"),
            is_birthday=True,
        )
        self.assertEqual((paid, unpaid), (Decimal("0.0"), Decimal("0.0")))

    def test_birthday_only_covers_what_is_missing(self) -> None:
        paid, unpaid = split_missing_units(
            Decimal("0.5"),
            granted_units=Decimal("0"),
            paid_leave_balance=Decimal("0"),
            is_birthday=True,
        )
        self.assertEqual(paid, Decimal("0.5"))
        self.assertEqual(unpaid, Decimal("0.0"))

    def test_negative_balance_covers_nothing(self) -> None:
        paid, unpaid = split_missing_units(
            Decimal("2"),
            granted_units=Decimal("2"),
            paid_leave_balance=Decimal("-1"),
            is_birthday=False,
        )
        self.assertEqual(paid, Decimal("0.0"))
        self.assertEqual(unpaid, Decimal("2.0"))

    def test_birthday_month_matching(self) -> None:
        self.assertTrue(is_birthday_month(date(1990, 3, 14), 2026, 3))
        self.assertFalse(is_birthday_month(date(1990, 4, 14), 2026, 3))
        self.assertFalse(is_birthday_month(date(2030, 3, 14), 2026, 3))
        self.assertFalse(is_birthday_month(None, 2026, 3))

    def test_rounding_is_half_up_to_one_decimal(self) -> None:
        self.assertEqual(round_units(Decimal("0.25")), Decimal("0.3"))
        self.assertEqual(round_units(Decimal("0.35")), Decimal("0.4"))
        self.assertEqual(round_units(Decimal("1.04")), Decimal("1.0"))


class PaidLeaveOverrideTests(unittest.TestCase):
    def test_with_paid_leave_recomputes_unpaid_only(self) -> None:
        base = aggregate_month(1, YEAR, MONTH, _full_sessions(absent=THREE_ABSENCES), _march_calendar(), [])
        adjusted = with_paid_leave(base, 1.5)
        self.assertEqual(adjusted.paid_used_units, Decimal("1.5"))
        self.assertEqual(adjusted.unpaid_units, Decimal("1.5"))
        self.assertEqual(adjusted.worked_units, base.worked_units)
        self.assertEqual(adjusted.missing_units, base.missing_units)

    def test_with_paid_leave_clamps_negative(self) -> None:
        base = aggregate_month(1, YEAR, MONTH, _full_sessions(absent=THREE_ABSENCES), _march_calendar(), [])
        adjusted = with_paid_leave(base, -2)
        self.assertEqual(adjusted.paid_used_units, Decimal("0.0"))
        self.assertEqual(adjusted.unpaid_units, Decimal("3.0"))

    def test_empty_summary_is_zeroed(self) -> None:
        summary = empty_summary(4, YEAR, MONTH)
        self.assertEqual(
            summary.to_dict(),
            {
                "user_id": 4,
                "year": YEAR,
                "month": MONTH,
                "expected_units": 0.0,
                "worked_units": 0.0,
                "missing_units": 0.0,
                "paid_used_units": 0.0,
                "unpaid_units": 0.0,
                "is_birthday": False,
            },
        )


if __name__ == "__main__":
    unittest.main()
