from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from timekeeping.errors import ValidationError
from timekeeping.models import AuditActionType, AuditLog, WorkCalendarDay
from timekeeping.services.work_calendar import (
    ensure_year,
    generate_year,
    list_calendar_days,
    list_range,
    upsert_calendar_day,
)

from factories import ADMIN_ID, audit_count, build_session_factory


class WorkCalendarTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = build_session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def _days_in(self, year: int) -> int:
        return self.db.scalar(
            select(func.count())
            .select_from(WorkCalendarDay)
            .where(WorkCalendarDay.work_date >= date(year, 1, 1), WorkCalendarDay.work_date <= date(year, 12, 31))
        )

    def test_ensure_year_generates_weekdays_once(self) -> None:
        self.assertEqual(ensure_year(self.db, 2026), 365)
        self.assertEqual(ensure_year(self.db, 2026), 0)

        march = list_range(self.db, date(2026, 3, 1), date(2026, 3, 31))
        self.assertEqual(len(march), 31)
        self.assertEqual(sum(item.effective_unit for item in march), Decimal("22"))
        self.assertFalse(march[0].is_working_day)  # Sunday

    def test_ensure_year_rejects_out_of_range_year(self) -> None:
        with self.assertRaises(ValidationError):
            ensure_year(self.db, 1969)

    def test_generate_year_audits_only_new_rows(self) -> None:
        self.assertEqual(generate_year(self.db, year=2028, admin_user_id=ADMIN_ID), 366)
        self.assertEqual(generate_year(self.db, year=2028, admin_user_id=ADMIN_ID), 0)

        audit = self.db.scalars(select(AuditLog)).one()
        self.assertEqual(audit.action_type, AuditActionType.GENERATE)
        self.assertEqual(audit.entity_id, "2028")
        self.assertEqual(audit.after_json, {"year": 2028, "days": 366})

    def test_upsert_marks_holiday(self) -> None:
        ensure_year(self.db, 2026)
        row = upsert_calendar_day(
            self.db,
            work_date=date(2026, 4, 13),
            is_working_day=False,
            work_unit=1.0,
            admin_user_id=ADMIN_ID,
            note="Songkran",
        )
        self.assertFalse(row.is_working_day)
        self.assertEqual(row.work_unit, 0.0)

        [day] = list_range(self.db, date(2026, 4, 13), date(2026, 4, 13))
        self.assertEqual(day.effective_unit, Decimal("0.0"))

        audit = self.db.scalars(select(AuditLog)).one()
        self.assertEqual(audit.action_type, AuditActionType.UPDATE)
        self.assertEqual(audit.entity_id, "2026-04-13")
        self.assertTrue(audit.before_json["is_working_day"])
        self.assertFalse(audit.after_json["is_working_day"])
        self.assertEqual(audit.after_json["note"], "Songkran")

    def test_upsert_on_empty_year_fills_the_rest_of_the_year(self) -> None:
        row = upsert_calendar_day(
            self.db,
            work_date=date(2026, 12, 31),
            is_working_day=True,
            work_unit=0.5,
            admin_user_id=ADMIN_ID,
        )
        self.assertEqual(row.work_unit, 0.5)
        self.assertEqual(self._days_in(2026), 365)

        june = list_range(self.db, date(2026, 6, 1), date(2026, 6, 30))
        self.assertEqual(sum(item.effective_unit for item in june), Decimal("22"))

    def test_upsert_rejects_unknown_unit(self) -> None:
        with self.assertRaises(ValidationError):
            upsert_calendar_day(
                self.db,
                work_date=date(2026, 12, 31),
                is_working_day=True,
                work_unit=0.75,
                admin_user_id=ADMIN_ID,
            )
        self.assertEqual(audit_count(self.db), 0)
        self.assertEqual(self._days_in(2026), 0)

    def test_list_calendar_days_validates_range(self) -> None:
        ensure_year(self.db, 2026)
        days = list_calendar_days(self.db, date(2026, 3, 1), date(2026, 3, 7))
        self.assertEqual([row.work_date.day for row in days], [1, 2, 3, 4, 5, 6, 7])

        with self.assertRaises(ValidationError):
            list_calendar_days(self.db, date(2026, 3, 7), date(2026, 3, 1))
        with self.assertRaises(ValidationError):
            list_calendar_days(self.db, date(2026, 1, 1), date(2027, 6, 1))


if __name__ == "__main__":
    unittest.main()
