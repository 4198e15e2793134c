from __future__ import annotations

import json
import logging
import unittest
from datetime import date
from decimal import Decimal

from timekeeping.logging_utils import JsonFormatter
from timekeeping.models import AuditActionType


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_are_serialized(self) -> None:
        record = logging.LogRecord(
            name="timekeeping.audit",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="audit_event",
            args=(),
            exc_info=None,
        )
        record.entity_id = "1:2026-03"
        record.admin_user_id = 900

        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["event"], "audit_event")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["logger"], "timekeeping.audit")
        self.assertEqual(payload["entity_id"], "1:2026-03")
        self.assertEqual(payload["admin_user_id"], 900)
        self.assertNotIn("msg", payload)

    def test_domain_values_stay_readable(self) -> None:
        record = logging.LogRecord(
            name="timekeeping.adjustments",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="paid_leave_adjusted",
            args=(),
            exc_info=None,
        )
        record.paid_used_units = Decimal("1.5")
        record.action_type = AuditActionType.ADJUST
        record.work_date = date(2026, 3, 3)

        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["paid_used_units"], 1.5)
        self.assertEqual(payload["action_type"], "ADJUST")
        self.assertEqual(payload["work_date"], "2026-03-03")


if __name__ == "__main__":
    unittest.main()
