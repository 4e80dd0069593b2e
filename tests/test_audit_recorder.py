from __future__ import annotations

import json
import logging
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from workforce.audit import record_audit, snapshot
from workforce.logging_utils import REDACTED, JsonFormatter
from workforce.models import AuditEntry, Employee
from workforce.services.attendance import clock_in
from tests.db_support import context_for, make_employee, make_identity, memory_engine, session_factory


class AuditRecorderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.db = session_factory(self.engine)()
        self.identity = make_identity(self.db, email="audited@example.com")
        self.employee = make_employee(self.db, self.identity, base_salary="7300.00")

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_snapshot_redacts_sensitive_columns(self) -> None:
        employee_snapshot = snapshot(self.employee)
        identity_snapshot = snapshot(self.identity)

        self.assertEqual(employee_snapshot["base_salary"], REDACTED)
        self.assertEqual(employee_snapshot["status"], "active")
        self.assertEqual(employee_snapshot["hire_date"], "2023-01-02")
        self.assertEqual(identity_snapshot["password_hash"], REDACTED)
        self.assertNotIn("7300", json.dumps(employee_snapshot))

    def test_snapshot_of_missing_instance_is_none(self) -> None:
        self.assertIsNone(snapshot(None))

    def test_record_appends_entry(self) -> None:
        entry = record_audit(
            self.db,
            actor_id=self.identity.id,
            action="update_status",
            resource_type="employee",
            resource_id=self.employee.id,
            before={"status": "active"},
            after={"status": "inactive"},
            request_meta={"request_id": "abc", "ip": "10.0.0.1"},
        )

        self.assertIsNotNone(entry)
        stored = self.db.get(AuditEntry, entry.id)
        self.assertEqual(stored.resource_id, str(self.employee.id))
        self.assertEqual(stored.after, {"status": "inactive"})
        self.assertEqual(stored.request_meta["ip"], "10.0.0.1")

    def test_failed_append_is_swallowed_and_logged(self) -> None:
        with patch.object(self.db, "commit", side_effect=RuntimeError("store down")), self.assertLogs(
            "workforce.audit", level="ERROR"
        ) as captured:
            result = record_audit(
                self.db,
                actor_id=self.identity.id,
                action="clock_in",
                resource_type="attendance",
                request_meta={"request_id": "req-1"},
            )

        self.assertIsNone(result)
        self.assertTrue(any("audit_write_failed" in line for line in captured.output))

    def test_primary_operation_survives_audit_failure(self) -> None:
        context = context_for(self.identity, self.employee)
        with patch("workforce.services.attendance.record_audit", return_value=None) as recorder:
            record = clock_in(self.db, context, now=datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc))

        recorder.assert_called_once()
        self.assertIsNotNone(record.id)
        self.assertEqual(self.db.query(AuditEntry).count(), 0)

    def test_audit_write_failure_does_not_roll_back_committed_change(self) -> None:
        context = context_for(self.identity, self.employee)
        original_add = self.db.add

        def _failing_add(obj):  # type: ignore[no-untyped-def]
            if isinstance(obj, AuditEntry):
                raise RuntimeError("audit table unavailable")
            return original_add(obj)

        with patch.object(self.db, "add", side_effect=_failing_add):
            record = clock_in(self.db, context, now=datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc))

        self.db.expire_all()
        self.assertIsNotNone(self.db.get(type(record), record.id))
        self.assertIsNotNone(self.db.get(Employee, self.employee.id))


class JsonFormatterTests(unittest.TestCase):
    def test_sensitive_extras_are_redacted(self) -> None:
        record = logging.LogRecord("workforce.test", logging.INFO, __file__, 1, "event", None, None)
        record.base_salary = "5000.00"
        record.payload = {"password": "hunter22", "email": "a@example.com"}

        rendered = json.loads(JsonFormatter().format(record))

        self.assertEqual(rendered["message"], "event")
        self.assertEqual(rendered["base_salary"], REDACTED)
        self.assertEqual(rendered["payload"], {"password": REDACTED, "email": "a@example.com"})


if __name__ == "__main__":
    unittest.main()
