from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import select

from hrflow.db import get_db
from hrflow.main import app
from hrflow.models import AttendanceRecord, AuditLog, ReconciliationRequest
from hrflow.security import require_identity
from tests.support import make_session_factory, override_get_db


def _reviewer_claims() -> dict[str, str]:
    return {"sub": "reviewer-1", "email": "reviewer@example.com"}


class ReconciliationDecisionEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        for index in (1, 2):
            self.db.add(
                ReconciliationRequest(
                    id=f"R{index}",
                    kind="attendance",
                    employee_id="E1",
                    attendance_date=f"2024-03-0{index}",
                    requested_in_time=f"2024-03-0{index}T09:00:00Z",
                    status="pending",
                )
            )
        self.db.commit()

        app.dependency_overrides[get_db] = override_get_db(self.session_factory)
        app.dependency_overrides[require_identity] = _reviewer_claims
        notify_patch = patch("hrflow.routers.attendance.run_reconciliation_decision_notification")
        self.notify = notify_patch.start()
        self.addCleanup(notify_patch.stop)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _audit_rows(self) -> list[AuditLog]:
        self.db.expire_all()
        return list(self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all())

    def test_missing_token_is_rejected(self) -> None:
        app.dependency_overrides.pop(require_identity)

        response = self.client.post(
            "/api/attendance/reconcile/decision",
            json={"reconciliationId": "R1", "action": "approve"},
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_invalid_payload_is_a_validation_error(self) -> None:
        response = self.client.post(
            "/api/attendance/reconcile/decision",
            json={"reconciliationId": "R1", "action": "maybe"},
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["error"]["code"], "VALIDATION_ERROR")
        self.assertIn("request_id", body["error"])

    def test_approve_returns_status_and_schedules_notification(self) -> None:
        response = self.client.post(
            "/api/attendance/reconcile/decision",
            json={"reconciliationId": "R1", "action": "approve", "type": "attendance"},
            headers={"X-Request-Id": "req-1"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "reconciliationId": "R1", "status": "approved"})
        self.assertEqual(response.headers["X-Request-Id"], "req-1")
        self.notify.assert_called_once_with("R1")

        self.db.expire_all()
        record = self.db.get(AttendanceRecord, "E1_2024-03-01")
        assert record is not None
        self.assertEqual(record.in_time, "09:00 AM")
        audit = self._audit_rows()[-1]
        self.assertEqual(audit.action, "RECONCILIATION_DECIDED")
        self.assertEqual(audit.actor_id, "reviewer-1")
        self.assertTrue(audit.success)

    def test_unknown_request_is_not_found(self) -> None:
        response = self.client.post(
            "/api/attendance/reconcile/decision",
            json={"reconciliationId": "nope", "action": "approve"},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "RECONCILIATION_NOT_FOUND")
        self.notify.assert_not_called()

    def test_second_decision_conflicts_and_is_audited(self) -> None:
        first = self.client.post(
            "/api/attendance/reconcile/decision",
            json={"reconciliationId": "R1", "action": "reject"},
        )
        second = self.client.post(
            "/api/attendance/reconcile/decision",
            json={"reconciliationId": "R1", "action": "approve"},
        )

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["error"]["code"], "RECONCILIATION_ALREADY_DECIDED")
        self.assertEqual(self.notify.call_count, 1)

        audit = self._audit_rows()[-1]
        self.assertFalse(audit.success)
        self.assertEqual(audit.details["current_status"], "rejected")

        self.db.expire_all()
        self.assertIsNone(self.db.get(AttendanceRecord, "E1_2024-03-01"))

    def test_batch_reports_each_id(self) -> None:
        response = self.client.post(
            "/api/attendance/reconcile/decision/batch",
            json={"reconciliationIds": ["R1", " R2 ", "nope"], "action": "approve"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body["success"])
        results = {item["reconciliationId"]: item for item in body["results"]}
        self.assertTrue(results["R1"]["success"])
        self.assertTrue(results["R2"]["success"])
        self.assertEqual(results["nope"]["code"], "RECONCILIATION_NOT_FOUND")
        self.assertEqual(sorted(call.args[0] for call in self.notify.call_args_list), ["R1", "R2"])
        self.assertEqual(len(self._audit_rows()), 3)

    def test_empty_batch_is_a_validation_error(self) -> None:
        response = self.client.post(
            "/api/attendance/reconcile/decision/batch",
            json={"reconciliationIds": [], "action": "approve"},
        )
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
