from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from hrflow.models import (
    AdvanceSalaryRequest,
    Employee,
    Holiday,
    LeaveApplication,
    ProjectTask,
    ReconciliationRequest,
    VisitApplication,
)
from hrflow.services.notifications import (
    NotificationChannels,
    NotificationSourceNotFoundError,
    PushMessage,
    count_leave_days,
    fan_out,
    format_amount,
    format_human_date,
    notify_advance_salary,
    notify_attendance_punch,
    notify_holiday,
    notify_leave_application,
    notify_new_reconciliation,
    notify_reconciliation_decision,
    notify_task,
    notify_visit_application,
)
from hrflow.services.recipients import RecipientSet
from tests.support import RecordingChannel, add_template, add_user, make_session_factory

PUSH_SUMMARY = {"total_targets": 1, "sent": 1, "failed": 0, "deactivated": 0, "failures": []}


class _NotificationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.email = RecordingChannel("email")
        self.whatsapp = RecordingChannel("whatsapp")
        self.telegram = RecordingChannel("telegram")
        self.channels = NotificationChannels(email=self.email, whatsapp=self.whatsapp, telegram=self.telegram)
        push_patch = patch("hrflow.services.notifications.send_push_to_users", return_value=PUSH_SUMMARY)
        self.send_push = push_patch.start()
        self.addCleanup(push_patch.stop)

    def tearDown(self) -> None:
        self.db.close()

    def _add_admins(self) -> None:
        add_user(self.db, "admin-1", roles=["Admin"], email="admin@example.com", phone="+8801")
        add_user(self.db, "hr-1", roles=["HR"], email="hr@example.com", phone="+8802")
        add_user(self.db, "viewer-1", roles=["Viewer"], email="viewer@example.com", phone="+8803")


class FanOutTests(_NotificationTestCase):
    def test_every_address_receives_the_rendered_template(self) -> None:
        add_template(self.db, "email", "greeting", subject="Hi {{employee_name}}", body="<p>Hello {{employee_name}}</p>")
        add_template(self.db, "whatsapp", "greeting", subject="Hi", body="Hello {{employee_name}}")

        report = fan_out(
            self.db,
            event="greeting",
            slug="greeting",
            variables={"employee_name": "Ada"},
            recipients=RecipientSet(emails={"a@example.com", "b@example.com"}, phones={"+1"}, user_ids={"u1"}),
            channels=self.channels,
            push=PushMessage(title="Hello", body="Ada", url="/mobile/dashboard"),
        )

        self.assertEqual([item[0] for item in self.email.sent], ["a@example.com", "b@example.com"])
        self.assertEqual(self.email.sent[0][1].subject, "Hi Ada")
        self.assertEqual(self.whatsapp.sent[0][1].body, "*// Hi //*\n" + "-" * 40 + "\nHello Ada")
        self.send_push.assert_called_once_with(
            self.db,
            user_ids=["u1"],
            title="Hello",
            body="Ada",
            data={"url": "/mobile/dashboard"},
        )
        self.assertEqual(report.attempted, 4)
        self.assertEqual(report.succeeded, 4)

    def test_missing_template_skips_only_that_channel(self) -> None:
        add_template(self.db, "email", "greeting", subject="Hi", body="Hello")

        report = fan_out(
            self.db,
            event="greeting",
            slug="greeting",
            variables={},
            recipients=RecipientSet(emails={"a@example.com"}, phones={"+1"}),
            channels=self.channels,
        )

        self.assertEqual(len(self.email.sent), 1)
        self.assertEqual(self.whatsapp.sent, [])
        self.assertEqual(report.attempted, 1)

    def test_failing_recipient_is_recorded_and_others_still_sent(self) -> None:
        add_template(self.db, "whatsapp", "greeting", subject="", body="Hello")
        self.whatsapp.failing = {"+2"}

        report = fan_out(
            self.db,
            event="greeting",
            slug="greeting",
            variables={},
            recipients=RecipientSet(phones={"+1", "+2", "+3"}),
            channels=self.channels,
        )

        self.assertEqual([item[0] for item in self.whatsapp.sent], ["+1", "+3"])
        self.assertEqual(report.attempted, 3)
        self.assertEqual(report.succeeded, 2)

    def test_push_failure_does_not_break_fan_out(self) -> None:
        self.send_push.side_effect = RuntimeError("push backend down")

        report = fan_out(
            self.db,
            event="greeting",
            slug="greeting",
            variables={},
            recipients=RecipientSet(user_ids={"u1"}),
            channels=self.channels,
            push=PushMessage(title="Hello", body="Ada"),
        )

        self.assertEqual(report.attempted, 0)
        self.assertEqual(report.push, [])


class ReconciliationNotificationTests(_NotificationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._add_admins()
        self.db.add(Employee(id="E1", employee_code="EMP-1", full_name="Ada", email="ada@example.com", phone="+8809"))
        self.db.add(
            ReconciliationRequest(
                id="R1",
                kind="attendance",
                employee_id="E1",
                attendance_date="2024-03-01",
                requested_in_time="2024-03-01T09:15:00Z",
                status="pending",
            )
        )
        self.db.commit()
        add_template(
            self.db,
            "email",
            "admin_new_attendance_reconciliation",
            subject="Reconciliation from {{employee_name}}",
            body="{{attendance_date}} at {{requested_in_time}}",
        )
        add_template(self.db, "email", "employee_reconciliation_approved", subject="{{status}}", body="ok")

    def test_new_request_goes_to_administrative_roles(self) -> None:
        report = notify_new_reconciliation(self.db, reconciliation_id="R1", channels=self.channels)

        self.assertEqual(sorted(item[0] for item in self.email.sent), ["admin@example.com", "hr@example.com"])
        self.assertEqual(self.email.sent[0][1].subject, "Reconciliation from Ada")
        self.assertEqual(self.email.sent[0][1].body, "01 Mar 2024 at 09:15 AM")
        self.assertEqual(self.send_push.call_args.kwargs["user_ids"], ["admin-1", "hr-1"])
        self.assertEqual(report.succeeded, 3)

    def test_pending_request_sends_no_decision(self) -> None:
        report = notify_reconciliation_decision(self.db, reconciliation_id="R1", channels=self.channels)
        self.assertEqual(report.attempted, 0)
        self.assertEqual(self.email.sent, [])

    def test_decision_goes_to_the_employee(self) -> None:
        self.db.get(ReconciliationRequest, "R1").status = "approved"  # type: ignore[union-attr]
        self.db.commit()

        notify_reconciliation_decision(self.db, reconciliation_id="R1", channels=self.channels)

        self.assertEqual([item[0] for item in self.email.sent], ["ada@example.com"])
        self.assertEqual(self.email.sent[0][1].subject, "Approved")

    def test_unknown_reconciliation_raises(self) -> None:
        with self.assertRaises(NotificationSourceNotFoundError) as ctx:
            notify_new_reconciliation(self.db, reconciliation_id="missing", channels=self.channels)
        self.assertEqual(ctx.exception.code, "RECONCILIATION_NOT_FOUND")


class RequestNotificationTests(_NotificationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._add_admins()
        add_user(self.db, "uid-ada", roles=["Employee"], email="ada@example.com")
        self.db.add(Employee(id="E1", full_name="Ada", email="ada@example.com", phone="+8809"))
        self.db.add(
            AdvanceSalaryRequest(
                id="A1",
                employee_id="E1",
                employee_name="Ada",
                amount=Decimal("12500.50"),
                reason="Medical",
                request_date="2024-03-01",
                status="Pending",
            )
        )
        self.db.add(
            VisitApplication(
                id="V1",
                employee_id="E1",
                customer_name="Acme",
                location="Dhaka",
                from_date="2024-03-04",
                to_date="2024-03-05",
                status="Pending",
            )
        )
        self.db.commit()

    def test_new_advance_salary_request_notifies_admins(self) -> None:
        add_template(
            self.db,
            "whatsapp",
            "admin_new_advance_salary_request",
            subject="",
            body="{{employee_name}} asks {{amount}} on {{request_date}}",
        )

        result = notify_advance_salary(self.db, event_type="new_request", request_id="A1", channels=self.channels)

        self.assertEqual(result.notified, "admins")
        self.assertEqual(sorted(item[0] for item in self.whatsapp.sent), ["8801", "8802"])
        self.assertEqual(self.whatsapp.sent[0][1].body, "Ada asks 12,500.50 on 01 Mar 2024")

    def test_rejected_advance_salary_carries_reason(self) -> None:
        add_template(
            self.db,
            "email",
            "employee_advance_salary_rejected",
            subject="Advance {{status}}",
            body="Reason: {{rejection_reason}}",
        )

        result = notify_advance_salary(
            self.db,
            event_type="decision",
            request_id="A1",
            status="rejected",
            rejection_reason="Budget closed",
            channels=self.channels,
        )

        self.assertEqual(result.notified, "employee")
        self.assertEqual(self.email.sent[0][0], "ada@example.com")
        self.assertEqual(self.email.sent[0][1].subject, "Advance Rejected")
        self.assertEqual(self.email.sent[0][1].body, "Reason: Budget closed")
        push_kwargs = self.send_push.call_args.kwargs
        self.assertEqual(push_kwargs["user_ids"], ["uid-ada"])
        self.assertEqual(push_kwargs["title"], "Advance Salary Rejected")
        self.assertEqual(push_kwargs["body"], "Your advance salary request for 12,500.50 has been rejected.")

    def test_other_status_requires_no_notification(self) -> None:
        result = notify_visit_application(
            self.db,
            event_type="decision",
            request_id="V1",
            status="Pending",
            channels=self.channels,
        )

        self.assertIsNone(result.notified)
        self.assertEqual(result.message, "Status requires no notification.")
        self.assertEqual(self.email.sent, [])

    def test_visit_decision_uses_visit_dates(self) -> None:
        add_template(
            self.db,
            "email",
            "employee_visit_application_approved",
            subject="Visit {{status}}",
            body="{{customer_name}} {{visit_date_start}} - {{visit_date_end}}",
        )

        result = notify_visit_application(
            self.db,
            event_type="decision",
            request_id="V1",
            status="Approved",
            channels=self.channels,
        )

        self.assertEqual(result.notified, "employee")
        self.assertEqual(self.email.sent[0][1].body, "Acme 04 Mar 2024 - 05 Mar 2024")

    def test_unknown_request_raises(self) -> None:
        with self.assertRaises(NotificationSourceNotFoundError):
            notify_visit_application(self.db, event_type="new_request", request_id="nope", channels=self.channels)


class LeaveNotificationTests(_NotificationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._add_admins()
        add_user(self.db, "uid-ada", roles=["Employee"], email="ada@example.com")
        self.db.add(Employee(id="E1", full_name="Ada", email="ada@example.com", phone="+8809"))
        self.db.add(
            LeaveApplication(
                id="L1",
                employee_id="E1",
                leave_type="Casual",
                from_date="2024-03-04",
                to_date="2024-03-06",
                reason="Family event",
                status="Pending",
            )
        )
        self.db.commit()

    def test_new_leave_request_counts_days_inclusively(self) -> None:
        add_template(
            self.db,
            "email",
            "admin_new_leave_application",
            subject="Leave from {{employee_name}}",
            body="{{leave_type}} {{start_date}} - {{end_date}} ({{days}} days)",
        )
        add_template(self.db, "whatsapp", "admin_new_leave_application", subject="", body="{{days}} days")

        result = notify_leave_application(self.db, event_type="new_request", request_id="L1", channels=self.channels)

        self.assertEqual(result.notified, "admins")
        self.assertEqual(sorted(item[0] for item in self.email.sent), ["admin@example.com", "hr@example.com"])
        self.assertEqual(self.email.sent[0][1].body, "Casual 04 Mar 2024 - 06 Mar 2024 (3 days)")
        self.assertEqual(sorted(item[0] for item in self.whatsapp.sent), ["8801", "8802"])

    def test_stored_total_days_wins(self) -> None:
        self.db.get(LeaveApplication, "L1").total_days = 2  # type: ignore[union-attr]
        self.db.commit()
        add_template(self.db, "email", "admin_new_leave_application", subject="", body="{{days}}")

        notify_leave_application(self.db, event_type="new_request", request_id="L1", channels=self.channels)

        self.assertEqual(self.email.sent[0][1].body, "2")

    def test_rejection_without_reason_uses_fallback(self) -> None:
        add_template(
            self.db,
            "email",
            "employee_leave_application_rejected",
            subject="Leave {{status}}",
            body="Reason: {{rejection_reason}}",
        )

        result = notify_leave_application(
            self.db,
            event_type="decision",
            request_id="L1",
            status="Rejected",
            channels=self.channels,
        )

        self.assertEqual(result.notified, "employee")
        self.assertEqual([item[0] for item in self.email.sent], ["ada@example.com"])
        self.assertEqual(self.email.sent[0][1].subject, "Leave Rejected")
        self.assertEqual(self.email.sent[0][1].body, "Reason: No reason provided")
        self.assertEqual(self.send_push.call_args.kwargs["user_ids"], ["uid-ada"])

    def test_unknown_leave_raises(self) -> None:
        with self.assertRaises(NotificationSourceNotFoundError) as ctx:
            notify_leave_application(self.db, event_type="new_request", request_id="nope", channels=self.channels)
        self.assertEqual(ctx.exception.code, "LEAVE_APPLICATION_NOT_FOUND")


class HolidayNotificationTests(_NotificationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.db.add_all(
            [
                Employee(id="E1", full_name="Ada", email="ada@example.com"),
                Employee(id="E2", full_name="", email="bo@example.com"),
                Employee(id="E3", full_name="Cy", email=None),
                Employee(id="E4", full_name="Di", email="di@example.com", is_active=False),
                Holiday(id="H1", title="Victory Day", holiday_type="Public", from_date="2024-12-16"),
            ]
        )
        self.db.commit()
        add_template(
            self.db,
            "email",
            "holiday_announcement",
            subject="{{holiday_title}}",
            body="Dear {{employee_name}}, {{holiday_start_date}} to {{holiday_end_date}}. {{holiday_description}}",
        )

    def test_each_active_employee_is_emailed_and_holiday_marked(self) -> None:
        result = notify_holiday(self.db, holiday_id="H1", channels=self.channels)

        self.assertTrue(result.sent)
        self.assertEqual(result.notified_count, 2)
        self.assertEqual([item[0] for item in self.email.sent], ["ada@example.com", "bo@example.com"])
        self.assertEqual(
            self.email.sent[0][1].body,
            "Dear Ada, Monday, 16 December 2024 to N/A. No additional details provided.",
        )
        self.assertTrue(self.email.sent[1][1].body.startswith("Dear Employee,"))
        holiday = self.db.get(Holiday, "H1")
        assert holiday is not None
        self.assertTrue(holiday.email_sent)
        self.assertIsNotNone(holiday.email_sent_at)

    def test_announced_holiday_is_not_sent_again(self) -> None:
        self.db.get(Holiday, "H1").email_sent = True  # type: ignore[union-attr]
        self.db.commit()

        result = notify_holiday(self.db, holiday_id="H1", channels=self.channels)

        self.assertTrue(result.already_sent)
        self.assertEqual(self.email.sent, [])

    def test_holiday_stays_unannounced_when_every_email_fails(self) -> None:
        self.email.failing = {"ada@example.com", "bo@example.com"}

        result = notify_holiday(self.db, holiday_id="H1", channels=self.channels)

        self.assertFalse(result.sent)
        self.assertEqual(result.report.attempted, 2)
        self.assertFalse(self.db.get(Holiday, "H1").email_sent)  # type: ignore[union-attr]

    def test_unknown_holiday_raises(self) -> None:
        with self.assertRaises(NotificationSourceNotFoundError):
            notify_holiday(self.db, holiday_id="nope", channels=self.channels)


class LeaveDayCountTests(unittest.TestCase):
    def test_counts_are_inclusive_and_tolerant(self) -> None:
        self.assertEqual(count_leave_days("2024-03-04", "2024-03-04"), 1)
        self.assertEqual(count_leave_days("2024-03-06T00:00:00Z", "2024-03-04"), 3)
        self.assertEqual(count_leave_days("2024-03-04", None), 0)
        self.assertEqual(count_leave_days("soon", "2024-03-04"), 0)


class TaskNotificationTests(_NotificationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.db.add_all(
            [
                Employee(id="E1", employee_code="EMP-1", full_name="Ada", email="ada@example.com", phone="+8801"),
                Employee(id="E2", employee_code="EMP-2", full_name="Bo", email=None, phone="+8802"),
                ProjectTask(id="T1", task_code="TSK-1", task_title="Fix <login>", project_title="Portal", priority="High"),
            ]
        )
        self.db.commit()
        add_template(self.db, "email", "task_assigned", subject="Task {{task_id}}", body="Hi {{employee_name}}")
        add_template(self.db, "whatsapp", "task_assigned", subject="", body="Task for {{employee_name}}")

    def test_each_assignee_is_reported_and_group_chat_gets_fallback(self) -> None:
        result = notify_task(
            self.db,
            event_type="task_assigned",
            task_id="TSK-1",
            target_user_ids=["EMP-1", "E2"],
            channels=self.channels,
        )

        self.assertEqual(result.task_id, "TSK-1")
        self.assertEqual(result.notifications["E1"]["email"]["success"], True)
        self.assertEqual(result.notifications["E1"]["whatsapp"]["success"], True)
        self.assertEqual(result.notifications["E2"]["email"], {})
        self.assertEqual(result.notifications["E2"]["whatsapp"]["success"], True)
        self.assertEqual(self.email.sent[0][1].subject, "Task TSK-1")

        assert result.telegram is not None
        self.assertTrue(result.telegram.success)
        telegram_body = self.telegram.sent[0][1].body
        self.assertIn("<b>New Task Assigned</b>", telegram_body)
        self.assertIn("Fix &lt;login&gt; (TSK-1)", telegram_body)
        self.assertIn("No due date", telegram_body)

    def test_telegram_template_wins_over_fallback(self) -> None:
        add_template(self.db, "telegram", "task_assigned", subject="", body="Task {{task_title}} in {{project_title}}")

        notify_task(self.db, event_type="task_assigned", task_id="T1", target_user_ids=["E1"], channels=self.channels)

        self.assertEqual(self.telegram.sent[0][1].body, "Task Fix <login> in Portal")

    def test_unknown_task_raises(self) -> None:
        with self.assertRaises(NotificationSourceNotFoundError) as ctx:
            notify_task(self.db, event_type="task_update", task_id="nope", target_user_ids=["E1"], channels=self.channels)
        self.assertEqual(ctx.exception.code, "TASK_NOT_FOUND")


class AttendancePunchNotificationTests(_NotificationTestCase):
    def test_employee_and_admin_channels_are_summarised(self) -> None:
        self._add_admins()
        add_template(
            self.db,
            "email",
            "attendance_in_time",
            subject="In {{time}}",
            body="{{employee_name}} {{flag}} at {{location}} on {{date}}",
        )
        self.whatsapp.failing = {"8801"}
        add_template(self.db, "whatsapp", "attendance_in_time", subject="", body="In {{time}}")

        summary = notify_attendance_punch(
            self.db,
            punch_type="in_time",
            employee_id="E1",
            employee_name="Ada",
            time="09:05 AM",
            employee_email="Ada@Example.com",
            employee_phone=None,
            attendance_date="2024-03-01",
            flag="P",
            location={"latitude": 23.8103, "longitude": 90.4125},
            channels=self.channels,
        )

        self.assertEqual(summary["employeeEmail"], {"sent": True, "success": True})
        self.assertEqual(summary["employeeWhatsApp"], {"sent": False, "success": False})
        self.assertEqual(summary["hrEmail"], {"sent": True, "success": True})
        self.assertEqual(summary["hrWhatsApp"], {"sent": True, "success": False})
        self.assertIn("Ada P at 23.810300, 90.412500 on 01 Mar 2024", [item[1].body for item in self.email.sent])

    def test_unsupported_punch_type_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            notify_attendance_punch(
                self.db,
                punch_type="lunch",  # type: ignore[arg-type]
                employee_id="E1",
                employee_name="Ada",
                time="09:05 AM",
                channels=self.channels,
            )


class FormattingTests(unittest.TestCase):
    def test_human_dates(self) -> None:
        self.assertEqual(format_human_date("2024-03-01T00:00:00Z"), "01 Mar 2024")
        self.assertEqual(format_human_date(None), "N/A")
        self.assertEqual(format_human_date("next week"), "next week")

    def test_amounts(self) -> None:
        self.assertEqual(format_amount(Decimal("1234.5")), "1,234.50")
        self.assertEqual(format_amount(None), "0.00")
        self.assertEqual(format_amount("abc"), "abc")


if __name__ == "__main__":
    unittest.main()
