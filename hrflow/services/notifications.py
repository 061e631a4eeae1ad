from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
import html
import logging
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hrflow.models import (
    AdvanceSalaryRequest,
    Employee,
    Holiday,
    LeaveApplication,
    ProjectTask,
    ReconciliationKind,
    ReconciliationRequest,
    ReconciliationStatus,
    TemplateChannel,
    VisitApplication,
)
from hrflow.services.attendance_times import format_display_time
from hrflow.services.channels import (
    DELIVERY_STATUS_SKIPPED,
    DeliveryOutcome,
    EmailChannel,
    NotificationChannel,
    NotificationMessage,
    TelegramChannel,
    WhatsAppChannel,
    dispatch,
)
from hrflow.services.push_notifications import send_push_to_users
from hrflow.services.recipients import (
    ADMINISTRATIVE_ROLES,
    EmployeeContact,
    RecipientSet,
    employee_display_name,
    normalize_email,
    normalize_phone,
    resolve_by_employee_id,
    resolve_task_assignees,
    safe_resolve_by_role,
)
from hrflow.services.templates import (
    HUMAN_DATE_FORMAT,
    RenderedMessage,
    TemplateNotFoundError,
    format_chat_message,
    render_template,
)
from hrflow.settings import get_app_link, get_attendance_timezone

logger = logging.getLogger("hrflow.notifications")

RequestEventType = Literal["new_request", "decision"]
TaskEventType = Literal["task_assigned", "task_update"]
PunchType = Literal["in_time", "out_time", "check_in", "check_out"]

PUNCH_TYPES: tuple[str, ...] = ("in_time", "out_time", "check_in", "check_out")
NOT_AVAILABLE = "N/A"
NO_REASON = "No reason provided"

DECISION_STATUSES = {"approved": "Approved", "rejected": "Rejected"}
HOLIDAY_DATE_FORMAT = "%A, %d %B %Y"


class NotificationSourceNotFoundError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(slots=True)
class PushMessage:
    title: str
    body: str
    url: str | None = None

    def data(self) -> dict[str, Any]:
        return {"url": self.url} if self.url else {}


@dataclass(slots=True)
class NotificationChannels:
    email: NotificationChannel
    whatsapp: NotificationChannel
    telegram: NotificationChannel

    @classmethod
    def for_session(cls, db: Session) -> NotificationChannels:
        return cls(email=EmailChannel(db), whatsapp=WhatsAppChannel(db), telegram=TelegramChannel(db))


@dataclass(slots=True)
class FanOutReport:
    attempted: int = 0
    succeeded: int = 0
    results: list[DeliveryOutcome] = field(default_factory=list)
    push: list[dict[str, Any]] = field(default_factory=list)

    def record(self, outcome: DeliveryOutcome) -> DeliveryOutcome:
        self.results.append(outcome)
        if outcome.status != DELIVERY_STATUS_SKIPPED:
            self.attempted += 1
        if outcome.success:
            self.succeeded += 1
        return outcome

    def record_push(self, summary: dict[str, Any]) -> None:
        self.push.append(summary)
        self.attempted += int(summary.get("total_targets") or 0)
        self.succeeded += int(summary.get("sent") or 0)

    def merge(self, other: FanOutReport) -> FanOutReport:
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.results.extend(other.results)
        self.push.extend(other.push)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "results": [item.to_dict() for item in self.results],
        }


@dataclass(slots=True)
class EventNotification:
    notified: str | None
    report: FanOutReport = field(default_factory=FanOutReport)
    message: str | None = None


@dataclass(slots=True)
class HolidayNotification:
    notified_count: int = 0
    sent: bool = False
    already_sent: bool = False
    message: str | None = None
    report: FanOutReport = field(default_factory=FanOutReport)


@dataclass(slots=True)
class TaskNotification:
    task_id: str
    notifications: dict[str, dict[str, Any]] = field(default_factory=dict)
    telegram: DeliveryOutcome | None = None
    report: FanOutReport = field(default_factory=FanOutReport)


def format_human_date(value: Any, *, fallback: str = NOT_AVAILABLE) -> str:
    if value is None or value == "":
        return fallback
    if isinstance(value, datetime):
        return value.strftime(HUMAN_DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(HUMAN_DATE_FORMAT)
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw.split("T")[0]).strftime(HUMAN_DATE_FORMAT)
    except ValueError:
        return raw


def format_amount(value: Any) -> str:
    if value is None or value == "":
        return "0.00"
    try:
        return "{:,.2f}".format(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return str(value)


def _today_label() -> str:
    return datetime.now(get_attendance_timezone()).strftime(HUMAN_DATE_FORMAT)


def _decision_label(status: str | None) -> str | None:
    return DECISION_STATUSES.get((status or "").strip().lower())


def _render(
    db: Session,
    *,
    channel: TemplateChannel,
    slug: str,
    variables: Mapping[str, Any],
) -> RenderedMessage | None:
    try:
        return render_template(db, channel=channel, slug=slug, variables=variables)
    except TemplateNotFoundError:
        logger.warning("notification_template_missing", extra={"channel": channel.value, "slug": slug})
        return None
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "notification_template_load_failed",
            extra={"channel": channel.value, "slug": slug, "error": str(exc)[:500]},
        )
        return None


def _send_push(db: Session, report: FanOutReport, *, user_ids: Iterable[str], push: PushMessage, event: str) -> None:
    targets = sorted({item for item in user_ids if item})
    if not targets:
        return
    try:
        summary = send_push_to_users(db, user_ids=targets, title=push.title, body=push.body, data=push.data())
    except Exception as exc:
        db.rollback()
        logger.warning("push_dispatch_failed", extra={"event": event, "error": str(exc)[:500]})
        return
    report.record_push(summary)


def fan_out(
    db: Session,
    *,
    event: str,
    slug: str,
    variables: Mapping[str, Any],
    recipients: RecipientSet,
    channels: NotificationChannels,
    push: PushMessage | None = None,
) -> FanOutReport:
    """Render ``slug`` once per channel and deliver it to every usable address.

    Email goes to every address in ``recipients.emails``, WhatsApp to every
    phone and web push to every user id. A missing template skips only its
    channel and a failed send is recorded, never raised.
    """
    report = FanOutReport()
    context = {"event": event, "template": slug}

    if recipients.emails:
        rendered = _render(db, channel=TemplateChannel.EMAIL, slug=slug, variables=variables)
        if rendered is not None:
            message = NotificationMessage(subject=rendered.subject, body=rendered.body)
            for address in sorted(recipients.emails):
                report.record(dispatch(channels.email, address, message, context=context))

    if recipients.phones:
        rendered = _render(db, channel=TemplateChannel.WHATSAPP, slug=slug, variables=variables)
        if rendered is not None:
            message = NotificationMessage(subject=rendered.subject, body=format_chat_message(rendered))
            for phone in sorted(recipients.phones):
                report.record(dispatch(channels.whatsapp, phone, message, context=context))

    if push is not None:
        _send_push(db, report, user_ids=recipients.user_ids, push=push, event=event)

    logger.info(
        "notification_fan_out_complete",
        extra={**context, "attempted": report.attempted, "succeeded": report.succeeded},
    )
    return report


def _admin_recipients(db: Session) -> RecipientSet:
    return safe_resolve_by_role(db, ADMINISTRATIVE_ROLES)


def _reconciliation_variables(reconciliation: ReconciliationRequest, contact: EmployeeContact | None) -> dict[str, str]:
    return {
        "employee_name": reconciliation.employee_name or (contact.name if contact else None) or "Employee",
        "employee_code": reconciliation.employee_code or (contact.employee_code if contact else None) or NOT_AVAILABLE,
        "designation": reconciliation.designation or NOT_AVAILABLE,
        "attendance_date": format_human_date(reconciliation.attendance_date),
        "requested_in_time": format_display_time(reconciliation.requested_in_time) or NOT_AVAILABLE,
        "requested_out_time": format_display_time(reconciliation.requested_out_time) or NOT_AVAILABLE,
        "in_time_remarks": reconciliation.in_time_remarks or NOT_AVAILABLE,
        "out_time_remarks": reconciliation.out_time_remarks or NOT_AVAILABLE,
        "reconciliation_type": "break time" if reconciliation.kind == ReconciliationKind.BREAKTIME.value else "attendance",
    }


def _get_reconciliation(db: Session, reconciliation_id: str) -> ReconciliationRequest:
    reconciliation = db.get(ReconciliationRequest, reconciliation_id)
    if reconciliation is None:
        raise NotificationSourceNotFoundError("RECONCILIATION_NOT_FOUND", "Reconciliation request not found.")
    return reconciliation


def notify_new_reconciliation(
    db: Session,
    *,
    reconciliation_id: str,
    channels: NotificationChannels | None = None,
) -> FanOutReport:
    reconciliation = _get_reconciliation(db, reconciliation_id)
    channels = channels or NotificationChannels.for_session(db)
    contact = resolve_by_employee_id(db, reconciliation.employee_id)
    variables = _reconciliation_variables(reconciliation, contact)

    is_break = reconciliation.kind == ReconciliationKind.BREAKTIME.value
    link_path = "/dashboard/hr/payroll/break-time-reconciliation" if is_break else "/dashboard/hr/attendance-reconciliation"
    variables["link"] = get_app_link(link_path)

    return fan_out(
        db,
        event="reconciliation_new",
        slug="admin_new_break_reconciliation" if is_break else "admin_new_attendance_reconciliation",
        variables=variables,
        recipients=_admin_recipients(db),
        channels=channels,
        push=PushMessage(
            title="New Reconciliation Request",
            body=f"{variables['employee_name']} requested a {variables['reconciliation_type']} correction for {variables['attendance_date']}.",
            url=link_path,
        ),
    )


def notify_reconciliation_decision(
    db: Session,
    *,
    reconciliation_id: str,
    channels: NotificationChannels | None = None,
) -> FanOutReport:
    reconciliation = _get_reconciliation(db, reconciliation_id)
    status_label = _decision_label(reconciliation.status)
    if status_label is None or reconciliation.status == ReconciliationStatus.PENDING.value:
        return FanOutReport()

    contact = resolve_by_employee_id(db, reconciliation.employee_id)
    if contact is None:
        logger.warning(
            "notification_recipient_missing",
            extra={"event": "reconciliation_decision", "employee_id": reconciliation.employee_id},
        )
        return FanOutReport()

    channels = channels or NotificationChannels.for_session(db)
    variables = _reconciliation_variables(reconciliation, contact)
    variables["status"] = status_label
    variables["link"] = get_app_link("/mobile/dashboard")

    return fan_out(
        db,
        event="reconciliation_decision",
        slug=f"employee_reconciliation_{status_label.lower()}",
        variables=variables,
        recipients=contact.as_recipients(),
        channels=channels,
        push=PushMessage(
            title=f"Reconciliation {status_label}",
            body=f"Your {variables['reconciliation_type']} reconciliation for {variables['attendance_date']} has been {status_label.lower()}.",
            url="/mobile/dashboard",
        ),
    )


def run_reconciliation_decision_notification(reconciliation_id: str) -> None:
    """Background entry point; uses its own session after the decision commit."""
    from hrflow.db import SessionLocal

    db = SessionLocal()
    try:
        report = notify_reconciliation_decision(db, reconciliation_id=reconciliation_id)
        logger.info(
            "reconciliation_decision_notified",
            extra={
                "reconciliation_id": reconciliation_id,
                "attempted": report.attempted,
                "succeeded": report.succeeded,
            },
        )
    except Exception:
        logger.exception("reconciliation_decision_notify_failed", extra={"reconciliation_id": reconciliation_id})
    finally:
        db.close()


def _employee_name(record_name: str | None, contact: EmployeeContact | None) -> str:
    return (record_name or "").strip() or (contact.name if contact else "") or "Employee"


def _decision_event(
    db: Session,
    *,
    event: str,
    status: str | None,
    slug_prefix: str,
    contact: EmployeeContact | None,
    variables: dict[str, str],
    push_title: str,
    push_body: str,
    channels: NotificationChannels,
) -> EventNotification:
    status_label = _decision_label(status)
    if status_label is None:
        return EventNotification(notified=None, message="Status requires no notification.")
    if contact is None or contact.as_recipients().is_empty:
        logger.warning("notification_recipient_missing", extra={"event": event})
        return EventNotification(notified=None, message="Employee contact not found.")

    variables["status"] = status_label
    report = fan_out(
        db,
        event=event,
        slug=f"{slug_prefix}_{status_label.lower()}",
        variables=variables,
        recipients=contact.as_recipients(),
        channels=channels,
        push=PushMessage(
            title=push_title.replace("{status}", status_label),
            body=push_body.replace("{status}", status_label.lower()),
            url="/mobile/dashboard",
        ),
    )
    return EventNotification(notified="employee", report=report)


def notify_advance_salary(
    db: Session,
    *,
    event_type: RequestEventType,
    request_id: str,
    status: str | None = None,
    rejection_reason: str | None = None,
    channels: NotificationChannels | None = None,
) -> EventNotification:
    advance = db.get(AdvanceSalaryRequest, request_id)
    if advance is None:
        raise NotificationSourceNotFoundError("ADVANCE_SALARY_REQUEST_NOT_FOUND", "Request not found.")
    channels = channels or NotificationChannels.for_session(db)
    contact = resolve_by_employee_id(db, advance.employee_id)

    amount = format_amount(advance.amount)
    variables = {
        "employee_name": _employee_name(advance.employee_name, contact),
        "amount": amount,
        "requested_amount": format_amount(advance.advance_amount if advance.advance_amount is not None else advance.amount),
        "reason": advance.reason or NOT_AVAILABLE,
        "request_date": format_human_date(advance.request_date, fallback=_today_label()),
        "link": get_app_link("/dashboard/hr/payroll/advance-salary"),
    }

    if event_type == "new_request":
        report = fan_out(
            db,
            event="advance_salary_new",
            slug="admin_new_advance_salary_request",
            variables=variables,
            recipients=_admin_recipients(db),
            channels=channels,
            push=PushMessage(
                title="New Advance Salary Request",
                body=f"{variables['employee_name']} requested an advance of {amount}.",
                url="/dashboard/hr/payroll/advance-salary",
            ),
        )
        return EventNotification(notified="admins", report=report)

    variables["rejection_reason"] = rejection_reason or advance.remarks or NO_REASON
    return _decision_event(
        db,
        event="advance_salary_decision",
        status=status,
        slug_prefix="employee_advance_salary",
        contact=contact,
        variables=variables,
        push_title="Advance Salary {status}",
        push_body=f"Your advance salary request for {amount} has been {{status}}.",
        channels=channels,
    )


def notify_visit_application(
    db: Session,
    *,
    event_type: RequestEventType,
    request_id: str,
    status: str | None = None,
    rejection_reason: str | None = None,
    channels: NotificationChannels | None = None,
) -> EventNotification:
    visit = db.get(VisitApplication, request_id)
    if visit is None:
        raise NotificationSourceNotFoundError("VISIT_APPLICATION_NOT_FOUND", "Request not found.")
    channels = channels or NotificationChannels.for_session(db)
    contact = resolve_by_employee_id(db, visit.employee_id)

    variables = {
        "employee_name": _employee_name(visit.employee_name, contact),
        "customer_name": visit.customer_name or NOT_AVAILABLE,
        "location": visit.location or NOT_AVAILABLE,
        "visit_date_start": format_human_date(visit.from_date or visit.visit_date),
        "visit_date_end": format_human_date(visit.to_date or visit.visit_date),
        "reason": visit.reason or NOT_AVAILABLE,
        "link": get_app_link("/dashboard/hr/visit-applications"),
    }

    if event_type == "new_request":
        report = fan_out(
            db,
            event="visit_application_new",
            slug="admin_new_visit_application",
            variables=variables,
            recipients=_admin_recipients(db),
            channels=channels,
            push=PushMessage(
                title="New Visit Application",
                body=f"{variables['employee_name']} applied for a visit to {variables['customer_name']}.",
                url="/dashboard/hr/visit-applications",
            ),
        )
        return EventNotification(notified="admins", report=report)

    variables["rejection_reason"] = rejection_reason or visit.rejection_reason or NO_REASON
    return _decision_event(
        db,
        event="visit_application_decision",
        status=status,
        slug_prefix="employee_visit_application",
        contact=contact,
        variables=variables,
        push_title="Visit Application {status}",
        push_body=f"Your visit to {variables['customer_name']} has been {{status}}.",
        channels=channels,
    )


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.split("T")[0])
    except ValueError:
        return None


def count_leave_days(from_date: Any, to_date: Any) -> int:
    """Inclusive day count between two dates, ``0`` when either is unreadable."""
    start = _parse_date(from_date)
    end = _parse_date(to_date)
    if start is None or end is None:
        return 0
    return abs((end - start).days) + 1


def notify_leave_application(
    db: Session,
    *,
    event_type: RequestEventType,
    request_id: str,
    status: str | None = None,
    rejection_reason: str | None = None,
    channels: NotificationChannels | None = None,
) -> EventNotification:
    leave = db.get(LeaveApplication, request_id)
    if leave is None:
        raise NotificationSourceNotFoundError("LEAVE_APPLICATION_NOT_FOUND", "Request not found.")
    channels = channels or NotificationChannels.for_session(db)
    contact = resolve_by_employee_id(db, leave.employee_id)

    total_days = leave.total_days or count_leave_days(leave.from_date, leave.to_date)
    variables = {
        "employee_name": _employee_name(leave.employee_name, contact),
        "leave_type": leave.leave_type or NOT_AVAILABLE,
        "start_date": format_human_date(leave.from_date),
        "end_date": format_human_date(leave.to_date),
        "days": str(total_days),
        "reason": leave.reason or NOT_AVAILABLE,
        "link": get_app_link("/dashboard/hr/leaves"),
    }

    if event_type == "new_request":
        report = fan_out(
            db,
            event="leave_application_new",
            slug="admin_new_leave_application",
            variables=variables,
            recipients=_admin_recipients(db),
            channels=channels,
            push=PushMessage(
                title="New Leave Application",
                body=f"{variables['employee_name']} applied for {total_days} day(s) of {variables['leave_type']} leave.",
                url="/dashboard/hr/leaves",
            ),
        )
        return EventNotification(notified="admins", report=report)

    variables["rejection_reason"] = rejection_reason or leave.rejection_reason or NO_REASON
    return _decision_event(
        db,
        event="leave_application_decision",
        status=status,
        slug_prefix="employee_leave_application",
        contact=contact,
        variables=variables,
        push_title="Leave Application {status}",
        push_body=f"Your leave from {variables['start_date']} to {variables['end_date']} has been {{status}}.",
        channels=channels,
    )


def _holiday_date(value: Any, *, fallback: str = NOT_AVAILABLE) -> str:
    parsed = _parse_date(value)
    if parsed is None:
        return fallback if not value else str(value)
    return parsed.strftime(HOLIDAY_DATE_FORMAT)


def notify_holiday(
    db: Session,
    *,
    holiday_id: str,
    channels: NotificationChannels | None = None,
) -> HolidayNotification:
    """Email every active employee about a holiday, once.

    The holiday is marked as announced only when at least one email was
    delivered, so a misconfigured provider can be fixed and the call retried.
    """
    holiday = db.get(Holiday, holiday_id)
    if holiday is None:
        raise NotificationSourceNotFoundError("HOLIDAY_NOT_FOUND", "Holiday not found.")
    if holiday.email_sent:
        return HolidayNotification(message="Email already sent for this holiday", already_sent=True)

    employees = db.scalars(
        select(Employee).where(Employee.is_active.is_(True)).order_by(Employee.id.asc())
    ).all()
    contacts: list[tuple[str, str]] = []
    for employee in employees:
        email = normalize_email(employee.email)
        if email:
            contacts.append((email, employee_display_name(employee)))
    if not contacts:
        return HolidayNotification(message="No active employees with emails found")

    channels = channels or NotificationChannels.for_session(db)
    start_date = _holiday_date(holiday.from_date)
    variables = {
        "holiday_title": holiday.title,
        "holiday_date": start_date,
        "holiday_start_date": start_date,
        "holiday_end_date": _holiday_date(holiday.to_date),
        "holiday_type": holiday.holiday_type or NOT_AVAILABLE,
        "holiday_description": holiday.description or "No additional details provided.",
    }
    result = HolidayNotification(notified_count=len(contacts))
    for email, name in contacts:
        report = fan_out(
            db,
            event="holiday_announcement",
            slug="holiday_announcement",
            variables={**variables, "employee_name": name},
            recipients=RecipientSet(emails={email}),
            channels=channels,
        )
        result.report.merge(report)

    if result.report.succeeded == 0:
        result.message = "All email sending attempts failed."
        return result

    holiday.email_sent = True
    holiday.email_sent_at = datetime.now(timezone.utc)
    db.commit()
    result.sent = True
    return result


def _find_task(db: Session, task_id: str) -> ProjectTask:
    task = db.get(ProjectTask, task_id)
    if task is None:
        task = db.scalar(select(ProjectTask).where(ProjectTask.task_code == task_id).limit(1))
    if task is None:
        raise NotificationSourceNotFoundError("TASK_NOT_FOUND", "Task not found.")
    return task


def _task_telegram_message(variables: Mapping[str, str], assignee_names: list[str], *, event_type: str) -> str:
    heading = "New Task Assigned" if event_type == "task_assigned" else "Task Updated"
    escaped = {key: html.escape(str(value)) for key, value in variables.items()}
    assigned = html.escape(", ".join(assignee_names)) or NOT_AVAILABLE
    return (
        f"<b>{heading}</b>\n\n"
        f"<b>Task:</b> {escaped['task_title']} ({escaped['task_id']})\n"
        f"<b>Project:</b> {escaped['project_title']}\n"
        f"<b>Priority:</b> {escaped['priority']}\n"
        f"<b>Due Date:</b> {escaped['due_date']}\n"
        f"<b>Assigned to:</b> {assigned}\n\n"
        f"<a href=\"{escaped['link']}\">View Dashboard</a>"
    )


def notify_task(
    db: Session,
    *,
    event_type: TaskEventType,
    task_id: str,
    target_user_ids: list[str],
    channels: NotificationChannels | None = None,
) -> TaskNotification:
    """Notify each assignee by email and WhatsApp, then post once to the group chat.

    ``target_user_ids`` may hold employee codes or employee ids.
    """
    task = _find_task(db, task_id)
    channels = channels or NotificationChannels.for_session(db)
    slug = event_type
    variables = {
        "task_id": task.task_code or task.id,
        "task_title": task.task_title or "Untitled Task",
        "project_title": task.project_title or "General Project",
        "priority": task.priority or "Medium",
        "due_date": format_human_date(task.due_date, fallback="No due date"),
        "link": get_app_link("/dashboard/account-details"),
    }
    result = TaskNotification(task_id=variables["task_id"])
    assignees = resolve_task_assignees(db, target_user_ids)

    for assignee in assignees:
        entry: dict[str, Any] = {"email": {}, "whatsapp": {}}
        result.notifications[assignee.employee_id] = entry
        employee_variables = {**variables, "employee_name": assignee.name}
        recipients = RecipientSet(
            emails={assignee.email} if assignee.email else set(),
            phones={assignee.phone} if assignee.phone else set(),
        )
        report = fan_out(
            db,
            event=event_type,
            slug=slug,
            variables=employee_variables,
            recipients=recipients,
            channels=channels,
        )
        for outcome in report.results:
            entry[outcome.channel] = {"success": outcome.success, "status": outcome.status}
        result.report.merge(report)

    _send_push(
        db,
        result.report,
        user_ids=[item.user_id for item in assignees if item.user_id],
        push=PushMessage(
            title="New Task Assigned" if event_type == "task_assigned" else "Task Updated",
            body=f"{variables['task_title']} ({variables['task_id']})",
            url="/dashboard/account-details",
        ),
        event=event_type,
    )

    rendered = _render(db, channel=TemplateChannel.TELEGRAM, slug=slug, variables=variables)
    body = rendered.body if rendered is not None else _task_telegram_message(
        variables,
        [item.name for item in assignees],
        event_type=event_type,
    )
    result.telegram = result.report.record(
        dispatch(
            channels.telegram,
            "",
            NotificationMessage(subject=rendered.subject if rendered else "", body=body),
            context={"event": event_type, "template": slug},
        )
    )
    return result


def _punch_location(location: Mapping[str, Any] | None) -> str:
    if not location:
        return "Location unavailable"
    address = str(location.get("address") or "").strip()
    if address:
        return address
    latitude = location.get("latitude")
    longitude = location.get("longitude")
    if latitude is None or longitude is None:
        return "Location unavailable"
    try:
        return f"{float(latitude):.6f}, {float(longitude):.6f}"
    except (TypeError, ValueError):
        return "Location unavailable"


def _channel_summary(report: FanOutReport, channel: str) -> dict[str, bool]:
    outcomes = [item for item in report.results if item.channel == channel and item.status != DELIVERY_STATUS_SKIPPED]
    return {
        "sent": bool(outcomes),
        "success": bool(outcomes) and all(item.success for item in outcomes),
    }


def notify_attendance_punch(
    db: Session,
    *,
    punch_type: PunchType,
    employee_id: str,
    employee_name: str,
    time: str,
    employee_code: str | None = None,
    employee_email: str | None = None,
    employee_phone: str | None = None,
    attendance_date: str | None = None,
    flag: str | None = None,
    location: Mapping[str, Any] | None = None,
    company_name: str | None = None,
    remarks: str | None = None,
    channels: NotificationChannels | None = None,
) -> dict[str, dict[str, bool]]:
    if punch_type not in PUNCH_TYPES:
        raise ValueError(f"Unsupported punch type: {punch_type}")
    channels = channels or NotificationChannels.for_session(db)
    slug = f"attendance_{punch_type}"

    variables: dict[str, str] = {
        "employee_name": employee_name,
        "employee_code": employee_code or NOT_AVAILABLE,
        "time": format_display_time(time) or time,
        "date": format_human_date(attendance_date, fallback=_today_label()),
        "location": _punch_location(location),
        "remarks": remarks or "No remarks provided",
    }
    if punch_type == "in_time" and flag:
        variables["flag"] = flag
    if punch_type in ("check_in", "check_out") and company_name:
        variables["location_company_name"] = company_name

    email = normalize_email(employee_email)
    phone = normalize_phone(employee_phone)
    employee_report = fan_out(
        db,
        event=slug,
        slug=slug,
        variables=variables,
        recipients=RecipientSet(emails={email} if email else set(), phones={phone} if phone else set()),
        channels=channels,
    )
    admin_report = fan_out(
        db,
        event=slug,
        slug=slug,
        variables=variables,
        recipients=_admin_recipients(db),
        channels=channels,
    )
    logger.info(
        "attendance_punch_notified",
        extra={"employee_id": employee_id, "punch_type": punch_type},
    )
    return {
        "employeeEmail": _channel_summary(employee_report, "email"),
        "employeeWhatsApp": _channel_summary(employee_report, "whatsapp"),
        "hrEmail": _channel_summary(admin_report, "email"),
        "hrWhatsApp": _channel_summary(admin_report, "whatsapp"),
    }
