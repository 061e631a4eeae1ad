from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hrflow.audit import audit_request
from hrflow.db import get_db
from hrflow.errors import ApiError
from hrflow.models import AuditActorType
from hrflow.schemas import (
    AttendancePunchNotifyRequest,
    DecisionNotifyRequest,
    HolidayNotifyRequest,
    NotifyReconciliationRequest,
    TaskNotifyRequest,
)
from hrflow.services.notifications import (
    FanOutReport,
    NotificationSourceNotFoundError,
    notify_advance_salary,
    notify_attendance_punch,
    notify_holiday,
    notify_leave_application,
    notify_new_reconciliation,
    notify_task,
    notify_visit_application,
)

router = APIRouter(prefix="/api/notify", tags=["notify"])


def _audit_notification(
    db: Session,
    request: Request,
    *,
    event: str,
    entity_type: str,
    entity_id: str,
    report: FanOutReport | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    summary: dict[str, Any] = {"event": event, **(details or {})}
    if report is not None:
        summary.update(attempted=report.attempted, succeeded=report.succeeded)
    audit_request(
        db,
        request,
        actor_type=AuditActorType.SYSTEM,
        action="NOTIFICATION_DISPATCHED",
        success=success,
        entity_type=entity_type,
        entity_id=entity_id,
        details=summary,
    )


def _not_found(exc: NotificationSourceNotFoundError) -> ApiError:
    return ApiError(status_code=404, code=exc.code, message=exc.message)


@router.post("/reconciliation")
def notify_reconciliation_endpoint(
    payload: NotifyReconciliationRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        report = notify_new_reconciliation(db, reconciliation_id=payload.reconciliation_id)
    except NotificationSourceNotFoundError as exc:
        raise _not_found(exc) from exc

    _audit_notification(
        db,
        request,
        event="reconciliation_new",
        entity_type="reconciliation_request",
        entity_id=payload.reconciliation_id,
        report=report,
    )
    return {"success": True, "recipients": report.attempted, "delivered": report.succeeded}


@router.post("/advance-salary")
def notify_advance_salary_endpoint(
    payload: DecisionNotifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        result = notify_advance_salary(
            db,
            event_type=payload.type,
            request_id=payload.request_id,
            status=payload.status,
            rejection_reason=payload.rejection_reason,
        )
    except NotificationSourceNotFoundError as exc:
        raise _not_found(exc) from exc

    _audit_notification(
        db,
        request,
        event=f"advance_salary_{payload.type}",
        entity_type="advance_salary_request",
        entity_id=payload.request_id,
        report=result.report,
        details={"notified": result.notified},
    )
    if result.notified is None:
        return {"success": True, "notified": None, "message": result.message}
    return {"success": True, "notified": result.notified, "recipients": result.report.attempted}


@router.post("/visit")
def notify_visit_endpoint(
    payload: DecisionNotifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        result = notify_visit_application(
            db,
            event_type=payload.type,
            request_id=payload.request_id,
            status=payload.status,
            rejection_reason=payload.rejection_reason,
        )
    except NotificationSourceNotFoundError as exc:
        raise _not_found(exc) from exc

    _audit_notification(
        db,
        request,
        event=f"visit_application_{payload.type}",
        entity_type="visit_application",
        entity_id=payload.request_id,
        report=result.report,
        details={"notified": result.notified},
    )
    if result.notified is None:
        return {"success": True, "notified": None, "message": result.message}
    return {"success": True, "notified": result.notified, "recipients": result.report.attempted}


@router.post("/leave")
def notify_leave_endpoint(
    payload: DecisionNotifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        result = notify_leave_application(
            db,
            event_type=payload.type,
            request_id=payload.request_id,
            status=payload.status,
            rejection_reason=payload.rejection_reason,
        )
    except NotificationSourceNotFoundError as exc:
        raise _not_found(exc) from exc

    _audit_notification(
        db,
        request,
        event=f"leave_application_{payload.type}",
        entity_type="leave_application",
        entity_id=payload.request_id,
        report=result.report,
        details={"notified": result.notified},
    )
    if result.notified is None:
        return {"success": True, "notified": None, "message": result.message}
    return {"success": True, "notified": result.notified, "recipients": result.report.attempted}


@router.post("/holiday")
def notify_holiday_endpoint(
    payload: HolidayNotifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        result = notify_holiday(db, holiday_id=payload.holiday_id)
    except NotificationSourceNotFoundError as exc:
        raise _not_found(exc) from exc

    if result.notified_count and not result.sent:
        _audit_notification(
            db,
            request,
            event="holiday_announcement",
            entity_type="holiday",
            entity_id=payload.holiday_id,
            report=result.report,
            success=False,
        )
        raise ApiError(
            status_code=502,
            code="HOLIDAY_NOTIFICATION_FAILED",
            message="All email sending attempts failed. Check the email configuration and the holiday_announcement template.",
        )
    if not result.sent:
        return {"success": True, "notifiedCount": 0, "message": result.message}

    _audit_notification(
        db,
        request,
        event="holiday_announcement",
        entity_type="holiday",
        entity_id=payload.holiday_id,
        report=result.report,
        details={"notified_count": result.notified_count},
    )
    return {"success": True, "notifiedCount": result.notified_count, "delivered": result.report.succeeded}


@router.post("/task")
def notify_task_endpoint(
    payload: TaskNotifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    try:
        result = notify_task(
            db,
            event_type=payload.type,
            task_id=payload.task_id,
            target_user_ids=payload.target_user_ids,
        )
    except NotificationSourceNotFoundError as exc:
        raise _not_found(exc) from exc

    _audit_notification(
        db,
        request,
        event=payload.type,
        entity_type="project_task",
        entity_id=payload.task_id,
        report=result.report,
        details={"assignee_count": len(result.notifications)},
    )
    return {
        "success": True,
        "message": "Task notifications processed",
        "type": payload.type,
        "notifications": result.notifications,
        "telegram": result.telegram.to_dict() if result.telegram is not None else None,
    }


@router.post("/attendance")
def notify_attendance_endpoint(
    payload: AttendancePunchNotifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    request.state.employee_id = payload.employee_id
    notifications = notify_attendance_punch(
        db,
        punch_type=payload.type,
        employee_id=payload.employee_id,
        employee_name=payload.employee_name,
        time=payload.time,
        employee_code=payload.employee_code,
        employee_email=payload.employee_email,
        employee_phone=payload.employee_phone,
        attendance_date=payload.date,
        flag=payload.flag,
        location=payload.location.model_dump() if payload.location is not None else None,
        company_name=payload.company_name,
        remarks=payload.remarks,
    )
    _audit_notification(
        db,
        request,
        event=f"attendance_{payload.type}",
        entity_type="employee",
        entity_id=payload.employee_id,
        details={"notifications": notifications},
    )
    return {
        "success": True,
        "message": "Notifications processed",
        "type": payload.type,
        "notifications": notifications,
    }
