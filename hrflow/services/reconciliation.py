from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrflow.models import (
    AttendanceRecord,
    Employee,
    ReconciliationKind,
    ReconciliationRequest,
    ReconciliationStatus,
)
from hrflow.services.attendance_times import FLAG_PRESENT, determine_attendance_flag, format_display_time

logger = logging.getLogger("hrflow.reconciliation")

ReconciliationAction = Literal["approve", "reject"]

APPROVAL_STATUS_APPROVED = "Approved"


class ReconciliationError(Exception):
    code = "RECONCILIATION_ERROR"


class ReconciliationNotFoundError(ReconciliationError):
    code = "RECONCILIATION_NOT_FOUND"


class ReconciliationConflictError(ReconciliationError):
    code = "RECONCILIATION_ALREADY_DECIDED"

    def __init__(self, reconciliation_id: str, status: str):
        super().__init__(f"Reconciliation request {reconciliation_id} is already {status}.")
        self.reconciliation_id = reconciliation_id
        self.status = status


class ReconciliationTransactionError(ReconciliationError):
    code = "RECONCILIATION_TRANSACTION_FAILED"


@dataclass(frozen=True, slots=True)
class ReconciliationDecision:
    reconciliation_id: str
    kind: str
    action: str
    status: str
    reviewer_id: str
    employee_id: str
    attendance_record_id: str | None = None
    attendance_created: bool = False
    changed_fields: tuple[str, ...] = ()


@dataclass(slots=True)
class BatchDecisionOutcome:
    reconciliation_id: str
    success: bool
    code: str | None = None
    error: str | None = None
    decision: ReconciliationDecision | None = field(default=None, repr=False)


def attendance_record_key(employee_id: str, attendance_date: str | None) -> tuple[str, date]:
    date_part = (attendance_date or "").split("T")[0].strip()
    if not employee_id or not date_part:
        raise ReconciliationTransactionError("Invalid attendance date in request.")
    try:
        parsed = date.fromisoformat(date_part)
    except ValueError as exc:
        raise ReconciliationTransactionError(f"Invalid attendance date in request: {date_part}") from exc
    return f"{employee_id}_{parsed.isoformat()}", parsed


def _mark_reviewed(
    reconciliation: ReconciliationRequest,
    *,
    status: ReconciliationStatus,
    reviewer_id: str,
    now_utc: datetime,
) -> None:
    reconciliation.status = status.value
    reconciliation.reviewed_by = reviewer_id
    reconciliation.reviewed_at = now_utc
    reconciliation.updated_at = now_utc


def _attendance_updates(reconciliation: ReconciliationRequest, *, reviewer_id: str) -> dict[str, Any]:
    updates: dict[str, Any] = {
        "updated_by": reviewer_id,
        "is_reconciled": True,
        "reconciliation_id": reconciliation.id,
        "approval_status": APPROVAL_STATUS_APPROVED,
    }
    if reconciliation.requested_in_time:
        in_time = format_display_time(reconciliation.requested_in_time)
        updates["in_time"] = in_time
        updates["flag"] = determine_attendance_flag(in_time)
    if reconciliation.requested_out_time:
        updates["out_time"] = format_display_time(reconciliation.requested_out_time)
    if reconciliation.in_time_remarks:
        updates["in_time_remarks"] = reconciliation.in_time_remarks
    if reconciliation.out_time_remarks:
        updates["out_time_remarks"] = reconciliation.out_time_remarks
    return updates


def _apply_attendance_approval(
    db: Session,
    reconciliation: ReconciliationRequest,
    *,
    reviewer_id: str,
) -> tuple[str, bool, tuple[str, ...]]:
    record_id, record_date = attendance_record_key(reconciliation.employee_id, reconciliation.attendance_date)
    record = db.scalar(
        select(AttendanceRecord).where(AttendanceRecord.id == record_id).with_for_update()
    )
    updates = _attendance_updates(reconciliation, reviewer_id=reviewer_id)

    if record is None:
        employee = db.get(Employee, reconciliation.employee_id)
        record = AttendanceRecord(
            id=record_id,
            employee_id=reconciliation.employee_id,
            attendance_date=record_date,
            employee_name=(
                reconciliation.employee_name
                or (employee.full_name if employee is not None else None)
                or "Unknown"
            ),
            employee_code=(employee.employee_code if employee is not None else None) or "",
            designation=(employee.designation if employee is not None else None) or "",
            department=(employee.department if employee is not None else None) or "",
            shift_id=(employee.shift_id if employee is not None else None) or "",
            flag=FLAG_PRESENT,
        )
        for key, value in updates.items():
            setattr(record, key, value)
        db.add(record)
        return record_id, True, tuple(sorted(updates))

    changed = []
    for key, value in updates.items():
        if getattr(record, key) != value:
            setattr(record, key, value)
            changed.append(key)
    return record_id, False, tuple(sorted(changed))


def decide_reconciliation(
    db: Session,
    *,
    reconciliation_id: str,
    action: ReconciliationAction,
    kind: ReconciliationKind,
    reviewer_id: str,
    now_utc: datetime | None = None,
) -> ReconciliationDecision:
    """Apply an approve/reject decision in one transaction.

    The reconciliation row is locked for the duration; a request that is no
    longer pending raises ``ReconciliationConflictError`` without writing.
    Everything else that goes wrong rolls back and surfaces as
    ``ReconciliationTransactionError``.
    """
    if action not in ("approve", "reject"):
        raise ValueError(f"Unsupported reconciliation action: {action}")

    reference_utc = now_utc or datetime.now(timezone.utc)
    try:
        reconciliation = db.scalar(
            select(ReconciliationRequest)
            .where(
                ReconciliationRequest.id == reconciliation_id,
                ReconciliationRequest.kind == kind.value,
            )
            .with_for_update()
        )
        if reconciliation is None:
            raise ReconciliationNotFoundError("Reconciliation request not found.")
        if reconciliation.status != ReconciliationStatus.PENDING.value:
            raise ReconciliationConflictError(reconciliation.id, reconciliation.status)

        record_id: str | None = None
        created = False
        changed: tuple[str, ...] = ()

        if action == "reject":
            _mark_reviewed(
                reconciliation,
                status=ReconciliationStatus.REJECTED,
                reviewer_id=reviewer_id,
                now_utc=reference_utc,
            )
        elif kind == ReconciliationKind.BREAKTIME:
            # Break records are not touched; only the request itself is approved.
            _mark_reviewed(
                reconciliation,
                status=ReconciliationStatus.APPROVED,
                reviewer_id=reviewer_id,
                now_utc=reference_utc,
            )
        else:
            record_id, created, changed = _apply_attendance_approval(
                db,
                reconciliation,
                reviewer_id=reviewer_id,
            )
            _mark_reviewed(
                reconciliation,
                status=ReconciliationStatus.APPROVED,
                reviewer_id=reviewer_id,
                now_utc=reference_utc,
            )

        decision = ReconciliationDecision(
            reconciliation_id=reconciliation.id,
            kind=kind.value,
            action=action,
            status=reconciliation.status,
            reviewer_id=reviewer_id,
            employee_id=reconciliation.employee_id,
            attendance_record_id=record_id,
            attendance_created=created,
            changed_fields=changed,
        )
        db.commit()
    except ReconciliationError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        logger.exception(
            "reconciliation_transaction_failed",
            extra={"reconciliation_id": reconciliation_id, "action": action, "kind": kind.value},
        )
        raise ReconciliationTransactionError(str(exc) or "Reconciliation transaction failed.") from exc

    logger.info(
        "reconciliation_decided",
        extra={
            "reconciliation_id": decision.reconciliation_id,
            "action": decision.action,
            "kind": decision.kind,
            "status": decision.status,
            "reviewer_id": reviewer_id,
            "attendance_record_id": decision.attendance_record_id,
            "attendance_created": decision.attendance_created,
        },
    )
    return decision


def decide_reconciliations(
    db: Session,
    *,
    reconciliation_ids: list[str],
    action: ReconciliationAction,
    kind: ReconciliationKind,
    reviewer_id: str,
) -> list[BatchDecisionOutcome]:
    outcomes: list[BatchDecisionOutcome] = []
    seen: set[str] = set()
    for reconciliation_id in reconciliation_ids:
        if reconciliation_id in seen:
            continue
        seen.add(reconciliation_id)
        try:
            decision = decide_reconciliation(
                db,
                reconciliation_id=reconciliation_id,
                action=action,
                kind=kind,
                reviewer_id=reviewer_id,
            )
        except ReconciliationError as exc:
            outcomes.append(
                BatchDecisionOutcome(
                    reconciliation_id=reconciliation_id,
                    success=False,
                    code=exc.code,
                    error=str(exc),
                )
            )
            continue
        outcomes.append(
            BatchDecisionOutcome(
                reconciliation_id=reconciliation_id,
                success=True,
                decision=decision,
            )
        )
    return outcomes
