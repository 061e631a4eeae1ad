from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from hrflow.audit import audit_request
from hrflow.db import get_db
from hrflow.errors import ApiError
from hrflow.models import AuditActorType, ReconciliationKind
from hrflow.schemas import (
    BatchDecisionRequest,
    BatchDecisionResponse,
    BatchDecisionResult,
    DecisionRequest,
    DecisionResponse,
)
from hrflow.security import require_identity
from hrflow.services.notifications import run_reconciliation_decision_notification
from hrflow.services.reconciliation import (
    ReconciliationConflictError,
    ReconciliationError,
    ReconciliationNotFoundError,
    decide_reconciliation,
    decide_reconciliations,
)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


def _audit_decision(
    db: Session,
    request: Request,
    *,
    reviewer_id: str,
    reconciliation_id: str,
    success: bool,
    details: dict[str, Any],
) -> None:
    audit_request(
        db,
        request,
        actor_type=AuditActorType.USER,
        actor_id=reviewer_id,
        action="RECONCILIATION_DECIDED",
        success=success,
        entity_type="reconciliation_request",
        entity_id=reconciliation_id,
        details=details,
    )


@router.post("/reconcile/decision", response_model=DecisionResponse)
def decide_reconciliation_endpoint(
    payload: DecisionRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: dict[str, Any] = Depends(require_identity),
    db: Session = Depends(get_db),
) -> DecisionResponse:
    reviewer_id = str(identity["sub"])
    audit_details = {"action": payload.action, "type": payload.type}
    try:
        decision = decide_reconciliation(
            db,
            reconciliation_id=payload.reconciliation_id,
            action=payload.action,
            kind=ReconciliationKind(payload.type),
            reviewer_id=reviewer_id,
        )
    except ReconciliationNotFoundError as exc:
        raise ApiError(status_code=404, code=exc.code, message=str(exc)) from exc
    except ReconciliationConflictError as exc:
        _audit_decision(
            db,
            request,
            reviewer_id=reviewer_id,
            reconciliation_id=payload.reconciliation_id,
            success=False,
            details={**audit_details, "error": exc.code, "current_status": exc.status},
        )
        raise ApiError(status_code=409, code=exc.code, message=str(exc)) from exc
    except ReconciliationError as exc:
        _audit_decision(
            db,
            request,
            reviewer_id=reviewer_id,
            reconciliation_id=payload.reconciliation_id,
            success=False,
            details={**audit_details, "error": exc.code},
        )
        raise ApiError(
            status_code=500,
            code=exc.code,
            message="Reconciliation decision could not be applied.",
        ) from exc

    _audit_decision(
        db,
        request,
        reviewer_id=reviewer_id,
        reconciliation_id=decision.reconciliation_id,
        success=True,
        details={
            **audit_details,
            "status": decision.status,
            "attendance_record_id": decision.attendance_record_id,
            "attendance_created": decision.attendance_created,
            "changed_fields": list(decision.changed_fields),
        },
    )
    background_tasks.add_task(run_reconciliation_decision_notification, decision.reconciliation_id)
    return DecisionResponse(reconciliation_id=decision.reconciliation_id, status=decision.status)


@router.post("/reconcile/decision/batch", response_model=BatchDecisionResponse)
def decide_reconciliation_batch_endpoint(
    payload: BatchDecisionRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: dict[str, Any] = Depends(require_identity),
    db: Session = Depends(get_db),
) -> BatchDecisionResponse:
    reviewer_id = str(identity["sub"])
    outcomes = decide_reconciliations(
        db,
        reconciliation_ids=payload.reconciliation_ids,
        action=payload.action,
        kind=ReconciliationKind(payload.type),
        reviewer_id=reviewer_id,
    )

    for outcome in outcomes:
        _audit_decision(
            db,
            request,
            reviewer_id=reviewer_id,
            reconciliation_id=outcome.reconciliation_id,
            success=outcome.success,
            details={
                "action": payload.action,
                "type": payload.type,
                "batch": True,
                "error": outcome.code,
            },
        )
        if outcome.success:
            background_tasks.add_task(run_reconciliation_decision_notification, outcome.reconciliation_id)

    return BatchDecisionResponse(
        success=all(item.success for item in outcomes),
        results=[
            BatchDecisionResult(
                reconciliation_id=item.reconciliation_id,
                success=item.success,
                code=item.code,
                error=item.error,
            )
            for item in outcomes
        ],
    )
