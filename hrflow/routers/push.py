from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hrflow.db import get_db
from hrflow.schemas import PushSubscriptionRequest, PushUnsubscribeRequest
from hrflow.security import require_identity
from hrflow.services.push_notifications import (
    deactivate_user_push_subscription,
    get_push_public_config,
    upsert_user_push_subscription,
)

router = APIRouter(prefix="/api/push", tags=["push"])


@router.get("/config")
def push_config() -> dict[str, Any]:
    return get_push_public_config()


@router.post("/subscribe")
def push_subscribe(
    payload: PushSubscriptionRequest,
    request: Request,
    identity: dict[str, Any] = Depends(require_identity),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    row = upsert_user_push_subscription(
        db,
        user_id=str(identity["sub"]),
        subscription=payload.model_dump(),
        user_agent=request.headers.get("user-agent"),
    )
    return {"ok": True, "subscription_id": row.id}


@router.post("/unsubscribe")
def push_unsubscribe(
    payload: PushUnsubscribeRequest,
    identity: dict[str, Any] = Depends(require_identity),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    removed = deactivate_user_push_subscription(db, user_id=str(identity["sub"]), endpoint=payload.endpoint)
    return {"ok": removed}
