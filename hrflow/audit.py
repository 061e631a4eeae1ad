from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from hrflow.models import AuditActorType, AuditLog

logger = logging.getLogger("hrflow.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog | None:
    """Persist an audit row in its own commit.

    A failed write is rolled back and logged, and ``None`` is returned; the
    caller's outcome never depends on the audit trail.
    """
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        details=details or {},
    )
    db.add(entry)
    log_context = {
        "request_id": request_id,
        "action": action,
        "actor_type": actor_type.value,
        "actor_id": actor_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "success": success,
    }
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=log_context)
        return None

    logger.info("audit_event", extra={**log_context, "details": details or {}})
    return entry


def audit_request(
    db: Session,
    request: Request,
    *,
    action: str,
    success: bool,
    entity_type: str,
    entity_id: str,
    details: dict[str, Any] | None = None,
    actor_type: AuditActorType | None = None,
    actor_id: str | None = None,
) -> AuditLog | None:
    """Audit an HTTP-triggered action using the actor and request id on ``request.state``."""
    state_actor_id = getattr(request.state, "actor_id", None)
    if actor_type is None:
        actor_type = AuditActorType.USER if getattr(request.state, "actor", None) == "user" else AuditActorType.SYSTEM
    return log_audit(
        db,
        actor_type=actor_type,
        actor_id=str(actor_id or state_actor_id or "system"),
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )
