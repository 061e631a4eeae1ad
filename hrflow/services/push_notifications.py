from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timezone
import logging
from typing import Any

from pywebpush import WebPushException, webpush
from sqlalchemy import select
from sqlalchemy.orm import Session

from hrflow.errors import ApiError
from hrflow.models import AppUser, UserPushSubscription
from hrflow.services.recipients import chunked
from hrflow.settings import get_settings, is_push_enabled

logger = logging.getLogger("hrflow.push")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_push_public_config() -> dict[str, Any]:
    settings = get_settings()
    enabled = is_push_enabled()
    return {
        "enabled": enabled,
        "vapid_public_key": settings.push_vapid_public_key if enabled else None,
    }


def _parse_subscription_payload(subscription: dict[str, Any]) -> tuple[str, str, str]:
    endpoint = str(subscription.get("endpoint") or "").strip()
    keys = subscription.get("keys")
    if not isinstance(keys, dict):
        raise ApiError(
            status_code=400,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Subscription keys are missing.",
        )

    p256dh = str(keys.get("p256dh") or "").strip()
    auth = str(keys.get("auth") or "").strip()
    if not endpoint or not p256dh or not auth:
        raise ApiError(
            status_code=400,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Subscription payload is incomplete.",
        )
    return endpoint, p256dh, auth


def _resolve_active_user(db: Session, *, user_id: str) -> AppUser:
    user = db.get(AppUser, user_id)
    if user is None:
        raise ApiError(status_code=404, code="USER_NOT_FOUND", message="User not found.")
    if not user.is_active:
        raise ApiError(
            status_code=403,
            code="USER_INACTIVE",
            message="Inactive user cannot register push notifications.",
        )
    return user


def upsert_user_push_subscription(
    db: Session,
    *,
    user_id: str,
    subscription: dict[str, Any],
    user_agent: str | None,
) -> UserPushSubscription:
    if not is_push_enabled():
        raise ApiError(
            status_code=503,
            code="PUSH_NOT_CONFIGURED",
            message="Push notification service is not configured.",
        )

    user = _resolve_active_user(db, user_id=user_id)
    endpoint, p256dh, auth = _parse_subscription_payload(subscription)
    now_utc = _utcnow()

    row = db.scalar(select(UserPushSubscription).where(UserPushSubscription.endpoint == endpoint))
    if row is None:
        row = UserPushSubscription(
            user_id=user.id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            is_active=True,
            user_agent=user_agent,
            last_error=None,
            last_seen_at=now_utc,
        )
        db.add(row)
    else:
        row.user_id = user.id
        row.p256dh = p256dh
        row.auth = auth
        row.is_active = True
        row.user_agent = user_agent
        row.last_error = None
        row.last_seen_at = now_utc

    db.commit()
    db.refresh(row)
    return row


def deactivate_user_push_subscription(db: Session, *, user_id: str, endpoint: str) -> bool:
    normalized_endpoint = endpoint.strip()
    if not normalized_endpoint:
        raise ApiError(
            status_code=400,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Endpoint is required.",
        )

    row = db.scalar(
        select(UserPushSubscription).where(
            UserPushSubscription.user_id == user_id,
            UserPushSubscription.endpoint == normalized_endpoint,
        )
    )
    if row is None:
        return False

    if row.is_active:
        row.is_active = False
        row.last_seen_at = _utcnow()
        db.commit()
    return True


def _send_to_subscription_row(
    row: UserPushSubscription,
    *,
    title: str,
    body: str,
    data: dict[str, Any] | None,
) -> tuple[bool, str | None, int | None]:
    if not is_push_enabled():
        return False, "push_disabled", None

    settings = get_settings()
    payload = {
        "title": title,
        "body": body,
        "data": data or {},
        "ts_utc": _utcnow().isoformat(),
    }
    try:
        webpush(
            subscription_info={
                "endpoint": row.endpoint,
                "keys": {
                    "p256dh": row.p256dh,
                    "auth": row.auth,
                },
            },
            data=json.dumps(payload),
            vapid_private_key=settings.push_vapid_private_key,
            vapid_claims={"sub": settings.push_vapid_subject},
            ttl=60,
        )
        return True, None, None
    except WebPushException as exc:
        status_code: int | None = None
        if exc.response is not None:
            status_code = exc.response.status_code
        return False, str(exc), status_code
    except Exception as exc:
        return False, str(exc), None


def send_push_to_subscriptions(
    db: Session,
    *,
    subscriptions: list[UserPushSubscription],
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    sent = 0
    failed = 0
    deactivated = 0
    failures: list[dict[str, Any]] = []
    now_utc = _utcnow()

    for row in subscriptions:
        ok, error_text, status_code = _send_to_subscription_row(row, title=title, body=body, data=data)
        row.last_seen_at = now_utc
        if ok:
            sent += 1
            row.last_error = None
            continue

        failed += 1
        row.last_error = error_text
        # Gone or unknown endpoints never recover.
        if status_code in {404, 410} and row.is_active:
            row.is_active = False
            deactivated += 1
        failures.append(
            {
                "subscription_id": row.id,
                "user_id": row.user_id,
                "status_code": status_code,
                "error": error_text,
            }
        )

    db.commit()
    return {
        "total_targets": len(subscriptions),
        "sent": sent,
        "failed": failed,
        "deactivated": deactivated,
        "failures": failures,
    }


def list_active_push_subscriptions(db: Session, *, user_ids: Iterable[str]) -> list[UserPushSubscription]:
    values = sorted({item for item in user_ids if item})
    rows: list[UserPushSubscription] = []
    for chunk in chunked(values):
        stmt = (
            select(UserPushSubscription)
            .join(AppUser, AppUser.id == UserPushSubscription.user_id)
            .where(
                UserPushSubscription.user_id.in_(chunk),
                UserPushSubscription.is_active.is_(True),
                AppUser.is_active.is_(True),
            )
            .order_by(UserPushSubscription.id.desc())
        )
        rows.extend(db.scalars(stmt).all())
    return rows


def send_push_to_users(
    db: Session,
    *,
    user_ids: Iterable[str],
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    target_ids = sorted({item for item in user_ids if item})
    if not target_ids or not is_push_enabled():
        return {
            "total_targets": 0,
            "sent": 0,
            "failed": 0,
            "deactivated": 0,
            "failures": [],
            "user_ids": target_ids,
        }

    subscriptions = list_active_push_subscriptions(db, user_ids=target_ids)
    result = send_push_to_subscriptions(db, subscriptions=subscriptions, title=title, body=body, data=data)
    result["user_ids"] = target_ids
    logger.info(
        "push_dispatch_complete",
        extra={"user_count": len(target_ids), "sent": result["sent"], "failed": result["failed"]},
    )
    return result
