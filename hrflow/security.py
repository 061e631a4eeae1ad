from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from hrflow.errors import ApiError
from hrflow.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

IDENTITY_TOKEN_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_identity_token(
    *,
    sub: str,
    email: str | None = None,
    expires_delta: timedelta = timedelta(hours=1),
) -> str:
    settings = get_settings()
    now = _utcnow()
    claims: dict[str, Any] = {
        "sub": sub,
        "email": email,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "jti": str(uuid4()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=IDENTITY_TOKEN_ALGORITHM)


def verify_identity_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not (settings.jwt_secret or "").strip():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Identity verification is not configured.")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[IDENTITY_TOKEN_ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def require_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    """Verify the bearer token; the ``sub`` claim is the caller's uid."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = verify_identity_token(credentials.credentials)

    request.state.actor = "user"
    request.state.actor_id = str(payload["sub"])
    return payload
