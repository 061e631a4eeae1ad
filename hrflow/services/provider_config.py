from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrflow.models import EmailProviderProfile, EmailServiceProvider, TelegramSetting, WhatsAppGateway
from hrflow.settings import get_settings

logger = logging.getLogger("hrflow.provider_config")

T = TypeVar("T")

EMAIL_PROFILE_KEY = "email_profile"
WHATSAPP_GATEWAY_KEY = "whatsapp_gateway"
TELEGRAM_SETTING_KEY = "telegram_setting"


@dataclass(frozen=True, slots=True)
class EmailProfileConfig:
    id: int
    name: str
    service_provider: str
    from_email: str
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    resend_api_key: str | None = None


@dataclass(frozen=True, slots=True)
class WhatsAppGatewayConfig:
    id: int
    name: str
    api_secret: str
    account_unique_id: str
    endpoint_url: str


@dataclass(frozen=True, slots=True)
class TelegramConfig:
    id: int
    name: str
    bot_token: str
    chat_id: str


class ProviderConfigCache:
    """Process-wide, time-boxed cache of the active delivery profiles.

    Entries are served for ``ttl_seconds`` after a load. When a reload
    fails the last known value is returned, or ``None`` when nothing was
    ever loaded.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    @property
    def ttl_seconds(self) -> float:
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return max(0, int(get_settings().provider_config_ttl_seconds))

    def get(self, key: str, loader: Callable[[], T | None]) -> T | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and now - entry[0] < self.ttl_seconds:
            return entry[1]

        try:
            value = loader()
        except Exception as exc:
            logger.warning(
                "provider_config_load_failed",
                extra={"key": key, "error": str(exc)[:500], "has_stale_value": entry is not None},
            )
            return entry[1] if entry is not None else None

        with self._lock:
            self._entries[key] = (now, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


provider_config_cache = ProviderConfigCache()


def _load_email_profile(db: Session) -> EmailProfileConfig | None:
    row = db.scalar(
        select(EmailProviderProfile)
        .where(EmailProviderProfile.is_active.is_(True))
        .order_by(EmailProviderProfile.id.asc())
        .limit(1)
    )
    if row is None:
        return None
    return EmailProfileConfig(
        id=row.id,
        name=row.name,
        service_provider=(row.service_provider or EmailServiceProvider.SMTP.value).strip().lower(),
        from_email=row.from_email,
        host=row.host,
        port=row.port,
        username=row.username,
        password=row.password,
        resend_api_key=row.resend_api_key,
    )


def _load_whatsapp_gateway(db: Session) -> WhatsAppGatewayConfig | None:
    row = db.scalar(
        select(WhatsAppGateway)
        .where(WhatsAppGateway.is_active.is_(True))
        .order_by(WhatsAppGateway.id.asc())
        .limit(1)
    )
    if row is None:
        return None
    return WhatsAppGatewayConfig(
        id=row.id,
        name=row.name,
        api_secret=row.api_secret,
        account_unique_id=row.account_unique_id,
        endpoint_url=(row.endpoint_url or "").strip() or get_settings().whatsapp_default_endpoint,
    )


def _load_telegram_setting(db: Session) -> TelegramConfig | None:
    row = db.scalar(
        select(TelegramSetting)
        .where(TelegramSetting.is_active.is_(True))
        .order_by(TelegramSetting.id.asc())
        .limit(1)
    )
    if row is None:
        return None
    return TelegramConfig(id=row.id, name=row.name, bot_token=row.bot_token, chat_id=row.chat_id)


def _rolled_back_on_failure(db: Session, load: Callable[[Session], T | None]) -> Callable[[], T | None]:
    """Wrap ``load`` so a failed query leaves ``db`` usable for the next statement."""

    def _loader() -> T | None:
        try:
            return load(db)
        except Exception:
            db.rollback()
            raise

    return _loader


def get_active_email_profile(db: Session) -> EmailProfileConfig | None:
    return provider_config_cache.get(EMAIL_PROFILE_KEY, _rolled_back_on_failure(db, _load_email_profile))


def get_active_whatsapp_gateway(db: Session) -> WhatsAppGatewayConfig | None:
    return provider_config_cache.get(WHATSAPP_GATEWAY_KEY, _rolled_back_on_failure(db, _load_whatsapp_gateway))


def get_active_telegram_setting(db: Session) -> TelegramConfig | None:
    return provider_config_cache.get(TELEGRAM_SETTING_KEY, _rolled_back_on_failure(db, _load_telegram_setting))
