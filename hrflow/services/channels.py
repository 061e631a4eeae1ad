from __future__ import annotations

from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import make_msgid
import html
import logging
import re
import smtplib
from typing import Any

import httpx
from sqlalchemy.orm import Session

from hrflow.models import EmailServiceProvider
from hrflow.services.provider_config import (
    EmailProfileConfig,
    get_active_email_profile,
    get_active_telegram_setting,
    get_active_whatsapp_gateway,
)
from hrflow.settings import get_settings, is_push_enabled

logger = logging.getLogger("hrflow.channels")

DELIVERY_STATUS_SENT = "sent"
DELIVERY_STATUS_FAILED = "failed"
DELIVERY_STATUS_SKIPPED = "skipped"

_HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
_NON_DIGIT_PATTERN = re.compile(r"\D")


class DeliveryError(Exception):
    """A single send failed. Raised by channels, caught by ``dispatch``."""


class DeliverySkipped(DeliveryError):
    """The channel is disabled or not configured; nothing was attempted."""


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    success: bool
    provider_message_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    channel: str
    destination: str
    status: str
    provider_message_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == DELIVERY_STATUS_SENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "destination": self.destination,
            "status": self.status,
            "success": self.success,
            "provider_message_id": self.provider_message_id,
            "error": self.error,
        }


class NotificationChannel:
    name: str = "base"

    def send(self, destination: str, message: NotificationMessage) -> DeliveryResult:
        raise NotImplementedError

    def reset(self) -> None:
        """Restore shared state after ``send`` raised unexpectedly."""


class SessionChannel(NotificationChannel):
    """A channel that reads its configuration through a shared ``Session``."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def reset(self) -> None:
        self.db.rollback()


def html_to_text(value: str) -> str:
    return html.unescape(_HTML_TAG_PATTERN.sub("", value or "")).strip()


class EmailProvider:
    def send(self, profile: EmailProfileConfig, *, to: str, subject: str, html_body: str) -> str | None:
        raise NotImplementedError


class SmtpEmailProvider(EmailProvider):
    def send(self, profile: EmailProfileConfig, *, to: str, subject: str, html_body: str) -> str | None:
        if not profile.host:
            raise DeliveryError("SMTP host is not configured.")
        port = int(profile.port or 587)
        timeout = float(get_settings().delivery_timeout_seconds)

        email_message = EmailMessage()
        email_message["From"] = profile.from_email
        email_message["To"] = to
        email_message["Subject"] = subject
        message_id = make_msgid()
        email_message["Message-ID"] = message_id
        email_message.set_content(html_to_text(html_body) or subject)
        email_message.add_alternative(html_body, subtype="html")

        smtp_class = smtplib.SMTP_SSL if port == 465 else smtplib.SMTP
        try:
            with smtp_class(profile.host, port, timeout=timeout) as smtp_client:
                if port != 465:
                    smtp_client.ehlo()
                    if smtp_client.has_extn("starttls"):
                        smtp_client.starttls()
                        smtp_client.ehlo()
                if profile.username:
                    smtp_client.login(profile.username, profile.password or "")
                smtp_client.send_message(email_message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP send failed: {exc}") from exc
        return message_id


class ResendEmailProvider(EmailProvider):
    def send(self, profile: EmailProfileConfig, *, to: str, subject: str, html_body: str) -> str | None:
        if not profile.resend_api_key:
            raise DeliveryError("Resend API key missing.")
        settings = get_settings()
        try:
            response = httpx.post(
                f"{settings.resend_api_base_url.rstrip('/')}/emails",
                headers={"Authorization": f"Bearer {profile.resend_api_key}"},
                json={
                    "from": profile.from_email,
                    "to": [to],
                    "subject": subject,
                    "html": html_body,
                },
                timeout=float(settings.delivery_timeout_seconds),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Resend send failed: {exc}") from exc
        payload = response.json() if response.content else {}
        return str(payload.get("id")) if isinstance(payload, dict) and payload.get("id") else None


EMAIL_PROVIDERS: dict[str, EmailProvider] = {
    EmailServiceProvider.SMTP.value: SmtpEmailProvider(),
    EmailServiceProvider.RESEND_API.value: ResendEmailProvider(),
}


class EmailChannel(SessionChannel):
    name = "email"

    def __init__(self, db: Session, providers: dict[str, EmailProvider] | None = None) -> None:
        super().__init__(db)
        self.providers = providers or EMAIL_PROVIDERS

    def send(self, destination: str, message: NotificationMessage) -> DeliveryResult:
        if not get_settings().notification_email_enabled:
            raise DeliverySkipped("Email notifications are disabled.")
        profile = get_active_email_profile(self.db)
        if profile is None:
            raise DeliveryError("No active email configuration found.")
        provider = self.providers.get(profile.service_provider)
        if provider is None:
            raise DeliveryError(f"Unsupported email provider: {profile.service_provider}")

        message_id = provider.send(profile, to=destination, subject=message.subject, html_body=message.body)
        return DeliveryResult(
            success=True,
            provider_message_id=message_id,
            details={"profile_id": profile.id, "provider": profile.service_provider},
        )


class WhatsAppChannel(SessionChannel):
    name = "whatsapp"

    def send(self, destination: str, message: NotificationMessage) -> DeliveryResult:
        gateway = get_active_whatsapp_gateway(self.db)
        if gateway is None:
            raise DeliveryError("No active WhatsApp gateway found.")
        recipient = _NON_DIGIT_PATTERN.sub("", destination or "")
        if not recipient:
            raise DeliveryError("Phone number has no digits.")

        try:
            response = httpx.post(
                gateway.endpoint_url,
                data={
                    "secret": gateway.api_secret,
                    "account": gateway.account_unique_id,
                    "recipient": recipient,
                    "type": "text",
                    "message": message.body,
                },
                timeout=float(get_settings().delivery_timeout_seconds),
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"WhatsApp gateway request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        provider_status = payload.get("status")
        if not response.is_success or provider_status not in (200, "200", "success"):
            raise DeliveryError(
                str(payload.get("message") or f"Provider error (HTTP {response.status_code})")
            )

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        message_id = data.get("messageId") or data.get("id")
        return DeliveryResult(
            success=True,
            provider_message_id=str(message_id) if message_id is not None else None,
            details={"gateway_id": gateway.id},
        )


class TelegramChannel(SessionChannel):
    """Posts to the configured group chat; ``destination`` overrides the chat id."""

    name = "telegram"

    def send(self, destination: str, message: NotificationMessage) -> DeliveryResult:
        config = get_active_telegram_setting(self.db)
        if config is None:
            raise DeliverySkipped("No active Telegram configuration.")
        chat_id = (destination or "").strip() or config.chat_id
        if not config.bot_token or not chat_id:
            raise DeliveryError("Telegram configuration is incomplete.")

        settings = get_settings()
        try:
            response = httpx.post(
                f"{settings.telegram_api_base_url.rstrip('/')}/bot{config.bot_token}/sendMessage",
                json={"chat_id": chat_id, "parse_mode": "HTML", "text": message.body},
                timeout=float(settings.delivery_timeout_seconds),
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Telegram request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not response.is_success or not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description") if isinstance(payload, dict) else None
            raise DeliveryError(str(description or f"Telegram API error (HTTP {response.status_code})"))

        result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
        message_id = result.get("message_id")
        return DeliveryResult(
            success=True,
            provider_message_id=str(message_id) if message_id is not None else None,
            details={"chat_id": chat_id},
        )


def dispatch(
    channel: NotificationChannel,
    destination: str,
    message: NotificationMessage,
    *,
    context: dict[str, Any] | None = None,
) -> DeliveryOutcome:
    """Send one message and report the outcome; never raises."""
    log_context = {"channel": channel.name, "destination": destination, **(context or {})}
    try:
        result = channel.send(destination, message)
    except DeliverySkipped as exc:
        logger.info("notification_delivery_skipped", extra={**log_context, "reason": str(exc)})
        return DeliveryOutcome(
            channel=channel.name,
            destination=destination,
            status=DELIVERY_STATUS_SKIPPED,
            error=str(exc),
        )
    except DeliveryError as exc:
        logger.warning("notification_delivery_failed", extra={**log_context, "error": str(exc)[:500]})
        return DeliveryOutcome(
            channel=channel.name,
            destination=destination,
            status=DELIVERY_STATUS_FAILED,
            error=str(exc)[:500],
        )
    except Exception as exc:
        logger.exception("notification_delivery_failed", extra=log_context)
        try:
            channel.reset()
        except Exception:
            logger.exception("notification_channel_reset_failed", extra=log_context)
        return DeliveryOutcome(
            channel=channel.name,
            destination=destination,
            status=DELIVERY_STATUS_FAILED,
            error=str(exc)[:500] or exc.__class__.__name__,
        )

    status = DELIVERY_STATUS_SENT if result.success else DELIVERY_STATUS_FAILED
    logger.info(
        "notification_delivery_complete",
        extra={**log_context, "status": status, "provider_message_id": result.provider_message_id},
    )
    return DeliveryOutcome(
        channel=channel.name,
        destination=destination,
        status=status,
        provider_message_id=result.provider_message_id,
    )


def get_notification_channel_health(db: Session) -> dict[str, Any]:
    settings = get_settings()
    email_profile = get_active_email_profile(db)
    gateway = get_active_whatsapp_gateway(db)
    telegram = get_active_telegram_setting(db)
    return {
        "email_enabled": bool(settings.notification_email_enabled),
        "email_profile": email_profile.name if email_profile else None,
        "email_provider": email_profile.service_provider if email_profile else None,
        "whatsapp_gateway": gateway.name if gateway else None,
        "telegram_configured": telegram is not None,
        "push_enabled": is_push_enabled(),
    }
