from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
import re
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrflow.models import MessageTemplate, TemplateChannel
from hrflow.settings import get_attendance_timezone, get_settings

HUMAN_DATE_FORMAT = "%d %b %Y"
CHAT_HEADER_RULE = "-" * 40
PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


class TemplateNotFoundError(Exception):
    def __init__(self, channel: TemplateChannel, slug: str):
        super().__init__(f"{channel.value} template '{slug}' not found.")
        self.channel = channel
        self.slug = slug


@dataclass(frozen=True, slots=True)
class RenderedMessage:
    subject: str
    body: str


def default_template_variables(now: datetime | None = None) -> dict[str, str]:
    reference = now or datetime.now(get_attendance_timezone())
    return {
        "company_name": get_settings().company_name,
        "app_name": get_settings().app_name,
        "year": str(reference.year),
        "date": reference.strftime(HUMAN_DATE_FORMAT),
    }


def substitute_placeholders(text: str, variables: Mapping[str, Any]) -> str:
    """Replace each ``{{name}}`` in one pass; values are never re-scanned."""
    lookup = {str(key): value for key, value in variables.items()}

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in lookup:
            return match.group(0)
        value = lookup[name]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text or "")


def load_template(db: Session, *, channel: TemplateChannel, slug: str) -> MessageTemplate:
    template = db.scalar(
        select(MessageTemplate).where(
            MessageTemplate.channel == channel.value,
            MessageTemplate.slug == slug,
        )
    )
    if template is None or not template.is_active:
        raise TemplateNotFoundError(channel, slug)
    return template


def render_text(
    subject: str | None,
    body: str,
    variables: Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> RenderedMessage:
    merged: dict[str, Any] = default_template_variables(now)
    merged.update(variables or {})
    return RenderedMessage(
        subject=substitute_placeholders(subject or "", merged),
        body=substitute_placeholders(body, merged),
    )


def render_template(
    db: Session,
    *,
    channel: TemplateChannel,
    slug: str,
    variables: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> RenderedMessage:
    """Render the ``slug`` template of ``channel``.

    Caller variables override the defaults (company name, year, today's
    date). Placeholders with no value stay in the output verbatim.
    """
    template = load_template(db, channel=channel, slug=slug)
    return render_text(template.subject, template.body, variables, now=now)


def format_chat_message(message: RenderedMessage) -> str:
    if not message.subject:
        return message.body
    return f"*// {message.subject} //*\n{CHAT_HEADER_RULE}\n{message.body}"
