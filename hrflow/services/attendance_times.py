"""Display-time normalization and the attendance flag rule.

Reconciliation requests carry free-form time strings. Most are ISO-8601
timestamps produced by the employee form, some are already display strings
such as ``"09:15 AM"``. ``format_display_time`` is the single place that turns
the former into the latter; anything it cannot confidently read is returned
unchanged.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from hrflow.settings import get_attendance_timezone, get_settings

FLAG_PRESENT = "P"
FLAG_DELAYED = "D"

DISPLAY_TIME_FORMAT = "%I:%M %p"
_DISPLAY_TIME_PATTERN = re.compile(r"^\s*\d{1,2}:\d{2}\s*(AM|PM)\s*$", re.IGNORECASE)


def is_display_time(value: str) -> bool:
    return bool(_DISPLAY_TIME_PATTERN.match(value or ""))


def _parse_iso_timestamp(value: str) -> datetime | None:
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = f"{raw[:-1]}+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def format_display_time(value: str | None, *, tz: ZoneInfo | None = None) -> str | None:
    """Return ``value`` as an ``hh:mm AM/PM`` string when it is an ISO timestamp.

    Input without a literal ``T`` is treated as an already formatted display
    string and passed through. Timezone-aware timestamps are converted to the
    attendance zone; naive ones are taken as local wall-clock time.
    """
    if not value:
        return value
    if is_display_time(value) or "T" not in value:
        return value

    parsed = _parse_iso_timestamp(value)
    if parsed is None:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz or get_attendance_timezone())
    return parsed.strftime(DISPLAY_TIME_FORMAT)


def _parse_display_time(value: str) -> time | None:
    try:
        return datetime.strptime(" ".join(value.strip().upper().split()), DISPLAY_TIME_FORMAT).time()
    except ValueError:
        pass
    try:
        return datetime.strptime(value.strip().upper().replace(" ", ""), "%I:%M%p").time()
    except ValueError:
        return None


def _office_start() -> time:
    raw = (get_settings().attendance_office_start or "").strip()
    try:
        return datetime.strptime(raw, "%H:%M").time()
    except ValueError:
        return time(9, 0)


def determine_attendance_flag(in_time: str | None) -> str:
    if not in_time:
        return FLAG_PRESENT
    parsed = _parse_display_time(in_time)
    if parsed is None:
        return FLAG_PRESENT

    start = _office_start()
    grace = timedelta(minutes=max(0, int(get_settings().attendance_grace_minutes)))
    cutoff = (datetime.combine(datetime.min.date(), start) + grace).time()
    if parsed <= cutoff:
        return FLAG_PRESENT
    return FLAG_DELAYED
