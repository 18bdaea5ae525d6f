"""Five-field cron matching for schedule triggers.

Fields are ``minute hour day-of-month month day-of-week``. Each field is a
comma list of parts; a part is ``*``, a literal, a range ``a-b``, or any of
those with a ``/step`` suffix (``5/10`` means "from 5 to the field maximum,
every 10"). Month and weekday fields accept three-letter names.

Malformed expressions never raise: they simply never match.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from iot_automations.config import settings

logger = logging.getLogger(__name__)

DOW_ALIASES: dict[str, int] = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}
MONTH_ALIASES: dict[str, int] = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_ALIAS_TOKEN = re.compile(r"[a-z]{3}", re.IGNORECASE)
_INTEGER = re.compile(r"^[+-]?\d+$")

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class CalendarParts:
    minute: int
    hour: int
    day: int
    month: int
    dow: int  # 0 = Sunday


CalendarResolver = Callable[[datetime, str | None], CalendarParts]


def _resolve_aliases(field: str, aliases: dict[str, int]) -> str:
    def _substitute(match: re.Match[str]) -> str:
        value = aliases.get(match.group(0).lower())
        return str(value) if value is not None else match.group(0)

    return _ALIAS_TOKEN.sub(_substitute, field)


def _parse_int(token: str) -> int | None:
    token = token.strip()
    if not _INTEGER.match(token):
        return None
    return int(token)


def _part_matches(part: str, value: int, min_value: int, max_value: int) -> bool:
    part = part.strip()

    step = 1
    has_step = "/" in part
    if has_step:
        part, step_token = part.split("/", 1)
        parsed_step = _parse_int(step_token)
        if parsed_step is None or parsed_step < 1:
            return False
        step = parsed_step

    if part == "*":
        range_start, range_end = min_value, max_value
    elif "-" in part:
        start_token, _, end_token = part.partition("-")
        start = _parse_int(start_token)
        end = _parse_int(end_token)
        if start is None or end is None:
            return False
        range_start, range_end = start, end
    else:
        literal = _parse_int(part)
        if literal is None:
            return False
        if not has_step:
            return literal == value
        range_start, range_end = literal, max_value

    if value < range_start or value > range_end:
        return False
    return (value - range_start) % step == 0


def cron_field_matches(field: str, value: int, min_value: int, max_value: int) -> bool:
    """Return True if any comma-separated part of ``field`` accepts ``value``."""
    return any(_part_matches(part, value, min_value, max_value) for part in field.split(","))


def _utc_parts(moment: datetime) -> CalendarParts:
    utc = moment.astimezone(UTC) if moment.tzinfo else moment.replace(tzinfo=UTC)
    return CalendarParts(
        minute=utc.minute,
        hour=utc.hour,
        day=utc.day,
        month=utc.month,
        dow=(utc.weekday() + 1) % 7,
    )


def load_zone(timezone: str | None) -> ZoneInfo | None:
    """The IANA zone named ``timezone``, or None when it is empty or cannot be loaded."""
    name = (timezone or "").strip()
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except Exception:
        return None


def calendar_parts(moment: datetime, timezone: str | None = None) -> CalendarParts:
    """Calendar components of ``moment`` in ``timezone``.

    Missing or unloadable timezones fall back to UTC. Naive datetimes are
    treated as UTC.
    """
    if timezone:
        zone = load_zone(timezone)
        if zone is None:
            logger.debug("Unknown cron timezone %r, using UTC", timezone)
        else:
            aware = moment if moment.tzinfo else moment.replace(tzinfo=UTC)
            local = aware.astimezone(zone)
            return CalendarParts(
                minute=local.minute,
                hour=local.hour,
                day=local.day,
                month=local.month,
                dow=(local.weekday() + 1) % 7,
            )
    return _utc_parts(moment)


def _split_fields(cron: str) -> tuple[str, str, str, str, str] | None:
    tokens = cron.split()
    if len(tokens) != 5:
        return None
    minute_f, hour_f, day_f, month_f, dow_f = tokens
    return (
        minute_f,
        hour_f,
        day_f,
        _resolve_aliases(month_f, MONTH_ALIASES),
        _resolve_aliases(dow_f, DOW_ALIASES),
    )


def _fields_match(fields: tuple[str, str, str, str, str], parts: CalendarParts) -> bool:
    minute_f, hour_f, day_f, month_f, dow_f = fields
    # Formatter-based resolvers may report midnight as hour 24.
    hour = 0 if parts.hour == 24 else parts.hour
    return (
        cron_field_matches(minute_f, parts.minute, 0, 59)
        and cron_field_matches(hour_f, hour, 0, 23)
        and cron_field_matches(day_f, parts.day, 1, 31)
        and cron_field_matches(month_f, parts.month, 1, 12)
        and cron_field_matches(dow_f, parts.dow, 0, 6)
    )


def cron_matches(
    cron: str,
    moment: datetime,
    timezone: str | None = None,
    resolver: CalendarResolver = calendar_parts,
) -> bool:
    """Return True if ``moment`` (localized to ``timezone``) satisfies ``cron``."""
    fields = _split_fields(cron)
    if fields is None:
        return False
    return _fields_match(fields, resolver(moment, timezone))


def next_cron_match(
    cron: str,
    after: datetime,
    timezone: str | None = None,
    *,
    horizon_days: int | None = None,
    resolver: CalendarResolver = calendar_parts,
) -> datetime | None:
    """First minute strictly after ``after`` that satisfies ``cron``.

    Scans minute by minute for ``horizon_days`` (default
    ``settings.automation_cron_scan_days``, 366 days) and returns None when
    nothing matches inside that window. Results are timezone-aware UTC.
    """
    fields = _split_fields(cron)
    if fields is None:
        return None

    days = settings.automation_cron_scan_days if horizon_days is None else horizon_days
    cursor = after if after.tzinfo else after.replace(tzinfo=UTC)
    cursor = cursor.astimezone(UTC).replace(second=0, microsecond=0) + timedelta(minutes=1)

    for _ in range(days * MINUTES_PER_DAY):
        if _fields_match(fields, resolver(cursor, timezone)):
            return cursor
        cursor += timedelta(minutes=1)
    return None
