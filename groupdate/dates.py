"""Day-granularity date helpers.

All scheduling dates are compared as UTC calendar days. Aware datetimes are
converted to UTC before taking the date, naive datetimes are assumed to be UTC
already, and strings may be ``YYYY-MM-DD`` or ISO 8601 timestamps.
"""

import re
from datetime import UTC, date, datetime, timedelta

from groupdate.errors import ValidationError

DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:\d{2})?$")


def to_utc_day(value: date | datetime | str) -> date:
    """Normalize a date-like value to its UTC calendar day."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_day(value)
    raise ValidationError(detail=f"Unsupported date value: {value!r}")


def parse_day(raw: str) -> date:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp into a UTC day."""
    raw = raw.strip()
    try:
        if DAY_RE.match(raw):
            return date.fromisoformat(raw)
        if ISO_RE.match(raw):
            return to_utc_day(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        pass
    raise ValidationError(detail=f"Invalid date: {raw}", error_code="invalid_date")


def each_day_inclusive(start: date | datetime | str, end: date | datetime | str) -> list[date]:
    first, last = to_utc_day(start), to_utc_day(end)
    if last < first:
        return []
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


def is_within_range(value: date | datetime | str, start: date | datetime | str, end: date | datetime | str) -> bool:
    return to_utc_day(start) <= to_utc_day(value) <= to_utc_day(end)


def utcnow() -> datetime:
    return datetime.now(UTC)
