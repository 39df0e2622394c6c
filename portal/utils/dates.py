"""Calendar-day parsing for imported transaction and receipt dates.

Bank, EasyPay and ASSIT exports do not agree on a date format, so values are
parsed leniently and compared at day granularity only.
"""

from datetime import date, datetime, timezone, tzinfo
from typing import Any, Optional

# Tried in order after ISO-8601; day-first before month-first (South African exports)
FALLBACK_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%Y%m%d",
    "%d %b %Y",
    "%d %B %Y",
)


def parse_datetime(value: Any) -> datetime:
    """Parse a date-like value into a datetime.

    Args:
        value: datetime, date or string in ISO-8601 or one of FALLBACK_FORMATS

    Returns:
        datetime: Naive when the input carried no offset, aware otherwise

    Raises:
        ValueError: If the value is empty or in no recognised format
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if value is None:
        raise ValueError("Date value is missing")

    text = str(value).strip()
    if not text:
        raise ValueError("Date value is empty")

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(iso_text)
    except ValueError:
        pass

    for fmt in FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    raise ValueError(f"Unrecognised date format: {text!r}")


def calendar_day(value: Any, tz: tzinfo = timezone.utc) -> date:
    """Return the calendar day of ``value`` as seen in ``tz``.

    Aware values are converted to ``tz`` first; naive values are taken to be
    local to ``tz`` already.
    """
    parsed = parse_datetime(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date()


def try_calendar_day(value: Any, tz: tzinfo = timezone.utc) -> Optional[date]:
    """Like calendar_day, but returns None for unparseable values."""
    try:
        return calendar_day(value, tz)
    except (TypeError, ValueError):
        return None
