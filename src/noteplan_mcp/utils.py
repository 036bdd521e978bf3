"""Utility functions for the NotePlan MCP server."""
import hashlib
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current local time as a timezone-aware datetime."""
    return datetime.now().astimezone()


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def content_hash(content: str) -> str:
    """Stable fingerprint of note content used for optimistic preconditions."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def to_bounded_int(value: Any, default: int, minimum: int, maximum: int) -> int:
    """Coerce ``value`` to an int clamped to ``[minimum, maximum]``.

    Non-numeric input (including None and NaN) yields ``default``.
    """
    if isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if numeric != numeric or numeric in (float("inf"), float("-inf")):
        return default
    return min(maximum, max(minimum, int(numeric // 1)))


def to_optional_boolean(value: Any) -> Optional[bool]:
    """Interpret loose boolean input ("true", "1", "no", ...); None if unrecognized."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("true", "1", "yes"):
            return True
        if normalized in ("false", "0", "no"):
            return False
    return None


def split_search_terms(query: str) -> List[str]:
    """Split an OR query (``meeting|standup``) into its non-empty terms."""
    return [term.strip() for term in query.split("|") if term.strip()]


def normalize_date_token(value: Optional[str]) -> Optional[str]:
    """Keep only the digits of a date-like string; None unless exactly 8 remain."""
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    return digits if len(digits) == 8 else None


def format_date_token(day: date) -> str:
    """Format a date as NotePlan's calendar token ``YYYYMMDD``."""
    return day.strftime("%Y%m%d")


def parse_date_token(token: str) -> Optional[date]:
    """Parse ``YYYYMMDD`` or ``YYYY-MM-DD`` into a date."""
    match = _COMPACT_DATE.match(token) or _ISO_DATE.match(token)
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def iso_from_token(token: str) -> str:
    """``20240115`` -> ``2024-01-15``."""
    return f"{token[:4]}-{token[4:6]}-{token[6:8]}"


def resolve_calendar_date(value: str, today: Optional[date] = None) -> Optional[str]:
    """Turn ``today``/``tomorrow``/``yesterday`` or an explicit date into ``YYYYMMDD``."""
    today = today or local_now().date()
    lowered = value.strip().lower()
    if lowered == "today":
        return format_date_token(today)
    if lowered == "tomorrow":
        return format_date_token(today + timedelta(days=1))
    if lowered == "yesterday":
        return format_date_token(today - timedelta(days=1))
    parsed = parse_date_token(value.strip())
    return format_date_token(parsed) if parsed else None


def _start_of_day(day: date, tz) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _end_of_day(day: date, tz) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def _start_of_week(day: date, first_day_of_week: int) -> date:
    # NotePlan numbers weekdays 0 = Sunday; Python uses 0 = Monday
    weekday = (day.weekday() + 1) % 7
    return day - timedelta(days=(weekday - first_day_of_week + 7) % 7)


def _month_start(year: int, month: int) -> date:
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, 1)


def parse_date_filter(
    value: str, first_day_of_week: int = 1, now: Optional[datetime] = None
) -> Optional[datetime]:
    """Parse a flexible date filter into the start of the period it names.

    Accepts ``today``, ``yesterday``, ``this week``, ``last week``,
    ``this month``, ``last month``, ``this year``, ``last year``,
    ``YYYY-MM-DD``, ``YYYYMMDD`` and ISO 8601 timestamps. Returns None when
    the value cannot be parsed.
    """
    now = now or local_now()
    tz = now.tzinfo
    today = now.date()
    lowered = value.strip().lower()

    if lowered == "today":
        return _start_of_day(today, tz)
    if lowered == "yesterday":
        return _start_of_day(today - timedelta(days=1), tz)
    if lowered == "this week":
        return _start_of_day(_start_of_week(today, first_day_of_week), tz)
    if lowered == "last week":
        start = _start_of_week(today, first_day_of_week) - timedelta(days=7)
        return _start_of_day(start, tz)
    if lowered == "this month":
        return _start_of_day(_month_start(today.year, today.month), tz)
    if lowered == "last month":
        return _start_of_day(_month_start(today.year, today.month - 1), tz)
    if lowered == "this year":
        return _start_of_day(date(today.year, 1, 1), tz)
    if lowered == "last year":
        return _start_of_day(date(today.year - 1, 1, 1), tz)

    day = parse_date_token(value.strip())
    if day:
        return _start_of_day(day, tz)
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)


def parse_date_filter_end(
    value: str, first_day_of_week: int = 1, now: Optional[datetime] = None
) -> Optional[datetime]:
    """Parse a flexible date filter into the END of the period it names.

    Used for ``*_before`` filters so that ``this week`` includes all of today
    and an explicit date includes the whole day.
    """
    now = now or local_now()
    tz = now.tzinfo
    today = now.date()
    lowered = value.strip().lower()

    if lowered == "today":
        return _end_of_day(today, tz)
    if lowered == "yesterday":
        return _end_of_day(today - timedelta(days=1), tz)
    if lowered in ("this week", "last week"):
        start = _start_of_week(today, first_day_of_week)
        if lowered == "last week":
            start -= timedelta(days=7)
        return _end_of_day(start + timedelta(days=6), tz)
    if lowered == "this month":
        return _end_of_day(_month_start(today.year, today.month + 1) - timedelta(days=1), tz)
    if lowered == "last month":
        return _end_of_day(_month_start(today.year, today.month) - timedelta(days=1), tz)
    if lowered == "this year":
        return _end_of_day(date(today.year, 12, 31), tz)
    if lowered == "last year":
        return _end_of_day(date(today.year - 1, 12, 31), tz)

    day = parse_date_token(value.strip())
    if day:
        return _end_of_day(day, tz)
    return parse_date_filter(value, first_day_of_week, now)


def is_date_in_range(
    value: Optional[datetime],
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
) -> bool:
    """True when ``value`` lies within the optional bounds; a missing value never passes."""
    if value is None:
        return False
    if after is not None and value < after:
        return False
    if before is not None and value > before:
        return False
    return True
