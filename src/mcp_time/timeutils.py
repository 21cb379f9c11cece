"""
Pure time computation helpers.

Everything here is a side-effect free function of its inputs (plus the
current clock for ``now``). Failures are reported with the domain errors from
``mcp_time.errors`` so the dispatcher can map them to application codes.
"""

from __future__ import annotations

import functools
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from mcp_time.errors import ConversionError, InvalidTimestampError, InvalidTimezoneError

HUMAN_FORMAT = "%A, %B %d, %Y at %I:%M %p %Z"

TIMEZONE_REGIONS = (
    "Africa",
    "America",
    "Antarctica",
    "Arctic",
    "Asia",
    "Atlantic",
    "Australia",
    "Europe",
    "Indian",
    "Pacific",
)


@functools.lru_cache(maxsize=1)
def timezone_names() -> tuple[str, ...]:
    """Return every IANA timezone identifier known to the runtime, sorted."""
    return tuple(sorted(available_timezones()))


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Look up an IANA timezone by its exact identifier.

    Raises:
        InvalidTimezoneError: If the identifier is empty, malformed, or unknown.
    """
    if not name:
        raise InvalidTimezoneError(name)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise InvalidTimezoneError(name) from e


def parse_timestamp(
    value: str,
    *,
    default_tz: tzinfo = UTC,
    field: str = "timestamp",
) -> datetime:
    """
    Parse an ISO 8601 / RFC 3339 string or a Unix seconds string.

    Naive ISO values are interpreted in ``default_tz``. The returned datetime
    is always timezone-aware.

    Args:
        value: Timestamp text.
        default_tz: Zone applied to naive ISO timestamps.
        field: Argument name reported in errors.

    Raises:
        InvalidTimestampError: If the text is not a recognised timestamp.
        ConversionError: If a Unix value lies outside the supported range.
    """
    text = value.strip()
    if not text:
        raise InvalidTimestampError(value, field=field)

    unix_text = text[1:] if text[0] in "+-" else text
    # isdigit alone admits non-ASCII digits such as "²"
    if unix_text.isascii() and unix_text.isdigit():
        try:
            return datetime.fromtimestamp(int(text), tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise ConversionError(
                "Unix timestamp is outside the supported range",
                details={"field": field, "timestamp": value},
            ) from e

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidTimestampError(value, field=field) from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def to_timezone(dt: datetime, tz: tzinfo) -> datetime:
    """
    Express an aware datetime in another timezone.

    Raises:
        ConversionError: If the shifted value leaves the representable range.
    """
    try:
        return dt.astimezone(tz)
    except (OverflowError, ValueError) as e:
        raise ConversionError(
            "Timestamp cannot be represented in the target timezone",
            details={"timestamp": dt.isoformat(), "timezone": str(tz)},
        ) from e


def format_custom(dt: datetime, pattern: str) -> str:
    """
    Render ``dt`` with a strftime pattern.

    Raises:
        ConversionError: If the platform strftime rejects the pattern.
    """
    try:
        return dt.strftime(pattern)
    except (ValueError, UnicodeError) as e:
        raise ConversionError(
            "Custom format could not be applied",
            details={"custom_format": pattern},
        ) from e


def format_human(dt: datetime) -> str:
    """Render ``dt`` as e.g. 'Sunday, August 17, 2025 at 06:30 PM UTC'."""
    return dt.strftime(HUMAN_FORMAT)


def unix_seconds(dt: datetime) -> int:
    """Return whole Unix seconds for an aware datetime."""
    return int(dt.timestamp())


def format_offset(offset_seconds: int) -> str:
    """Format a UTC offset in seconds as '+HH:MM' / '-HH:MM'."""
    sign = "-" if offset_seconds < 0 else "+"
    hours, remainder = divmod(abs(offset_seconds), 3600)
    return f"{sign}{hours:02d}:{remainder // 60:02d}"


def truncate_div(value: int, divisor: int) -> int:
    """Integer division rounding toward zero, so negative spans stay symmetric."""
    quotient = abs(value) // divisor
    return -quotient if value < 0 else quotient


def now(tz: tzinfo = UTC) -> datetime:
    """Return the current time in ``tz``."""
    return datetime.now(tz)
