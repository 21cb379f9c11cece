"""
Time tools for the Time MCP Server.

This module implements the tool catalog:
- get_current_time: Current time in a timezone, in several formats
- convert_timezone: Re-express a timestamp in another timezone
- calculate_duration: Signed span between two timestamps
- format_time: Render a timestamp as ISO 8601, RFC 3339, Unix or strftime
- get_timezone_info: Offset, DST flag and abbreviation of a timezone
- list_timezones: Known IANA identifiers, optionally filtered by region

Each tool pairs a pydantic argument model with an async handler. Handlers
receive already-validated arguments and raise ToolError subclasses on domain
failures.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from mcp_time import timeutils
from mcp_time.context import ToolContext
from mcp_time.errors import InvalidArgumentError
from mcp_time.logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


# =============================================================================
# Argument Models
# =============================================================================


class _ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GetCurrentTimeArgs(_ToolArguments):
    timezone: str | None = Field(
        default=None,
        description="Target timezone (default: server default timezone)",
    )
    format: Literal["iso", "unix", "human", "custom"] = Field(
        default="iso",
        description="Output format",
    )
    custom_format: str | None = Field(
        default=None,
        description="Custom strftime format string (required if format is 'custom')",
    )


class ConvertTimezoneArgs(_ToolArguments):
    timestamp: str = Field(description="Input timestamp (ISO 8601 or Unix)")
    from_timezone: str = Field(description="Source timezone")
    to_timezone: str = Field(description="Target timezone")
    format: Literal["iso", "unix", "human"] = Field(
        default="iso",
        description="Format of the 'formatted' field of the converted value",
    )


class CalculateDurationArgs(_ToolArguments):
    start_time: str = Field(description="Start timestamp")
    end_time: str = Field(description="End timestamp")
    units: Literal["seconds", "minutes", "hours", "days"] = Field(
        default="seconds",
        description="Output units",
    )


class FormatTimeArgs(_ToolArguments):
    timestamp: str = Field(description="Input timestamp")
    format: Literal["iso8601", "rfc3339", "unix", "custom"] = Field(
        description="Format type",
    )
    custom_format: str | None = Field(
        default=None,
        description="Custom format string (required if format is 'custom')",
    )
    timezone: str | None = Field(
        default=None,
        description="Target timezone (default: server default timezone)",
    )


class GetTimezoneInfoArgs(_ToolArguments):
    timezone: str = Field(description="Timezone identifier")


class ListTimezonesArgs(_ToolArguments):
    region: str | None = Field(
        default=None,
        description="Filter by region (e.g., 'America', 'Europe')",
    )


# =============================================================================
# Result Models
# =============================================================================

# Handlers return plain dicts; these models only describe them as outputSchema.


class GetCurrentTimeResult(BaseModel):
    timestamp: str | int | None = Field(
        default=None,
        description="ISO 8601 text (iso) or Unix seconds (unix)",
    )
    unix: int | None = Field(default=None, description="Unix seconds (iso only)")
    timezone: str = Field(description="Timezone the time is expressed in")
    formatted: str | None = Field(
        default=None,
        description="Human-readable or custom rendering",
    )


class OriginalTime(BaseModel):
    timestamp: str
    timezone: str


class ConvertedTime(BaseModel):
    timestamp: str
    timezone: str
    formatted: str = Field(description="Converted value in the requested format")


class ConvertTimezoneResult(BaseModel):
    original: OriginalTime
    converted: ConvertedTime


class DurationBreakdown(BaseModel):
    total_seconds: int
    minutes: int
    hours: int
    days: int
    human_readable: str


class CalculateDurationResult(BaseModel):
    duration: DurationBreakdown
    units: Literal["seconds", "minutes", "hours", "days"]


class FormatTimeResult(BaseModel):
    formatted: str
    timezone: str


class GetTimezoneInfoResult(BaseModel):
    timezone: str
    offset: str = Field(description="UTC offset as +HH:MM")
    utc_offset_seconds: int
    dst_active: bool
    abbreviation: str
    current_time: str


class ListTimezonesResult(BaseModel):
    timezones: list[str] = Field(description="Sorted IANA identifiers")
    count: int


# =============================================================================
# Helpers
# =============================================================================


def _require_custom_format(custom_format: str | None) -> str:
    if not custom_format:
        raise InvalidArgumentError(
            "custom_format is required when format is 'custom'",
            details={"field": "custom_format"},
        )
    return custom_format


def _render(dt: Any, output_format: str) -> str:
    if output_format == "unix":
        return str(timeutils.unix_seconds(dt))
    if output_format == "human":
        return timeutils.format_human(dt)
    return dt.isoformat()


# =============================================================================
# Handlers
# =============================================================================


async def handle_get_current_time(
    ctx: ToolContext, args: GetCurrentTimeArgs
) -> dict[str, Any]:
    """
    Return the current time in the requested timezone.

    Result shape depends on ``format``:
    - iso: timestamp, unix, timezone, formatted
    - unix: timestamp (int), timezone
    - human / custom: formatted, timezone

    Raises:
        InvalidTimezoneError: Unknown timezone.
        InvalidArgumentError: ``custom`` format without ``custom_format``.
    """
    timezone_name = args.timezone or ctx.default_timezone
    tz = timeutils.resolve_timezone(timezone_name)
    current = timeutils.now(tz)

    if args.format == "iso":
        return {
            "timestamp": current.isoformat(),
            "unix": timeutils.unix_seconds(current),
            "timezone": timezone_name,
            "formatted": timeutils.format_human(current),
        }
    if args.format == "unix":
        return {
            "timestamp": timeutils.unix_seconds(current),
            "timezone": timezone_name,
        }
    if args.format == "human":
        return {
            "formatted": timeutils.format_human(current),
            "timezone": timezone_name,
        }

    pattern = _require_custom_format(args.custom_format)
    return {
        "formatted": timeutils.format_custom(current, pattern),
        "timezone": timezone_name,
    }


async def handle_convert_timezone(
    ctx: ToolContext, args: ConvertTimezoneArgs
) -> dict[str, Any]:
    """
    Convert a timestamp between timezones.

    Timestamps without an offset are taken to be local to ``from_timezone``.
    """
    from_tz = timeutils.resolve_timezone(args.from_timezone)
    to_tz = timeutils.resolve_timezone(args.to_timezone)

    parsed = timeutils.parse_timestamp(args.timestamp, default_tz=from_tz)
    original = timeutils.to_timezone(parsed, from_tz)
    converted = timeutils.to_timezone(parsed, to_tz)

    return {
        "original": {
            "timestamp": original.isoformat(),
            "timezone": args.from_timezone,
        },
        "converted": {
            "timestamp": converted.isoformat(),
            "timezone": args.to_timezone,
            "formatted": _render(converted, args.format),
        },
    }


async def handle_calculate_duration(
    ctx: ToolContext, args: CalculateDurationArgs
) -> dict[str, Any]:
    """
    Calculate the signed span from ``start_time`` to ``end_time``.

    Every breakdown is truncated toward zero, so a negative span mirrors its
    positive counterpart.
    """
    start = timeutils.parse_timestamp(args.start_time, field="start_time")
    end = timeutils.parse_timestamp(args.end_time, field="end_time")

    delta: timedelta = end - start
    total_seconds = timeutils.truncate_div(
        delta // timedelta(microseconds=1), 1_000_000
    )

    breakdown = {
        "seconds": total_seconds,
        "minutes": timeutils.truncate_div(total_seconds, SECONDS_PER_MINUTE),
        "hours": timeutils.truncate_div(total_seconds, SECONDS_PER_HOUR),
        "days": timeutils.truncate_div(total_seconds, SECONDS_PER_DAY),
    }

    return {
        "duration": {
            "total_seconds": total_seconds,
            "minutes": breakdown["minutes"],
            "hours": breakdown["hours"],
            "days": breakdown["days"],
            "human_readable": f"{breakdown[args.units]} {args.units}",
        },
        "units": args.units,
    }


async def handle_format_time(ctx: ToolContext, args: FormatTimeArgs) -> dict[str, Any]:
    """Render a timestamp in the requested format and timezone."""
    timezone_name = args.timezone or ctx.default_timezone
    tz = timeutils.resolve_timezone(timezone_name)
    dt = timeutils.to_timezone(timeutils.parse_timestamp(args.timestamp), tz)

    if args.format == "iso8601":
        formatted = dt.isoformat()
    elif args.format == "rfc3339":
        formatted = dt.isoformat(timespec="seconds")
    elif args.format == "unix":
        formatted = str(timeutils.unix_seconds(dt))
    else:
        formatted = timeutils.format_custom(
            dt, _require_custom_format(args.custom_format)
        )

    return {"formatted": formatted, "timezone": timezone_name}


async def handle_get_timezone_info(
    ctx: ToolContext, args: GetTimezoneInfoArgs
) -> dict[str, Any]:
    """Describe a timezone as it is right now."""
    tz = timeutils.resolve_timezone(args.timezone)
    current = timeutils.now(tz)

    offset = current.utcoffset() or timedelta(0)
    dst = current.dst() or timedelta(0)
    offset_seconds = int(offset.total_seconds())

    return {
        "timezone": args.timezone,
        "offset": timeutils.format_offset(offset_seconds),
        "utc_offset_seconds": offset_seconds,
        "dst_active": dst != timedelta(0),
        "abbreviation": current.tzname() or "",
        "current_time": current.isoformat(),
    }


async def handle_list_timezones(
    ctx: ToolContext, args: ListTimezonesArgs
) -> dict[str, Any]:
    """List IANA identifiers, filtered by name prefix when a region is given."""
    names = timeutils.timezone_names()
    if args.region:
        names = tuple(name for name in names if name.startswith(args.region))

    logger.debug(
        "Listed timezones",
        extra={"region": args.region, "count": len(names)},
    )
    return {"timezones": list(names), "count": len(names)}
