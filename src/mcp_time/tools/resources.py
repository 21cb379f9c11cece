"""
Read-only resources exposed by the Time MCP Server.

- timezone_database: every IANA identifier plus the top-level regions
- time_formats: reference of accepted and produced timestamp formats
"""

from __future__ import annotations

from typing import Any

from mcp_time import timeutils

TIME_FORMATS: dict[str, Any] = {
    "supported_formats": {
        "iso8601": "2025-08-17T10:30:00.250000+00:00",
        "rfc3339": "2025-08-17T10:30:00+00:00",
        "unix": "1755426600",
        "custom": "Use strftime format strings like '%Y-%m-%d %H:%M:%S'",
    },
    "examples": {
        "iso8601": "2025-08-17T10:30:00+00:00",
        "human_readable": "Sunday, August 17, 2025 at 10:30 AM UTC",
        "custom_formats": [
            "%Y-%m-%d %H:%M:%S",
            "%B %d, %Y",
            "%I:%M %p",
        ],
    },
}


async def read_timezone_database() -> dict[str, Any]:
    names = timeutils.timezone_names()
    return {
        "timezones": list(names),
        "total_count": len(names),
        "regions": list(timeutils.TIMEZONE_REGIONS),
    }


async def read_time_formats() -> dict[str, Any]:
    return TIME_FORMATS
