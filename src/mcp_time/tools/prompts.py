"""Prompt templates exposed by the Time MCP Server."""

from __future__ import annotations

from typing import Any

from mcp_time import timeutils

DEFAULT_USER_QUERY = "general time query"


async def render_time_query_assistant(arguments: dict[str, str]) -> dict[str, Any]:
    """
    Build the time_query_assistant prompt.

    A missing ``user_query`` falls back to a generic query rather than
    failing, so clients that omit the argument still get a usable prompt.
    """
    user_query = arguments.get("user_query") or DEFAULT_USER_QUERY
    current = timeutils.now()

    text = (
        "You are a time query assistant. Help the user with their "
        f"time-related question: '{user_query}'. "
        f"Current UTC time: {current.isoformat(timespec='seconds')}. "
        "You have access to timezone conversion, duration calculation, "
        "and time formatting tools."
    )
    return {
        "description": "Assistant for time-related queries",
        "messages": [
            {
                "role": "user",
                "content": {"type": "text", "text": text},
            }
        ],
    }
