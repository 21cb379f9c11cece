"""
Tool, resource and prompt catalog for the Time MCP Server.

Modules:
- time: the six time tools and their argument models
- resources: timezone_database and time_formats
- prompts: time_query_assistant

``build_registry()`` assembles the whole catalog into a frozen
CapabilityRegistry.
"""

from mcp_time.registry import (
    CapabilityRegistry,
    PromptArgument,
    PromptDefinition,
    ResourceDefinition,
    ToolDefinition,
)
from mcp_time.tools.prompts import render_time_query_assistant
from mcp_time.tools.resources import read_time_formats, read_timezone_database
from mcp_time.tools.time import (
    CalculateDurationArgs,
    CalculateDurationResult,
    ConvertTimezoneArgs,
    ConvertTimezoneResult,
    FormatTimeArgs,
    FormatTimeResult,
    GetCurrentTimeArgs,
    GetCurrentTimeResult,
    GetTimezoneInfoArgs,
    GetTimezoneInfoResult,
    ListTimezonesArgs,
    ListTimezonesResult,
    handle_calculate_duration,
    handle_convert_timezone,
    handle_format_time,
    handle_get_current_time,
    handle_get_timezone_info,
    handle_list_timezones,
)

TOOL_DEFINITIONS = (
    ToolDefinition(
        name="get_current_time",
        description="Get the current time in various formats and timezones",
        arguments=GetCurrentTimeArgs,
        handler=handle_get_current_time,
        result_schema=GetCurrentTimeResult.model_json_schema(),
    ),
    ToolDefinition(
        name="convert_timezone",
        description="Convert time between different timezones",
        arguments=ConvertTimezoneArgs,
        handler=handle_convert_timezone,
        result_schema=ConvertTimezoneResult.model_json_schema(),
    ),
    ToolDefinition(
        name="calculate_duration",
        description="Calculate time difference between two timestamps",
        arguments=CalculateDurationArgs,
        handler=handle_calculate_duration,
        result_schema=CalculateDurationResult.model_json_schema(),
    ),
    ToolDefinition(
        name="format_time",
        description="Format timestamps according to various standards",
        arguments=FormatTimeArgs,
        handler=handle_format_time,
        result_schema=FormatTimeResult.model_json_schema(),
    ),
    ToolDefinition(
        name="get_timezone_info",
        description="Get detailed information about a specific timezone",
        arguments=GetTimezoneInfoArgs,
        handler=handle_get_timezone_info,
        result_schema=GetTimezoneInfoResult.model_json_schema(),
    ),
    ToolDefinition(
        name="list_timezones",
        description="List available timezone identifiers",
        arguments=ListTimezonesArgs,
        handler=handle_list_timezones,
        result_schema=ListTimezonesResult.model_json_schema(),
    ),
)

RESOURCE_DEFINITIONS = (
    ResourceDefinition(
        uri="timezone_database",
        name="Timezone Database",
        description="Complete IANA timezone database with all available timezones",
        reader=read_timezone_database,
    ),
    ResourceDefinition(
        uri="time_formats",
        name="Time Formats",
        description="Documentation of supported time formats and examples",
        reader=read_time_formats,
    ),
)

PROMPT_DEFINITIONS = (
    PromptDefinition(
        name="time_query_assistant",
        description="Template for helping users with time-related queries",
        renderer=render_time_query_assistant,
        arguments=(
            PromptArgument(
                name="user_query",
                description="The user's time-related question",
                required=True,
            ),
        ),
    ),
)


def build_registry() -> CapabilityRegistry:
    """
    Register the full catalog and freeze the registry.

    Raises:
        ValueError: If the catalog contains duplicate names.
    """
    registry = CapabilityRegistry()
    for tool in TOOL_DEFINITIONS:
        registry.register_tool(tool)
    for resource in RESOURCE_DEFINITIONS:
        registry.register_resource(resource)
    for prompt in PROMPT_DEFINITIONS:
        registry.register_prompt(prompt)
    registry.freeze()
    return registry


__all__ = [
    "PROMPT_DEFINITIONS",
    "RESOURCE_DEFINITIONS",
    "TOOL_DEFINITIONS",
    "build_registry",
]
