"""
Tool dispatch for the Time MCP Server.

The ToolDispatcher serves ``tools/call``: it validates the call envelope,
looks the tool up in the frozen registry, validates the arguments with the
tool's pydantic model, invokes the handler and maps every outcome to a
JSON-RPC response.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from mcp_time.context import ToolContext
from mcp_time.errors import NotFoundError, ToolError
from mcp_time.logging import get_logger
from mcp_time.protocol import (
    JSONRPCError,
    JSONRPCRequest,
    JSONRPCResponse,
    create_internal_error,
    create_invalid_params_error,
    format_error_response,
    format_success_response,
    tool_error_to_jsonrpc_error,
)

if TYPE_CHECKING:
    from mcp_time.registry import CapabilityRegistry
    from mcp_time.security.auth_gate import AuthContext

logger = get_logger(__name__)


def _validation_error_to_params_error(
    tool_name: str, error: ValidationError
) -> JSONRPCError:
    first = error.errors()[0] if error.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or "arguments"
    reason = first.get("msg", "invalid value")
    return create_invalid_params_error(
        f"Invalid arguments for '{tool_name}': {field}: {reason}",
        details={"tool": tool_name, "field": field, "reason": reason},
    )


def build_tool_result(result: dict[str, Any]) -> dict[str, Any]:
    """
    Wrap a domain result for the wire.

    The domain fields stay at the top level. A ``content`` list carrying the
    same data as JSON text is added for MCP clients, and ``structuredContent``
    carries it as the object described by the tool's outputSchema.
    """
    wrapped = dict(result)
    wrapped["content"] = [
        {"type": "text", "text": json.dumps(result, separators=(",", ":"))}
    ]
    wrapped["structuredContent"] = dict(result)
    return wrapped


class ToolDispatcher:
    """
    Dispatches ``tools/call`` requests against a frozen registry.

    The dispatcher keeps no per-call state, so one instance is shared by
    every transport and every concurrent request.

    Example:
        >>> dispatcher = ToolDispatcher(build_registry(), default_timezone="UTC")
        >>> response = await dispatcher.dispatch(request)
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        default_timezone: str = "UTC",
    ) -> None:
        self.registry = registry
        self.default_timezone = default_timezone

    async def dispatch(
        self,
        request: JSONRPCRequest,
        caller: AuthContext | None = None,
    ) -> JSONRPCResponse:
        """
        Execute a ``tools/call`` request.

        Args:
            request: Parsed request whose params hold ``name`` and
                optional ``arguments``.
            caller: AuthContext of the caller, if the transport has one.

        Returns:
            Success response with the tool result, or an error response.
            This method does not raise.
        """
        params = request.params
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            return format_error_response(
                request.id,
                create_invalid_params_error(
                    "Invalid params: tools/call requires a string 'name'",
                    details={"field": "name"},
                ),
            )

        tool_name: str = params["name"]
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return format_error_response(
                request.id,
                create_invalid_params_error(
                    "Invalid params: 'arguments' must be an object",
                    details={"field": "arguments"},
                ),
            )

        definition = self.registry.lookup(tool_name)
        if definition is None:
            error = NotFoundError(
                f"Unknown tool: {tool_name}",
                details={"tool": tool_name},
            )
            return format_error_response(request.id, tool_error_to_jsonrpc_error(error))

        try:
            validated = definition.arguments.model_validate(arguments)
        except ValidationError as e:
            return format_error_response(
                request.id, _validation_error_to_params_error(tool_name, e)
            )

        ctx = ToolContext.from_request(
            request,
            tool_name=tool_name,
            caller=caller,
            default_timezone=self.default_timezone,
        )

        try:
            result = await definition.handler(ctx, validated)
            response = format_success_response(request.id, build_tool_result(result))
        except ToolError as e:
            logger.info(
                "Tool call failed",
                extra={
                    "tool": tool_name,
                    "request_id": request.id,
                    "error_code": e.error_code,
                },
            )
            return format_error_response(request.id, tool_error_to_jsonrpc_error(e))
        except Exception:
            logger.exception(
                "Unexpected error in tool handler",
                extra={"tool": tool_name, "request_id": request.id},
            )
            return format_error_response(request.id, create_internal_error())

        logger.debug(
            "Tool call succeeded",
            extra={"tool": tool_name, "request_id": request.id},
        )
        return response
