"""
MCP session layer for the Time MCP Server.

This module implements the MCPServer class, which maps MCP methods
(initialize, ping, tools/*, resources/*, prompts/*) onto the frozen
capability registry and the tool dispatcher. It is transport independent:
the stdio and HTTP drivers both feed it raw request bytes or parsed requests.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from mcp_time import __version__
from mcp_time.dispatcher import ToolDispatcher
from mcp_time.errors import NotFoundError, ToolError
from mcp_time.logging import get_logger
from mcp_time.protocol import (
    JSONRPCError,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
    create_internal_error,
    create_invalid_params_error,
    create_method_not_found_error,
    decode_request,
    encode_response,
    format_error_response,
    format_success_response,
    tool_error_to_jsonrpc_error,
)

if TYPE_CHECKING:
    from mcp_time.config import AppConfig
    from mcp_time.registry import CapabilityRegistry
    from mcp_time.security.auth_gate import AuthContext

logger = get_logger(__name__)

SERVER_NAME = "time-mcp-server"

# Newest first; the default is answered when the client asks for anything else
PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
DEFAULT_PROTOCOL_VERSION = "2025-03-26"

KNOWN_NOTIFICATIONS = frozenset(
    {
        "notifications/initialized",
        "notifications/cancelled",
    }
)

MethodHandler = Callable[[JSONRPCRequest], Awaitable[Any]]


def negotiate_protocol_version(requested: Any) -> str:
    """Echo a supported client version, otherwise answer the default."""
    if isinstance(requested, str) and requested in PROTOCOL_VERSIONS:
        return requested
    return DEFAULT_PROTOCOL_VERSION


def _params_object(request: JSONRPCRequest) -> dict[str, Any]:
    if request.params is None:
        return {}
    if not isinstance(request.params, dict):
        raise create_invalid_params_error(
            f"Invalid params: {request.method} requires an object",
            details={"field": "params"},
        )
    return request.params


def _require_string(params: dict[str, Any], key: str, method: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise create_invalid_params_error(
            f"Invalid params: {method} requires a string '{key}'",
            details={"field": key},
        )
    return value


class MCPServer:
    """
    Transport independent MCP request handler.

    Holds only the frozen registry and the stateless dispatcher, so a single
    instance is shared by every request on every transport.

    Example:
        >>> server = MCPServer(build_registry())
        >>> await server.process_request(b'{"jsonrpc":"2.0","id":1,"method":"ping"}')
        b'{"jsonrpc":"2.0","id":1,"result":{}}'
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        default_timezone: str = "UTC",
    ) -> None:
        """
        Initialize the server.

        Args:
            registry: Frozen capability registry.
            default_timezone: Timezone used when a tool call names none.
        """
        self.registry = registry
        self.dispatcher = ToolDispatcher(registry, default_timezone=default_timezone)
        self._methods: dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_tools_list,
            "resources/list": self._handle_resources_list,
            "resources/read": self._handle_resources_read,
            "prompts/list": self._handle_prompts_list,
            "prompts/get": self._handle_prompts_get,
        }
        self._method_names = frozenset(self._methods) | {"tools/call"}

    @classmethod
    def from_config(cls, config: AppConfig, registry: CapabilityRegistry) -> MCPServer:
        return cls(registry, default_timezone=config.server.default_timezone)

    @property
    def methods(self) -> frozenset[str]:
        """Every request method this server answers."""
        return self._method_names

    def server_info(self) -> dict[str, str]:
        return {"name": SERVER_NAME, "version": __version__}

    def capabilities_document(self) -> dict[str, Any]:
        """Discovery document served by GET /mcp/capabilities."""
        return {
            "protocolVersion": DEFAULT_PROTOCOL_VERSION,
            "capabilities": self.registry.snapshot_capabilities(),
            "serverInfo": self.server_info(),
        }

    # -------------------------------------------------------------------------
    # Request lifecycle
    # -------------------------------------------------------------------------

    async def process_request(
        self,
        raw: bytes | str,
        caller: AuthContext | None = None,
    ) -> bytes | None:
        """
        Handle one raw message and return the encoded response.

        Returns:
            UTF-8 JSON bytes, or None for notifications. Never raises.
        """
        response = await self.handle_raw(raw, caller)
        if response is None:
            return None
        return encode_response(response)

    async def handle_raw(
        self,
        raw: bytes | str,
        caller: AuthContext | None = None,
    ) -> JSONRPCResponse | None:
        """Decode a raw message and handle it. Never raises."""
        try:
            request = decode_request(raw)
        except JSONRPCError as e:
            logger.info(
                "Rejected malformed request",
                extra={"code": e.code, "request_id": e.request_id},
            )
            return format_error_response(e.request_id, e)
        return await self.handle_request(request, caller)

    async def handle_request(
        self,
        request: JSONRPCRequest,
        caller: AuthContext | None = None,
    ) -> JSONRPCResponse | None:
        """
        Route a parsed request to its method handler.

        Returns:
            The response, or None for notifications. Never raises.
        """
        if request.is_notification:
            self._handle_notification(request)
            return None

        request_id: RequestId | None = request.id
        try:
            if request.method not in self.methods:
                raise create_method_not_found_error(request.method)

            if request.method == "tools/call":
                return await self.dispatcher.dispatch(request, caller)

            result = await self._methods[request.method](request)
            return format_success_response(request_id, result)

        except JSONRPCError as e:
            return format_error_response(request_id, e)

        except ToolError as e:
            return format_error_response(request_id, tool_error_to_jsonrpc_error(e))

        except Exception:
            logger.exception(
                "Unexpected error processing request",
                extra={"request_id": request_id, "method": request.method},
            )
            return format_error_response(request_id, create_internal_error())

    def _handle_notification(self, request: JSONRPCRequest) -> None:
        if request.method in KNOWN_NOTIFICATIONS:
            logger.debug("Notification received", extra={"method": request.method})
            return
        logger.warning(
            "Ignoring unsupported notification",
            extra={"method": request.method},
        )

    # -------------------------------------------------------------------------
    # Method handlers
    # -------------------------------------------------------------------------

    async def _handle_initialize(self, request: JSONRPCRequest) -> dict[str, Any]:
        params = _params_object(request)
        version = negotiate_protocol_version(params.get("protocolVersion"))
        client_info = params.get("clientInfo")
        logger.info(
            "Client initialized",
            extra={
                "protocol_version": version,
                "client": client_info.get("name") if isinstance(client_info, dict) else None,
            },
        )
        return {
            "protocolVersion": version,
            "capabilities": self.registry.snapshot_capabilities(),
            "serverInfo": self.server_info(),
        }

    async def _handle_ping(self, request: JSONRPCRequest) -> dict[str, Any]:
        return {}

    async def _handle_tools_list(self, request: JSONRPCRequest) -> dict[str, Any]:
        return {"tools": self.registry.list_tools()}

    async def _handle_resources_list(self, request: JSONRPCRequest) -> dict[str, Any]:
        return {"resources": self.registry.list_resources()}

    async def _handle_resources_read(self, request: JSONRPCRequest) -> dict[str, Any]:
        params = _params_object(request)
        uri = _require_string(params, "uri", request.method)

        resource = self.registry.lookup_resource(uri)
        if resource is None:
            raise NotFoundError(f"Unknown resource: {uri}", details={"uri": uri})

        content = await resource.reader()
        return {
            "contents": [
                {
                    "uri": uri,
                    "mimeType": resource.mime_type,
                    "text": json.dumps(content, separators=(",", ":")),
                }
            ]
        }

    async def _handle_prompts_list(self, request: JSONRPCRequest) -> dict[str, Any]:
        return {"prompts": self.registry.list_prompts()}

    async def _handle_prompts_get(self, request: JSONRPCRequest) -> dict[str, Any]:
        params = _params_object(request)
        name = _require_string(params, "name", request.method)

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict) or not all(
            isinstance(value, str) for value in arguments.values()
        ):
            raise create_invalid_params_error(
                "Invalid params: prompt arguments must be an object of strings",
                details={"field": "arguments"},
            )

        prompt = self.registry.lookup_prompt(name)
        if prompt is None:
            raise NotFoundError(f"Unknown prompt: {name}", details={"prompt": name})

        return await prompt.renderer(arguments)
