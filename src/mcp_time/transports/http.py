"""
HTTP transport built on FastAPI and served by uvicorn.

Endpoints:
- GET  /health, GET /        liveness document (no auth)
- GET  /mcp/capabilities     discovery document (no auth)
- POST /mcp/tools/call       JSON-RPC tools/call envelope
- POST /mcp/resources/read   JSON-RPC resources/read envelope
- POST /mcp/prompts/get      JSON-RPC prompts/get envelope

POST endpoints run the auth gate before the body is decoded. Each request is
handled as its own asyncio task; the only shared state is the frozen
registry inside the server and the auth gate.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response

from mcp_time import __version__
from mcp_time.config import ScopeRequirementsConfig
from mcp_time.logging import get_logger
from mcp_time.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    JSONRPCError,
    JSONRPCResponse,
    create_method_not_found_error,
    decode_request,
    encode_response,
    format_error_response,
    tool_error_to_jsonrpc_error,
)
from mcp_time.security.auth_gate import AuthenticationError, AuthorizationError

if TYPE_CHECKING:
    from mcp_time.config import AppConfig
    from mcp_time.security.auth_gate import AuthGate
    from mcp_time.server import MCPServer

logger = get_logger(__name__)

JSON_MEDIA_TYPE = "application/json"

_HTTP_STATUS_BY_CODE = {
    PARSE_ERROR: 400,
    INVALID_REQUEST: 400,
    INTERNAL_ERROR: 500,
}


def http_status_for(response: JSONRPCResponse) -> int:
    """Map a JSON-RPC response to the HTTP status it is sent with."""
    if response.error is None:
        return 200
    return _HTTP_STATUS_BY_CODE.get(response.error.code, 200)


def _rpc_response(response: JSONRPCResponse) -> Response:
    return Response(
        content=encode_response(response),
        status_code=http_status_for(response),
        media_type=JSON_MEDIA_TYPE,
    )


def _auth_failure_response(
    error: AuthenticationError | AuthorizationError,
    required_scopes: list[str],
) -> Response:
    reason = error.details.get("reason")
    if isinstance(error, AuthorizationError):
        status_code = 403
        if reason == "insufficient_scope":
            challenge = (
                f'Bearer error="insufficient_scope", scope="{" ".join(required_scopes)}"'
            )
        else:
            challenge = 'Bearer error="invalid_token", error_description="Token has expired"'
    else:
        status_code = 401
        challenge = "Bearer" if reason == "missing_token" else 'Bearer error="invalid_token"'

    body = encode_response(format_error_response(None, tool_error_to_jsonrpc_error(error)))
    return Response(
        content=body,
        status_code=status_code,
        media_type=JSON_MEDIA_TYPE,
        headers={"WWW-Authenticate": challenge},
    )


def create_http_app(
    server: MCPServer,
    gate: AuthGate,
    scopes: ScopeRequirementsConfig | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        server: Session layer answering JSON-RPC requests.
        gate: Auth gate applied to the POST endpoints.
        scopes: Scopes required per endpoint family. Defaults to the
            configuration defaults.
    """
    if scopes is None:
        scopes = ScopeRequirementsConfig()

    app = FastAPI(title="Time MCP Server", version=__version__)

    async def handle_rpc(
        request: Request,
        expected_method: str,
        required_scopes: list[str],
    ) -> Response:
        try:
            caller = await gate.authorize(
                request.headers.get("authorization"), required_scopes
            )
        except (AuthenticationError, AuthorizationError) as e:
            logger.info(
                "Request rejected by auth gate",
                extra={"path": request.url.path, "reason": e.details.get("reason")},
            )
            return _auth_failure_response(e, required_scopes)

        body = await request.body()
        try:
            rpc_request = decode_request(body)
        except JSONRPCError as e:
            return _rpc_response(format_error_response(e.request_id, e))

        if rpc_request.method != expected_method:
            if rpc_request.is_notification:
                return Response(status_code=202)
            return _rpc_response(
                format_error_response(
                    rpc_request.id, create_method_not_found_error(rpc_request.method)
                )
            )

        response = await server.handle_request(rpc_request, caller)
        if response is None:
            return Response(status_code=202)
        return _rpc_response(response)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": __version__,
        }

    @app.get("/")
    async def root() -> dict[str, Any]:
        return await health()

    @app.get("/mcp/capabilities")
    async def capabilities() -> dict[str, Any]:
        return server.capabilities_document()

    @app.post("/mcp/tools/call")
    async def tools_call(request: Request) -> Response:
        return await handle_rpc(request, "tools/call", scopes.tools)

    @app.post("/mcp/resources/read")
    async def resources_read(request: Request) -> Response:
        return await handle_rpc(request, "resources/read", scopes.resources)

    @app.post("/mcp/prompts/get")
    async def prompts_get(request: Request) -> Response:
        return await handle_rpc(request, "prompts/get", scopes.prompts)

    return app


async def run_http(server: MCPServer, gate: AuthGate, config: AppConfig) -> None:
    """Serve the HTTP app with uvicorn until shutdown."""
    app = create_http_app(server, gate, config.security.required_scopes)
    logger.info(
        "HTTP transport starting",
        extra={
            "host": config.server.host,
            "port": config.server.port,
            "auth_enabled": gate.enabled,
        },
    )
    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )
    await uvicorn.Server(uvicorn_config).serve()
