"""
Tests for the HTTP transport.

The FastAPI app is exercised in-process through httpx's ASGI transport.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator

import httpx
import jwt
import pytest
import pytest_asyncio
from conftest import rpc, tool_call

from mcp_time.protocol import (
    create_internal_error,
    create_method_not_found_error,
    format_error_response,
    format_success_response,
)
from mcp_time.security.auth_gate import AuthGate
from mcp_time.server import MCPServer
from mcp_time.transports.http import create_http_app, http_status_for

SECRET = "http-test-secret-that-is-long-enough"


def _token(scope: str = "time:tools", **claims: object) -> str:
    payload = {"sub": "client-1", "exp": int(time.time()) + 600, "scope": scope}
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256")


@pytest_asyncio.fixture
async def client(server: MCPServer) -> AsyncIterator[httpx.AsyncClient]:
    app = create_http_app(server, AuthGate(enabled=False))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def auth_client(server: MCPServer) -> AsyncIterator[httpx.AsyncClient]:
    app = create_http_app(server, AuthGate(enabled=True, secret=SECRET))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# =============================================================================
# Tests for Status Mapping
# =============================================================================


class TestHttpStatusFor:
    """Tests for http_status_for."""

    def test_success(self) -> None:
        assert http_status_for(format_success_response(1, {})) == 200

    def test_internal_error(self) -> None:
        assert http_status_for(format_error_response(1, create_internal_error())) == 500

    def test_application_error_is_200(self) -> None:
        """Test that method and tool errors ride on 200."""
        response = format_error_response(1, create_method_not_found_error("x"))

        assert http_status_for(response) == 200


# =============================================================================
# Tests for Open Endpoints
# =============================================================================


class TestOpenEndpoints:
    """Tests for endpoints without authentication."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/health", "/"])
    async def test_health(self, client: httpx.AsyncClient, path: str) -> None:
        """Test the liveness document."""
        response = await client.get(path)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert "version" in body

    @pytest.mark.asyncio
    async def test_capabilities(self, client: httpx.AsyncClient) -> None:
        """Test the discovery document."""
        response = await client.get("/mcp/capabilities")

        assert response.status_code == 200
        assert set(response.json()["capabilities"]) == {"tools", "resources", "prompts"}

    @pytest.mark.asyncio
    async def test_health_bypasses_auth(self, auth_client: httpx.AsyncClient) -> None:
        """Test that liveness needs no token."""
        assert (await auth_client.get("/health")).status_code == 200
        assert (await auth_client.get("/mcp/capabilities")).status_code == 200


# =============================================================================
# Tests for JSON-RPC Endpoints
# =============================================================================


class TestRpcEndpoints:
    """Tests for the POST endpoints."""

    @pytest.mark.asyncio
    async def test_tools_call(self, client: httpx.AsyncClient) -> None:
        """Test a successful tool call."""
        response = await client.post(
            "/mcp/tools/call",
            content=tool_call("format_time", {"timestamp": "0", "format": "unix"}, 5),
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        body = response.json()
        assert body["id"] == 5
        assert body["result"]["formatted"] == "0"

    @pytest.mark.asyncio
    async def test_tool_error_is_200(self, client: httpx.AsyncClient) -> None:
        """Test that domain errors keep HTTP 200."""
        response = await client.post(
            "/mcp/tools/call",
            content=tool_call("get_timezone_info", {"timezone": "Not/ARealZone"}),
        )

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32000

    @pytest.mark.asyncio
    async def test_resources_read(self, client: httpx.AsyncClient) -> None:
        """Test reading a resource."""
        response = await client.post(
            "/mcp/resources/read",
            content=rpc("resources/read", {"uri": "timezone_database"}),
        )

        assert response.status_code == 200
        assert response.json()["result"]["contents"][0]["uri"] == "timezone_database"

    @pytest.mark.asyncio
    async def test_prompts_get(self, client: httpx.AsyncClient) -> None:
        """Test rendering a prompt."""
        response = await client.post(
            "/mcp/prompts/get",
            content=rpc(
                "prompts/get",
                {"name": "time_query_assistant", "arguments": {"user_query": "Lunch in Lima?"}},
            ),
        )

        assert "Lunch in Lima?" in response.json()["result"]["messages"][0]["content"]["text"]

    @pytest.mark.asyncio
    async def test_parse_error_is_400(self, client: httpx.AsyncClient) -> None:
        """Test malformed bodies."""
        response = await client.post("/mcp/tools/call", content=b"{nope")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700
        assert response.json()["id"] is None

    @pytest.mark.asyncio
    async def test_invalid_request_is_400(self, client: httpx.AsyncClient) -> None:
        """Test bodies that are JSON but not a request."""
        response = await client.post("/mcp/tools/call", content=b'{"id":1,"method":"x"}')

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_non_finite_id_is_400(self, client: httpx.AsyncClient) -> None:
        """Test that an id overflowing to infinity still gets a JSON-RPC envelope."""
        response = await client.post(
            "/mcp/tools/call",
            content=b'{"jsonrpc":"2.0","id":1e400,"method":"tools/call"}',
        )

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["id"] is None
        assert response.json()["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_method_must_match_endpoint(self, client: httpx.AsyncClient) -> None:
        """Test that an envelope for another method is not dispatched."""
        response = await client.post("/mcp/tools/call", content=rpc("resources/read", {}))

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_notification_is_202(self, client: httpx.AsyncClient) -> None:
        """Test that notifications are accepted without a body."""
        response = await client.post(
            "/mcp/tools/call",
            content=tool_call("get_current_time", {}, request_id=None),
        )

        assert response.status_code == 202
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, client: httpx.AsyncClient) -> None:
        """Test that concurrent requests each get their own response."""
        responses = await asyncio.gather(
            *(
                client.post(
                    "/mcp/tools/call",
                    content=tool_call("format_time", {"timestamp": str(i), "format": "unix"}, i),
                )
                for i in range(20)
            )
        )

        for i, response in enumerate(responses):
            assert response.json()["id"] == i
            assert response.json()["result"]["formatted"] == str(i)


# =============================================================================
# Tests for Authentication
# =============================================================================


class TestAuthentication:
    """Tests for the auth gate at the HTTP boundary."""

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, auth_client: httpx.AsyncClient) -> None:
        """Test that an anonymous call is challenged."""
        response = await auth_client.post(
            "/mcp/tools/call", content=tool_call("get_current_time", {})
        )

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == -32010
        assert response.json()["id"] is None

    @pytest.mark.asyncio
    async def test_auth_runs_before_decoding(self, auth_client: httpx.AsyncClient) -> None:
        """Test that garbage bodies without a token get 401, not 400."""
        response = await auth_client.post("/mcp/tools/call", content=b"{nope")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_is_401(self, auth_client: httpx.AsyncClient) -> None:
        """Test a bad signature."""
        token = jwt.encode(
            {"sub": "x", "exp": int(time.time()) + 60},
            "a-completely-different-secret-value!!",
            algorithm="HS256",
        )

        response = await auth_client.post(
            "/mcp/tools/call",
            content=tool_call("get_current_time", {}),
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401
        assert 'error="invalid_token"' in response.headers["www-authenticate"]

    @pytest.mark.asyncio
    async def test_insufficient_scope_is_403(self, auth_client: httpx.AsyncClient) -> None:
        """Test a token without the endpoint's scope."""
        response = await auth_client.post(
            "/mcp/prompts/get",
            content=rpc("prompts/get", {"name": "time_query_assistant"}),
            headers={"Authorization": f"Bearer {_token('time:tools')}"},
        )

        assert response.status_code == 403
        assert response.headers["www-authenticate"] == (
            'Bearer error="insufficient_scope", scope="time:prompts"'
        )
        assert response.json()["error"]["code"] == -32011

    @pytest.mark.asyncio
    async def test_expired_token_is_403(self, auth_client: httpx.AsyncClient) -> None:
        """Test a genuine but expired token."""
        token = _token(exp=int(time.time()) - 30)

        response = await auth_client.post(
            "/mcp/tools/call",
            content=tool_call("get_current_time", {}),
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 403
        assert "Token has expired" in response.headers["www-authenticate"]

    @pytest.mark.asyncio
    async def test_valid_token_is_served(self, auth_client: httpx.AsyncClient) -> None:
        """Test that a valid token reaches the tool."""
        response = await auth_client.post(
            "/mcp/tools/call",
            content=tool_call("get_current_time", {"timezone": "Europe/Rome"}, "t1"),
            headers={"Authorization": f"Bearer {_token()}"},
        )

        assert response.status_code == 200
        assert response.json()["id"] == "t1"
        assert response.json()["result"]["timezone"] == "Europe/Rome"
