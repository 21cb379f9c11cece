"""
Pytest configuration for the Time MCP Server tests.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import pytest

from mcp_time.registry import CapabilityRegistry
from mcp_time.server import MCPServer
from mcp_time.tools import build_registry

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture
def registry() -> CapabilityRegistry:
    """Frozen registry with the full catalog."""
    return build_registry()


@pytest.fixture
def server(registry: CapabilityRegistry) -> MCPServer:
    """MCPServer with UTC as the default timezone."""
    return MCPServer(registry, default_timezone="UTC")


@pytest.fixture(autouse=True)
def _restore_package_logger():
    """Let caplog see package records and undo setup_logging changes."""
    logger = logging.getLogger("mcp_time")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def rpc(method: str, params: Any = None, request_id: Any = 1) -> bytes:
    """Build a JSON-RPC request body."""
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return json.dumps(message).encode("utf-8")


def tool_call(name: str, arguments: dict[str, Any] | None = None, request_id: Any = 1) -> bytes:
    """Build a tools/call request body."""
    params: dict[str, Any] = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    return rpc("tools/call", params, request_id)
