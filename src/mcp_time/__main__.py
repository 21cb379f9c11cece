"""
Command-line entry point for the Time MCP Server.

Usage:
    time-mcp-server                       # stdio transport
    time-mcp-server --transport http --port 8080 --auth
    python -m mcp_time --config /etc/time-mcp-server/config.yml
"""

from __future__ import annotations

import asyncio
import sys

import yaml
from pydantic import ValidationError

from mcp_time.config import load_config
from mcp_time.logging import setup_logging
from mcp_time.security.auth_gate import AuthGate
from mcp_time.server import MCPServer
from mcp_time.tools import build_registry
from mcp_time.transports import run_http, run_stdio

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def main(argv: list[str] | None = None) -> int:
    """
    Load configuration, build the registry and serve the chosen transport.

    Returns:
        Process exit code.
    """
    # Bootstrap logger for configuration errors; replaced once config loads
    logger = setup_logging(level="INFO")

    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        logger.error("Invalid configuration", extra={"error": str(e)})
        return EXIT_CONFIG_ERROR

    logger = setup_logging(config.logging)

    try:
        registry = build_registry()
    except (ValueError, RuntimeError):
        logger.exception("Failed to build capability registry")
        return EXIT_STARTUP_FAILURE

    server = MCPServer.from_config(config, registry)
    logger.info(
        "Time MCP Server starting",
        extra={
            "transport": config.server.transport,
            "default_timezone": config.server.default_timezone,
            "tools_count": len(registry),
        },
    )

    try:
        if config.server.transport == "http":
            try:
                gate = AuthGate.from_config(config.security)
            except (OSError, ValueError) as e:
                logger.error("Failed to initialize auth gate", extra={"error": str(e)})
                return EXIT_STARTUP_FAILURE
            asyncio.run(run_http(server, gate, config))
        else:
            asyncio.run(run_stdio(server))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
