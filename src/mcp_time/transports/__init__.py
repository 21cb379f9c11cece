"""
Transports for the Time MCP Server.

- stdio: line-delimited JSON-RPC over stdin/stdout
- http: FastAPI app with bearer token gating, served by uvicorn
"""

from mcp_time.transports.http import create_http_app, run_http
from mcp_time.transports.stdio import StdioTransport, run_stdio

__all__ = [
    "StdioTransport",
    "create_http_app",
    "run_http",
    "run_stdio",
]
