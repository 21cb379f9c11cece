"""
Time MCP Server - time and timezone tools over the Model Context Protocol.

This package implements the MCP protocol (JSON-RPC 2.0 over stdio or HTTP),
verifies bearer tokens on the HTTP transport, validates tool arguments, and
dispatches calls to the time computation handlers.
"""

__version__ = "1.0.0"
