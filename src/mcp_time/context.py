"""
Tool context for the Time MCP Server.

This module defines the ToolContext dataclass that carries the context of a
single tool call: the tool name, the request id, the caller's AuthContext and
the configured default timezone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_time.protocol import JSONRPCRequest, RequestId
    from mcp_time.security.auth_gate import AuthContext


@dataclass
class ToolContext:
    """
    Encapsulates the context of a single MCP tool call.

    This context is passed to every tool handler. It is built fresh for each
    request and never shared between requests.

    Attributes:
        tool_name: Tool name (e.g., "get_current_time").
        request_id: Request identifier from the JSON-RPC envelope.
        caller: AuthContext of the caller, None on unauthenticated transports.
        default_timezone: Timezone applied when a call does not name one.
        timestamp: When the request was received (UTC).
        metadata: Additional transport context.
    """

    tool_name: str
    request_id: RequestId | None
    caller: AuthContext | None = None
    default_timezone: str = "UTC"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> str | None:
        """Return the authenticated subject, if any."""
        if self.caller is None:
            return None
        return self.caller.subject

    def to_dict(self) -> dict[str, Any]:
        """Convert ToolContext to a dictionary for logging."""
        return {
            "tool_name": self.tool_name,
            "request_id": self.request_id,
            "subject": self.subject,
            "default_timezone": self.default_timezone,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_request(
        cls,
        request: JSONRPCRequest,
        tool_name: str | None = None,
        caller: AuthContext | None = None,
        default_timezone: str = "UTC",
        metadata: dict[str, Any] | None = None,
    ) -> ToolContext:
        """
        Create a ToolContext from a parsed JSON-RPC request.

        Args:
            request: The parsed JSONRPCRequest.
            tool_name: Tool being invoked. Defaults to the request method.
            caller: Optional AuthContext of the caller.
            default_timezone: Configured default timezone.
            metadata: Optional additional metadata.

        Example:
            >>> from mcp_time.protocol import parse_request
            >>> req = parse_request('{"jsonrpc":"2.0","id":1,"method":"tools/call"}')
            >>> ToolContext.from_request(req, tool_name="get_current_time").request_id
            1
        """
        return cls(
            tool_name=tool_name or request.method,
            request_id=request.id,
            caller=caller,
            default_timezone=default_timezone,
            timestamp=datetime.now(UTC),
            metadata=metadata or {},
        )
