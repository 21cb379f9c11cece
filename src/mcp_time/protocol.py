"""
JSON-RPC 2.0 protocol handling for the Time MCP Server.

This module turns raw bytes into validated requests and responses back into
bytes. It knows nothing about tools or transports.

Error Code Mapping:
- -32700: Parse error (not UTF-8, not JSON, or not a JSON object)
- -32600: Invalid Request (bad jsonrpc/method/id fields)
- -32601: Method not found
- -32602: Invalid params (shape or argument validation failed)
- -32603: Internal error (unexpected fault; no details leaked)
- -32000 to -32099: Application errors (mapped from ToolError)
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any

from mcp_time.errors import ToolError
from mcp_time.logging import get_logger

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"

# =============================================================================
# JSON-RPC Error Codes
# =============================================================================

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Application error codes
INVALID_TIMEZONE = -32000
INVALID_TIMESTAMP = -32001
CONVERSION_ERROR = -32002
NOT_FOUND = -32003
UNAUTHENTICATED = -32010
PERMISSION_DENIED = -32011

ERROR_CODE_MAP: dict[str, int] = {
    "invalid_argument": INVALID_PARAMS,
    "invalid_timezone": INVALID_TIMEZONE,
    "invalid_timestamp": INVALID_TIMESTAMP,
    "conversion_failed": CONVERSION_ERROR,
    "not_found": NOT_FOUND,
    "unauthenticated": UNAUTHENTICATED,
    "permission_denied": PERMISSION_DENIED,
    "internal": INTERNAL_ERROR,
}

# Fallback for error codes missing from the map
DEFAULT_SERVER_ERROR = INTERNAL_ERROR

RequestId = str | int | float


# =============================================================================
# Data Classes
# =============================================================================


class JSONRPCError(Exception):
    """
    Represents a JSON-RPC 2.0 error object.

    This class is both an Exception (so it can be raised) and a data container
    for JSON-RPC error information.

    Attributes:
        code: Integer error code.
        message: Human-readable error message.
        data: Optional structured error data.
        request_id: Id of the offending request when it could be recovered.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: dict[str, Any] | None = None,
        request_id: RequestId | None = None,
    ) -> None:
        """
        Initialize a JSONRPCError.

        Args:
            code: Integer error code.
            message: Human-readable error message.
            data: Optional structured error data.
            request_id: Id to echo in the error response, if known.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
        self.request_id = request_id

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for JSON serialization.

        Returns:
            Dictionary with code, message, and optionally data.
        """
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        return result

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"JSONRPCError(code={self.code}, "
            f"message={self.message!r}, "
            f"data={self.data!r})"
        )


@dataclass
class JSONRPCRequest:
    """
    Represents a parsed JSON-RPC 2.0 request.

    Attributes:
        jsonrpc: Protocol version (always "2.0").
        id: Request identifier (string or number, None for notifications).
        method: The method to invoke.
        params: Parameters (object, array, or None when absent).
    """

    jsonrpc: str
    id: RequestId | None
    method: str
    params: dict[str, Any] | list[Any] | None = field(default=None)

    @property
    def is_notification(self) -> bool:
        """Check if this is a notification (no id field)."""
        return self.id is None


@dataclass
class JSONRPCResponse:
    """
    Represents a JSON-RPC 2.0 response.

    Exactly one of result or error is serialized.

    Attributes:
        jsonrpc: Protocol version (always "2.0").
        id: Request identifier (matches request, or null when unknown).
        result: Success result (if not an error).
        error: Error object (if an error occurred).
    """

    jsonrpc: str
    id: RequestId | None
    result: Any | None = None
    error: JSONRPCError | None = None

    @property
    def is_error(self) -> bool:
        """Check if this is an error response."""
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the response to a dictionary for JSON serialization.

        Returns:
            Dictionary with jsonrpc, id, and either result or error.
        """
        response: dict[str, Any] = {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
        }
        if self.error is not None:
            response["error"] = self.error.to_dict()
        else:
            response["result"] = self.result
        return response

    def to_json(self) -> str:
        """
        Serialize the response to a JSON string.

        Raises:
            TypeError/ValueError: If the result is not JSON serializable.
                ``encode_response`` is the total variant.
        """
        return json.dumps(self.to_dict(), separators=(",", ":"), allow_nan=False)


# =============================================================================
# Request Parsing
# =============================================================================


def _is_valid_id(value: Any) -> bool:
    # bool is a subclass of int but is not a valid JSON-RPC id
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (str, int))


def parse_request(request_json: str) -> JSONRPCRequest:
    """
    Parse a JSON-RPC 2.0 request from a JSON string.

    Args:
        request_json: Raw JSON string containing the request.

    Returns:
        Parsed JSONRPCRequest object.

    Raises:
        JSONRPCError: If the request is malformed or invalid. ``request_id``
            is set when a valid id could be recovered from the envelope.

    Example:
        >>> request = parse_request('{"jsonrpc":"2.0","id":1,"method":"tools/list"}')
        >>> print(request.method)
        tools/list
    """
    try:
        data = json.loads(request_json)
    except (json.JSONDecodeError, RecursionError) as e:
        raise JSONRPCError(
            code=PARSE_ERROR,
            message="Parse error: Invalid JSON",
        ) from e

    if not isinstance(data, dict):
        raise JSONRPCError(
            code=PARSE_ERROR,
            message="Parse error: Request must be a JSON object",
        )

    # The id is validated first so that later errors can echo it
    has_id = "id" in data
    raw_id = data.get("id")
    request_id = raw_id if has_id and _is_valid_id(raw_id) else None
    if has_id and request_id is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: 'id' must be a string or finite number",
        )

    jsonrpc = data.get("jsonrpc")
    if jsonrpc is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Missing 'jsonrpc' field",
            request_id=request_id,
        )
    if jsonrpc != JSONRPC_VERSION:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message=f"Invalid Request: jsonrpc must be '{JSONRPC_VERSION}'",
            request_id=request_id,
        )

    method = data.get("method")
    if method is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Missing 'method' field",
            request_id=request_id,
        )
    if not isinstance(method, str) or not method:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: 'method' must be a non-empty string",
            request_id=request_id,
        )

    params = data.get("params")
    if params is not None and not isinstance(params, (dict, list)):
        raise JSONRPCError(
            code=INVALID_PARAMS,
            message="Invalid params: 'params' must be an object or array",
            request_id=request_id,
        )

    return JSONRPCRequest(
        jsonrpc=JSONRPC_VERSION,
        id=request_id,
        method=method,
        params=params,
    )


def decode_request(raw: bytes | str) -> JSONRPCRequest:
    """
    Decode raw transport bytes into a validated request.

    Raises:
        JSONRPCError: -32700 for undecodable input, otherwise as
            ``parse_request``.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise JSONRPCError(
                code=PARSE_ERROR,
                message="Parse error: Request must be UTF-8 encoded",
            ) from e
    return parse_request(raw)


# =============================================================================
# Response Formatting
# =============================================================================


def format_success_response(
    request_id: RequestId | None,
    result: Any,
) -> JSONRPCResponse:
    """
    Format a successful JSON-RPC 2.0 response.

    Example:
        >>> response = format_success_response(1, {"timezone": "UTC"})
        >>> print(response.to_json())
        {"jsonrpc":"2.0","id":1,"result":{"timezone":"UTC"}}
    """
    return JSONRPCResponse(
        jsonrpc=JSONRPC_VERSION,
        id=request_id,
        result=result,
        error=None,
    )


def format_error_response(
    request_id: RequestId | None,
    error: JSONRPCError,
) -> JSONRPCResponse:
    """
    Format a JSON-RPC 2.0 error response.

    Args:
        request_id: The request ID (None for parse errors).
        error: The JSONRPCError object describing the error.
    """
    return JSONRPCResponse(
        jsonrpc=JSONRPC_VERSION,
        id=request_id,
        result=None,
        error=error,
    )


def encode_response(response: JSONRPCResponse) -> bytes:
    """
    Serialize a response to UTF-8 JSON bytes.

    Never raises: a result that cannot be serialized is replaced by an
    internal error carrying the same id, or a null id when the id itself
    cannot be serialized.
    """
    try:
        return response.to_json().encode("utf-8")
    except (TypeError, ValueError):
        logger.exception(
            "Response is not JSON serializable",
            extra={"request_id": response.id},
        )
        fallback = format_error_response(
            response.id if _is_valid_id(response.id) else None,
            create_internal_error(),
        )
        return fallback.to_json().encode("utf-8")


# =============================================================================
# Error Constructors
# =============================================================================


def tool_error_to_jsonrpc_error(tool_error: ToolError) -> JSONRPCError:
    """
    Convert a ToolError to a JSONRPCError.

    Args:
        tool_error: The ToolError to convert.

    Returns:
        JSONRPCError with the mapped code and structured data.

    Example:
        >>> from mcp_time.errors import InvalidTimezoneError
        >>> tool_error_to_jsonrpc_error(InvalidTimezoneError("Mars/Base")).code
        -32000
    """
    jsonrpc_code = ERROR_CODE_MAP.get(tool_error.error_code, DEFAULT_SERVER_ERROR)

    data: dict[str, Any] = {
        "error_code": tool_error.error_code,
        "message": tool_error.message,
        "details": tool_error.details,
    }

    return JSONRPCError(
        code=jsonrpc_code,
        message=tool_error.message,
        data=data,
    )


def create_method_not_found_error(method: str) -> JSONRPCError:
    """
    Create a "Method not found" error.

    Args:
        method: The method name that was not found.

    Returns:
        JSONRPCError with code -32601.
    """
    return JSONRPCError(
        code=METHOD_NOT_FOUND,
        message=f"Method not found: {method}",
        data={"method": method},
    )


def create_invalid_params_error(
    message: str, details: dict[str, Any] | None = None
) -> JSONRPCError:
    """Create an "Invalid params" error (-32602)."""
    return JSONRPCError(
        code=INVALID_PARAMS,
        message=message,
        data={
            "error_code": "invalid_argument",
            "message": message,
            "details": details or {},
        },
    )


def create_internal_error(message: str = "Internal error") -> JSONRPCError:
    """
    Create an internal error for unexpected exceptions.

    The message is generic on purpose; callers log the exception themselves.

    Returns:
        JSONRPCError with code -32603.
    """
    return JSONRPCError(
        code=INTERNAL_ERROR,
        message=message,
        data={"error_code": "internal"},
    )
