"""
Error types for the Time MCP Server.

This module defines the ToolError base class and subclasses for domain-specific
errors. Handlers raise these instead of building JSON-RPC error objects; the
protocol layer maps each error_code to a JSON-RPC error code.
"""

from __future__ import annotations

from typing import Any


class ToolError(Exception):
    """
    Base exception class for MCP tool errors.

    ToolError instances are caught at the dispatch boundary and mapped to
    JSON-RPC errors using ``mcp_time.protocol.ERROR_CODE_MAP``. The message is
    returned to the client verbatim, so it must never contain internal state.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "invalid_timezone", "not_found", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., the offending field).

    Example:
        >>> raise ToolError(
        ...     error_code="invalid_timezone",
        ...     message="Invalid timezone: Mars/Olympus",
        ...     details={"timezone": "Mars/Olympus"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a ToolError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(ToolError):
    """
    Error raised when a tool receives invalid input arguments.

    Maps to the "invalid_argument" error code (JSON-RPC -32602).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class InvalidTimezoneError(ToolError):
    """Error raised for an unknown or malformed IANA timezone identifier."""

    def __init__(self, timezone: str) -> None:
        """Initialize an InvalidTimezoneError for the given identifier."""
        super().__init__(
            error_code="invalid_timezone",
            message=f"Invalid timezone: {timezone}",
            details={"timezone": timezone},
        )


class InvalidTimestampError(ToolError):
    """Error raised when a timestamp string cannot be parsed."""

    def __init__(self, timestamp: str, field: str = "timestamp") -> None:
        """Initialize an InvalidTimestampError for the given input."""
        super().__init__(
            error_code="invalid_timestamp",
            message=f"Invalid timestamp format for '{field}'",
            details={"field": field, "timestamp": timestamp},
        )


class ConversionError(ToolError):
    """
    Error raised when a parsed timestamp cannot be converted or rendered.

    Typical causes are Unix values outside the supported date range or an
    overflow while shifting into the target timezone.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConversionError."""
        super().__init__(
            error_code="conversion_failed", message=message, details=details
        )


class NotFoundError(ToolError):
    """Error raised when a tool, resource, or prompt name is not registered."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a NotFoundError."""
        super().__init__(error_code="not_found", message=message, details=details)

