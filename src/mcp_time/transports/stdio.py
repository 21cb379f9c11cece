"""
Line-delimited stdio transport.

Reads one JSON-RPC message per line from stdin and writes one response per
line to stdout. Messages are handled strictly in order: a line is fully
answered before the next is read. stdout carries protocol messages only;
logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING, BinaryIO

from mcp_time.logging import get_logger
from mcp_time.protocol import create_internal_error, encode_response, format_error_response

if TYPE_CHECKING:
    from mcp_time.server import MCPServer

logger = get_logger(__name__)


class StdioTransport:
    """
    Drives an MCPServer over a pair of byte streams.

    Streams are binary so that input which is not valid UTF-8 reaches the
    protocol layer and is answered with a parse error.

    Example:
        >>> transport = StdioTransport(server)
        >>> await transport.run()
    """

    def __init__(
        self,
        server: MCPServer,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            server: Server handling each message.
            stdin: Input stream. Defaults to ``sys.stdin.buffer``.
            stdout: Output stream. Defaults to ``sys.stdout.buffer``.
        """
        self.server = server
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self.running = False

    async def run(self) -> None:
        """
        Serve until end of input or ``stop()``.

        A failure while handling one line is logged and answered with an
        internal error; the loop keeps reading.
        """
        self.running = True
        logger.info("Stdio transport started", extra={"tools_count": len(self.server.registry)})

        loop = asyncio.get_running_loop()
        try:
            while self.running:
                line = await loop.run_in_executor(None, self._stdin.readline)
                if not line:
                    break

                message = line.strip()
                if not message:
                    continue

                try:
                    response = await self.server.process_request(message)
                except Exception:
                    logger.exception("Error handling stdio message")
                    response = encode_response(
                        format_error_response(None, create_internal_error())
                    )

                if response is not None:
                    self._write_line(response)
        finally:
            self.running = False
            logger.info("Stdio transport stopped")

    def stop(self) -> None:
        """Stop after the message currently being handled."""
        self.running = False

    def _write_line(self, payload: bytes) -> None:
        self._stdout.write(payload + b"\n")
        self._stdout.flush()


async def run_stdio(server: MCPServer) -> None:
    """Serve ``server`` on the process's stdin and stdout."""
    await StdioTransport(server).run()
