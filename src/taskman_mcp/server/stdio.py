"""stdio transport for the MCP server.

Newline-delimited JSON-RPC over stdin/stdout:
- Input (stdin):  one request or notification per line (UTF-8, LF or CRLF)
- Output (stdout): one reply per request line (UTF-8, LF only)

Notifications get no reply. Logs go to stderr, never stdout.

Pipes, sockets and terminals are read through the event loop, so a stop
request interrupts a pending read. Other streams (regular files,
in-memory buffers) are read in the default executor.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import stat
import sys
from collections.abc import Awaitable, Callable
from typing import BinaryIO

from .handler import McpRequestHandler

logger = logging.getLogger(__name__)

# UTF-8 encoding for all JSON operations
ENCODING = "utf-8"

# Newline character (always LF for cross-platform consistency)
NEWLINE = "\n"

# Longest accepted input line
MAX_LINE_BYTES = 16 * 1024 * 1024


def _is_pollable(stream: BinaryIO) -> bool:
    """True for streams the event loop can watch (pipes, sockets, ttys)."""
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (AttributeError, OSError, io.UnsupportedOperation):
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or stat.S_ISCHR(mode)


class StdioListener:
    """Serves MCP over stdin/stdout until EOF or stop."""

    name = "stdio"

    def __init__(
        self,
        handler: McpRequestHandler,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ):
        """Initialize stdio listener.

        Args:
            handler: Request handler shared with the other transports
            stdin: Binary input stream (default: sys.stdin.buffer)
            stdout: Binary output stream (default: sys.stdout.buffer)
        """
        self.handler = handler
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._transport: asyncio.BaseTransport | None = None

    async def _open_reader(self) -> Callable[[], Awaitable[bytes]]:
        loop = asyncio.get_running_loop()

        if _is_pollable(self._stdin):
            reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
            protocol = asyncio.StreamReaderProtocol(reader)
            self._transport, _ = await loop.connect_read_pipe(lambda: protocol, self._stdin)
            return reader.readline

        async def read_in_executor() -> bytes:
            return await loop.run_in_executor(None, self._stdin.readline)

        return read_in_executor

    async def serve(self, stop: asyncio.Event) -> None:
        """Process lines until stdin closes or stop is set.

        Raises:
            OSError: If stdin or stdout fails
        """
        read_line = await self._open_reader()
        writer: io.TextIOWrapper | None = None
        stop_task = asyncio.create_task(stop.wait())
        logger.info("Starting stdio transport")

        try:
            writer = io.TextIOWrapper(
                self._stdout,
                encoding=ENCODING,
                errors="replace",
                newline=NEWLINE,
                write_through=True,
            )
            while not stop.is_set():
                read_task = asyncio.ensure_future(read_line())
                done, _ = await asyncio.wait(
                    {read_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                )
                if read_task not in done:
                    read_task.cancel()
                    logger.info("stdio transport stopping")
                    break

                raw = read_task.result()
                if not raw:
                    logger.info("stdin closed, stdio transport exiting")
                    break

                line = raw.decode(ENCODING, errors="replace").strip()
                if not line:
                    continue  # Skip empty lines

                # Skip UTF-8 BOM if present at start
                if line.startswith("\ufeff"):
                    line = line[1:]

                response = await self.handler.process_message(line)
                if response is not None:
                    writer.write(response.to_wire() + NEWLINE)
                    writer.flush()
        finally:
            stop_task.cancel()
            if self._transport is not None:
                self._transport.close()
                self._transport = None
            if writer is not None:
                # Keep the caller's stream open
                writer.detach()
