"""Error taxonomy for the taskman MCP client and server.

Every error raised by this package derives from McpError so callers
can catch the whole family at once:

- TransportError: network failure, timeout or non-success HTTP status
- DecodeError: malformed event stream, JSON or reply envelope
- ProtocolError: the reply carried a JSON-RPC error object
- HandshakeError: the initialize exchange failed
- ValidationError: an intent's parameters have the wrong shape
- UnsupportedMethodError: an intent names a method we do not route
- ConfigurationError: invalid startup configuration
- ListenerError: a server listener failed while running
"""

from __future__ import annotations

from typing import Any


class McpError(Exception):
    """Base class for all taskman MCP errors."""


class TransportError(McpError):
    """The HTTP exchange itself failed."""

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status_code = status_code
        self.body = body


class DecodeError(TransportError):
    """The response body could not be decoded into a reply."""


class ProtocolError(McpError):
    """The server answered with a JSON-RPC error object."""

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
        *,
        method: str | None = None,
    ) -> None:
        prefix = f"{method}: " if method else ""
        super().__init__(f"{prefix}server error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data
        self.method = method


class HandshakeError(McpError):
    """The initialize call failed, so no functional call may proceed."""


class ValidationError(McpError):
    """An intent or its parameters failed structural validation."""


class MissingRequiredFieldError(ValidationError):
    """A required field was missing or empty."""

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"{field} is required")
        self.field = field


class UnsupportedMethodError(McpError):
    """An intent named a method outside the supported set."""

    def __init__(self, method: str) -> None:
        super().__init__(f"unsupported intent method: {method}")
        self.method = method


class ConfigurationError(McpError):
    """Startup configuration is invalid."""


class ListenerError(McpError):
    """A listener exited with an error."""

    def __init__(self, listener: str, cause: BaseException) -> None:
        super().__init__(f"{listener} transport error: {cause}")
        self.listener = listener
        self.cause = cause
