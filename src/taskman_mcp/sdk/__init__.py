"""Taskman MCP SDK - Client for connecting to an MCP server over HTTP.

Provides the transport client (with session and handshake handling) and
the intent dispatcher used by the command-line client.
"""

from .client import CLIENT_NAME, CLIENT_VERSION, HandshakeState, McpClient
from .intent import IntentHandler, IntentMethod, build_request, parse_intent

__all__ = [
    "CLIENT_NAME",
    "CLIENT_VERSION",
    "HandshakeState",
    "McpClient",
    "IntentHandler",
    "IntentMethod",
    "build_request",
    "parse_intent",
]
