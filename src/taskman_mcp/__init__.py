"""Taskman MCP - Model Context Protocol client and server for Taskman.

The server exposes Taskman REST operations as MCP tools over stdio,
streamable HTTP, or both at once. The client talks to any streamable-HTTP
MCP server and drives it from intents.
"""

__version__ = "1.0.0"
