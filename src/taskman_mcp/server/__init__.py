"""Taskman MCP server.

Usage:
    handler = McpRequestHandler("taskman-mcp", "1.0.0")
    register_taskman_tools(handler, TaskmanAPIClient("http://localhost:8080"))
    await ServerRuntime.from_config(config, handler).run(stop)
"""

from .api_client import APIError, TaskmanAPIClient
from .handler import (
    McpMethodError,
    McpRequestHandler,
    PromptDefinition,
    ResourceDefinition,
    ToolDefinition,
)
from .http import HttpListener, create_app
from .runtime import ServerRuntime
from .stdio import StdioListener
from .tools import register_taskman_tools

__all__ = [
    "APIError",
    "TaskmanAPIClient",
    "McpMethodError",
    "McpRequestHandler",
    "PromptDefinition",
    "ResourceDefinition",
    "ToolDefinition",
    "HttpListener",
    "create_app",
    "ServerRuntime",
    "StdioListener",
    "register_taskman_tools",
]
