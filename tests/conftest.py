"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from taskman_mcp.protocol import GetPromptResult, PromptArgument, PromptMessage, TextContent
from taskman_mcp.server import McpRequestHandler, PromptDefinition, ToolDefinition


async def echo_tool(arguments: dict[str, Any]) -> Any:
    return {"echo": arguments}


async def failing_tool(arguments: dict[str, Any]) -> Any:
    raise RuntimeError("tool exploded")


async def greeting_prompt(arguments: dict[str, str]) -> GetPromptResult:
    return GetPromptResult(
        description="Greeting",
        messages=[PromptMessage(content=TextContent(text=f"Hello, {arguments['name']}!"))],
    )


@pytest.fixture
def handler() -> McpRequestHandler:
    """A request handler with a small, deterministic registry."""
    handler = McpRequestHandler("test-server", "0.1.0")
    handler.register_tool(
        ToolDefinition(name="echo", description="Echo the arguments back", handler=echo_tool)
    )
    handler.register_tool(
        ToolDefinition(name="fail", description="Always raises", handler=failing_tool)
    )
    handler.register_prompt(
        PromptDefinition(
            name="greet",
            description="Greet someone",
            handler=greeting_prompt,
            arguments=[PromptArgument(name="name", required=True)],
        )
    )
    return handler
