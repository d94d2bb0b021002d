"""Taskman MCP client CLI.

Usage:
    taskman-mcp-client list-tools
    taskman-mcp-client execute-tool get_task_details '{"task_id": "t-1"}'
    taskman-mcp-client list-prompts
    taskman-mcp-client get-prompt create_task '{"task_name": "Write docs"}'
    taskman-mcp-client --intent '{"method": "tools/list"}'
    taskman-mcp-client --interactive

Environment:
    MCP_SERVER_URL    Default MCP server URL (http://localhost:3000)
    LOG_LEVEL         Default log level (info)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from typing import Any, TextIO

import click

from .config import ClientConfig, configure_logging
from .errors import McpError
from .sdk import IntentHandler, McpClient

logger = logging.getLogger(__name__)


def format_result(result: Any) -> str:
    """Render a result as indented JSON."""
    return json.dumps(result, indent=2, ensure_ascii=False)


def _parse_arguments(raw: str | None, kind: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        click.echo(f"Error: invalid {kind} arguments JSON: {e}", err=True)
        sys.exit(1)


async def _process_intent(config: ClientConfig, intent_json: str) -> Any:
    async with McpClient(config.server_url, timeout=config.timeout) as client:
        return await IntentHandler(client).process_intent(intent_json)


def _run_single_intent(config: ClientConfig, intent_json: str) -> None:
    """Process one intent, print its result, exit 1 on failure."""
    try:
        result = asyncio.run(_process_intent(config, intent_json))
    except McpError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(format_result(result))


def _start_line_reader(stream: TextIO) -> asyncio.Queue[str]:
    """Read lines on a daemon thread so exit never waits on a pending read.

    An empty string marks end of input.
    """
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue()

    def pump() -> None:
        while True:
            try:
                line = stream.readline()
            except (OSError, ValueError) as e:
                logger.error(f"Reading stdin failed: {e}")
                line = ""
            try:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            except RuntimeError:
                return  # Event loop already closed
            if not line:
                return

    threading.Thread(target=pump, name="stdin-reader", daemon=True).start()
    return lines


async def _interactive_loop(config: ClientConfig) -> None:
    lines = _start_line_reader(click.get_text_stream("stdin"))

    async with McpClient(config.server_url, timeout=config.timeout) as client:
        handler = IntentHandler(client)
        while True:
            click.echo("> ", nl=False)
            line = await lines.get()
            if not line:
                click.echo()
                break

            line = line.strip()
            if not line:
                continue

            try:
                result = await handler.process_intent(line)
            except McpError as e:
                click.echo(f"Error: {e}")
                continue

            click.echo(f"Result:\n{format_result(result)}\n")


def _run_interactive(config: ClientConfig) -> None:
    click.echo("MCP Client Interactive Mode")
    click.echo("Enter JSON intents (press Ctrl+D to exit):")
    click.echo()
    try:
        asyncio.run(_interactive_loop(config))
    except KeyboardInterrupt:
        click.echo("\nExiting", err=True)


@click.group(invoke_without_command=True)
@click.option("--server", "server_url", help="MCP server URL (overrides MCP_SERVER_URL)")
@click.option("--log-level", help="Log level: debug, info, warn, error (overrides LOG_LEVEL)")
@click.option("--intent", "intent_json", help="JSON intent to process")
@click.option("--interactive", is_flag=True, help="Run in interactive mode")
@click.pass_context
def main(
    ctx: click.Context,
    server_url: str | None,
    log_level: str | None,
    intent_json: str | None,
    interactive: bool,
) -> None:
    """MCP Client - Model Context Protocol client."""
    config = ClientConfig.from_env()
    if server_url:
        config.server_url = server_url
    if log_level:
        config.log_level = log_level
    configure_logging(config.log_level)
    ctx.obj = config

    # If a subcommand is invoked, let it handle everything
    if ctx.invoked_subcommand is not None:
        return

    if interactive:
        _run_interactive(config)
    elif intent_json:
        _run_single_intent(config, intent_json)
    else:
        click.echo(ctx.get_help(), err=True)
        ctx.exit(1)


@main.command("list-tools")
@click.pass_obj
def list_tools(config: ClientConfig) -> None:
    """List available tools."""
    _run_single_intent(config, json.dumps({"method": "tools/list"}))


@main.command("execute-tool")
@click.argument("name")
@click.argument("arguments", required=False)
@click.pass_obj
def execute_tool(config: ClientConfig, name: str, arguments: str | None) -> None:
    """Execute a tool with optional JSON arguments."""
    intent = {
        "method": "tools/call",
        "params": {"name": name, "arguments": _parse_arguments(arguments, "tool")},
    }
    _run_single_intent(config, json.dumps(intent))


@main.command("list-prompts")
@click.pass_obj
def list_prompts(config: ClientConfig) -> None:
    """List available prompts."""
    _run_single_intent(config, json.dumps({"method": "prompts/list"}))


@main.command("get-prompt")
@click.argument("name")
@click.argument("arguments", required=False)
@click.pass_obj
def get_prompt(config: ClientConfig, name: str, arguments: str | None) -> None:
    """Get a prompt with optional JSON arguments."""
    intent = {
        "method": "prompts/get",
        "params": {"name": name, "arguments": _parse_arguments(arguments, "prompt")},
    }
    _run_single_intent(config, json.dumps(intent))


if __name__ == "__main__":
    main()
