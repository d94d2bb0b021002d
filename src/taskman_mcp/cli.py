"""Taskman MCP server CLI.

Default transport comes from TASKMAN_MCP_TRANSPORT (stdio if unset).

Usage:
    taskman-mcp                              # stdio mode
    taskman-mcp --transport http             # HTTP server on localhost:8081
    taskman-mcp --transport both --port 9000 # stdio and HTTP together
    taskman-mcp --health                     # Check a running HTTP server
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys

import click
import httpx

from .config import ServerConfig, TransportMode, configure_logging
from .errors import ConfigurationError, ListenerError
from .server import McpRequestHandler, ServerRuntime, TaskmanAPIClient, register_taskman_tools


@click.command()
@click.option(
    "--transport",
    type=click.Choice([m.value for m in TransportMode], case_sensitive=False),
    help="Transports to serve (default: TASKMAN_MCP_TRANSPORT or stdio)",
)
@click.option("--host", help="Host to bind to (HTTP mode)")
@click.option("--port", type=int, help="Port to bind to (HTTP mode)")
@click.option("--api-url", help="Taskman API base URL")
@click.option("--log-level", help="Log level: debug, info, warn, error")
@click.option("--health", "health_check", is_flag=True, help="Check HTTP server health and exit")
def main(
    transport: str | None,
    host: str | None,
    port: int | None,
    api_url: str | None,
    log_level: str | None,
    health_check: bool,
) -> None:
    """Taskman MCP server - exposes Taskman over the Model Context Protocol."""
    try:
        config = _load_config(transport, host, port, api_url, log_level)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    configure_logging(config.log_level)

    if health_check:
        _do_health_check(f"http://{config.http_host}:{config.http_port}")
        return

    click.echo(
        f"Starting {config.server_name} {config.server_version} "
        f"(transport: {config.transport_mode.value})",
        err=True,
    )
    if config.transport_mode.uses_http:
        click.echo(f"  MCP endpoint: http://{config.http_host}:{config.http_port}/mcp", err=True)

    try:
        asyncio.run(_serve(config))
    except ListenerError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


def _load_config(
    transport: str | None,
    host: str | None,
    port: int | None,
    api_url: str | None,
    log_level: str | None,
) -> ServerConfig:
    """Environment first, then CLI flags on top."""
    config = ServerConfig.from_env()
    if transport:
        config.transport_mode = TransportMode.parse(transport)
    if host:
        config.http_host = host
    if port is not None:
        config.http_port = port
    if api_url:
        config.api_base_url = api_url
    if log_level:
        config.log_level = log_level
    config.validate()
    return config


async def _serve(config: ServerConfig) -> None:
    """Run the configured listeners until a signal or a listener failure."""
    handler = McpRequestHandler(config.server_name, config.server_version)
    api_client = TaskmanAPIClient(config.api_base_url, timeout=config.api_timeout)
    register_taskman_tools(handler, api_client)

    runtime = ServerRuntime.from_config(config, handler)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        # Not supported on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        await runtime.run(stop)
    finally:
        for sig in signals:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        await api_client.close()


def _do_health_check(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
