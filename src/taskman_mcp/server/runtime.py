"""Server runtime - runs the configured listeners side by side.

Each listener serves until the shared stop event is set (or, for stdio,
until stdin closes). The first listener to fail sets the stop event so
the others drain, and its error is raised once every listener returned.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..config import ServerConfig
from ..errors import ConfigurationError, ListenerError
from .handler import McpRequestHandler
from .http import HttpListener, create_app
from .stdio import StdioListener

logger = logging.getLogger(__name__)


class Listener(Protocol):
    """A transport that serves requests until stopped."""

    name: str

    async def serve(self, stop: asyncio.Event) -> None: ...


class ServerRuntime:
    """Runs a fixed set of listeners with coordinated shutdown."""

    def __init__(self, listeners: list[Listener]):
        self._listeners = tuple(listeners)
        self._first_error: ListenerError | None = None

    @classmethod
    def from_config(cls, config: ServerConfig, handler: McpRequestHandler) -> ServerRuntime:
        """Build the listener set selected by the configured transport mode."""
        listeners: list[Listener] = []
        if config.transport_mode.uses_stdio:
            listeners.append(StdioListener(handler))
        if config.transport_mode.uses_http:
            listeners.append(
                HttpListener(
                    create_app(handler),
                    host=config.http_host,
                    port=config.http_port,
                    shutdown_timeout=config.shutdown_timeout,
                )
            )
        return cls(listeners)

    @property
    def listeners(self) -> tuple[Listener, ...]:
        return self._listeners

    async def _supervise(self, listener: Listener, stop: asyncio.Event) -> None:
        try:
            await listener.serve(stop)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{listener.name} transport failed: {e}")
            if self._first_error is None:
                self._first_error = ListenerError(listener.name, e)
            stop.set()
        else:
            logger.info(f"{listener.name} transport exited")

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Run every listener until all have returned.

        Args:
            stop: Event that asks all listeners to shut down

        Raises:
            ConfigurationError: If there are no listeners
            ListenerError: Wrapping the first listener failure
        """
        if not self._listeners:
            raise ConfigurationError("no transports configured")

        stop = stop if stop is not None else asyncio.Event()
        self._first_error = None

        names = ", ".join(listener.name for listener in self._listeners)
        logger.info(f"Starting MCP server runtime (transports: {names})")

        tasks = [
            asyncio.create_task(self._supervise(listener, stop), name=f"listener-{listener.name}")
            for listener in self._listeners
        ]
        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            logger.info("Runtime cancelled, stopping listeners")
            stop.set()
            await asyncio.wait(tasks)
            raise

        if self._first_error is not None:
            raise self._first_error from self._first_error.cause
        logger.info("MCP server runtime stopped")
