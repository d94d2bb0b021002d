"""Streamable-HTTP transport for the MCP server.

Endpoints:
- POST /mcp - JSON-RPC endpoint (replies as SSE or JSON)
- GET /health - liveness probe

Sessions:
- A successful initialize issues a new token in the Mcp-Session-Id header
- Requests carrying an unknown token are rejected with 404
- Requests without a token are served statelessly
- Beyond max_sessions tokens the least recently used one is forgotten
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import socket
import uuid
from collections import OrderedDict

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..protocol.types import (
    JSON_CONTENT_TYPE,
    SESSION_HEADER,
    SSE_CONTENT_TYPE,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcResponse,
)
from ..transport.sse import format_sse_event
from .handler import McpMethod, McpRequestHandler

logger = logging.getLogger(__name__)

# Oldest idle sessions are forgotten beyond this many
DEFAULT_MAX_SESSIONS = 1024

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]


class McpHttpEndpoint:
    """POST /mcp handler bound to one request handler and its sessions."""

    def __init__(self, handler: McpRequestHandler, max_sessions: int = DEFAULT_MAX_SESSIONS):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.handler = handler
        self.max_sessions = max_sessions
        # Least recently used first
        self._sessions: OrderedDict[str, None] = OrderedDict()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def _touch(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        self._sessions.move_to_end(session_id)
        return True

    def _issue_session(self) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = None
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info(f"Evicted least recently used MCP session: {evicted}")
        logger.info(f"Created MCP session: {session_id}")
        return session_id

    async def handle_post(self, request: Request) -> Response:
        body = await request.body()
        try:
            message = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Rejecting unparseable request body: {e}")
            return _error(400, JsonRpcErrorCode.PARSE_ERROR, f"Parse error: {e}")

        if not isinstance(message, dict):
            return _error(400, JsonRpcErrorCode.INVALID_REQUEST, "Message must be a JSON object")

        method = message.get("method")
        session_id = request.headers.get(SESSION_HEADER)
        if session_id and not self._touch(session_id) and method != McpMethod.INITIALIZE.value:
            logger.warning(f"Request for unknown session: {session_id}")
            return _error(
                404,
                JsonRpcErrorCode.SESSION_NOT_FOUND,
                "Session not found",
                request_id=message.get("id"),
            )

        response = await self.handler.handle(message)

        headers: dict[str, str] = {}
        if method == McpMethod.INITIALIZE.value and response is not None and not response.is_error:
            session_id = self._issue_session()
        if session_id and session_id in self._sessions:
            headers[SESSION_HEADER] = session_id

        # Notification or ignored response
        if response is None:
            return Response(status_code=202, headers=headers)

        payload = response.to_wire()
        if SSE_CONTENT_TYPE in request.headers.get("accept", ""):
            event_id = str(response.id) if response.id is not None else None
            return Response(
                content=format_sse_event(payload, id=event_id),
                media_type=SSE_CONTENT_TYPE,
                headers={**SSE_HEADERS, **headers},
            )
        return Response(content=payload, media_type=JSON_CONTENT_TYPE, headers=headers)


def _error(
    status_code: int, code: int, message: str, request_id: object | None = None
) -> Response:
    if not isinstance(request_id, str | int) or isinstance(request_id, bool):
        request_id = None
    response = JsonRpcResponse(id=request_id, error=JsonRpcError(code=code, message=message))
    return Response(
        content=response.to_wire(), status_code=status_code, media_type=JSON_CONTENT_TYPE
    )


def create_app(
    handler: McpRequestHandler, max_sessions: int = DEFAULT_MAX_SESSIONS
) -> Starlette:
    """Create the MCP HTTP application.

    Args:
        handler: Request handler shared with the other transports
        max_sessions: Session tokens kept before the least recently used is dropped

    Returns:
        Configured Starlette application
    """
    routes: list[Route] = []
    routes.extend(health_routes)
    endpoint = McpHttpEndpoint(handler, max_sessions)
    routes.append(Route("/mcp", endpoint.handle_post, methods=["POST"]))

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:*", "http://127.0.0.1:*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[SESSION_HEADER],
        ),
    ]

    return Starlette(routes=routes, middleware=middleware)


class HttpListener:
    """Serves the MCP application with uvicorn until stopped."""

    name = "http"

    def __init__(
        self,
        app: Starlette,
        host: str = "localhost",
        port: int = 8081,
        shutdown_timeout: float = 10.0,
    ):
        self.app = app
        self.host = host
        self.port = port
        self.shutdown_timeout = shutdown_timeout
        self._server: uvicorn.Server | None = None
        self._bound_port: int | None = None

    @property
    def started(self) -> bool:
        return self._server is not None and self._server.started

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (useful when binding port 0)."""
        return self._bound_port

    def _bind(self) -> socket.socket:
        # uvicorn exits the process on bind failure, so bind here and raise instead
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.create_server((self.host, self.port), family=family)
        self._bound_port = sock.getsockname()[1]
        return sock

    async def serve(self, stop: asyncio.Event) -> None:
        """Run until stop is set, then drain in-flight requests.

        Raises:
            OSError: If the address cannot be bound
        """
        sock = self._bind()
        config = uvicorn.Config(self.app, log_config=None)
        server = uvicorn.Server(config)
        self._server = server

        logger.info(f"Starting HTTP transport on {self.host}:{self._bound_port}")
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))
        stop_task = asyncio.create_task(stop.wait())

        try:
            done, _ = await asyncio.wait(
                {serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if serve_task in done:
                serve_task.result()
                logger.info("HTTP server exited")
                return

            logger.info("Shutting down HTTP transport")
            server.should_exit = True
            try:
                await asyncio.wait_for(asyncio.shield(serve_task), timeout=self.shutdown_timeout)
            except TimeoutError:
                logger.warning(
                    f"HTTP server did not drain within {self.shutdown_timeout}s, forcing exit"
                )
                server.force_exit = True
                serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await serve_task
            logger.info("HTTP transport stopped")
        finally:
            stop_task.cancel()
            if not serve_task.done():
                server.should_exit = True
                server.force_exit = True
                serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await serve_task
            sock.close()
