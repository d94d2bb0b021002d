"""MCP client over streamable HTTP.

Each call is one HTTP POST carrying a JSON-RPC request. The server
replies either with a JSON document or with a single-event SSE stream;
both are decoded into a JsonRpcResponse.

Session handling:
- The server issues a session token in the Mcp-Session-Id response header
- Once known, the token is sent on every later request
- A newer token from the server replaces the old one

Handshake:
- Functional calls (tools/prompts) lazily run initialize first
- initialize succeeds once per client; a failed attempt is retried by the
  next call
- The notifications/initialized acknowledgement is best-effort

Usage:
    async with McpClient("http://localhost:8081/mcp") as client:
        reply = await client.list_tools()
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import DecodeError, HandshakeError, TransportError
from ..protocol.types import (
    JSON_CONTENT_TYPE,
    PROTOCOL_VERSION,
    SESSION_HEADER,
    SSE_CONTENT_TYPE,
    Implementation,
    InitializeParams,
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
)
from ..transport.sse import read_one_message

logger = logging.getLogger(__name__)

CLIENT_NAME = "taskman-mcp-client"
CLIENT_VERSION = "1.0.0"

ACCEPT_HEADER = f"{JSON_CONTENT_TYPE}, {SSE_CONTENT_TYPE}"


class HandshakeState(str, Enum):
    """Initialization state machine."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


@dataclass
class _SessionState:
    """Mutable per-client state, only touched under the client's locks."""

    session_id: str | None = None
    handshake: HandshakeState = HandshakeState.UNINITIALIZED
    server_info: InitializeResult | None = None


class McpClient:
    """Client for an MCP server's streamable-HTTP endpoint."""

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        client_name: str = CLIENT_NAME,
        client_version: str = CLIENT_VERSION,
    ):
        self.server_url = server_url
        self.timeout = timeout
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._client_info = Implementation(name=client_name, version=client_version)

        self._state = _SessionState()
        self._state_lock = asyncio.Lock()
        self._handshake_lock = asyncio.Lock()
        self._ids = itertools.count(1)

    # -------------------------------------------------------------------------
    # State (read-only views)
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str | None:
        """Session token issued by the server, if any."""
        return self._state.session_id

    @property
    def handshake_state(self) -> HandshakeState:
        return self._state.handshake

    @property
    def is_initialized(self) -> bool:
        return self._state.handshake == HandshakeState.INITIALIZED

    @property
    def server_info(self) -> InitializeResult | None:
        """The server's initialize result, once the handshake succeeded."""
        return self._state.server_info

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _next_id(self) -> str:
        return f"req_{next(self._ids)}"

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def _post(self, method: str, body: str) -> httpx.Response:
        """POST one JSON-RPC message and adopt any session token in the reply."""
        headers = {
            "Content-Type": JSON_CONTENT_TYPE,
            "Accept": ACCEPT_HEADER,
        }
        async with self._state_lock:
            if self._state.session_id:
                headers[SESSION_HEADER] = self._state.session_id

        client = self._ensure_http_client()
        try:
            response = await client.post(
                self.server_url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {method} ({e})")
            raise TransportError(f"{method}: request timed out", method=method) from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to send HTTP request: {method} ({e})")
            raise TransportError(f"{method}: failed to send HTTP request: {e}", method=method) from e

        if not response.is_success:
            text = response.text
            logger.error(f"HTTP request failed: status={response.status_code}, body={text}")
            raise TransportError(
                f"{method}: HTTP request failed with status {response.status_code}: {text}",
                method=method,
                status_code=response.status_code,
                body=text,
            )

        new_session = response.headers.get(SESSION_HEADER)
        if new_session:
            async with self._state_lock:
                if new_session != self._state.session_id:
                    self._state.session_id = new_session
                    logger.info(f"Updated session ID: {new_session}")

        return response

    async def _read_payload(self, method: str, response: httpx.Response) -> str:
        """Extract the single reply payload from a response body."""
        content_type = response.headers.get("content-type", "")
        if content_type.startswith(JSON_CONTENT_TYPE):
            return response.text

        try:
            return await read_one_message(response.aiter_lines())
        except DecodeError as e:
            logger.error(f"Failed to parse SSE response for {method}: {e}")
            raise DecodeError(
                f"{method}: failed to parse SSE response: {e}",
                method=method,
                status_code=response.status_code,
            ) from e

    async def call(self, method: str, params: Any | None = None) -> JsonRpcResponse:
        """Send a request and return the server's reply.

        A reply carrying a JSON-RPC error is returned, not raised.

        Raises:
            TransportError: On network failure, timeout or non-success status
            DecodeError: If the body cannot be decoded into a reply
        """
        request = JsonRpcRequest(id=self._next_id(), method=method, params=params)
        logger.info(f"Sending MCP request: {method} (id={request.id})")

        response = await self._post(method, request.model_dump_json(exclude_none=True))
        payload = await self._read_payload(method, response)

        try:
            reply = JsonRpcResponse.model_validate(json.loads(payload))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Failed to unmarshal MCP response: {e} (data={payload[:200]})")
            raise DecodeError(
                f"{method}: failed to unmarshal MCP response: {e}", method=method
            ) from e

        logger.info(
            f"Received MCP response: id={reply.id}, "
            f"has_result={reply.error is None}, has_error={reply.error is not None}"
        )
        return reply

    async def notify(self, method: str, params: Any | None = None) -> None:
        """Send a notification; any 2xx status counts as delivered."""
        notification = JsonRpcNotification(method=method, params=params)
        logger.info(f"Sending MCP notification: {method}")
        await self._post(method, notification.model_dump_json(exclude_none=True))

    # -------------------------------------------------------------------------
    # Handshake
    # -------------------------------------------------------------------------

    async def ensure_initialized(self) -> None:
        """Run the initialize handshake unless it already succeeded.

        Raises:
            HandshakeError: If initialize failed; state stays uninitialized
        """
        if self.is_initialized:
            return

        async with self._handshake_lock:
            if self.is_initialized:
                return
            await self._initialize()

    async def _initialize(self) -> None:
        logger.info("Initializing MCP session")

        params = InitializeParams(
            protocolVersion=PROTOCOL_VERSION,
            capabilities={"tools": {}, "prompts": {}, "resources": {}},
            clientInfo=self._client_info,
        )
        try:
            reply = await self.call("initialize", params.model_dump())
        except TransportError as e:
            raise HandshakeError(f"failed to initialize MCP session: {e}") from e

        if reply.error is not None:
            raise HandshakeError(f"MCP initialization error: {reply.error.message}")

        server_info: InitializeResult | None = None
        try:
            server_info = InitializeResult.model_validate(reply.result)
        except PydanticValidationError:
            logger.warning("initialize result does not describe the server, ignoring")

        async with self._state_lock:
            self._state.handshake = HandshakeState.INITIALIZED
            self._state.server_info = server_info
        logger.info("MCP session initialized successfully")

        try:
            await self.notify("notifications/initialized")
        except TransportError as e:
            logger.warning(f"Failed to send initialized notification: {e}")

    # -------------------------------------------------------------------------
    # Functional operations
    # -------------------------------------------------------------------------

    async def _initialized_call(
        self, operation: str, method: str, params: Any | None = None
    ) -> JsonRpcResponse:
        try:
            await self.ensure_initialized()
        except HandshakeError as e:
            raise HandshakeError(f"failed to initialize before {operation}: {e}") from e
        return await self.call(method, params)

    async def list_tools(self) -> JsonRpcResponse:
        """List tools offered by the server."""
        return await self._initialized_call("listing tools", "tools/list")

    async def call_tool(self, name: str, arguments: Any | None = None) -> JsonRpcResponse:
        """Execute a tool by name."""
        return await self._initialized_call(
            "executing tool",
            "tools/call",
            {"name": name, "arguments": arguments},
        )

    async def list_prompts(self) -> JsonRpcResponse:
        """List prompts offered by the server."""
        return await self._initialized_call("listing prompts", "prompts/list")

    async def get_prompt(self, name: str, arguments: Any | None = None) -> JsonRpcResponse:
        """Render a prompt by name."""
        return await self._initialized_call(
            "getting prompt",
            "prompts/get",
            {"name": name, "arguments": arguments},
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> McpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
