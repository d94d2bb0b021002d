"""Tests for McpClient against scripted HTTP replies."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from taskman_mcp.errors import DecodeError, HandshakeError, TransportError
from taskman_mcp.sdk import HandshakeState, McpClient

SERVER_URL = "http://mcp.test/mcp"

# =============================================================================
# Helpers
# =============================================================================


def sse_body(payload: dict[str, Any], event: str = "message") -> bytes:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n".encode()


def sse_reply(
    payload: dict[str, Any], headers: dict[str, str] | None = None, event: str = "message"
) -> httpx.Response:
    return httpx.Response(
        200,
        content=sse_body(payload, event),
        headers={"content-type": "text/event-stream", **(headers or {})},
    )


def result_for(request: httpx.Request, result: Any) -> dict[str, Any]:
    body = json.loads(request.content)
    return {"jsonrpc": "2.0", "id": body["id"], "result": result}


class ScriptedServer:
    """Records requests and answers each with a scripted handler."""

    def __init__(self, respond: Callable[[httpx.Request, dict[str, Any]], httpx.Response]):
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request, json.loads(request.content))

    def methods(self) -> list[str]:
        return [json.loads(r.content)["method"] for r in self.requests]

    def client(self) -> McpClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return McpClient(SERVER_URL, http_client=http_client)


def standard_server(session_id: str | None = "sess-1") -> ScriptedServer:
    """Server that issues a session on initialize and echoes the method back."""

    def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        if "id" not in body:
            return httpx.Response(202)
        headers = {"Mcp-Session-Id": session_id} if session_id else {}
        if body["method"] == "initialize":
            result = {
                "protocolVersion": "2025-03-26",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "scripted", "version": "9.9"},
            }
            return sse_reply(result_for(request, result), headers)
        return sse_reply(result_for(request, {"method": body["method"]}), headers)

    return ScriptedServer(respond)


# =============================================================================
# Tests: call
# =============================================================================


class TestCall:
    """Test the raw request/reply exchange."""

    @pytest.mark.asyncio
    async def test_request_headers_and_envelope(self):
        server = standard_server()
        async with server.client() as client:
            reply = await client.call("ping", {"x": 1})

        request = server.requests[0]
        assert request.headers["content-type"] == "application/json"
        assert request.headers["accept"] == "application/json, text/event-stream"
        body = json.loads(request.content)
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "ping"
        assert body["params"] == {"x": 1}
        assert reply.id == body["id"]
        assert reply.result == {"method": "ping"}

    @pytest.mark.asyncio
    async def test_request_ids_are_unique(self):
        server = standard_server()
        async with server.client() as client:
            await client.call("ping")
            await client.call("ping")
            await client.call("ping")

        ids = [json.loads(r.content)["id"] for r in server.requests]
        assert ids == ["req_1", "req_2", "req_3"]

    @pytest.mark.asyncio
    async def test_session_header_round_trip(self):
        server = standard_server(session_id="S1")
        async with server.client() as client:
            await client.call("ping")
            await client.call("ping")

            assert client.session_id == "S1"

        assert "mcp-session-id" not in server.requests[0].headers
        assert server.requests[1].headers["mcp-session-id"] == "S1"

    @pytest.mark.asyncio
    async def test_no_session_header_when_server_never_sends_one(self):
        server = standard_server(session_id=None)
        async with server.client() as client:
            await client.call("ping")
            await client.call("ping")

            assert client.session_id is None

        assert all("mcp-session-id" not in r.headers for r in server.requests)

    @pytest.mark.asyncio
    async def test_newer_session_token_replaces_old(self):
        tokens = iter(["first", "second", "second"])

        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return sse_reply(result_for(request, {}), {"Mcp-Session-Id": next(tokens)})

        server = ScriptedServer(respond)
        async with server.client() as client:
            await client.call("a")
            await client.call("b")
            await client.call("c")

        assert server.requests[1].headers["mcp-session-id"] == "first"
        assert server.requests[2].headers["mcp-session-id"] == "second"

    @pytest.mark.asyncio
    async def test_json_body_accepted(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return httpx.Response(200, json=result_for(request, {"plain": True}))

        async with ScriptedServer(respond).client() as client:
            reply = await client.call("ping")

        assert reply.result == {"plain": True}

    @pytest.mark.asyncio
    async def test_error_reply_is_returned_not_raised(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            error = {"code": -32601, "message": "Method not found"}
            return sse_reply({"jsonrpc": "2.0", "id": body["id"], "error": error})

        async with ScriptedServer(respond).client() as client:
            reply = await client.call("nope")

        assert reply.is_error
        assert reply.error is not None
        assert reply.error.code == -32601

    @pytest.mark.asyncio
    async def test_non_success_status_is_transport_error(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return httpx.Response(500, text="boom")

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(TransportError) as exc_info:
                await client.call("ping")

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "boom"
        assert "500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_failure_is_transport_error(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(TransportError, match="connection refused"):
                await client.call("ping")

    @pytest.mark.asyncio
    async def test_wrong_event_label_is_decode_error(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return sse_reply(result_for(request, {}), event="error")

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(DecodeError, match="unexpected SSE event type"):
                await client.call("ping")

    @pytest.mark.asyncio
    async def test_malformed_json_is_decode_error(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return httpx.Response(
                200,
                content=b"event: message\ndata: {not json\n\n",
                headers={"content-type": "text/event-stream"},
            )

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(DecodeError, match="failed to unmarshal"):
                await client.call("ping")

    @pytest.mark.asyncio
    async def test_envelope_without_result_or_error_is_decode_error(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return sse_reply({"jsonrpc": "2.0", "id": body["id"]})

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(DecodeError):
                await client.call("ping")

    @pytest.mark.asyncio
    async def test_notify_accepts_202(self):
        server = standard_server()
        async with server.client() as client:
            await client.notify("notifications/initialized")

        body = json.loads(server.requests[0].content)
        assert "id" not in body
        assert body["method"] == "notifications/initialized"


# =============================================================================
# Tests: Handshake
# =============================================================================


class TestHandshake:
    """Test the lazy initialize handshake."""

    @pytest.mark.asyncio
    async def test_initialize_then_acknowledge(self):
        server = standard_server()
        async with server.client() as client:
            await client.ensure_initialized()

            assert client.handshake_state == HandshakeState.INITIALIZED
            assert client.server_info is not None
            assert client.server_info.serverInfo.name == "scripted"

        assert server.methods() == ["initialize", "notifications/initialized"]
        params = json.loads(server.requests[0].content)["params"]
        assert params["protocolVersion"] == "2025-03-26"
        assert params["clientInfo"] == {"name": "taskman-mcp-client", "version": "1.0.0"}
        assert set(params["capabilities"]) == {"tools", "prompts", "resources"}

    @pytest.mark.asyncio
    async def test_acknowledgement_carries_issued_session(self):
        server = standard_server(session_id="S9")
        async with server.client() as client:
            await client.ensure_initialized()

        assert server.requests[1].headers["mcp-session-id"] == "S9"

    @pytest.mark.asyncio
    async def test_ensure_initialized_twice_sends_one_initialize(self):
        server = standard_server()
        async with server.client() as client:
            await client.ensure_initialized()
            await client.ensure_initialized()

        assert server.methods().count("initialize") == 1

    @pytest.mark.asyncio
    async def test_functional_calls_initialize_lazily_once(self):
        server = standard_server()
        async with server.client() as client:
            await client.list_tools()
            await client.call_tool("echo", {"a": 1})
            await client.list_prompts()
            await client.get_prompt("greet", {"name": "x"})

        assert server.methods() == [
            "initialize",
            "notifications/initialized",
            "tools/list",
            "tools/call",
            "prompts/list",
            "prompts/get",
        ]
        call_params = json.loads(server.requests[3].content)["params"]
        assert call_params == {"name": "echo", "arguments": {"a": 1}}

    @pytest.mark.asyncio
    async def test_initialize_error_reply_leaves_uninitialized_and_retries(self):
        attempts = {"initialize": 0}

        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            if "id" not in body:
                return httpx.Response(202)
            if body["method"] == "initialize":
                attempts["initialize"] += 1
                if attempts["initialize"] == 1:
                    error = {"code": -32603, "message": "not ready"}
                    return sse_reply({"jsonrpc": "2.0", "id": body["id"], "error": error})
                result = {"protocolVersion": "2025-03-26", "serverInfo": {"name": "s", "version": "1"}}
                return sse_reply(result_for(request, result))
            return sse_reply(result_for(request, {"tools": []}))

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(HandshakeError, match="not ready"):
                await client.list_tools()
            assert client.handshake_state == HandshakeState.UNINITIALIZED

            reply = await client.list_tools()
            assert client.is_initialized

        assert attempts["initialize"] == 2
        assert reply.result == {"tools": []}

    @pytest.mark.asyncio
    async def test_initialize_transport_failure_is_handshake_error(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        async with ScriptedServer(respond).client() as client:
            with pytest.raises(HandshakeError, match="before listing tools"):
                await client.list_tools()

            assert not client.is_initialized

    @pytest.mark.asyncio
    async def test_acknowledgement_failure_is_not_fatal(self):
        def respond(request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
            if "id" not in body:
                return httpx.Response(500, text="no notifications here")
            return sse_reply(result_for(request, {"ok": True}))

        server = ScriptedServer(respond)
        async with server.client() as client:
            await client.ensure_initialized()
            reply = await client.list_prompts()

            assert client.is_initialized

        assert reply.result == {"ok": True}
        assert server.methods() == ["initialize", "notifications/initialized", "prompts/list"]


# =============================================================================
# Tests: Lifecycle
# =============================================================================


class TestLifecycle:
    """Test client ownership of the HTTP client."""

    @pytest.mark.asyncio
    async def test_injected_http_client_left_open(self):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(standard_server()))
        client = McpClient(SERVER_URL, http_client=http_client)

        await client.close()

        assert not http_client.is_closed
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_owned_http_client_closed(self):
        client = McpClient(SERVER_URL)
        client._ensure_http_client()

        await client.close()

        assert client._http_client is None
