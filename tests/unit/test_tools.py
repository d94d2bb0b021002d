"""Tests for the Taskman REST client and the tools built on it."""

from __future__ import annotations

import json

import httpx
import pytest

from taskman_mcp.server import APIError, McpRequestHandler, TaskmanAPIClient, register_taskman_tools
from taskman_mcp.server.tools import format_tasks_overview

API_URL = "http://taskman.test"

TASK = {
    "task_id": "t-1",
    "task_name": "Write docs",
    "status": "in_progress",
    "priority": "High",
    "project_id": "p-1",
    "created_by": "ada",
    "creation_date": "2024-05-01",
    "tags": ["docs", "q2"],
}
NOTES = [{"note_id": "n-1", "note": "started", "created_by": "ada", "creation_date": "2024-05-02"}]
PROJECT = {"project_id": "p-1", "project_name": "Handbook"}
# Notes and project lookups for this task fail
ORPHAN = {"task_id": "t-2", "task_name": "Orphan", "status": "todo", "project_id": "p-9"}


def fake_api(request: httpx.Request) -> httpx.Response:
    """Minimal stand-in for the Taskman REST API."""
    path = request.url.path
    match (request.method, path):
        case ("GET", "/health"):
            return httpx.Response(200, json={"status": "ok"})
        case ("GET", "/api/v1/tasks"):
            return httpx.Response(200, json=[TASK])
        case ("GET", "/api/v1/projects"):
            return httpx.Response(200, json=[PROJECT])
        case ("GET", "/api/v1/projects/p-1"):
            return httpx.Response(200, json=PROJECT)
        case ("GET", "/api/v1/tasks/t-1"):
            return httpx.Response(200, json=TASK)
        case ("GET", "/api/v1/tasks/t-1/notes"):
            return httpx.Response(200, json=NOTES)
        case ("GET", "/api/v1/tasks/t-2"):
            return httpx.Response(200, json=ORPHAN)
        case ("POST", "/api/v1/tasks/t-1/notes"):
            body = json.loads(request.content)
            return httpx.Response(201, json={"note_id": "n-2", **body})
        case ("POST", "/api/v1/tasks/t-1/archive"):
            return httpx.Response(204)
    return httpx.Response(404, text='{"error": "not found"}')


@pytest.fixture
def api_client() -> TaskmanAPIClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_api))
    return TaskmanAPIClient(API_URL, http_client=http_client)


@pytest.fixture
def taskman_handler(api_client: TaskmanAPIClient) -> McpRequestHandler:
    handler = McpRequestHandler()
    register_taskman_tools(handler, api_client)
    return handler


async def call_tool(handler: McpRequestHandler, name: str, arguments: dict | None = None) -> dict:
    message = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }
    response = await handler.handle(message)
    assert response is not None
    assert response.error is None
    return response.result


# =============================================================================
# Tests: TaskmanAPIClient
# =============================================================================


class TestTaskmanAPIClient:
    """Test REST calls and error mapping."""

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, api_client: TaskmanAPIClient):
        assert await api_client.get("/api/v1/tasks") == [TASK]

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, api_client: TaskmanAPIClient):
        created = await api_client.post("/api/v1/tasks/t-1/notes", {"note": "x"})

        assert created == {"note_id": "n-2", "note": "x"}

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self, api_client: TaskmanAPIClient):
        assert await api_client.post("/api/v1/tasks/t-1/archive") is None

    @pytest.mark.asyncio
    async def test_error_status_raises_api_error(self, api_client: TaskmanAPIClient):
        with pytest.raises(APIError) as exc_info:
            await api_client.get("/api/v1/tasks/missing")

        error = exc_info.value
        assert error.status_code == 404
        assert error.message == "Not Found"
        assert "not found" in error.response
        assert str(error) == "API error 404: Not Found"

    @pytest.mark.asyncio
    async def test_base_url_trailing_slash(self):
        seen: list[str] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        client = TaskmanAPIClient(f"{API_URL}/", http_client=http_client)

        await client.get("/health")

        assert seen == [f"{API_URL}/health"]


# =============================================================================
# Tests: Tools
# =============================================================================


class TestTaskmanTools:
    """Test the registered tools end to end through the handler."""

    def test_registry(self, taskman_handler: McpRequestHandler):
        assert taskman_handler.tool_names == [
            "health_check",
            "get_all_tasks",
            "get_all_projects",
            "get_task_details",
            "add_task_note",
        ]
        assert taskman_handler.prompt_names == ["create_task"]
        assert taskman_handler.resource_uris == [
            "taskman://api/status",
            "taskman://task/{task_id}",
            "taskman://tasks/overview",
        ]

    @pytest.mark.asyncio
    async def test_health_check(self, taskman_handler: McpRequestHandler):
        result = await call_tool(taskman_handler, "health_check")

        assert result["content"][0]["text"] == "API Health Check: healthy"

    @pytest.mark.asyncio
    async def test_health_check_reports_failure_as_text(self):
        def down(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        handler = McpRequestHandler()
        api = TaskmanAPIClient(API_URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(down)))
        register_taskman_tools(handler, api)

        result = await call_tool(handler, "health_check")

        assert result["isError"] is False
        assert result["content"][0]["text"].startswith("Health check failed: API error 503")

    @pytest.mark.asyncio
    async def test_get_all_tasks(self, taskman_handler: McpRequestHandler):
        result = await call_tool(taskman_handler, "get_all_tasks")

        assert json.loads(result["content"][0]["text"]) == [TASK]

    @pytest.mark.asyncio
    async def test_get_task_details(self, taskman_handler: McpRequestHandler):
        result = await call_tool(taskman_handler, "get_task_details", {"task_id": "t-1"})

        assert json.loads(result["content"][0]["text"]) == {"task": TASK, "notes": NOTES}

    @pytest.mark.asyncio
    async def test_get_task_details_requires_task_id(self, taskman_handler: McpRequestHandler):
        result = await call_tool(taskman_handler, "get_task_details")

        assert result["isError"] is True
        assert "task_id is required" in result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_add_task_note(self, taskman_handler: McpRequestHandler):
        result = await call_tool(
            taskman_handler,
            "add_task_note",
            {"task_id": "t-1", "note": "halfway", "created_by": "ada"},
        )

        created = json.loads(result["content"][0]["text"])
        assert created == {"note_id": "n-2", "note": "halfway", "created_by": "ada"}

    @pytest.mark.asyncio
    async def test_add_task_note_unknown_task(self, taskman_handler: McpRequestHandler):
        result = await call_tool(
            taskman_handler,
            "add_task_note",
            {"task_id": "missing", "note": "x", "created_by": "ada"},
        )

        assert result["isError"] is True
        assert "API error 404" in result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_task_id_stays_one_path_segment(self):
        seen: list[bytes] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path)
            return httpx.Response(200, json={})

        handler = McpRequestHandler()
        api = TaskmanAPIClient(API_URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(record)))
        register_taskman_tools(handler, api)

        await call_tool(handler, "get_task_details", {"task_id": "../projects"})

        assert seen == [b"/api/v1/tasks/..%2Fprojects", b"/api/v1/tasks/..%2Fprojects/notes"]


# =============================================================================
# Tests: Resources
# =============================================================================


async def read_resource(handler: McpRequestHandler, uri: str) -> dict:
    message = {"jsonrpc": "2.0", "id": 1, "method": "resources/read", "params": {"uri": uri}}
    response = await handler.handle(message)
    assert response is not None
    assert response.error is None
    return response.result["contents"][0]


class TestTaskmanResources:
    """Test the taskman:// resources through the handler."""

    @pytest.mark.asyncio
    async def test_api_status(self, taskman_handler: McpRequestHandler):
        contents = await read_resource(taskman_handler, "taskman://api/status")

        assert contents["uri"] == "taskman://api/status"
        assert contents["mimeType"] == "application/json"
        assert json.loads(contents["text"]) == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_task_with_notes_and_project(self, taskman_handler: McpRequestHandler):
        contents = await read_resource(taskman_handler, "taskman://task/t-1")

        text = contents["text"]
        assert contents["mimeType"] == "text/plain"
        assert text.startswith("# Task: Write docs\n\n**ID:** t-1\n**Status:** in_progress\n")
        assert "**Priority:** High" in text
        assert "**Assigned To:**" not in text
        assert "**Project:** Handbook (p-1)" in text
        assert "**Tags:** docs, q2" in text
        assert "## Notes\n\n**ada** (2024-05-02):\nstarted\n" in text

    @pytest.mark.asyncio
    async def test_task_without_notes_or_project(self, taskman_handler: McpRequestHandler):
        contents = await read_resource(taskman_handler, "taskman://task/t-2")

        text = contents["text"]
        assert text.startswith("# Task: Orphan\n")
        assert "## Notes" not in text
        assert "**Project:**" not in text

    @pytest.mark.asyncio
    async def test_unknown_task_is_error(self, taskman_handler: McpRequestHandler):
        message = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "resources/read",
            "params": {"uri": "taskman://task/missing"},
        }

        response = await taskman_handler.handle(message)

        assert response is not None
        assert response.error is not None
        assert "API error 404" in response.error.message

    @pytest.mark.asyncio
    async def test_tasks_overview(self, taskman_handler: McpRequestHandler):
        contents = await read_resource(taskman_handler, "taskman://tasks/overview")

        text = contents["text"]
        assert "**Total Tasks:** 1" in text
        assert "## Status Breakdown\n- in_progress: 1\n" in text
        assert "## Priority Breakdown\n- High: 1\n" in text
        assert "## Assignment Breakdown\n- Unassigned: 1\n" in text
        assert "- **Write docs** (in_progress) - Unassigned - 2024-05-01" in text

    def test_overview_truncates_recent_tasks(self):
        tasks = [{"task_name": f"task {n}", "status": "todo"} for n in range(12)]

        text = format_tasks_overview(tasks)

        assert "- todo: 12" in text
        assert "- None: 12" in text
        assert "task 9" in text
        assert "task 10" not in text
        assert text.endswith("... and 2 more tasks\n")


# =============================================================================
# Tests: Prompts
# =============================================================================


class TestCreateTaskPrompt:
    """Test the create_task prompt template."""

    async def _get(self, handler: McpRequestHandler, arguments: dict) -> str:
        message = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "prompts/get",
            "params": {"name": "create_task", "arguments": arguments},
        }
        response = await handler.handle(message)
        assert response is not None
        assert response.error is None
        return response.result["messages"][0]["content"]["text"]

    @pytest.mark.asyncio
    async def test_with_project(self, taskman_handler: McpRequestHandler):
        text = await self._get(taskman_handler, {"task_name": "Ship it", "project_id": "p-1"})

        assert text.startswith(
            "Create a new task with the following details:\n\nTask Name: Ship it\nProject ID: p-1"
        )
        assert "5. Success criteria for completion" in text

    @pytest.mark.asyncio
    async def test_without_project(self, taskman_handler: McpRequestHandler):
        text = await self._get(taskman_handler, {"task_name": "Ship it"})

        assert "Project ID" not in text

    @pytest.mark.asyncio
    async def test_task_name_required(self, taskman_handler: McpRequestHandler):
        message = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "prompts/get",
            "params": {"name": "create_task", "arguments": {"project_id": "p-1"}},
        }

        response = await taskman_handler.handle(message)

        assert response is not None
        assert response.error is not None
        assert "task_name" in response.error.message
