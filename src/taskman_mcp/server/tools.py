"""Taskman tools, prompts and resources.

Each tool is a thin wrapper over one or two Taskman REST calls; the API's
JSON is returned as pretty-printed text. Resources render the same data
as markdown-style text under `taskman://` URIs.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any
from urllib.parse import quote

from ..protocol.types import GetPromptResult, PromptArgument, PromptMessage, TextContent
from .api_client import APIError, TaskmanAPIClient
from .handler import McpRequestHandler, PromptDefinition, ResourceDefinition, ToolDefinition

logger = logging.getLogger(__name__)


def _require(arguments: dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} is required")
    return value


def _segment(value: str) -> str:
    """Escape a value for use as one URL path segment."""
    if value in (".", ".."):
        # URL normalization collapses literal dot segments
        return value.replace(".", "%2E")
    return quote(value, safe="")


def _string_schema(required: list[str], **properties: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            name: {"type": "string", "description": description}
            for name, description in properties.items()
        },
        "required": required,
    }


class TaskmanTools:
    """Tool and prompt implementations backed by the Taskman API."""

    def __init__(self, api_client: TaskmanAPIClient):
        self.api = api_client

    async def health_check(self, arguments: dict[str, Any]) -> str:
        logger.info("Executing health_check tool")
        try:
            await self.api.get("/health")
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return f"Health check failed: {e}"
        return "API Health Check: healthy"

    async def get_all_tasks(self, arguments: dict[str, Any]) -> Any:
        logger.info("Executing get_all_tasks tool")
        return await self.api.get("/api/v1/tasks")

    async def get_all_projects(self, arguments: dict[str, Any]) -> Any:
        logger.info("Executing get_all_projects tool")
        return await self.api.get("/api/v1/projects")

    async def get_task_details(self, arguments: dict[str, Any]) -> Any:
        task_id = _require(arguments, "task_id")
        logger.info(f"Executing get_task_details tool (task_id={task_id})")

        task = await self.api.get(f"/api/v1/tasks/{_segment(task_id)}")
        notes = await self.api.get(f"/api/v1/tasks/{_segment(task_id)}/notes")
        return {"task": task, "notes": notes}

    async def add_task_note(self, arguments: dict[str, Any]) -> Any:
        task_id = _require(arguments, "task_id")
        note = _require(arguments, "note")
        created_by = _require(arguments, "created_by")
        logger.info(f"Executing add_task_note tool (task_id={task_id})")

        # Fails with APIError 404 when the task does not exist
        await self.api.get(f"/api/v1/tasks/{_segment(task_id)}")
        return await self.api.post(
            f"/api/v1/tasks/{_segment(task_id)}/notes",
            {"note": note, "created_by": created_by},
        )

    async def create_task_prompt(self, arguments: dict[str, str]) -> GetPromptResult:
        task_name = arguments.get("task_name", "")
        project_id = arguments.get("project_id", "")

        text = f"Create a new task with the following details:\n\nTask Name: {task_name}"
        if project_id:
            text += f"\nProject ID: {project_id}"
        text += (
            "\n\nPlease provide:\n"
            "1. A detailed description for this task\n"
            "2. Appropriate priority level (Low, Medium, High)\n"
            "3. Estimated completion timeline\n"
            "4. Any dependencies or prerequisites\n"
            "5. Success criteria for completion"
        )

        return GetPromptResult(
            description="Task creation guidance prompt",
            messages=[PromptMessage(role="user", content=TextContent(text=text))],
        )

    # =========================================================================
    # Resources
    # =========================================================================

    async def api_status_resource(self, uri: str, variables: dict[str, str]) -> str:
        status = await self.api.get("/health")
        return json.dumps(status)

    async def task_resource(self, uri: str, variables: dict[str, str]) -> str:
        task_id = variables["task_id"]
        task = await self.api.get(f"/api/v1/tasks/{_segment(task_id)}")

        # Notes and project are optional decorations
        notes: list[dict[str, Any]] = []
        try:
            notes = await self.api.get(f"/api/v1/tasks/{_segment(task_id)}/notes") or []
        except APIError as e:
            logger.warning(f"Failed to get notes for task {task_id}: {e}")

        project: dict[str, Any] | None = None
        project_id = task.get("project_id")
        if project_id:
            try:
                project = await self.api.get(f"/api/v1/projects/{_segment(project_id)}")
            except APIError as e:
                logger.warning(f"Failed to get project {project_id}: {e}")

        logger.info(
            f"Task resource retrieved (task_id={task_id}, notes={len(notes)}, "
            f"has_project={project is not None})"
        )
        return format_task(task, notes, project)

    async def tasks_overview_resource(self, uri: str, variables: dict[str, str]) -> str:
        tasks = await self.api.get("/api/v1/tasks") or []
        logger.info(f"Tasks overview resource retrieved (tasks={len(tasks)})")
        return format_tasks_overview(tasks)


def format_task(
    task: dict[str, Any], notes: list[dict[str, Any]], project: dict[str, Any] | None
) -> str:
    """Render one task with its notes and project."""
    lines = [
        f"# Task: {task.get('task_name', '')}",
        "",
        f"**ID:** {task.get('task_id', '')}",
        f"**Status:** {task.get('status', '')}",
    ]
    for key, label in (
        ("priority", "Priority"),
        ("assigned_to", "Assigned To"),
        ("due_date", "Due Date"),
    ):
        if task.get(key):
            lines.append(f"**{label}:** {task[key]}")
    lines.append(f"**Created By:** {task.get('created_by', '')}")
    lines.append(f"**Created:** {task.get('creation_date', '')}")

    if task.get("task_description"):
        lines += ["", "**Description:**", task["task_description"]]
    if project is not None:
        name, project_id = project.get("project_name", ""), project.get("project_id", "")
        lines += ["", f"**Project:** {name} ({project_id})"]
    if task.get("tags"):
        lines += ["", f"**Tags:** {', '.join(task['tags'])}"]

    if notes:
        lines += ["", "## Notes", ""]
        for note in notes:
            lines.append(f"**{note.get('created_by', '')}** ({note.get('creation_date', '')}):")
            lines.append(note.get("note", ""))
            lines.append("")

    return "\n".join(lines) + "\n"


def format_tasks_overview(tasks: list[dict[str, Any]], recent: int = 10) -> str:
    """Render status, priority and assignee breakdowns plus the most recent tasks."""
    statuses = Counter(task.get("status", "") for task in tasks)
    priorities = Counter(task.get("priority") or "None" for task in tasks)
    assignees = Counter(task.get("assigned_to") or "Unassigned" for task in tasks)

    lines = ["# Tasks Overview", "", f"**Total Tasks:** {len(tasks)}", ""]
    for title, counts in (
        ("Status Breakdown", statuses),
        ("Priority Breakdown", priorities),
        ("Assignment Breakdown", assignees),
    ):
        lines.append(f"## {title}")
        lines += [f"- {name}: {count}" for name, count in counts.items()]
        lines.append("")

    if tasks:
        lines.append("## Recent Tasks")
        for task in tasks[:recent]:
            assignee = task.get("assigned_to") or "Unassigned"
            lines.append(
                f"- **{task.get('task_name', '')}** ({task.get('status', '')}) - "
                f"{assignee} - {task.get('creation_date', '')}"
            )
        if len(tasks) > recent:
            lines.append(f"... and {len(tasks) - recent} more tasks")

    return "\n".join(lines) + "\n"


def register_taskman_tools(handler: McpRequestHandler, api_client: TaskmanAPIClient) -> None:
    """Register the Taskman tools, prompts and resources on a request handler."""
    tools = TaskmanTools(api_client)

    handler.register_tool(
        ToolDefinition(
            name="health_check",
            description="Check the health of the taskman API server",
            handler=tools.health_check,
        )
    )
    handler.register_tool(
        ToolDefinition(
            name="get_all_tasks",
            description="Get a list of all tasks in the system",
            handler=tools.get_all_tasks,
        )
    )
    handler.register_tool(
        ToolDefinition(
            name="get_all_projects",
            description="Get a list of all projects in the system",
            handler=tools.get_all_projects,
        )
    )
    handler.register_tool(
        ToolDefinition(
            name="get_task_details",
            description="Get complete task details including notes",
            handler=tools.get_task_details,
            input_schema=_string_schema(["task_id"], task_id="ID of the task"),
        )
    )
    handler.register_tool(
        ToolDefinition(
            name="add_task_note",
            description="Add a note to an existing task",
            handler=tools.add_task_note,
            input_schema=_string_schema(
                ["task_id", "note", "created_by"],
                task_id="ID of the task",
                note="Note text",
                created_by="Author of the note",
            ),
        )
    )

    handler.register_prompt(
        PromptDefinition(
            name="create_task",
            description="Template for creating a new task with proper context",
            handler=tools.create_task_prompt,
            arguments=[
                PromptArgument(
                    name="task_name", description="Name of the task to create", required=True
                ),
                PromptArgument(
                    name="project_id",
                    description="Optional project ID to associate with the task",
                    required=False,
                ),
            ],
        )
    )

    handler.register_resource(
        ResourceDefinition(
            uri="taskman://api/status",
            name="API Status",
            description="Current status of the taskman API server",
            handler=tools.api_status_resource,
            mime_type="application/json",
        )
    )
    handler.register_resource(
        ResourceDefinition(
            uri="taskman://task/{task_id}",
            name="Task Details",
            description="Individual task with complete details, notes, and project information",
            handler=tools.task_resource,
        )
    )
    handler.register_resource(
        ResourceDefinition(
            uri="taskman://tasks/overview",
            name="Tasks Overview",
            description="Overview of all tasks with status and priority breakdowns",
            handler=tools.tasks_overview_resource,
        )
    )

    logger.info(
        f"Registered {len(handler.tool_names)} tools, {len(handler.prompt_names)} prompts "
        f"and {len(handler.resource_uris)} resources"
    )
