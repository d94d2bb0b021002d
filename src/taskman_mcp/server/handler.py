"""MCP request handler - transport-agnostic request processing.

Every listener (stdio, HTTP) hands incoming JSON-RPC messages to the
same McpRequestHandler, so both transports serve identical behavior.

The handler owns the tool, prompt and resource registry:

    handler = McpRequestHandler("taskman-mcp", "1.0.0")
    handler.register_tool(ToolDefinition(
        name="echo",
        description="Echo the input back",
        handler=echo,
    ))
    response = await handler.process_message('{"jsonrpc": "2.0", ...}')
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..protocol.types import (
    PROTOCOL_VERSION,
    CallToolResult,
    GetPromptResult,
    Implementation,
    InitializeResult,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcResponse,
    PromptArgument,
    PromptGetParams,
    PromptInfo,
    ReadResourceResult,
    ResourceContents,
    ResourceInfo,
    ResourceReadParams,
    ResourceTemplateInfo,
    TextContent,
    ToolCallParams,
    ToolInfo,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]
PromptHandler = Callable[[dict[str, str]], Awaitable[GetPromptResult]]
# Receives the requested URI and the values bound to its template variables
ResourceHandler = Callable[[str, dict[str, str]], Awaitable[str]]

_TEMPLATE_VARIABLE = re.compile(r"\{(\w+)\}")


class McpMethod(str, Enum):
    """Methods the server answers."""

    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    LEGACY_INITIALIZED = "initialized"
    PING = "ping"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    PROMPTS_LIST = "prompts/list"
    PROMPTS_GET = "prompts/get"
    RESOURCES_LIST = "resources/list"
    RESOURCES_TEMPLATES_LIST = "resources/templates/list"
    RESOURCES_READ = "resources/read"


class McpMethodError(Exception):
    """Raised by method handlers to answer with a specific JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass
class ToolDefinition:
    """A tool offered through tools/list and tools/call.

    Attributes:
        name: Unique identifier for the tool
        description: Human-readable description
        handler: Async function receiving the call arguments
        input_schema: JSON Schema for the arguments
    """

    name: str
    description: str
    handler: ToolHandler
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Tool name cannot be empty")
        if not self.description:
            raise ValueError("Tool description cannot be empty")
        if not callable(self.handler):
            raise ValueError("Tool handler must be callable")

    def info(self) -> ToolInfo:
        return ToolInfo(name=self.name, description=self.description, inputSchema=self.input_schema)


@dataclass
class PromptDefinition:
    """A prompt template offered through prompts/list and prompts/get."""

    name: str
    description: str
    handler: PromptHandler
    arguments: list[PromptArgument] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Prompt name cannot be empty")
        if not callable(self.handler):
            raise ValueError("Prompt handler must be callable")

    def info(self) -> PromptInfo:
        return PromptInfo(name=self.name, description=self.description, arguments=self.arguments)


@dataclass
class ResourceDefinition:
    """A resource offered through resources/list and resources/read.

    A URI containing `{variable}` segments is a template: it is listed by
    resources/templates/list and matches any URI that fills each variable
    with one non-empty path segment.

    Attributes:
        uri: Fixed URI or URI template
        name: Human-readable name
        description: What the resource contains
        handler: Async function returning the resource text
        mime_type: MIME type of the returned text
    """

    uri: str
    name: str
    description: str
    handler: ResourceHandler
    mime_type: str = "text/plain"
    _pattern: re.Pattern[str] | None = field(init=False, repr=False, default=None)

    def __post_init__(self) -> None:
        if not self.uri:
            raise ValueError("Resource URI cannot be empty")
        if not self.name:
            raise ValueError("Resource name cannot be empty")
        if not callable(self.handler):
            raise ValueError("Resource handler must be callable")

        if self.is_template:
            pattern = ""
            position = 0
            for match in _TEMPLATE_VARIABLE.finditer(self.uri):
                pattern += re.escape(self.uri[position : match.start()])
                pattern += f"(?P<{match.group(1)}>[^/]+)"
                position = match.end()
            pattern += re.escape(self.uri[position:])
            self._pattern = re.compile(pattern)

    @property
    def is_template(self) -> bool:
        return _TEMPLATE_VARIABLE.search(self.uri) is not None

    def match(self, uri: str) -> dict[str, str] | None:
        """Return the template variables bound by uri, or None if it does not match."""
        if self._pattern is None:
            return {} if uri == self.uri else None
        found = self._pattern.fullmatch(uri)
        return found.groupdict() if found else None

    def info(self) -> ResourceInfo | ResourceTemplateInfo:
        if self.is_template:
            return ResourceTemplateInfo(
                uriTemplate=self.uri,
                name=self.name,
                description=self.description,
                mimeType=self.mime_type,
            )
        return ResourceInfo(
            uri=self.uri, name=self.name, description=self.description, mimeType=self.mime_type
        )


class McpRequestHandler:
    """Processes JSON-RPC messages against the tool, prompt and resource registry."""

    def __init__(
        self,
        server_name: str = "taskman-mcp",
        server_version: str = "1.0.0",
        instructions: str | None = None,
    ) -> None:
        self.server_info = Implementation(name=server_name, version=server_version)
        self.instructions = instructions
        self._tools: dict[str, ToolDefinition] = {}
        self._prompts: dict[str, PromptDefinition] = {}
        self._resources: dict[str, ResourceDefinition] = {}

    # =========================================================================
    # Registry
    # =========================================================================

    def register_tool(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            logger.warning(f"Replacing already registered tool: {definition.name}")
        self._tools[definition.name] = definition
        logger.debug(f"Registered tool: {definition.name}")

    def register_prompt(self, definition: PromptDefinition) -> None:
        if definition.name in self._prompts:
            logger.warning(f"Replacing already registered prompt: {definition.name}")
        self._prompts[definition.name] = definition
        logger.debug(f"Registered prompt: {definition.name}")

    def register_resource(self, definition: ResourceDefinition) -> None:
        if definition.uri in self._resources:
            logger.warning(f"Replacing already registered resource: {definition.uri}")
        self._resources[definition.uri] = definition
        logger.debug(f"Registered resource: {definition.uri}")

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    @property
    def prompt_names(self) -> list[str]:
        return list(self._prompts)

    @property
    def resource_uris(self) -> list[str]:
        return list(self._resources)

    # =========================================================================
    # Message processing
    # =========================================================================

    async def process_message(self, data: str) -> JsonRpcResponse | None:
        """Process one raw JSON-RPC message.

        Returns a response for requests, None for notifications.
        """
        try:
            message = json.loads(data)
        except json.JSONDecodeError as e:
            return _error_response(None, JsonRpcErrorCode.PARSE_ERROR, f"Parse error: {e}")
        return await self.handle(message)

    async def handle(self, message: Any) -> JsonRpcResponse | None:
        """Process one decoded JSON-RPC message."""
        if not isinstance(message, dict):
            return _error_response(
                None, JsonRpcErrorCode.INVALID_REQUEST, "Message must be a JSON object"
            )

        # Responses to server-initiated requests are not expected
        if "method" not in message and ("result" in message or "error" in message):
            logger.warning(f"Ignoring unexpected response message (id={message.get('id')})")
            return None

        method = message.get("method")
        request_id = message.get("id")
        if not isinstance(method, str) or not method:
            return _error_response(
                request_id, JsonRpcErrorCode.INVALID_REQUEST, "Missing 'method' field"
            )

        params = message.get("params")
        start = time.monotonic()

        # Notification (no id)
        if request_id is None:
            try:
                await self._notification(method, params)
            except Exception as e:
                logger.exception(f"Error handling notification {method}: {e}")
            return None

        try:
            result = await self._dispatch(method, params)
            response = JsonRpcResponse(id=request_id, result=result)
        except McpMethodError as e:
            logger.warning(f"MCP request {method} rejected: {e.message}")
            response = _error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception(f"Error handling request {method}: {e}")
            response = _error_response(request_id, JsonRpcErrorCode.INTERNAL_ERROR, str(e))

        duration_ms = (time.monotonic() - start) * 1000
        outcome = "failed" if response.error else "ok"
        logger.info(f"MCP request {method} {outcome} (id={request_id}, {duration_ms:.1f}ms)")
        return response

    async def _notification(self, method: str, params: Any) -> None:
        match method:
            case McpMethod.INITIALIZED.value | McpMethod.LEGACY_INITIALIZED.value:
                logger.info("MCP client initialized")
            case _:
                logger.debug(f"Ignoring notification: {method}")

    async def _dispatch(self, method: str, params: Any) -> Any:
        """Dispatch a request to its handler method."""
        logger.debug(f"MCP request parameters for {method}: {params!r}")

        match method:
            case McpMethod.INITIALIZE.value:
                return self._initialize(params)
            case McpMethod.PING.value:
                return {}
            case McpMethod.TOOLS_LIST.value:
                return {"tools": [t.info().model_dump() for t in self._tools.values()]}
            case McpMethod.TOOLS_CALL.value:
                return await self._call_tool(params)
            case McpMethod.PROMPTS_LIST.value:
                return {
                    "prompts": [
                        p.info().model_dump(exclude_none=True) for p in self._prompts.values()
                    ]
                }
            case McpMethod.PROMPTS_GET.value:
                return await self._get_prompt(params)
            case McpMethod.RESOURCES_LIST.value:
                resources = [r for r in self._resources.values() if not r.is_template]
                return {"resources": [r.info().model_dump(exclude_none=True) for r in resources]}
            case McpMethod.RESOURCES_TEMPLATES_LIST.value:
                templates = [r for r in self._resources.values() if r.is_template]
                return {
                    "resourceTemplates": [
                        r.info().model_dump(exclude_none=True) for r in templates
                    ]
                }
            case McpMethod.RESOURCES_READ.value:
                return await self._read_resource(params)
            case _:
                raise McpMethodError(
                    JsonRpcErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}"
                )

    # =========================================================================
    # Methods
    # =========================================================================

    def _initialize(self, params: Any) -> dict[str, Any]:
        client_info = params.get("clientInfo") if isinstance(params, dict) else None
        logger.info(f"Initialize request from client: {client_info}")

        result = InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities={
                "tools": {"listChanged": False},
                "prompts": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            serverInfo=self.server_info,
            instructions=self.instructions,
        )
        return result.model_dump(exclude_none=True)

    async def _call_tool(self, params: Any) -> dict[str, Any]:
        call = _parse_params(params, ToolCallParams)
        if not call.name:
            raise McpMethodError(JsonRpcErrorCode.INVALID_PARAMS, "Tool name is required")

        tool = self._tools.get(call.name)
        if tool is None:
            raise McpMethodError(JsonRpcErrorCode.INVALID_PARAMS, f"Unknown tool: {call.name}")

        arguments = call.arguments if call.arguments is not None else {}
        if not isinstance(arguments, dict):
            raise McpMethodError(
                JsonRpcErrorCode.INVALID_PARAMS, "Tool arguments must be a JSON object"
            )

        logger.info(f"Executing tool: {call.name}")
        try:
            output = await tool.handler(arguments)
        except Exception as e:
            logger.error(f"Tool {call.name} failed: {e}")
            result = CallToolResult(content=[TextContent(text=f"Error: {e}")], isError=True)
            return result.model_dump()

        return CallToolResult(content=[TextContent(text=_as_text(output))]).model_dump()

    async def _get_prompt(self, params: Any) -> dict[str, Any]:
        request = _parse_params(params, PromptGetParams)
        if not request.name:
            raise McpMethodError(JsonRpcErrorCode.INVALID_PARAMS, "Prompt name is required")

        prompt = self._prompts.get(request.name)
        if prompt is None:
            raise McpMethodError(
                JsonRpcErrorCode.INVALID_PARAMS, f"Unknown prompt: {request.name}"
            )

        raw_args = request.arguments if request.arguments is not None else {}
        if not isinstance(raw_args, dict):
            raise McpMethodError(
                JsonRpcErrorCode.INVALID_PARAMS, "Prompt arguments must be a JSON object"
            )
        arguments = {k: str(v) for k, v in raw_args.items() if v is not None}

        missing = [a.name for a in prompt.arguments if a.required and not arguments.get(a.name)]
        if missing:
            raise McpMethodError(
                JsonRpcErrorCode.INVALID_PARAMS,
                f"Missing required prompt arguments: {', '.join(missing)}",
            )

        logger.info(f"Generating prompt: {request.name}")
        result = await prompt.handler(arguments)
        return result.model_dump(exclude_none=True)

    async def _read_resource(self, params: Any) -> dict[str, Any]:
        request = _parse_params(params, ResourceReadParams)
        if not request.uri:
            raise McpMethodError(JsonRpcErrorCode.INVALID_PARAMS, "Resource URI is required")

        # Fixed URIs win over templates
        resource = self._resources.get(request.uri)
        variables: dict[str, str] | None = {} if resource is not None else None
        if resource is None:
            for candidate in self._resources.values():
                variables = candidate.match(request.uri)
                if variables is not None:
                    resource = candidate
                    break

        if resource is None or variables is None:
            raise McpMethodError(
                JsonRpcErrorCode.RESOURCE_NOT_FOUND,
                f"Resource not found: {request.uri}",
                {"uri": request.uri},
            )

        logger.info(f"Reading resource: {request.uri}")
        text = await resource.handler(request.uri, variables)
        result = ReadResourceResult(
            contents=[ResourceContents(uri=request.uri, mimeType=resource.mime_type, text=text)]
        )
        return result.model_dump(exclude_none=True)


# =============================================================================
# Helper functions
# =============================================================================


def _error_response(
    request_id: Any, code: int, message: str, data: Any | None = None
) -> JsonRpcResponse:
    """Create a JSON-RPC error response."""
    if not isinstance(request_id, str | int) or isinstance(request_id, bool):
        request_id = None
    return JsonRpcResponse(
        id=request_id,
        error=JsonRpcError(code=code, message=message, data=data),
    )


def _parse_params(
    params: Any, model: type[ToolCallParams] | type[PromptGetParams] | type[ResourceReadParams]
) -> Any:
    try:
        return model.model_validate(params if params is not None else {})
    except PydanticValidationError as e:
        raise McpMethodError(JsonRpcErrorCode.INVALID_PARAMS, f"Invalid params: {e}") from e


def _as_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, indent=2, ensure_ascii=False, default=str)
