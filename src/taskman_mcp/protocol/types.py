"""MCP wire types.

JSON-RPC 2.0 envelopes plus the MCP payload shapes exchanged by the
client and server. Field names use camelCase where the MCP schema does;
do not change them to snake_case.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Protocol version advertised during initialize
PROTOCOL_VERSION = "2025-03-26"

# Header carrying the server-issued session token
SESSION_HEADER = "Mcp-Session-Id"

JSON_CONTENT_TYPE = "application/json"
SSE_CONTENT_TYPE = "text/event-stream"


# =============================================================================
# JSON-RPC 2.0 Base Types
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int
    method: str
    params: Any | None = None


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Any | None = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response.

    Exactly one of result and error is present on a well-formed reply.
    A present-but-null result counts as present.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    result: Any | None = None
    error: JsonRpcError | None = None

    @model_validator(mode="before")
    @classmethod
    def _one_of_result_or_error(cls, data: Any) -> Any:
        if isinstance(data, dict):
            has_result = "result" in data
            has_error = data.get("error") is not None
            if has_result and has_error:
                raise ValueError("reply carries both result and error")
            if not has_result and not has_error:
                raise ValueError("reply carries neither result nor error")
        return data

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> str:
        """Serialize, keeping only the member that is set."""
        if self.error is not None:
            return self.model_dump_json(exclude={"result"})
        return self.model_dump_json(exclude={"error"})


class JsonRpcErrorCode:
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Server-defined codes
    SESSION_NOT_FOUND = -32001
    RESOURCE_NOT_FOUND = -32002


# =============================================================================
# Initialize
# =============================================================================


class Implementation(BaseModel):
    """Name and version of a client or server."""

    name: str
    version: str


class InitializeParams(BaseModel):
    """Parameters of the initialize request."""

    model_config = ConfigDict(populate_by_name=True)

    protocolVersion: str = PROTOCOL_VERSION
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: Implementation


class InitializeResult(BaseModel):
    """Result of the initialize request."""

    model_config = ConfigDict(extra="allow")

    protocolVersion: str = PROTOCOL_VERSION
    capabilities: dict[str, Any] = Field(default_factory=dict)
    serverInfo: Implementation
    instructions: str | None = None


# =============================================================================
# Tools and Prompts
# =============================================================================


class ToolCallParams(BaseModel):
    """Parameters of tools/call."""

    name: str = ""
    arguments: Any | None = None


class PromptGetParams(BaseModel):
    """Parameters of prompts/get."""

    name: str = ""
    arguments: Any | None = None


class TextContent(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str


class ToolInfo(BaseModel):
    """A tool as listed by tools/list."""

    name: str
    description: str
    inputSchema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class CallToolResult(BaseModel):
    """Result of tools/call."""

    content: list[TextContent] = Field(default_factory=list)
    isError: bool = False


class PromptArgument(BaseModel):
    """A declared prompt argument."""

    name: str
    description: str | None = None
    required: bool = False


class PromptInfo(BaseModel):
    """A prompt as listed by prompts/list."""

    name: str
    description: str | None = None
    arguments: list[PromptArgument] = Field(default_factory=list)


class PromptMessage(BaseModel):
    """One message of a rendered prompt."""

    role: Literal["user", "assistant"] = "user"
    content: TextContent


class GetPromptResult(BaseModel):
    """Result of prompts/get."""

    description: str | None = None
    messages: list[PromptMessage] = Field(default_factory=list)


# =============================================================================
# Resources
# =============================================================================


class ResourceInfo(BaseModel):
    """A fixed-URI resource as listed by resources/list."""

    uri: str
    name: str
    description: str | None = None
    mimeType: str | None = None


class ResourceTemplateInfo(BaseModel):
    """A parameterized resource as listed by resources/templates/list."""

    uriTemplate: str
    name: str
    description: str | None = None
    mimeType: str | None = None


class ResourceReadParams(BaseModel):
    """Parameters of resources/read."""

    uri: str = ""


class ResourceContents(BaseModel):
    """Text contents of one resource."""

    uri: str
    mimeType: str | None = None
    text: str


class ReadResourceResult(BaseModel):
    """Result of resources/read."""

    contents: list[ResourceContents] = Field(default_factory=list)
