"""MCP protocol types."""

from .types import (
    JSON_CONTENT_TYPE,
    PROTOCOL_VERSION,
    SESSION_HEADER,
    SSE_CONTENT_TYPE,
    CallToolResult,
    GetPromptResult,
    Implementation,
    InitializeParams,
    InitializeResult,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    PromptArgument,
    PromptGetParams,
    PromptInfo,
    PromptMessage,
    ReadResourceResult,
    ResourceContents,
    ResourceInfo,
    ResourceReadParams,
    ResourceTemplateInfo,
    TextContent,
    ToolCallParams,
    ToolInfo,
)

__all__ = [
    "PROTOCOL_VERSION",
    "SESSION_HEADER",
    "JSON_CONTENT_TYPE",
    "SSE_CONTENT_TYPE",
    # JSON-RPC envelopes
    "JsonRpcRequest",
    "JsonRpcNotification",
    "JsonRpcResponse",
    "JsonRpcError",
    "JsonRpcErrorCode",
    # MCP payloads
    "Implementation",
    "InitializeParams",
    "InitializeResult",
    "ToolCallParams",
    "PromptGetParams",
    "TextContent",
    "ToolInfo",
    "CallToolResult",
    "PromptArgument",
    "PromptInfo",
    "PromptMessage",
    "GetPromptResult",
    "ResourceInfo",
    "ResourceTemplateInfo",
    "ResourceReadParams",
    "ResourceContents",
    "ReadResourceResult",
]
