"""Intent dispatch.

An intent is a JSON document naming an MCP method and its params:

    {"method": "tools/call", "params": {"name": "get_all_tasks", "arguments": {}}}

IntentHandler validates the document and routes it to the matching
McpClient operation. Only four methods are routed; anything else is
rejected.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import MissingRequiredFieldError, ProtocolError, UnsupportedMethodError, ValidationError
from ..protocol.types import JsonRpcRequest, JsonRpcResponse, PromptGetParams, ToolCallParams
from .client import McpClient

logger = logging.getLogger(__name__)


class IntentMethod(str, Enum):
    """Methods an intent may name."""

    LIST_TOOLS = "tools/list"
    CALL_TOOL = "tools/call"
    LIST_PROMPTS = "prompts/list"
    GET_PROMPT = "prompts/get"


class Intent(BaseModel):
    """A parsed intent document."""

    method: str = ""
    params: Any | None = None


def parse_intent(intent_json: str) -> tuple[IntentMethod, Any | None]:
    """Parse an intent document and resolve its method.

    Raises:
        ValidationError: If the document is not a JSON object
        UnsupportedMethodError: If the method is not routed
    """
    try:
        intent = Intent.model_validate_json(intent_json)
    except PydanticValidationError as e:
        raise ValidationError(f"failed to parse intent JSON: {e}") from e

    try:
        method = IntentMethod(intent.method)
    except ValueError:
        raise UnsupportedMethodError(intent.method) from None
    return method, intent.params


def _coerce_params(
    params: Any | None, model: type[ToolCallParams] | type[PromptGetParams], kind: str
) -> ToolCallParams | PromptGetParams:
    """Round-trip params through JSON into a strict shape.

    Raises:
        ValidationError: If params do not fit the shape
        MissingRequiredFieldError: If the name is missing or empty
    """
    try:
        parsed = model.model_validate_json(json.dumps(params if params is not None else {}))
    except (TypeError, ValueError) as e:
        # pydantic's ValidationError is a ValueError
        raise ValidationError(f"failed to parse {kind} parameters: {e}") from e

    if not parsed.name:
        raise MissingRequiredFieldError("name", f"{kind} name is required")
    return parsed


def build_request(intent_json: str, request_id: str = "intent") -> JsonRpcRequest:
    """Validate an intent and return the request it would send."""
    method, params = parse_intent(intent_json)

    if method is IntentMethod.CALL_TOOL:
        call_params = _coerce_params(params, ToolCallParams, "tool")
        return JsonRpcRequest(id=request_id, method=method.value, params=call_params.model_dump())
    if method is IntentMethod.GET_PROMPT:
        prompt_params = _coerce_params(params, PromptGetParams, "prompt")
        return JsonRpcRequest(id=request_id, method=method.value, params=prompt_params.model_dump())
    return JsonRpcRequest(id=request_id, method=method.value)


class IntentHandler:
    """Routes intents to an McpClient."""

    def __init__(self, client: McpClient):
        self._client = client

    async def process_intent(self, intent_json: str) -> Any:
        """Process one intent and return the reply's result.

        Raises:
            ValidationError: Bad document or params
            UnsupportedMethodError: Unknown method
            ProtocolError: The server answered with an error
            HandshakeError / TransportError: From the client
        """
        logger.info(f"Processing intent: {intent_json}")
        method, params = parse_intent(intent_json)

        match method:
            case IntentMethod.LIST_TOOLS:
                reply = await self._client.list_tools()
                return self._unwrap(method, reply)
            case IntentMethod.CALL_TOOL:
                tool = _coerce_params(params, ToolCallParams, "tool")
                logger.info(f"Executing tool: {tool.name}")
                reply = await self._client.call_tool(tool.name, tool.arguments)
                return self._unwrap(method, reply, tool.name)
            case IntentMethod.LIST_PROMPTS:
                reply = await self._client.list_prompts()
                return self._unwrap(method, reply)
            case IntentMethod.GET_PROMPT:
                prompt = _coerce_params(params, PromptGetParams, "prompt")
                logger.info(f"Getting prompt: {prompt.name}")
                reply = await self._client.get_prompt(prompt.name, prompt.arguments)
                return self._unwrap(method, reply, prompt.name)

    @staticmethod
    def _unwrap(method: IntentMethod, reply: JsonRpcResponse, target: str | None = None) -> Any:
        if reply.error is not None:
            label = f"{method.value} {target}" if target else method.value
            logger.error(f"MCP server returned error for {label}: {reply.error.message}")
            raise ProtocolError(
                reply.error.code,
                reply.error.message,
                reply.error.data,
                method=label,
            )
        return reply.result
