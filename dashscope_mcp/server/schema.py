"""Data models for tool and resource definitions, arguments, and JSON-RPC envelopes."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from dashscope_mcp.errors import ValidationError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = Union[int, str]


class ToolDefinition(BaseModel):
    """Static descriptor of a callable tool, as listed by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str
    input_schema: Dict[str, Any] = Field(alias="inputSchema")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ResourceDefinition(BaseModel):
    """Static descriptor of a readable resource, as listed by ``resources/list``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    uri: str
    name: str
    description: str
    mime_type: str = Field(alias="mimeType")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ResourceContents(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uri: str
    mime_type: str = Field(alias="mimeType")
    text: str


class AIChatArguments(BaseModel):
    """Arguments accepted by the ``ai_chat`` tool."""

    message: str
    system_prompt: Optional[str] = None
    model: str = "qwen-turbo"
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)


class ToolCallParams(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ResourceReadParams(BaseModel):
    uri: str


class JsonRpcRequest(BaseModel):
    """Inbound request or notification. A missing ``id`` marks a notification."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId] = None
    method: str
    params: Optional[Dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


M = TypeVar("M", bound=BaseModel)


def validate_arguments(model: Type[M], arguments: Any) -> M:
    """Validate ``arguments`` against ``model``; raise ValidationError naming the first bad field."""
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ValidationError("arguments", "expected an object")
    try:
        return model.model_validate(arguments)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "arguments"
        raise ValidationError(field, first.get("msg", "invalid value")) from exc


def result_response(request_id: Optional[RequestId], result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: Optional[RequestId], code: int, message: str, data: Any = None
) -> Dict[str, Any]:
    error = JsonRpcError(code=code, message=message, data=data)
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": error.model_dump(exclude_none=True),
    }


def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    """Build a ``tools/call`` result; ``isError`` is only present on failures."""
    result: Dict[str, Any] = {"content": [TextContent(text=text).model_dump()]}
    if is_error:
        result["isError"] = True
    return result


def contents_result(contents: List[ResourceContents]) -> Dict[str, Any]:
    return {"contents": [c.model_dump(by_alias=True) for c in contents]}
