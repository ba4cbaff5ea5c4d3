"""Tool registry: declares the tools and resources and dispatches calls to them."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from dashscope_mcp.errors import DashScopeMCPError, UnknownToolError, ValidationError
from dashscope_mcp.providers.base import ChatProvider
from dashscope_mcp.server.resources import FILE_SCHEME, FILE_SYSTEM_RESOURCE, read_file_resource
from dashscope_mcp.server.schema import (
    ResourceContents,
    ResourceDefinition,
    ToolDefinition,
    contents_result,
    text_result,
)
from dashscope_mcp.server.tools import AI_CHAT_TOOL, execute_ai_chat

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Static catalogue of one tool (``ai_chat``) and one resource (``file://``).

    ``call_tool`` and ``read_resource`` never raise: unknown names, bad
    arguments, upstream and filesystem errors, and unexpected exceptions are
    folded into error-shaped results so the protocol server keeps running.
    """

    def __init__(self, provider: ChatProvider):
        self._provider = provider
        self._tools: Dict[str, ToolDefinition] = {AI_CHAT_TOOL.name: AI_CHAT_TOOL}
        self._handlers: Dict[str, Callable[[Any], str]] = {
            AI_CHAT_TOOL.name: lambda arguments: execute_ai_chat(arguments, self._provider),
        }
        self._resources: List[ResourceDefinition] = [FILE_SYSTEM_RESOURCE]

    # ── Discovery ─────────────────────────────────────────────────────────

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_wire() for tool in self._tools.values()]

    def list_resources(self) -> List[Dict[str, Any]]:
        return [resource.to_wire() for resource in self._resources]

    def get_tool(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    # ── Dispatch ──────────────────────────────────────────────────────────

    def call_tool(self, name: str, arguments: Any = None) -> Dict[str, Any]:
        """Run a tool and return a ``tools/call`` result (``isError`` on failure)."""
        try:
            self.get_tool(name)
            text = self._handlers[name](arguments if arguments is not None else {})
        except DashScopeMCPError as exc:
            logger.warning("tool %s failed: %s", name, exc)
            return text_result(f"Error: {exc}", is_error=True)
        except Exception as exc:
            logger.exception("tool %s crashed", name)
            return text_result(f"Error: {exc}", is_error=True)
        return text_result(text)

    def read_resource(self, uri: Any) -> Dict[str, Any]:
        """Read a resource and return a ``resources/read`` result (error text on failure)."""
        uri_text = uri if isinstance(uri, str) else ""
        try:
            if not uri_text:
                raise ValidationError("uri", "a non-empty string is required")
            if not uri_text.startswith(FILE_SCHEME):
                raise ValidationError("uri", f"Unsupported resource URI: {uri_text}")
            contents = read_file_resource(uri_text)
        except DashScopeMCPError as exc:
            logger.warning("resource %s failed: %s", uri_text or "<missing>", exc)
            contents = ResourceContents(uri=uri_text, mime_type="text/plain", text=f"Error: {exc}")
        except Exception as exc:
            logger.exception("resource %s crashed", uri_text)
            contents = ResourceContents(uri=uri_text, mime_type="text/plain", text=f"Error: {exc}")
        return contents_result([contents])
