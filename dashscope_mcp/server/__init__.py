"""
Stdio protocol server for dashscope-mcp.

Exposes one tool (``ai_chat``) and one resource scheme (``file://``) over
newline-delimited JSON-RPC 2.0 following the MCP discovery convention.
"""

from dashscope_mcp.server.registry import ToolRegistry
from dashscope_mcp.server.schema import ResourceDefinition, ToolDefinition
from dashscope_mcp.server.stdio import StdioServer

__all__ = [
    "ResourceDefinition",
    "StdioServer",
    "ToolDefinition",
    "ToolRegistry",
]
