"""
dashscope-mcp providers module.

This module provides the DashScope chat-completion client.
"""

from dashscope_mcp.providers.base import (
    ChatCompletion,
    ChatMessage,
    ChatProvider,
    DashScopeClient,
    Usage,
    build_messages,
)

__all__ = [
    "ChatCompletion",
    "ChatMessage",
    "ChatProvider",
    "DashScopeClient",
    "Usage",
    "build_messages",
]
