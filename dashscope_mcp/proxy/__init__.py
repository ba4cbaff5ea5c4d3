"""
HTTP proxy for dashscope-mcp.

Spawns the stdio protocol server as a child process, correlates its
responses to pending HTTP callers by request id, and restarts it on exit.
"""

from dashscope_mcp.proxy.app import create_app, run_proxy
from dashscope_mcp.proxy.channel import Channel, SubprocessChannel
from dashscope_mcp.proxy.session import PendingRequest, ProxySession

__all__ = [
    "Channel",
    "PendingRequest",
    "ProxySession",
    "SubprocessChannel",
    "create_app",
    "run_proxy",
]
