"""
dashscope-mcp - DashScope chat completions behind MCP transports.

Two thin shims around one remote chat-completion endpoint:

- ``dashscope-mcp serve``: a stdio JSON-RPC server exposing the ``ai_chat``
  tool and the ``file://`` resource.
- ``dashscope-mcp proxy``: an HTTP API and web client that forward requests
  to a supervised ``serve`` subprocess.
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from dashscope_mcp.errors import DashScopeMCPError
from dashscope_mcp.validation.config import Config

__all__ = [
    "Config",
    "DashScopeMCPError",
    "__version__",
]
