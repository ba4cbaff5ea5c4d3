"""
dashscope-mcp error taxonomy.

Tool and resource failures are folded into error-shaped protocol responses;
proxy failures surface as HTTP errors. Everything raised on purpose by this
package derives from DashScopeMCPError.
"""

from typing import Optional


class DashScopeMCPError(Exception):
    """Base class for all dashscope-mcp errors."""


class ConfigError(DashScopeMCPError):
    """Raised when there's a configuration error."""


class RemoteAPIError(DashScopeMCPError):
    """Raised when the DashScope endpoint answers with a non-success status."""

    def __init__(self, status_code: Optional[int], body: str):
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"DashScope API unreachable: {body}")
        else:
            super().__init__(f"DashScope API error: {status_code} {body}")


class ValidationError(DashScopeMCPError):
    """Raised when tool or resource arguments do not match their schema."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid argument '{field}': {message}")


class FilesystemError(DashScopeMCPError):
    """Raised when a file resource cannot be read or listed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read {path}: {reason}")


class UnknownToolError(DashScopeMCPError):
    """Raised when a tool name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolExecutionError(DashScopeMCPError):
    """Raised when a tool fails after its arguments were accepted."""


class TransportError(DashScopeMCPError):
    """Raised when the stdio server subprocess is unavailable."""


class RequestTimeoutError(DashScopeMCPError, TimeoutError):
    """Raised when no correlated response arrives within the timeout window."""

    def __init__(self, request_id: int, method: str, timeout: float):
        self.request_id = request_id
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request {request_id} ({method}) timed out after {timeout:g}s")


class RemoteCallError(DashScopeMCPError):
    """A JSON-RPC ``error`` member returned by the stdio server."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)
