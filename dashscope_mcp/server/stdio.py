"""Stdio protocol server: newline-delimited JSON-RPC 2.0 over stdin/stdout."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, BinaryIO, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from dashscope_mcp import __version__
from dashscope_mcp.server.registry import ToolRegistry
from dashscope_mcp.server.schema import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PROTOCOL_VERSION,
    JsonRpcRequest,
    ResourceReadParams,
    ToolCallParams,
    error_response,
    result_response,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "dashscope-mcp-agent"


class MethodError(Exception):
    """Raised by a handler to produce a JSON-RPC error response."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class StdioServer:
    """
    JSON-RPC server reading one request per line from ``inp``.

    Every request (a message carrying an ``id``) gets exactly one response
    line on ``out``; notifications get none. Nothing short of EOF on ``inp``
    ends ``serve_forever``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        inp: Optional[BinaryIO] = None,
        out: Optional[BinaryIO] = None,
    ) -> None:
        self.registry = registry
        self.inp = inp if inp is not None else sys.stdin.buffer
        self.out = out if out is not None else sys.stdout.buffer
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "initialize": self._handle_initialize,
            "ping": lambda params: {},
            "tools/list": lambda params: {"tools": self.registry.list_tools()},
            "tools/call": self._handle_tools_call,
            "resources/list": lambda params: {"resources": self.registry.list_resources()},
            "resources/read": self._handle_resources_read,
        }

    # ── Handlers ──────────────────────────────────────────────────────────

    def _handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        client = params.get("clientInfo") or {}
        logger.info("initialize from %s %s", client.get("name", "?"), client.get("version", ""))
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}, "resources": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    def _handle_tools_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            call = ToolCallParams.model_validate(params)
        except PydanticValidationError:
            raise MethodError(INVALID_PARAMS, "tools/call requires a string 'name' and object 'arguments'")
        return self.registry.call_tool(call.name, call.arguments)

    def _handle_resources_read(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            read = ResourceReadParams.model_validate(params)
        except PydanticValidationError:
            raise MethodError(INVALID_PARAMS, "resources/read requires a string 'uri'")
        return self.registry.read_resource(read.uri)

    # ── Dispatch ──────────────────────────────────────────────────────────

    def handle_line(self, line: bytes) -> Optional[Dict[str, Any]]:
        """Process one frame; return the response to write, or None for notifications."""
        try:
            raw = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("unparseable frame: %s", exc)
            return error_response(None, PARSE_ERROR, f"Parse error: {exc}")

        try:
            request = JsonRpcRequest.model_validate(raw)
        except PydanticValidationError:
            request_id = raw.get("id") if isinstance(raw, dict) else None
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        if request.is_notification:
            logger.debug("notification %s", request.method)
            return None

        return self.handle(request)

    def handle(self, request: JsonRpcRequest) -> Dict[str, Any]:
        handler = self._handlers.get(request.method)
        if handler is None:
            return error_response(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")

        try:
            result = handler(request.params or {})
        except MethodError as exc:
            return error_response(request.id, exc.code, exc.message)
        except Exception as exc:
            logger.exception("handler for %s failed", request.method)
            return error_response(request.id, INTERNAL_ERROR, f"Internal error: {exc}")
        return result_response(request.id, result)

    # ── I/O loop ──────────────────────────────────────────────────────────

    def _send(self, obj: Dict[str, Any]) -> None:
        self.out.write(json.dumps(obj, ensure_ascii=False).encode("utf-8") + b"\n")
        self.out.flush()

    def serve_forever(self) -> None:
        logger.info("%s %s listening on stdio", SERVER_NAME, __version__)
        while True:
            line = self.inp.readline()
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            response = self.handle_line(line)
            if response is not None:
                self._send(response)
        logger.info("stdin closed, shutting down")
