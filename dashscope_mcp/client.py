"""Blocking stdio client for the protocol server (one request in flight at a time)."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from typing import Any, Dict, List, Optional

from dashscope_mcp import __version__
from dashscope_mcp.errors import RemoteCallError, TransportError
from dashscope_mcp.server.schema import PROTOCOL_VERSION

logger = logging.getLogger(__name__)


class StdioClient:
    """
    Communicate with a protocol server over stdin/stdout (JSON-RPC).

    The subprocess is started lazily on first use and stopped explicitly
    via ``stop()`` or by leaving the ``with`` block.
    """

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
    ):
        self.command = command
        self.env = env
        self._process: Optional[subprocess.Popen] = None
        self._request_id = 0
        self._lock = threading.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the server subprocess."""
        if self.is_running:
            return

        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                env=self.env if self.env is not None else dict(os.environ),
            )
        except FileNotFoundError:
            raise TransportError(f"Server command not found: {self.command[0]}")
        logger.debug("started %s (pid %d)", " ".join(self.command), self._process.pid)

    def stop(self) -> None:
        """Terminate the server subprocess."""
        if self._process and self._process.poll() is None:
            try:
                self._process.stdin.close()
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.terminate()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self._process.kill()
        self._process = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self.is_running else None

    def __enter__(self) -> "StdioClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a JSON-RPC request and return the result."""
        if not self.is_running:
            self.start()

        with self._lock:
            self._request_id += 1
            request = {
                "jsonrpc": "2.0",
                "id": self._request_id,
                "method": method,
                "params": params or {},
            }
            line = json.dumps(request) + "\n"

            try:
                self._process.stdin.write(line.encode())
                self._process.stdin.flush()
                response = self._read_response(self._request_id)
            except (BrokenPipeError, OSError) as exc:
                raise TransportError(f"stdio transport error: {exc}")

        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RemoteCallError(error.get("message") or "JSON-RPC error", error.get("code"))
            raise RemoteCallError(str(error))

        return response.get("result", {})

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification (no id, no response)."""
        if not self.is_running:
            self.start()
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        with self._lock:
            try:
                self._process.stdin.write((json.dumps(message) + "\n").encode())
                self._process.stdin.flush()
            except (BrokenPipeError, OSError) as exc:
                raise TransportError(f"stdio transport error: {exc}")

    def _read_response(self, request_id: int) -> Dict[str, Any]:
        while True:
            raw = self._process.stdout.readline()
            if not raw:
                raise TransportError("server closed connection (empty response)")
            try:
                response = json.loads(raw.decode())
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning("discarding malformed line: %r", raw[:200])
                continue
            if not isinstance(response, dict):
                continue
            if response.get("id") == request_id:
                return response
            logger.debug("discarding response for id %r", response.get("id"))

    # ── MCP Protocol ──────────────────────────────────────────────────────

    def initialize(self) -> Dict[str, Any]:
        """Perform the MCP initialize handshake."""
        result = self.send("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "dashscope-mcp-probe", "version": __version__},
        })
        self.notify("notifications/initialized")
        return result

    def list_tools(self) -> List[Dict[str, Any]]:
        return self.send("tools/list").get("tools", [])

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.send("tools/call", {"name": name, "arguments": arguments or {}})

    def list_resources(self) -> List[Dict[str, Any]]:
        return self.send("resources/list").get("resources", [])

    def read_resource(self, uri: str) -> Dict[str, Any]:
        return self.send("resources/read", {"uri": uri})
