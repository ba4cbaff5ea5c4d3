"""
Proxy session: one supervised stdio server and the table of requests pending on it.

All state here is owned by the event loop thread; no locks are taken.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dashscope_mcp.errors import RemoteCallError, RequestTimeoutError, TransportError
from dashscope_mcp.proxy.channel import Channel, ChannelFactory, SubprocessChannel
from dashscope_mcp.validation.config import Config, ProxyConfig

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """A proxied call awaiting its correlated response or its timeout."""

    id: int
    method: str
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None

    def settle(self) -> bool:
        """Stop the timer. Returns False if the caller already went away."""
        if self.timer is not None:
            self.timer.cancel()
        return not self.future.done()


class ProxySession:
    """
    Supervises the stdio server subprocess and correlates responses by id.

    Ids are allocated from 1 upward for the lifetime of the session, so they
    stay unique across subprocess restarts. A response whose id is not
    pending (unknown, already answered, or timed out) is dropped.

    When the subprocess exits the channel handle is cleared and exactly one
    restart is scheduled after ``restart_delay``. Requests pending at that
    moment are left to time out unless ``fail_pending_on_exit`` is set.
    """

    def __init__(self, config: ProxyConfig, channel_factory: ChannelFactory):
        self.config = config
        self._channel_factory = channel_factory
        self._channel: Optional[Channel] = None
        self._pending: Dict[int, PendingRequest] = {}
        self._next_id = 1
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._stopping = False
        self.spawn_count = 0

    @classmethod
    def from_config(cls, config: Config) -> "ProxySession":
        proxy = config.proxy
        env = config.child_environment()

        def factory(on_line, on_exit) -> Channel:
            return SubprocessChannel(
                proxy.server_command,
                on_line,
                on_exit,
                env=env,
                limit=proxy.max_line_bytes,
            )

        return cls(proxy, factory)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._channel is not None and self._channel.pid is not None

    @property
    def pid(self) -> Optional[int]:
        return self._channel.pid if self._channel is not None else None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def status(self) -> Dict[str, Any]:
        if self.is_connected:
            return {"status": "connected", "pid": self.pid}
        return {"status": "disconnected"}

    async def start(self) -> None:
        self._stopping = False
        await self._spawn()

    async def stop(self) -> None:
        self._stopping = True
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()

        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

        self._fail_all_pending(TransportError("Proxy session stopped"))

    async def _spawn(self) -> None:
        self._restart_handle = None
        if self._stopping or self._channel is not None:
            return

        channel: Optional[Channel] = None

        def on_exit(returncode: Optional[int]) -> None:
            self._on_exit(channel, returncode)

        channel = self._channel_factory(self._on_line, on_exit)
        self.spawn_count += 1
        try:
            await channel.start()
        except TransportError as exc:
            logger.error("could not start MCP server: %s", exc)
            self._schedule_restart()
            return

        self._channel = channel
        logger.info("MCP server started (pid %s)", channel.pid)

    def _on_exit(self, channel: Optional[Channel], returncode: Optional[int]) -> None:
        if channel is not self._channel:
            return
        self._channel = None
        logger.warning("MCP server exited with code %s", returncode)

        if self.config.fail_pending_on_exit:
            self._fail_all_pending(TransportError(f"MCP server exited with code {returncode}"))

        if not self._stopping:
            self._schedule_restart()

    def _schedule_restart(self) -> None:
        if self._stopping or self._restart_handle is not None:
            return
        loop = asyncio.get_running_loop()
        logger.info("restarting MCP server in %gs", self.config.restart_delay)
        self._restart_handle = loop.call_later(self.config.restart_delay, self._restart)

    def _restart(self) -> None:
        self._restart_task = asyncio.ensure_future(self._spawn())

    # ── Requests ──────────────────────────────────────────────────────────

    async def send_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Forward one JSON-RPC call and wait for its correlated result.

        Raises:
            TransportError: no subprocess is running, or the write failed.
            RequestTimeoutError: no response within ``request_timeout``.
            RemoteCallError: the server answered with a JSON-RPC error.
        """
        channel = self._channel
        if channel is None:
            raise TransportError("MCP server is not running")

        loop = asyncio.get_running_loop()
        request_id = self._next_id
        self._next_id += 1

        pending = PendingRequest(id=request_id, method=method, future=loop.create_future())
        self._pending[request_id] = pending

        frame = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        try:
            channel.write_line(json.dumps(frame, ensure_ascii=False).encode("utf-8") + b"\n")
        except TransportError:
            self._pending.pop(request_id, None)
            raise

        pending.timer = loop.call_later(self.config.request_timeout, self._expire, request_id)
        logger.debug("-> %s id=%d", method, request_id)
        return await pending.future

    def _expire(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning("request %d (%s) timed out", request_id, pending.method)
        pending.future.set_exception(
            RequestTimeoutError(request_id, pending.method, self.config.request_timeout)
        )

    def _on_line(self, line: bytes) -> None:
        try:
            message = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("discarding malformed frame from MCP server: %s", exc)
            return
        if not isinstance(message, dict):
            logger.warning("discarding non-object frame from MCP server")
            return

        response_id = message.get("id")
        if isinstance(response_id, bool) or not isinstance(response_id, int):
            logger.debug("dropping frame with id %r", response_id)
            return

        pending = self._pending.pop(response_id, None)
        if pending is None:
            logger.debug("dropping response for unknown id %d", response_id)
            return
        if not pending.settle():
            return

        error = message.get("error")
        if error is not None:
            if isinstance(error, dict):
                pending.future.set_exception(
                    RemoteCallError(error.get("message") or "MCP Error", error.get("code"))
                )
            else:
                pending.future.set_exception(RemoteCallError(str(error)))
        else:
            pending.future.set_result(message.get("result"))

    def _fail_all_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if entry.settle():
                entry.future.set_exception(exc)
