"""Line-oriented channels to a stdio server subprocess."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from dashscope_mcp.errors import TransportError

logger = logging.getLogger(__name__)

LineCallback = Callable[[bytes], None]
ExitCallback = Callable[[Optional[int]], None]
ChannelFactory = Callable[[LineCallback, ExitCallback], "Channel"]


class Channel(ABC):
    """
    One running child process that accepts newline-terminated frames.

    Implementations call ``on_line`` for every complete stdout line and
    ``on_exit`` exactly once, after the last line, when the process ends.
    """

    def __init__(self, on_line: LineCallback, on_exit: ExitCallback):
        self._on_line = on_line
        self._on_exit = on_exit

    @property
    @abstractmethod
    def pid(self) -> Optional[int]:
        """Process id while running, else None."""

    @abstractmethod
    async def start(self) -> None:
        """Spawn the process. Raises TransportError if it cannot be started."""

    @abstractmethod
    def write_line(self, data: bytes) -> None:
        """Queue one frame (including its trailing newline). Raises TransportError."""

    @abstractmethod
    async def close(self) -> None:
        """Stop the process and wait for it to exit."""


class SubprocessChannel(Channel):
    """Channel backed by ``asyncio.create_subprocess_exec`` pipes."""

    def __init__(
        self,
        command: List[str],
        on_line: LineCallback,
        on_exit: ExitCallback,
        env: Optional[Dict[str, str]] = None,
        limit: int = 16 * 1024 * 1024,
    ):
        super().__init__(on_line, on_exit)
        self.command = command
        self.env = env
        self.limit = limit
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        if self._process is None or self._process.returncode is not None:
            return None
        return self._process.pid

    async def start(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
                limit=self.limit,
            )
        except OSError as exc:
            raise TransportError(f"Failed to start {' '.join(self.command)}: {exc}") from exc

        self._watcher = asyncio.create_task(self._watch(self._process))

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._pump_stdout(process.stdout),
            self._pump_stderr(process.stderr, process.pid),
        )
        returncode = await process.wait()
        self._on_exit(returncode)

    async def _pump_stdout(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.warning("discarding stdout frame longer than %d bytes", self.limit)
                continue
            if not line:
                return
            if line.strip():
                self._on_line(line)

    async def _pump_stderr(self, stream: asyncio.StreamReader, pid: int) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                continue
            if not line:
                return
            logger.info("[server %d] %s", pid, line.decode("utf-8", errors="replace").rstrip())

    def write_line(self, data: bytes) -> None:
        process = self._process
        if process is None or process.returncode is not None or process.stdin is None:
            raise TransportError("MCP server is not running")
        if process.stdin.is_closing():
            raise TransportError("MCP server stdin is closed")
        try:
            process.stdin.write(data)
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            raise TransportError(f"Failed to write to MCP server: {exc}") from exc

    async def close(self, timeout: float = 5.0) -> None:
        process = self._process
        if process is None:
            return
        if process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        if self._watcher is not None:
            await self._watcher
