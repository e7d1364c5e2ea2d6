"""
Newline-delimited JSON-RPC framing over a child process's stdin/stdout.

The provider runs as a subprocess.  We write one request per line to its
stdin and read one response per line from its stdout.  stderr is left
attached to ours so provider diagnostics never touch the protocol stream.
"""

import asyncio
import logging
import os
from typing import Optional

from ..errors import ProtocolError, TransportError
from .messages import JsonRpcRequest, JsonRpcResponse

logger = logging.getLogger(__name__)

# One frame may hold a full AR aging payload with many invoices.
DEFAULT_LINE_LIMIT = 16 * 1024 * 1024


class StdioTransport:
    """
    A single duplex line stream to one child process.

    The transport does no correlation; ``ToolSession`` matches ids.
    """

    def __init__(
        self,
        command: list[str],
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        shutdown_timeout: float = 5.0,
        line_limit: int = DEFAULT_LINE_LIMIT,
    ):
        if not command:
            raise ValueError("Transport command must not be empty")
        self.command = command
        self.env = env
        self.cwd = cwd
        self.shutdown_timeout = shutdown_timeout
        self.line_limit = line_limit
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    def is_alive(self) -> bool:
        """Check if the child process is running."""
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the child process with piped stdin/stdout."""
        if self._process is not None:
            raise RuntimeError("Transport already started")

        child_env = None
        if self.env:
            child_env = {**os.environ, **self.env}

        logger.info(f"Starting stdio transport: {' '.join(self.command)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                env=child_env,
                cwd=self.cwd,
                limit=self.line_limit,
            )
        except OSError as e:
            raise TransportError(f"Failed to start tool server {self.command[0]!r}: {e}") from e
        logger.debug(f"Tool server started (pid={self._process.pid})")

    async def send(self, request: JsonRpcRequest) -> None:
        """Write one framed request."""
        process = self._require_process()
        assert process.stdin is not None
        line = request.to_line() + "\n"
        try:
            process.stdin.write(line.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(
                f"Tool server stdin closed: {e}", returncode=process.returncode
            ) from e

    async def receive(self) -> JsonRpcResponse:
        """Read exactly one framed response."""
        process = self._require_process()
        assert process.stdout is not None
        try:
            raw = await process.stdout.readline()
        except ValueError as e:
            # asyncio raises ValueError when a line exceeds the stream limit
            raise ProtocolError(f"Frame exceeds {self.line_limit} bytes: {e}") from e
        except ConnectionResetError as e:
            raise TransportError(f"Tool server stdout reset: {e}") from e

        if not raw:
            returncode = await self._reap()
            raise TransportError(
                f"Tool server closed its output stream (exit code: {returncode})",
                returncode=returncode,
            )
        if not raw.endswith(b"\n"):
            raise TransportError("Tool server stream ended mid-frame")

        try:
            line = raw.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not valid UTF-8: {e}") from e
        return JsonRpcResponse.from_line(line)

    async def stop(self) -> None:
        """
        Close stdin and wait for the child to exit, escalating to
        terminate and then kill.  Safe to call more than once.
        """
        process = self._process
        if process is None:
            return

        if process.returncode is None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Tool server (pid={process.pid}) ignored EOF, terminating")
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.shutdown_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Tool server (pid={process.pid}) ignored SIGTERM, killing")
                    process.kill()
                    await process.wait()
        else:
            await process.wait()

        logger.info(f"Stdio transport stopped (exit code: {process.returncode})")

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise TransportError("Transport not running. Call start() first.")
        if self._process.returncode is not None:
            raise TransportError(
                f"Tool server exited (exit code: {self._process.returncode})",
                returncode=self._process.returncode,
            )
        return self._process

    async def _reap(self) -> Optional[int]:
        """Collect the exit code of a child that closed its stdout."""
        assert self._process is not None
        try:
            return await asyncio.wait_for(self._process.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            return None
