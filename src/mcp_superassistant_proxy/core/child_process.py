"""
Child Process Handle
====================

Wraps the local stdio MCP server spawned by the stdio → SSE bridge.
The command runs through the shell; stdout is framed into JSON-RPC messages,
stderr is relayed into the proxy log.
"""

from typing import AsyncIterator, Optional
import asyncio

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.config.logging import get_logger

from .errors import ChildProcessExit, FrameParseError, SpawnFailure
from .framing import MessageFramer

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


def exit_code_for(returncode: Optional[int]) -> int:
    """Proxy exit code for a child return code; signal deaths map to 1."""
    if returncode is None or returncode < 0:
        return 1
    return returncode


class ChildProcess:
    """A spawned stdio MCP server."""

    def __init__(self, command: str) -> None:
        self.command = command
        self.framer = MessageFramer()
        self.logger = logger.bind(component="child")
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._write_lock = asyncio.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc else None

    async def start(self) -> None:
        """
        Spawn the command.

        Raises:
            SpawnFailure: If the process cannot be created
        """
        try:
            self._proc = await asyncio.create_subprocess_shell(
                self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnFailure(f"Failed to spawn {self.command!r}: {e}") from e

        if not self._proc.stdin or not self._proc.stdout:
            raise SpawnFailure(f"Child has no stdin/stdout pipes: {self.command!r}")

        self.logger.info("Child process started", pid=self._proc.pid, command=self.command)

    async def messages(self) -> AsyncIterator[JSONRPCMessage]:
        """
        Yield every well-formed message the child writes to stdout, in order.

        Lines that fail to parse are logged and dropped. Ends at EOF.
        """
        if not self._proc or not self._proc.stdout:
            raise RuntimeError("Child process not started")

        reader = self._proc.stdout
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            events = self.framer.feed(chunk) if chunk else self.framer.flush()
            for event in events:
                if isinstance(event, FrameParseError):
                    self.logger.error(f"Child non-JSON: {event.line}", reason=event.reason)
                    continue
                yield event
            if not chunk:
                return

    async def relay_stderr(self) -> None:
        """Copy child stderr lines into the proxy log until EOF."""
        if not self._proc or not self._proc.stderr:
            return
        reader = self._proc.stderr
        pending = b""
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                lines, pending = [pending], b""
            else:
                *lines, pending = (pending + chunk).split(b"\n")
            for line in lines:
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    self.logger.error(f"Child stderr: {text}")
            if not chunk:
                return

    async def write(self, message: JSONRPCMessage) -> None:
        """
        Write one framed message to the child's stdin.

        Raises:
            ChildProcessExit: If the child has already exited
        """
        if not self._proc or not self._proc.stdin:
            raise RuntimeError("Child process not started")
        async with self._write_lock:
            if self._proc.returncode is not None or self._proc.stdin.is_closing():
                raise ChildProcessExit(exit_code_for(self._proc.returncode))
            try:
                self._proc.stdin.write(self.framer.serialize(message))
                await self._proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ChildProcessExit(exit_code_for(self._proc.returncode)) from e

    async def wait(self) -> int:
        """Wait for the child to exit and return the proxy exit code."""
        if not self._proc:
            raise RuntimeError("Child process not started")
        returncode = await self._proc.wait()
        return exit_code_for(returncode)

    async def terminate(self, timeout: float = 5.0) -> None:
        """
        Terminate the child, killing it if it does not exit in time.

        Closing stdin lets the subprocess transport close once the child is gone.
        """
        if self._proc is None:
            return
        if self._proc.stdin is not None and not self._proc.stdin.is_closing():
            self._proc.stdin.close()
        if self._proc.returncode is not None:
            return
        self.logger.info("Stopping child process", pid=self._proc.pid)
        try:
            self._proc.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Child did not exit, killing", pid=self._proc.pid)
            self._proc.kill()
            await self._proc.wait()
