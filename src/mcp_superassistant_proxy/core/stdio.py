"""
Local Stdio Channel
===================

Line-delimited JSON-RPC over the proxy's own stdin and stdout, used when the
proxy itself acts as a stdio MCP server (SSE → stdio).

Pipes and terminals are read through the event loop; a regular file
redirected onto stdin is read in a worker thread, where reads cannot block
indefinitely. Writes to a pipe or socket stdout go through an asyncio
StreamWriter so a slow reader applies backpressure instead of stalling the
loop; other stdout targets are written from a worker thread.
"""

from typing import AsyncIterator, BinaryIO, Optional
import asyncio
import os
import stat
import sys

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.config.logging import get_logger

from .errors import FrameParseError
from .framing import MessageFramer

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


def _is_pipe(stream: BinaryIO) -> bool:
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (OSError, ValueError):
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode)


def stdin_is_pipe(stdin: Optional[BinaryIO] = None) -> bool:
    """True when stdin is a pipe or socket owned by a controlling process."""
    return _is_pipe(stdin or sys.stdin.buffer)


async def read_chunks(stream: BinaryIO) -> AsyncIterator[bytes]:
    """Yield raw chunks from a binary stream until EOF without blocking the loop."""
    mode = os.fstat(stream.fileno()).st_mode
    if stat.S_ISREG(mode):
        while True:
            chunk = await asyncio.to_thread(stream.read, READ_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), stream
    )
    try:
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk
    finally:
        transport.close()


async def wait_for_stdin_close(stdin: Optional[BinaryIO] = None) -> None:
    """Discard stdin until the controlling process closes it."""
    async for _ in read_chunks(stdin or sys.stdin.buffer):
        pass


async def open_pipe_writer(stream: BinaryIO) -> Optional[asyncio.StreamWriter]:
    """StreamWriter over a pipe or socket stream, or None for other targets."""
    if not _is_pipe(stream):
        return None
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stream)
    return asyncio.StreamWriter(transport, protocol, None, loop)


def _blocking_write(stream: BinaryIO, data: bytes) -> None:
    stream.write(data)
    stream.flush()


class StdioChannel:
    """The proxy's own stdin/stdout as a JSON-RPC message channel."""

    def __init__(
        self, stdin: Optional[BinaryIO] = None, stdout: Optional[BinaryIO] = None
    ) -> None:
        self.stdin = stdin or sys.stdin.buffer
        self.stdout = stdout or sys.stdout.buffer
        self.framer = MessageFramer()
        self.logger = logger.bind(component="stdio")
        self._writer: Optional[asyncio.StreamWriter] = None
        self._writer_ready = False
        self._write_lock = asyncio.Lock()

    async def messages(self) -> AsyncIterator[JSONRPCMessage]:
        """Yield well-formed messages read from stdin; ends when stdin closes."""
        async for chunk in read_chunks(self.stdin):
            for event in self.framer.feed(chunk):
                if isinstance(event, FrameParseError):
                    self.logger.error(f"Stdin non-JSON: {event.line}", reason=event.reason)
                    continue
                yield event
        for event in self.framer.flush():
            if isinstance(event, FrameParseError):
                self.logger.error(f"Stdin non-JSON: {event.line}", reason=event.reason)
                continue
            yield event

    async def write(self, message: JSONRPCMessage) -> None:
        """Write one framed message to stdout, in call order."""
        data = self.framer.serialize(message)
        async with self._write_lock:
            if not self._writer_ready:
                self._writer = await open_pipe_writer(self.stdout)
                self._writer_ready = True
            if self._writer is None:
                await asyncio.to_thread(_blocking_write, self.stdout, data)
                return
            self._writer.write(data)
            await self._writer.drain()

    async def aclose(self) -> None:
        """Flush and release the stdout writer."""
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            await writer.drain()
        except ConnectionError:
            pass
        writer.close()
