"""
Upstream SSE Connection
=======================

Client side of the SSE binding, built on the MCP SDK's ``sse_client``.

The connection runs in its own task. ``open()`` returns once the SSE stream is
established and the MCP capability handshake has completed; incoming messages
then land on ``inbound``, and a ``None`` sentinel marks the end of the
connection with the classified cause in ``close_error``.
"""

from typing import Any, Dict, Optional
import asyncio
import itertools

from mcp.client.sse import sse_client
from mcp.shared.message import SessionMessage
from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from pydantic import ValidationError

from mcp_superassistant_proxy.config.logging import get_logger
from mcp_superassistant_proxy.config.settings import Settings

from .errors import (
    StreamResetError,
    UpstreamProtocolError,
    classify_upstream_error,
    unwrap_exception,
)
from .framing import dump_message

logger = get_logger(__name__)

_connection_ids = itertools.count(1)


class UpstreamConnection:
    """One SSE connection to a remote MCP server."""

    def __init__(
        self,
        url: str,
        *,
        client_name: str,
        client_version: str,
        http_timeout: float = 5.0,
        sse_read_timeout: float = 300.0,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.url = url
        self.client_name = client_name
        self.client_version = client_version
        self.http_timeout = http_timeout
        self.sse_read_timeout = sse_read_timeout
        self.headers = headers

        self.connection_id = next(_connection_ids)
        self.inbound: asyncio.Queue[Optional[JSONRPCMessage]] = asyncio.Queue()
        self.server_info: Dict[str, Any] = {}
        self.capabilities: Dict[str, Any] = {}
        self.protocol_version: Optional[str] = None
        self.close_error: Optional[BaseException] = None

        self.logger = logger.bind(component="upstream", url=url, connection=self.connection_id)
        self._task: Optional[asyncio.Task[None]] = None
        self._ready: Optional[asyncio.Future[None]] = None
        self._write_stream: Any = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._write_stream is not None and not self._closed

    async def open(self) -> None:
        """
        Connect and complete the MCP handshake.

        Cancelling this coroutine (for example on a connect timeout) aborts the
        half-open connection.

        Raises:
            UpstreamNetworkError: On DNS, refused, timeout or reset failures
            UpstreamProtocolError: If the server rejects ``initialize``
        """
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._task = asyncio.create_task(self._run())
        try:
            await asyncio.shield(self._ready)
        except BaseException:
            await self.close()
            raise

    async def send(self, message: JSONRPCMessage) -> None:
        """Send one message upstream."""
        if not self.is_open:
            raise StreamResetError("Upstream connection is not open")
        try:
            await self._write_stream.send(SessionMessage(message))
        except Exception as e:
            raise classify_upstream_error(e) from e

    async def close(self) -> None:
        """Tear the connection down."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._closed = True

    async def _run(self) -> None:
        assert self._ready is not None
        try:
            async with sse_client(
                self.url,
                headers=self.headers,
                timeout=self.http_timeout,
                sse_read_timeout=self.sse_read_timeout,
            ) as (read_stream, write_stream):
                self._write_stream = write_stream
                await self._handshake(read_stream, write_stream)
                self._ready.set_result(None)
                self.logger.info(
                    "Remote SSE session established",
                    server=self.server_info.get("name"),
                    version=self.server_info.get("version"),
                )
                async for item in read_stream:
                    if isinstance(item, Exception):
                        self._record_stream_error(item)
                        continue
                    self.inbound.put_nowait(item.message)
                if self.close_error is None:
                    self.close_error = StreamResetError("Remote SSE stream ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            leaf = unwrap_exception(e)
            if isinstance(leaf, UpstreamProtocolError):
                error: Exception = leaf
            else:
                error = classify_upstream_error(leaf)
            if not self._ready.done():
                self._ready.set_exception(error)
                return
            self.close_error = error
        finally:
            self._closed = True
            self._write_stream = None
            ready = self._ready
            if ready.done() and not ready.cancelled() and ready.exception() is None:
                self.inbound.put_nowait(None)

    def _record_stream_error(self, error: Exception) -> None:
        if isinstance(error, ValidationError):
            self.logger.error("Invalid message from remote SSE", error=str(error))
            return
        classified = classify_upstream_error(error)
        self.logger.error("Remote SSE error", error=str(classified), reason=classified.reason)
        self.close_error = classified

    async def _handshake(self, read_stream: Any, write_stream: Any) -> None:
        request_id = f"{self.client_name}-init-{self.connection_id}"
        initialize = JSONRPCRequest(
            jsonrpc="2.0",
            id=request_id,
            method="initialize",
            params={
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": self.client_version},
            },
        )
        await write_stream.send(SessionMessage(JSONRPCMessage(initialize)))

        async for item in read_stream:
            if isinstance(item, ValidationError):
                self.logger.error("Invalid message from remote SSE", error=str(item))
                continue
            if isinstance(item, Exception):
                raise item
            message = item.message.root
            if isinstance(message, JSONRPCResponse) and message.id == request_id:
                result = message.result or {}
                self.server_info = result.get("serverInfo") or {}
                self.capabilities = result.get("capabilities") or {}
                self.protocol_version = result.get("protocolVersion")
                break
            if isinstance(message, JSONRPCError) and message.id == request_id:
                raise UpstreamProtocolError(
                    message.error.code, message.error.message, message.error.data
                )
            self.logger.warning(
                "Dropping message received before handshake completed",
                message=dump_message(item.message),
            )
        else:
            raise StreamResetError("Remote SSE stream closed during handshake")

        initialized = JSONRPCNotification(jsonrpc="2.0", method="notifications/initialized")
        await write_stream.send(SessionMessage(JSONRPCMessage(initialized)))


def create_upstream_connection(url: str, settings: Settings) -> UpstreamConnection:
    """Build an upstream connection configured from settings."""
    return UpstreamConnection(
        url,
        client_name=settings.app_name,
        client_version=settings.app_version,
        http_timeout=settings.timeout / 1000,
        sse_read_timeout=settings.sse_read_timeout,
    )
