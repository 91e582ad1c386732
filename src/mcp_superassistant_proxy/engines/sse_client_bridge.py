"""
SSE → Stdio Bridge
==================

Exposes a remote SSE MCP server as a local stdio MCP server.

Requests read from stdin are re-issued upstream under proxy-allocated ids and
their outcome is written back to stdout under the caller's original id.
Upstream notifications are forwarded to stdout, upstream ``ping`` requests are
answered locally, and any other upstream request is rejected with
method-not-found. Closing stdin ends the proxy with code 0; losing the
upstream connection ends it with code 1.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol, Union
import asyncio
import itertools

from mcp.types import (
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
)

from mcp_superassistant_proxy.config.settings import MODE_SSE, Settings
from mcp_superassistant_proxy.core.errors import (
    METHOD_NOT_FOUND_CODE,
    REQUEST_TIMEOUT_CODE,
    ConnectTimeoutError,
    UpstreamNetworkError,
    UpstreamProtocolError,
    translate_upstream_error,
)
from mcp_superassistant_proxy.core.framing import dump_message
from mcp_superassistant_proxy.core.stdio import StdioChannel
from mcp_superassistant_proxy.core.upstream import UpstreamConnection, create_upstream_connection

from .base import BridgeEngine


class LocalChannel(Protocol):
    def messages(self) -> AsyncIterator[JSONRPCMessage]: ...

    async def write(self, message: JSONRPCMessage) -> None: ...

    async def aclose(self) -> None: ...


ConnectionFactory = Callable[[str, Settings], UpstreamConnection]


@dataclass
class PendingUpstreamRequest:
    """A local request awaiting its upstream reply."""

    local_id: RequestId
    method: str
    future: "asyncio.Future[Union[JSONRPCResponse, JSONRPCError]]"


class SseClientBridgeEngine(BridgeEngine):
    """Remote SSE server → local stdio server."""

    mode = MODE_SSE

    def __init__(
        self,
        settings: Settings,
        *,
        local: Optional[LocalChannel] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        super().__init__(settings)
        self.local: LocalChannel = local or StdioChannel()
        self.connection_factory = connection_factory or create_upstream_connection
        self.upstream: Optional[UpstreamConnection] = None
        self.pending: Dict[RequestId, PendingUpstreamRequest] = {}
        self._upstream_ids = itertools.count(1)

    async def start(self) -> None:
        """
        Connect upstream, then start serving stdin.

        Raises:
            UpstreamNetworkError: If the remote server cannot be reached
            UpstreamProtocolError: If the remote server rejects the handshake
        """
        url = self.settings.sse or ""
        self.logger.info(f"Connecting to SSE: {url}")
        upstream = self.connection_factory(url, self.settings)
        timeout = self.settings.timeout / 1000
        try:
            await asyncio.wait_for(upstream.open(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ConnectTimeoutError(f"Timed out connecting to {url} after {timeout}s") from e
        self.upstream = upstream
        self.logger.info(
            "SSE connected",
            server=upstream.server_info.get("name"),
            version=upstream.server_info.get("version"),
        )

        self.spawn(self._pump_upstream(), name="upstream-reader")
        self.spawn(self._serve_local(), name="stdin-reader")
        self.logger.info("Stdio server listening")

    async def close(self) -> None:
        await super().close()
        for pending in self.pending.values():
            pending.future.cancel()
        self.pending.clear()
        if self.upstream is not None:
            await self.upstream.close()
        await self.local.aclose()

    async def _serve_local(self) -> None:
        async for message in self.local.messages():
            root = message.root
            if isinstance(root, JSONRPCRequest):
                self.spawn(self._handle_request(root), name=f"request-{root.id}")
                continue
            # Responses and notifications from the local caller go straight back out.
            self.logger.info(f"SSE → Stdio: {dump_message(message)}")
            await self.local.write(message)

        self.logger.info("Stdin closed")
        self.finish(0, "stdin closed")

    async def _handle_request(self, request: JSONRPCRequest) -> None:
        self.logger.info(f"Stdio → SSE: {dump_message(JSONRPCMessage(request))}")
        assert self.upstream is not None

        upstream_id = next(self._upstream_ids)
        future: "asyncio.Future[Union[JSONRPCResponse, JSONRPCError]]" = (
            asyncio.get_running_loop().create_future()
        )
        self.pending[upstream_id] = PendingUpstreamRequest(
            local_id=request.id, method=request.method, future=future
        )

        result: Optional[Dict[str, Any]] = None
        error: Optional[Dict[str, Any]] = None
        try:
            outbound = JSONRPCRequest(
                jsonrpc="2.0", id=upstream_id, method=request.method, params=request.params
            )
            await self.upstream.send(JSONRPCMessage(outbound))
            reply = await asyncio.wait_for(future, timeout=self.settings.request_timeout / 1000)
        except asyncio.TimeoutError:
            error = translate_upstream_error(REQUEST_TIMEOUT_CODE, "Request timed out")
        except UpstreamProtocolError as e:
            error = translate_upstream_error(e.code, e.message)
        except UpstreamNetworkError as e:
            error = translate_upstream_error(None, str(e))
        else:
            if isinstance(reply, JSONRPCError):
                error = translate_upstream_error(reply.error.code, reply.error.message)
            elif isinstance(reply.result.get("error"), dict):
                inner = reply.result["error"]
                error = translate_upstream_error(inner.get("code"), inner.get("message"))
            else:
                result = reply.result
        finally:
            self.pending.pop(upstream_id, None)

        if error is not None:
            self.logger.error(
                f"Request failed: {request.method}", code=error["code"], error=error["message"]
            )
            response = JSONRPCMessage(
                JSONRPCError(jsonrpc="2.0", id=request.id, error=ErrorData(**error))
            )
        else:
            response = JSONRPCMessage(
                JSONRPCResponse(jsonrpc="2.0", id=request.id, result=result or {})
            )
        self.logger.info(f"Response: {dump_message(response)}")
        await self.local.write(response)

    async def _pump_upstream(self) -> None:
        assert self.upstream is not None
        while True:
            message = await self.upstream.inbound.get()
            if message is None:
                break
            root = message.root
            if isinstance(root, (JSONRPCResponse, JSONRPCError)):
                self._resolve(root)
            elif isinstance(root, JSONRPCRequest):
                await self._answer_upstream_request(root)
            elif isinstance(root, JSONRPCNotification):
                self.logger.info(f"SSE → Stdio: {dump_message(message)}")
                await self.local.write(message)

        error = self.upstream.close_error
        self.logger.error("SSE connection closed", error=str(error) if error else None)
        self._fail_pending(error or UpstreamNetworkError("Upstream connection closed"))
        self.finish(1, "upstream connection closed")

    def _resolve(self, reply: Union[JSONRPCResponse, JSONRPCError]) -> None:
        pending = self.pending.get(reply.id)
        if pending is None:
            self.logger.warning("Dropping upstream reply with unknown id", id=reply.id)
            return
        if not pending.future.done():
            pending.future.set_result(reply)

    async def _answer_upstream_request(self, request: JSONRPCRequest) -> None:
        assert self.upstream is not None
        if request.method == "ping":
            reply = JSONRPCMessage(JSONRPCResponse(jsonrpc="2.0", id=request.id, result={}))
        else:
            self.logger.warning(f"Rejecting upstream request: {request.method}")
            reply = JSONRPCMessage(
                JSONRPCError(
                    jsonrpc="2.0",
                    id=request.id,
                    error=ErrorData(
                        code=METHOD_NOT_FOUND_CODE, message=f"Method not found: {request.method}"
                    ),
                )
            )
        try:
            await self.upstream.send(reply)
        except UpstreamNetworkError as e:
            self.logger.error("Failed to answer upstream request", error=str(e))

    def _fail_pending(self, error: BaseException) -> None:
        for pending in list(self.pending.values()):
            if not pending.future.done():
                pending.future.set_exception(error)
