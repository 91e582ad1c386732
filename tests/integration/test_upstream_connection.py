"""
Upstream Connection Tests
=========================

The client side of the SSE binding, with the SDK's ``sse_client`` replaced by
in-memory streams wired to a scripted MCP server.
"""

import asyncio
from contextlib import asynccontextmanager

import anyio
import httpx
import pytest
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCError, JSONRPCMessage, JSONRPCRequest, JSONRPCResponse, ErrorData

from mcp_superassistant_proxy.core.errors import (
    ConnectionRefusedUpstreamError,
    StreamResetError,
    UpstreamProtocolError,
)
from mcp_superassistant_proxy.core.upstream import UpstreamConnection

from tests.fixtures.fake_upstream import as_dict, make_message


class ScriptedServer:
    """Remote MCP server answering the capability handshake."""

    def __init__(self, reject: bool = False, silent: bool = False):
        self.reject = reject
        self.silent = silent
        self.received = []
        self.to_client = None

    @asynccontextmanager
    async def client(self, url, headers=None, timeout=5, sse_read_timeout=300):
        to_client_send, to_client_recv = anyio.create_memory_object_stream(16)
        from_client_send, from_client_recv = anyio.create_memory_object_stream(16)
        self.to_client = to_client_send
        async with anyio.create_task_group() as tg:
            tg.start_soon(self._serve, from_client_recv)
            try:
                yield to_client_recv, from_client_send
            finally:
                tg.cancel_scope.cancel()

    async def _serve(self, stream):
        async for item in stream:
            message = item.message.root
            self.received.append(message)
            if not isinstance(message, JSONRPCRequest) or message.method != "initialize":
                continue
            if self.silent:
                continue
            if self.reject:
                reply = JSONRPCError(
                    jsonrpc="2.0",
                    id=message.id,
                    error=ErrorData(code=-32602, message="Unsupported protocol version"),
                )
            else:
                reply = JSONRPCResponse(
                    jsonrpc="2.0",
                    id=message.id,
                    result={
                        "protocolVersion": "2024-11-05",
                        "capabilities": {"tools": {}},
                        "serverInfo": {"name": "scripted", "version": "2.0"},
                    },
                )
            await self.to_client.send(SessionMessage(JSONRPCMessage(reply)))

    async def push(self, payload):
        await self.to_client.send(SessionMessage(make_message(payload)))


def make_connection():
    return UpstreamConnection(
        "http://upstream.test/sse", client_name="test-proxy", client_version="0.0.1"
    )


@pytest.mark.integration
@pytest.mark.sse
class TestUpstreamConnection:
    """Test UpstreamConnection against a scripted server."""

    @pytest.mark.asyncio
    async def test_open_completes_handshake(self, monkeypatch):
        server = ScriptedServer()
        monkeypatch.setattr("mcp_superassistant_proxy.core.upstream.sse_client", server.client)
        connection = make_connection()

        await connection.open()
        try:
            assert connection.is_open
            assert connection.server_info == {"name": "scripted", "version": "2.0"}
            assert connection.capabilities == {"tools": {}}
            assert connection.protocol_version == "2024-11-05"

            initialize, initialized = server.received
            assert initialize.method == "initialize"
            assert initialize.id == f"test-proxy-init-{connection.connection_id}"
            assert initialize.params["clientInfo"] == {"name": "test-proxy", "version": "0.0.1"}
            assert initialized.method == "notifications/initialized"
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_messages_flow_both_ways(self, monkeypatch):
        server = ScriptedServer()
        monkeypatch.setattr("mcp_superassistant_proxy.core.upstream.sse_client", server.client)
        connection = make_connection()
        await connection.open()
        try:
            await server.push({"jsonrpc": "2.0", "method": "notifications/message"})
            received = await asyncio.wait_for(connection.inbound.get(), 1.0)
            assert as_dict(received) == {"jsonrpc": "2.0", "method": "notifications/message"}

            await connection.send(make_message({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}))
            for _ in range(100):
                if len(server.received) == 3:
                    break
                await asyncio.sleep(0.01)
            assert server.received[-1].method == "tools/list"
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_remote_close_ends_inbound_with_sentinel(self, monkeypatch):
        server = ScriptedServer()
        monkeypatch.setattr("mcp_superassistant_proxy.core.upstream.sse_client", server.client)
        connection = make_connection()
        await connection.open()

        await server.to_client.aclose()

        assert await asyncio.wait_for(connection.inbound.get(), 1.0) is None
        assert isinstance(connection.close_error, StreamResetError)
        assert not connection.is_open
        with pytest.raises(StreamResetError):
            await connection.send(make_message({"jsonrpc": "2.0", "method": "late"}))
        await connection.close()

    @pytest.mark.asyncio
    async def test_rejected_handshake_raises_protocol_error(self, monkeypatch):
        server = ScriptedServer(reject=True)
        monkeypatch.setattr("mcp_superassistant_proxy.core.upstream.sse_client", server.client)
        connection = make_connection()

        with pytest.raises(UpstreamProtocolError) as exc_info:
            await connection.open()
        assert exc_info.value.code == -32602
        assert connection.inbound.empty()

    @pytest.mark.asyncio
    async def test_refused_connection_is_classified(self, monkeypatch):
        @asynccontextmanager
        async def refusing_client(*args, **kwargs):
            raise httpx.ConnectError("[Errno 111] Connection refused")
            yield

        monkeypatch.setattr("mcp_superassistant_proxy.core.upstream.sse_client", refusing_client)
        connection = make_connection()

        with pytest.raises(ConnectionRefusedUpstreamError):
            await connection.open()

    @pytest.mark.asyncio
    async def test_cancelled_open_tears_down_connection(self, monkeypatch):
        server = ScriptedServer(silent=True)
        monkeypatch.setattr("mcp_superassistant_proxy.core.upstream.sse_client", server.client)
        connection = make_connection()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(connection.open(), 0.1)

        assert connection._task.done()
        assert not connection.is_open
