"""
Stdio → SSE Bridge Tests
========================

Drives the stdio bridge against a real child process (the echo MCP server
fixture): fan-out of child output, forwarding of posted messages, and exit
code propagation.
"""

import asyncio
import json
import sys

import pytest

from mcp_superassistant_proxy.core.errors import ChildProcessExit, SessionNotFound, SpawnFailure
from mcp_superassistant_proxy.engines.stdio_bridge import StdioBridgeEngine

from tests.conftest import echo_command


async def next_message(session, timeout: float = 5.0):
    """Next JSON-RPC payload queued for a session."""
    event = await asyncio.wait_for(session.queue.get(), timeout)
    assert event is not None, "session closed"
    data = [line[len("data: ") :] for line in event.splitlines() if line.startswith("data: ")]
    return json.loads("\n".join(data))


def post(engine, session, payload):
    return engine.handle_post(session.session_id, json.dumps(payload).encode())


@pytest.mark.integration
@pytest.mark.sse
class TestStdioBridge:
    """Test the stdio bridge engine."""

    @pytest.mark.asyncio
    async def test_child_output_reaches_every_session(self, stdio_settings):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        try:
            first = engine.open_session()
            second = engine.open_session()

            await post(engine, first, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})

            expected = {
                "jsonrpc": "2.0",
                "id": 1,
                "result": {"method": "tools/list", "params": {}},
            }
            assert await next_message(first) == expected
            assert await next_message(second) == expected
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_output_order_preserved(self, stdio_settings):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        try:
            session = engine.open_session()
            await post(engine, session, {"jsonrpc": "2.0", "id": 1, "method": "notify"})
            await post(engine, session, {"jsonrpc": "2.0", "id": 2, "method": "second"})

            received = [await next_message(session) for _ in range(3)]
            assert received[0]["method"] == "notifications/message"
            assert received[1]["id"] == 1
            assert received[2]["id"] == 2
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_non_json_output_is_not_broadcast(self, stdio_settings):
        engine = StdioBridgeEngine(stdio_settings)
        session = engine.open_session()
        await engine.start()
        try:
            await post(engine, session, {"jsonrpc": "2.0", "id": "a", "method": "ping"})
            # The banner line written before the reply is dropped
            message = await next_message(session)
            assert message["id"] == "a"
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_post_to_unknown_session_rejected(self, stdio_settings):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        try:
            with pytest.raises(SessionNotFound):
                await engine.handle_post("missing", b'{"jsonrpc":"2.0","method":"x"}')
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_child_exit_code_is_proxy_exit_code(self, stdio_settings):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        try:
            session = engine.open_session()
            await post(engine, session, {"jsonrpc": "2.0", "id": 9, "method": "exit", "params": {"code": 3}})
            assert await asyncio.wait_for(engine.wait(), 5.0) == 3

            with pytest.raises(ChildProcessExit) as exc_info:
                await post(engine, session, {"jsonrpc": "2.0", "id": 10, "method": "late"})
            assert exc_info.value.exit_code == 3
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_signal_death_exits_with_1(self, make_settings):
        command = f"exec {sys.executable} -c 'import os, signal; os.kill(os.getpid(), signal.SIGTERM)'"
        engine = StdioBridgeEngine(make_settings(stdio=command))
        await engine.start()
        try:
            assert await asyncio.wait_for(engine.wait(), 5.0) == 1
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_missing_command_exits_with_shell_status(self, make_settings):
        engine = StdioBridgeEngine(make_settings(stdio="definitely-not-a-real-command-xyz"))
        await engine.start()
        try:
            assert await asyncio.wait_for(engine.wait(), 5.0) == 127
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_spawn_failure_raised(self, stdio_settings, monkeypatch):
        async def refuse(*args, **kwargs):
            raise OSError("no processes left")

        monkeypatch.setattr(asyncio, "create_subprocess_shell", refuse)
        engine = StdioBridgeEngine(stdio_settings)
        with pytest.raises(SpawnFailure):
            await engine.start()
        await engine.close()

    @pytest.mark.asyncio
    async def test_close_terminates_child(self, stdio_settings):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        session = engine.open_session()
        await engine.close()

        assert engine.child.returncode is not None
        assert engine.child._proc.stdin.is_closing()
        assert session.is_closed
        assert len(engine.sessions) == 0

    @pytest.mark.asyncio
    async def test_child_stderr_is_logged(self, stdio_settings, caplog):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        try:
            session = engine.open_session()
            await post(engine, session, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
            await next_message(session)
            for _ in range(100):
                if "echo server got tools/list" in caplog.text:
                    break
                await asyncio.sleep(0.02)
            assert "Child stderr: echo server got tools/list" in caplog.text
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_posted_message_logged_once(self, stdio_settings, caplog):
        engine = StdioBridgeEngine(stdio_settings)
        await engine.start()
        try:
            session = engine.open_session()
            await post(engine, session, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
            await next_message(session)

            assert caplog.text.count("SSE → Child") == 1
            assert "SSE → upstream" not in caplog.text
        finally:
            await engine.close()
