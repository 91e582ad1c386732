"""
Stdio → SSE Bridge
==================

Exposes a locally spawned stdio MCP server as an SSE-reachable server.

Every message the child writes to stdout is broadcast to all downstream
sessions; every message a session posts is written to the child's stdin.
The child's exit ends the proxy with the child's exit code.
"""

from typing import Optional

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.api.sse.session_table import SSESession
from mcp_superassistant_proxy.config.settings import MODE_STDIO, Settings
from mcp_superassistant_proxy.core.child_process import ChildProcess
from mcp_superassistant_proxy.core.framing import dump_message

from .base import SessionServingEngine


class StdioBridgeEngine(SessionServingEngine):
    """Local process → SSE server."""

    mode = MODE_STDIO

    def __init__(self, settings: Settings, child: Optional[ChildProcess] = None) -> None:
        super().__init__(settings)
        self.child = child or ChildProcess(settings.stdio or "")

    async def start(self) -> None:
        """
        Spawn the child and start pumping its output.

        Raises:
            SpawnFailure: If the child cannot be spawned
        """
        await self.child.start()
        self.spawn(self._pump_stdout(), name="child-stdout")
        self.spawn(self.child.relay_stderr(), name="child-stderr")

    async def forward(self, session: SSESession, message: JSONRPCMessage) -> None:
        self.logger.info(
            f"SSE → Child (session {session.session_id}): {dump_message(message)}",
            session_id=session.session_id,
        )
        await self.child.write(message)

    async def _pump_stdout(self) -> None:
        async for message in self.child.messages():
            self.logger.info(f"Child → SSE: {dump_message(message)}")
            self.broadcast(message)

        exit_code = await self.child.wait()
        self.logger.error(f"Child exited: code={self.child.returncode}")
        self.finish(exit_code, "child exited")

    async def close(self) -> None:
        await super().close()
        await self.child.terminate()
