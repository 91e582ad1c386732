"""
SSE → SSE Relay
===============

Relays between one upstream SSE MCP server and many downstream SSE sessions.

The upstream connection is owned by a ReconnectionController and losing it is
never fatal: downstream sessions stay up while reconnection continues in the
background. Messages posted while the upstream is not connected are dropped
with a diagnostic (nothing is buffered or replayed) and an immediate retry is
requested if none is scheduled.
"""

from typing import Callable, Optional

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.api.sse.session_table import SSESession
from mcp_superassistant_proxy.config.settings import MODE_SSE_TO_SSE, Settings
from mcp_superassistant_proxy.core.errors import UpstreamNetworkError
from mcp_superassistant_proxy.core.framing import dump_message
from mcp_superassistant_proxy.core.reconnect import (
    ReconnectPhase,
    ReconnectionController,
    ReconnectionState,
)
from mcp_superassistant_proxy.core.upstream import UpstreamConnection, create_upstream_connection

from .base import SessionServingEngine

ConnectionFactory = Callable[[str, Settings], UpstreamConnection]


class SseRelayEngine(SessionServingEngine):
    """Remote SSE server → SSE server for many local clients."""

    mode = MODE_SSE_TO_SSE

    def __init__(
        self,
        settings: Settings,
        *,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        super().__init__(settings)
        self.url = settings.ssetosse or ""
        self.connection_factory = connection_factory or create_upstream_connection
        self.upstream: Optional[UpstreamConnection] = None
        self.controller = ReconnectionController(
            self._connect,
            base_delay_ms=settings.reconnect_delay,
            growth_factor=settings.reconnect_growth_factor,
            cap_delay_ms=settings.reconnect_max_delay,
            max_attempts=settings.max_reconnect_attempts,
            connect_timeout_ms=settings.timeout,
            on_state_change=self._on_state_change,
            name=self.url,
        )

    @property
    def is_connected(self) -> bool:
        return self.controller.is_connected and self.upstream is not None

    async def start(self) -> None:
        """Start connecting upstream in the background; downstream serving does not wait."""
        self.logger.info(f"Connecting to remote SSE: {self.url}")
        self.controller.start()

    async def forward(self, session: SSESession, message: JSONRPCMessage) -> None:
        upstream = self.upstream
        if upstream is None or not self.controller.is_connected:
            self.logger.warning(
                "Remote SSE not connected, dropping message",
                session_id=session.session_id,
                message=dump_message(message),
                phase=self.controller.phase.value,
            )
            if self.controller.request_retry():
                self.logger.info("Attempting to reconnect to remote SSE")
            return

        self.logger.info(
            f"SSE → remote SSE (session {session.session_id}): {dump_message(message)}",
            session_id=session.session_id,
        )
        try:
            await upstream.send(message)
        except UpstreamNetworkError as e:
            self.logger.error(
                "Failed to forward message to remote SSE",
                session_id=session.session_id,
                error=str(e),
                reason=e.reason,
            )

    async def close(self) -> None:
        await self.controller.stop()
        await super().close()
        if self.upstream is not None:
            await self.upstream.close()
            self.upstream = None

    async def _connect(self) -> None:
        connection = self.connection_factory(self.url, self.settings)
        await connection.open()
        self.upstream = connection

    async def _pump_upstream(self, connection: UpstreamConnection) -> None:
        while True:
            message = await connection.inbound.get()
            if message is None:
                break
            self.logger.info(f"Received message from remote SSE: {dump_message(message)}")
            self.broadcast(message)

        if self.upstream is connection:
            self.upstream = None
        await connection.close()
        if not self._closing:
            self.controller.connection_lost(connection.close_error)

    def _on_state_change(self, state: ReconnectionState) -> None:
        self.logger.debug(
            "Upstream state changed",
            phase=state.phase.value,
            attempt=state.attempt_count,
            delay_ms=state.next_delay_ms,
        )
        # Pumping starts only once connected, so a drop is always seen as connection_lost
        if state.phase == ReconnectPhase.CONNECTED and self.upstream is not None:
            connection = self.upstream
            self.spawn(self._pump_upstream(connection), name=f"upstream-{connection.connection_id}")
