"""
Bridge Engine Interface
=======================

Shared capability interface for the three bridging engines.

An engine owns its process or connection lifecycle. ``start()`` brings it up,
``wait()`` resolves with the exit code the proxy should terminate with once the
engine has lost its reason to exist, and ``close()`` tears everything down.
Engines that serve downstream SSE sessions also expose the session table and
the message-post handling used by the HTTP routes.
"""

from abc import ABC, abstractmethod
from typing import Any, Coroutine, List, Optional
import asyncio

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.api.sse.session_table import SSESession, SessionTable
from mcp_superassistant_proxy.config.logging import get_logger
from mcp_superassistant_proxy.config.settings import Settings
from mcp_superassistant_proxy.core.errors import MissingSessionId, SessionNotFound
from mcp_superassistant_proxy.core.framing import parse_message

logger = get_logger(__name__)


class BridgeEngine(ABC):
    """Base class for bridge engines."""

    mode: str = ""
    serves_http: bool = False

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.logger = logger.bind(component="engine", mode=self.mode)
        self._tasks: List[asyncio.Task[Any]] = []
        self._exit: Optional[asyncio.Future[int]] = None
        self._closing = False

    @abstractmethod
    async def start(self) -> None:
        """Bring the engine up. Raising here is fatal for the proxy."""

    async def wait(self) -> int:
        """Wait until the engine terminates and return the proxy exit code."""
        return await self._exit_future()

    @property
    def finished(self) -> bool:
        return self._exit is not None and self._exit.done()

    def finish(self, exit_code: int, reason: str) -> None:
        """Terminate the engine with the given exit code. Only the first call counts."""
        future = self._exit_future()
        if future.done():
            return
        log = self.logger.info if exit_code == 0 else self.logger.error
        log("Bridge engine finished", exit_code=exit_code, reason=reason)
        future.set_result(exit_code)

    async def close(self) -> None:
        """Cancel background tasks."""
        self._closing = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self.logger.error("Background task failed during close", error=str(e))

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Run a background task; an unexpected crash is fatal for the engine."""
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_task_done)
        self._tasks.append(task)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
        if task.cancelled() or self._closing:
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                "Background task crashed",
                task=task.get_name(),
                error=str(error),
                exc_info=error,
            )
            self.finish(1, f"{task.get_name()} crashed")

    def _exit_future(self) -> "asyncio.Future[int]":
        if self._exit is None:
            self._exit = asyncio.get_running_loop().create_future()
        return self._exit


class SessionServingEngine(BridgeEngine):
    """Engine that serves downstream SSE sessions over HTTP."""

    serves_http = True

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.sessions = SessionTable(queue_size=settings.session_queue_size)

    def open_session(self, client_ip: str = "unknown", user_agent: Optional[str] = None) -> SSESession:
        """Allocate and register a session for a new SSE subscription."""
        self.logger.info(f"New SSE connection from {client_ip}")
        return self.sessions.create(client_ip=client_ip, user_agent=user_agent)

    def close_session(self, session_id: str, reason: str = "client_disconnected") -> None:
        self.sessions.unregister(session_id, reason=reason)

    async def handle_post(self, session_id: Optional[str], body: bytes) -> JSONRPCMessage:
        """
        Route one posted message to the session's destination.

        Raises:
            MissingSessionId: No session id was supplied
            SessionNotFound: The session is not live
            FrameParseError: The body is not one JSON-RPC message
        """
        if not session_id:
            raise MissingSessionId("Missing sessionId parameter")
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        message = parse_message(body)
        await self.forward(session, message)
        return message

    @abstractmethod
    async def forward(self, session: SSESession, message: JSONRPCMessage) -> None:
        """Deliver a message posted by a downstream session."""

    def broadcast(self, message: JSONRPCMessage) -> None:
        """Fan one message out to every downstream session."""
        failed = self.sessions.broadcast(message)
        if failed:
            self.logger.warning("Removed sessions after failed delivery", sessions=sorted(failed))

    async def close(self) -> None:
        self.sessions.close_all(reason="shutdown")
        await super().close()
