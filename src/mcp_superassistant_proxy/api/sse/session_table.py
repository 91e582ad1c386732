"""
SSE Session Table
=================

Registry of live downstream SSE sessions.

Each session owns a bounded outbound queue drained by its HTTP stream. Every
mutation happens synchronously on the event loop, and ``broadcast`` iterates a
snapshot of the table, so a session registered or removed mid-broadcast either
fully takes part or is fully absent.
"""

from typing import AsyncIterator, Dict, List, Optional, Set
import asyncio
import uuid

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.config.logging import get_logger
from mcp_superassistant_proxy.core.errors import SessionClosedError

from .events import create_message_event, format_sse_comment
from .models import SSESessionMetadata, SSESessionStatus

logger = get_logger(__name__)


class SSESession:
    """One downstream SSE subscriber."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        queue_size: int = 100,
        client_ip: str = "unknown",
        user_agent: Optional[str] = None,
    ) -> None:
        self.metadata = SSESessionMetadata(
            session_id=session_id or str(uuid.uuid4()),
            client_ip=client_ip,
            user_agent=user_agent,
        )
        # None is the signal to stop
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=queue_size)

    @property
    def session_id(self) -> str:
        return self.metadata.session_id

    @property
    def is_closed(self) -> bool:
        return self.metadata.status == SSESessionStatus.CLOSED

    def send(self, message: JSONRPCMessage) -> None:
        """
        Queue one message for this client without waiting.

        Raises:
            SessionClosedError: If the session is closed or its buffer is full
        """
        if self.is_closed:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        try:
            self.queue.put_nowait(create_message_event(message))
        except asyncio.QueueFull as e:
            raise SessionClosedError(
                f"Session {self.session_id} is not draining its buffer"
            ) from e
        self.metadata.messages_sent += 1

    def close(self, reason: str = "closed") -> None:
        """Mark the session closed and end its stream."""
        if self.is_closed:
            return
        self.metadata.status = SSESessionStatus.CLOSED
        self.metadata.closed_reason = reason
        # Undelivered events are discarded so the stop signal always fits
        while True:
            try:
                self.queue.put_nowait(None)
                break
            except asyncio.QueueFull:
                self.queue.get_nowait()

    async def events(self, heartbeat_interval: float = 0) -> AsyncIterator[str]:
        """
        Yield formatted SSE events until the session is closed.

        Args:
            heartbeat_interval: Seconds of idleness before a comment heartbeat, 0 disables
        """
        timeout = heartbeat_interval if heartbeat_interval > 0 else None
        while True:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout)
            except asyncio.TimeoutError:
                yield format_sse_comment("ping")
                continue
            if event is None:
                break
            yield event


class SessionTable:
    """
    Live downstream sessions keyed by session id.

    A failed delivery removes the session before anything else can be sent to
    it; sending to a removed session is a no-op.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._sessions: Dict[str, SSESession] = {}
        self.logger = logger.bind(component="session_table")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> Optional[SSESession]:
        return self._sessions.get(session_id)

    def create(self, client_ip: str = "unknown", user_agent: Optional[str] = None) -> SSESession:
        """Allocate and register a new session."""
        session = SSESession(queue_size=self.queue_size, client_ip=client_ip, user_agent=user_agent)
        self.register(session)
        return session

    def register(self, session: SSESession) -> None:
        """
        Add a session to the table.

        Raises:
            ValueError: If a live session already uses this id
        """
        if session.session_id in self._sessions:
            raise ValueError(f"Session {session.session_id} is already registered")
        self._sessions[session.session_id] = session
        self.logger.info(
            "SSE session registered",
            session_id=session.session_id,
            client_ip=session.metadata.client_ip,
            total_sessions=len(self._sessions),
        )

    def unregister(self, session_id: str, reason: str = "closed") -> Optional[SSESession]:
        """Remove a session and end its stream. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.close(reason)
        self.logger.info(
            "SSE session removed",
            session_id=session_id,
            reason=reason,
            total_sessions=len(self._sessions),
        )
        return session

    def send_to(self, session_id: str, message: JSONRPCMessage) -> bool:
        """
        Deliver a message to one session.

        Returns:
            False if the session is not registered or delivery failed (the
            session is removed in that case)
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        try:
            session.send(message)
        except Exception as e:
            self.logger.error(
                f"Failed to send to session {session_id}", session_id=session_id, error=str(e)
            )
            self.unregister(session_id, reason="delivery_failed")
            return False
        return True

    def broadcast(self, message: JSONRPCMessage) -> Set[str]:
        """
        Deliver a message to every session registered when the call starts.

        Returns:
            Ids of the sessions whose delivery failed; each has been removed
        """
        failed: Set[str] = set()
        for session in list(self._sessions.values()):
            try:
                session.send(message)
            except Exception as e:
                self.logger.error(
                    f"Failed to send to session {session.session_id}",
                    session_id=session.session_id,
                    error=str(e),
                )
                self.unregister(session.session_id, reason="delivery_failed")
                failed.add(session.session_id)
        return failed

    def close_all(self, reason: str = "shutdown") -> None:
        """End every stream and empty the table."""
        for session_id in list(self._sessions):
            self.unregister(session_id, reason=reason)
