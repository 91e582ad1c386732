"""
SSE Routes
==========

FastAPI routes for the downstream side of the SSE binding.

``GET <ssePath>`` opens an event stream backed by a new session and announces
the message endpoint for it; ``POST <messagePath>?sessionId=<id>`` hands one
JSON-RPC message to the engine serving that session.
"""

from typing import AsyncGenerator, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from mcp_superassistant_proxy.config.logging import get_logger
from mcp_superassistant_proxy.config.settings import Settings
from mcp_superassistant_proxy.core.errors import (
    FrameParseError,
    MissingSessionId,
    SessionNotFound,
)
from mcp_superassistant_proxy.engines.base import SessionServingEngine

from ..sse.events import create_endpoint_event

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable Nginx buffering
}


def build_sse_router(engine: SessionServingEngine, settings: Settings) -> APIRouter:
    """Subscribe and message routes bound to one engine."""
    router = APIRouter(tags=["SSE"])

    @router.get(settings.sse_path)
    async def connect_sse(request: Request) -> StreamingResponse:
        """
        Establish SSE connection.

        Args:
            request: FastAPI request

        Returns:
            Streaming response whose first event is the session's message endpoint
        """
        client_ip = request.client.host if request.client else "unknown"
        session = engine.open_session(
            client_ip=client_ip, user_agent=request.headers.get("user-agent")
        )
        session_id = session.session_id
        endpoint_event = create_endpoint_event(settings.endpoint_url, session_id)

        async def event_generator() -> AsyncGenerator[str, None]:
            """Generate SSE events."""
            try:
                yield endpoint_event
                async for event in session.events(settings.sse_heartbeat_interval):
                    yield event
            finally:
                logger.info(f"SSE connection closed (session {session_id})", session_id=session_id)
                engine.close_session(session_id, reason="client_disconnected")

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, "X-Session-ID": session_id},
        )

    @router.post(settings.message_path, response_class=PlainTextResponse)
    async def post_message(
        request: Request,
        session_id: Optional[str] = Query(None, alias="sessionId"),
    ) -> PlainTextResponse:
        """
        Forward one posted JSON-RPC message.

        Returns:
            ``Accepted`` once the message has been handed to its destination
        """
        body = await request.body()
        try:
            await engine.handle_post(session_id, body)
        except MissingSessionId as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SessionNotFound as e:
            logger.warning(str(e), session_id=session_id)
            raise HTTPException(status_code=503, detail=str(e))
        except FrameParseError as e:
            logger.error("Rejected invalid message", session_id=session_id, reason=e.reason)
            raise HTTPException(status_code=400, detail=f"Invalid message: {e.reason}")
        except Exception as e:
            logger.error(
                "Failed to forward message", session_id=session_id, error=str(e), exc_info=True
            )
            raise HTTPException(status_code=500, detail=f"Failed to forward message: {e}")
        return PlainTextResponse("Accepted")

    return router
