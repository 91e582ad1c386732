"""
Server-Sent Events (SSE) Infrastructure
======================================

Downstream side of the MCP SSE binding.

Components:
- Session Table: Registry of live SSE sessions and their outbound queues
- Event System: Event types and SSE protocol formatting
- Models: Pydantic models for session metadata
"""

from .session_table import SSESession, SessionTable
from .events import (
    SSEEventType,
    format_sse_event,
    format_sse_comment,
    create_endpoint_event,
    create_message_event,
)
from .models import SSESessionMetadata, SSESessionStatus

__all__ = [
    "SSESession",
    "SessionTable",
    "SSEEventType",
    "format_sse_event",
    "format_sse_comment",
    "create_endpoint_event",
    "create_message_event",
    "SSESessionMetadata",
    "SSESessionStatus",
]
