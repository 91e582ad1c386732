"""
SSE Events
==========

Server-Sent Events type definitions and formatting functions.
Every JSON-RPC message travels as one ``message`` event; the stream opens with
an ``endpoint`` event telling the client where to POST its messages.
"""

from typing import List
from enum import Enum
from urllib.parse import quote

from mcp.types import JSONRPCMessage

from mcp_superassistant_proxy.core.framing import dump_message


class SSEEventType(str, Enum):
    """Server-Sent Events event types used by the MCP SSE binding."""

    ENDPOINT = "endpoint"
    MESSAGE = "message"


def format_sse_event(event_type: str, data: str) -> str:
    """
    Format data for Server-Sent Events protocol.

    Args:
        event_type: Event type identifier
        data: Event payload; multi-line payloads become multiple data fields

    Returns:
        Formatted SSE message string
    """
    lines: List[str] = [f"event: {event_type}"]
    for chunk in data.splitlines() or [""]:
        lines.append(f"data: {chunk}")

    # SSE protocol requires double newline at end
    lines.append("")
    lines.append("")

    return "\n".join(lines)


def format_sse_comment(text: str = "ping") -> str:
    """Comment line, ignored by clients; keeps idle connections open."""
    return f": {text}\n\n"


def build_endpoint_url(endpoint: str, session_id: str) -> str:
    """Message URL a session's client must POST to."""
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}sessionId={quote(session_id, safe='')}"


def create_endpoint_event(endpoint: str, session_id: str) -> str:
    """First event of every stream: where to POST messages."""
    return format_sse_event(SSEEventType.ENDPOINT.value, build_endpoint_url(endpoint, session_id))


def create_message_event(message: JSONRPCMessage) -> str:
    """One JSON-RPC message as one SSE event."""
    return format_sse_event(SSEEventType.MESSAGE.value, dump_message(message))
