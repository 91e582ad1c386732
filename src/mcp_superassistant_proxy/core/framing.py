"""
Message Framing
===============

Newline-delimited JSON-RPC framing for the stdio binding.

Bytes are buffered across ``feed`` calls and only complete lines are parsed,
so the messages recovered from a stream do not depend on how it was chunked.
A line that is not a JSON-RPC message yields a FrameParseError event and
framing carries on with the next line.
"""

from typing import List, Union

from mcp.types import JSONRPCMessage
from pydantic import ValidationError

from .errors import FrameParseError

FrameEvent = Union[JSONRPCMessage, FrameParseError]

DELIMITER = b"\n"


def parse_message(raw: Union[bytes, str]) -> JSONRPCMessage:
    """
    Parse one JSON-RPC envelope.

    Raises:
        FrameParseError: If the payload is not JSON or not a JSON-RPC message
    """
    try:
        return JSONRPCMessage.model_validate_json(raw)
    except ValidationError as e:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        reason = e.errors()[0]["msg"] if e.errors() else str(e)
        raise FrameParseError(line, reason) from e


def serialize_message(message: JSONRPCMessage) -> bytes:
    """Serialize a message into its newline-terminated stdio frame."""
    body = message.model_dump_json(by_alias=True, exclude_none=True)
    return body.encode("utf-8") + DELIMITER


def dump_message(message: JSONRPCMessage) -> str:
    """Compact JSON for logs and SSE event data."""
    return message.model_dump_json(by_alias=True, exclude_none=True)


class MessageFramer:
    """Splits a byte stream into JSON-RPC messages, one per line."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes that do not yet form a complete line."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[FrameEvent]:
        """
        Feed a chunk of the stream.

        Args:
            data: Next chunk, split at an arbitrary boundary

        Returns:
            Parsed messages and parse errors for every line completed by this chunk
        """
        self._buffer.extend(data)
        events: List[FrameEvent] = []
        while True:
            index = self._buffer.find(DELIMITER)
            if index < 0:
                break
            line = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[FrameEvent]:
        """Parse whatever is left at end of stream as a final line."""
        line = bytes(self._buffer)
        self._buffer.clear()
        event = self._parse_line(line)
        return [event] if event is not None else []

    def serialize(self, message: JSONRPCMessage) -> bytes:
        return serialize_message(message)

    def _parse_line(self, line: bytes):
        if line.endswith(b"\r"):
            line = line[:-1]
        if not line.strip():
            return None
        try:
            return parse_message(line)
        except FrameParseError as e:
            return e
