"""
Proxy Errors
============

Error taxonomy shared by the bridge engines, plus the helpers that classify raw
network failures and translate upstream JSON-RPC errors for local callers.
"""

from typing import Any, Optional
import asyncio
import socket

import httpx


DEFAULT_ERROR_CODE = -32000
DEFAULT_ERROR_MESSAGE = "Internal error"
REQUEST_TIMEOUT_CODE = -32001
METHOD_NOT_FOUND_CODE = -32601


class ProxyError(Exception):
    """Base class for proxy errors."""

    pass


class SpawnFailure(ProxyError):
    """Exception raised when the child process cannot be started."""

    pass


class ChildProcessExit(ProxyError):
    """The bridged child process exited."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"Child process exited with code {exit_code}")
        self.exit_code = exit_code


class FrameParseError(ProxyError):
    """A framed line was not a JSON-RPC message."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"Invalid JSON-RPC message: {reason}")
        self.line = line
        self.reason = reason


class MissingSessionId(ProxyError):
    """A posted message did not name its session."""

    pass


class SessionNotFound(ProxyError):
    """A posted message named a session that is not live."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"No active SSE connection for session {session_id}")
        self.session_id = session_id


class SessionClosedError(ProxyError):
    """Delivery to a session failed because it is closed or not draining."""

    pass


class UpstreamNetworkError(ProxyError):
    """The upstream SSE connection failed at the network level."""

    reason = "network"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class DnsNotFoundError(UpstreamNetworkError):
    reason = "dns_not_found"


class ConnectionRefusedUpstreamError(UpstreamNetworkError):
    reason = "connection_refused"


class ConnectTimeoutError(UpstreamNetworkError):
    reason = "connect_timeout"


class StreamResetError(UpstreamNetworkError):
    reason = "stream_reset"


class UpstreamProtocolError(ProxyError):
    """The upstream server answered with a JSON-RPC error."""

    def __init__(self, code: Optional[int], message: Optional[str], data: Any = None) -> None:
        super().__init__(message or DEFAULT_ERROR_MESSAGE)
        self.code = code
        self.message = message
        self.data = data


def unwrap_exception(exc: BaseException) -> BaseException:
    """Dig the first real exception out of (nested) exception groups."""
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def _cause_chain(exc: BaseException):
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            pending.extend(current.exceptions)
        nested = current.__cause__ or current.__context__
        if nested is not None:
            pending.append(nested)


def classify_upstream_error(exc: BaseException) -> UpstreamNetworkError:
    """
    Map a raw connection failure onto the upstream error taxonomy.

    Args:
        exc: Exception raised while connecting to or reading from upstream

    Returns:
        The matching UpstreamNetworkError subclass instance
    """
    exc = unwrap_exception(exc)
    if isinstance(exc, UpstreamNetworkError):
        return exc

    for link in _cause_chain(exc):
        if isinstance(link, socket.gaierror):
            return DnsNotFoundError(f"DNS resolution failed: {link}", cause=exc)
        if isinstance(link, ConnectionRefusedError):
            return ConnectionRefusedUpstreamError(f"Connection refused: {link}", cause=exc)
        if isinstance(
            link,
            (httpx.ReadTimeout, httpx.ReadError, httpx.RemoteProtocolError, ConnectionResetError),
        ):
            return StreamResetError(f"Stream reset: {link}", cause=exc)
        if isinstance(link, (httpx.ConnectTimeout, asyncio.TimeoutError, TimeoutError)):
            return ConnectTimeoutError(f"Connection timed out: {link}", cause=exc)

    text = str(exc)
    if isinstance(exc, httpx.ConnectError):
        lowered = text.lower()
        if "name or service not known" in lowered or "nodename nor servname" in lowered:
            return DnsNotFoundError(f"DNS resolution failed: {text}", cause=exc)
        if "refused" in lowered:
            return ConnectionRefusedUpstreamError(f"Connection refused: {text}", cause=exc)
    if isinstance(exc, httpx.TimeoutException):
        return ConnectTimeoutError(f"Connection timed out: {text}", cause=exc)

    message = f"{type(exc).__name__}: {text}" if text else type(exc).__name__
    return UpstreamNetworkError(message, cause=exc)


def translate_upstream_error(code: Optional[int], message: Optional[str]) -> dict:
    """
    Translate an upstream failure into a clean JSON-RPC error object.

    The ``MCP error <code>:`` prefix that MCP SDKs prepend is stripped so the
    local caller sees the bare message.
    """
    error_code = code if code is not None else DEFAULT_ERROR_CODE
    error_message = message if message else DEFAULT_ERROR_MESSAGE
    prefix = f"MCP error {error_code}:"
    if error_message.startswith(prefix):
        error_message = error_message[len(prefix):].strip()
    return {"code": error_code, "message": error_message}
