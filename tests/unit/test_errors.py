"""
Unit Tests for Proxy Errors
===========================

Upstream failure classification and JSON-RPC error translation.
"""

import asyncio
import socket

import httpx
import pytest

from mcp_superassistant_proxy.core.errors import (
    ConnectionRefusedUpstreamError,
    ConnectTimeoutError,
    DnsNotFoundError,
    ProxyError,
    SessionNotFound,
    StreamResetError,
    UpstreamNetworkError,
    classify_upstream_error,
    translate_upstream_error,
    unwrap_exception,
)


def chained(outer: Exception, cause: BaseException) -> Exception:
    try:
        try:
            raise cause
        except BaseException as inner:
            raise outer from inner
    except Exception as e:
        return e


@pytest.mark.unit
class TestTranslateUpstreamError:
    """Test the sse-client error translation."""

    def test_strips_mcp_prefix(self):
        assert translate_upstream_error(-32001, "MCP error -32001: boom") == {
            "code": -32001,
            "message": "boom",
        }

    def test_defaults_code_and_message(self):
        assert translate_upstream_error(None, None) == {
            "code": -32000,
            "message": "Internal error",
        }

    def test_prefix_uses_resolved_code(self):
        assert translate_upstream_error(None, "MCP error -32000: fell over") == {
            "code": -32000,
            "message": "fell over",
        }

    def test_unprefixed_message_unchanged(self):
        assert translate_upstream_error(-32602, "Invalid params") == {
            "code": -32602,
            "message": "Invalid params",
        }

    def test_prefix_for_other_code_kept(self):
        result = translate_upstream_error(-32602, "MCP error -32001: boom")
        assert result["message"] == "MCP error -32001: boom"


@pytest.mark.unit
class TestClassifyUpstreamError:
    """Test mapping raw failures onto the upstream taxonomy."""

    def test_dns_failure(self):
        error = chained(httpx.ConnectError("connect failed"), socket.gaierror(-2, "Name or service not known"))
        classified = classify_upstream_error(error)
        assert isinstance(classified, DnsNotFoundError)
        assert classified.reason == "dns_not_found"

    def test_connection_refused(self):
        error = chained(httpx.ConnectError("connect failed"), ConnectionRefusedError(111, "refused"))
        assert isinstance(classify_upstream_error(error), ConnectionRefusedUpstreamError)

    def test_connect_timeout(self):
        assert isinstance(classify_upstream_error(httpx.ConnectTimeout("slow")), ConnectTimeoutError)
        assert isinstance(classify_upstream_error(asyncio.TimeoutError()), ConnectTimeoutError)

    def test_stream_reset(self):
        assert isinstance(classify_upstream_error(httpx.ReadError("reset")), StreamResetError)
        assert isinstance(classify_upstream_error(httpx.ReadTimeout("idle")), StreamResetError)
        assert isinstance(
            classify_upstream_error(httpx.RemoteProtocolError("peer closed")), StreamResetError
        )

    def test_connect_error_message_fallback(self):
        error = httpx.ConnectError("[Errno -2] Name or service not known")
        assert isinstance(classify_upstream_error(error), DnsNotFoundError)
        error = httpx.ConnectError("[Errno 111] Connection refused")
        assert isinstance(classify_upstream_error(error), ConnectionRefusedUpstreamError)

    def test_exception_groups_are_unwrapped(self):
        group = ExceptionGroup("task group", [ExceptionGroup("inner", [ConnectionRefusedError()])])
        assert isinstance(unwrap_exception(group), ConnectionRefusedError)
        assert isinstance(classify_upstream_error(group), ConnectionRefusedUpstreamError)

    def test_already_classified_passes_through(self):
        error = StreamResetError("gone")
        assert classify_upstream_error(error) is error

    def test_unknown_failure_is_generic_network_error(self):
        classified = classify_upstream_error(ValueError("weird"))
        assert type(classified) is UpstreamNetworkError
        assert "weird" in str(classified)
        assert isinstance(classified.cause, ValueError)


@pytest.mark.unit
class TestErrorTaxonomy:
    """Test error messages used on the HTTP surface."""

    def test_session_not_found_names_session(self):
        error = SessionNotFound("abc")
        assert str(error) == "No active SSE connection for session abc"
        assert isinstance(error, ProxyError)
