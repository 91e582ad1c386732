"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides isolated settings, fake transports and the echo child command.
"""

import shlex
import sys
from pathlib import Path
from typing import Any, Callable

import pytest
from pydantic_settings import SettingsConfigDict

from mcp_superassistant_proxy.config.logging import setup_logging
from mcp_superassistant_proxy.config.settings import Settings

from tests.fixtures.fake_upstream import FakeLocalChannel, FakeUpstreamFactory

FIXTURES_DIR = Path(__file__).parent / "fixtures"
ECHO_SERVER = FIXTURES_DIR / "echo_server.py"


# Test settings override
class TestSettings(Settings):
    """Test-specific settings."""

    __test__ = False

    log_level: str = "DEBUG"
    sse_heartbeat_interval: int = 0
    exit_on_stdin_close: bool = False

    model_config = SettingsConfigDict(env_file=".env.test", env_prefix="MCP_PROXY_TEST_")


def echo_command(*extra: str) -> str:
    """Shell command running the echo MCP server fixture."""
    parts = [sys.executable, str(ECHO_SERVER), *extra]
    return " ".join(shlex.quote(part) for part in parts)


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Route proxy logs through structlog once per session."""
    setup_logging(TestSettings(stdio="true"))


@pytest.fixture
def make_settings() -> Callable[..., TestSettings]:
    """Factory for settings with per-test overrides."""

    def _make(**overrides: Any) -> TestSettings:
        if not any(overrides.get(mode) for mode in ("stdio", "sse", "ssetosse")):
            overrides["stdio"] = echo_command()
        return TestSettings(**overrides)

    return _make


@pytest.fixture
def stdio_settings(make_settings) -> TestSettings:
    return make_settings(stdio=echo_command())


@pytest.fixture
def sse_settings(make_settings) -> TestSettings:
    return make_settings(sse="http://upstream.test/sse", request_timeout=2000, timeout=1000)


@pytest.fixture
def relay_settings(make_settings) -> TestSettings:
    return make_settings(
        ssetosse="http://upstream.test/sse",
        reconnect_delay=10,
        reconnect_max_delay=50,
        max_reconnect_attempts=3,
        timeout=200,
    )


@pytest.fixture
def upstream_factory() -> FakeUpstreamFactory:
    return FakeUpstreamFactory()


@pytest.fixture
def local_channel() -> FakeLocalChannel:
    return FakeLocalChannel()
