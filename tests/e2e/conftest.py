"""
E2E Test Configuration
======================

End-to-end test specific fixtures and configuration.
Runs the proxy as a real process on a free local port:
- Process lifecycle management
- Health endpoint polling
"""

import socket
import subprocess
import sys
import time
from typing import Generator, List

import httpx
import pytest

from tests.conftest import echo_command

STARTUP_TIMEOUT = 15.0


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class ProxyProcess:
    """A proxy started with ``python -m mcp_superassistant_proxy``."""

    def __init__(self, args: List[str], port: int):
        self.port = port
        self.base_url = f"http://127.0.0.1:{port}"
        self.process = subprocess.Popen(
            [sys.executable, "-m", "mcp_superassistant_proxy", *args],
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    def wait_healthy(self, path: str = "/healthz") -> None:
        """Poll the health endpoint until the server answers."""
        deadline = time.monotonic() + STARTUP_TIMEOUT
        while time.monotonic() < deadline:
            if self.process.poll() is not None:
                raise RuntimeError(f"Proxy exited early with {self.process.returncode}")
            try:
                response = httpx.get(f"{self.base_url}{path}", timeout=1.0)
                if response.status_code == 200:
                    return
            except httpx.TransportError:
                pass
            time.sleep(0.1)
        raise TimeoutError("Proxy did not become healthy")

    def stop(self) -> None:
        if self.process.poll() is None:
            self.process.kill()
            self.process.wait(timeout=5)
        if self.process.stdin is not None and not self.process.stdin.closed:
            self.process.stdin.close()


@pytest.fixture
def free_port() -> int:
    return find_free_port()


@pytest.fixture
def stdio_proxy(free_port) -> Generator[ProxyProcess, None, None]:
    """Proxy in stdio → SSE mode wrapping the echo server."""
    proxy = ProxyProcess(
        [
            "--stdio",
            echo_command(),
            "--host",
            "127.0.0.1",
            "--port",
            str(free_port),
            "--healthEndpoint",
            "/healthz",
        ],
        free_port,
    )
    try:
        proxy.wait_healthy()
        yield proxy
    finally:
        proxy.stop()
