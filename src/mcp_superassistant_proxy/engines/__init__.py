"""
Bridge Engines
==============

The three transport bridges and the factory that selects one from settings.
"""

from mcp_superassistant_proxy.config.settings import (
    MODE_SSE,
    MODE_SSE_TO_SSE,
    MODE_STDIO,
    Settings,
)

from .base import BridgeEngine, SessionServingEngine
from .sse_client_bridge import SseClientBridgeEngine
from .sse_relay import SseRelayEngine
from .stdio_bridge import StdioBridgeEngine

ENGINES = {
    MODE_STDIO: StdioBridgeEngine,
    MODE_SSE: SseClientBridgeEngine,
    MODE_SSE_TO_SSE: SseRelayEngine,
}


def create_engine(settings: Settings) -> BridgeEngine:
    """Instantiate the engine for the configured mode."""
    try:
        engine_class = ENGINES[settings.mode]
    except KeyError:
        raise ValueError(f"Unknown proxy mode: {settings.mode}")
    return engine_class(settings)


__all__ = [
    "BridgeEngine",
    "SessionServingEngine",
    "StdioBridgeEngine",
    "SseClientBridgeEngine",
    "SseRelayEngine",
    "create_engine",
]
