"""
API Routes
==========

Route factories for the HTTP surface: SSE subscribe/message and health.
"""

from .health import build_health_router
from .sse import build_sse_router

__all__ = ["build_health_router", "build_sse_router"]
