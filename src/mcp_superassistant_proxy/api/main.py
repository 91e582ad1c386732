"""
FastAPI Application
===================

HTTP surface of the session-serving modes (stdio → SSE and SSE → SSE): the SSE
subscribe and message routes bound to the engine, static health endpoints and
optional CORS. Served by uvicorn on the proxy's own event loop.
"""

from contextlib import asynccontextmanager, contextmanager
from typing import AsyncGenerator, Generator

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import uvicorn

from mcp_superassistant_proxy.config.logging import get_logger
from mcp_superassistant_proxy.config.settings import Settings
from mcp_superassistant_proxy.engines.base import SessionServingEngine

from .routes import build_health_router, build_sse_router

logger = get_logger(__name__)


def create_app(engine: SessionServingEngine, settings: Settings) -> FastAPI:
    """
    Build the application for one session-serving engine.

    Args:
        engine: Engine that owns the sessions and the message destination
        settings: Proxy settings (paths, CORS, health endpoints)

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info(
            f"Listening on port {settings.port}",
            sse_endpoint=f"http://localhost:{settings.port}{settings.sse_path}",
            message_endpoint=f"http://localhost:{settings.port}{settings.message_path}",
        )
        try:
            yield
        finally:
            logger.info("HTTP server stopping", sessions=len(engine.sessions))

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if settings.cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(build_health_router(settings.health_endpoints))
    app.include_router(build_sse_router(engine, settings))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> PlainTextResponse:
        """Plain-text error bodies."""
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    app.state.engine = engine
    return app


class ProxyServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the proxy runner."""

    @contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


def create_server(app: FastAPI, settings: Settings) -> ProxyServer:
    """uvicorn server for the app; logging stays with the proxy's own config."""
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
        lifespan="on",
    )
    return ProxyServer(config)
