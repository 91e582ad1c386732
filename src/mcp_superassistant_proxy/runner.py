"""
Proxy Runner
============

Runs one bridge engine to completion and decides the process exit code.

SIGINT, SIGTERM and SIGHUP (and, in the HTTP modes, closure of a piped stdin)
end the proxy with code 0. Otherwise the engine's own exit code wins: the
child's exit code in stdio → SSE mode, 0 on stdin EOF or 1 on upstream loss in
SSE → stdio mode. Startup failures exit with 1.
"""

from typing import BinaryIO, Optional, Set
import asyncio
import signal

from mcp_superassistant_proxy.api.main import ProxyServer, create_app, create_server
from mcp_superassistant_proxy.config.logging import get_logger
from mcp_superassistant_proxy.config.settings import (
    MODE_SSE,
    MODE_SSE_TO_SSE,
    MODE_STDIO,
    Settings,
)
from mcp_superassistant_proxy.core.errors import (
    ProxyError,
    SpawnFailure,
    UpstreamNetworkError,
    UpstreamProtocolError,
)
from mcp_superassistant_proxy.core.stdio import stdin_is_pipe, wait_for_stdin_close
from mcp_superassistant_proxy.engines import BridgeEngine, SessionServingEngine, create_engine

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)
SERVER_SHUTDOWN_TIMEOUT = 5.0


def log_startup(settings: Settings) -> None:
    """Log the selected mode and its effective options."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    if settings.mode == MODE_STDIO:
        logger.info("Starting stdio-to-sse mode...")
        logger.info(f"  - stdio: {settings.stdio}")
    elif settings.mode == MODE_SSE:
        logger.info("Starting sse-to-stdio mode...")
        logger.info(f"  - sse: {settings.sse}")
        logger.info(f"  - connection timeout: {settings.timeout}ms")
        logger.info(f"  - request timeout: {settings.request_timeout}ms")
        return
    elif settings.mode == MODE_SSE_TO_SSE:
        logger.info("Starting sse-to-sse mode...")
        logger.info(f"  - sse-to-sse URL: {settings.ssetosse}")
        logger.info(f"  - connection timeout: {settings.timeout}ms")
        logger.info(f"  - max reconnect attempts: {settings.max_reconnect_attempts}")
    logger.info(f"  - port: {settings.port}")
    logger.info(f"  - baseUrl: {settings.base_url}")
    logger.info(f"  - ssePath: {settings.sse_path}")
    logger.info(f"  - messagePath: {settings.message_path}")
    logger.info(f"  - CORS enabled: {settings.cors}")
    logger.info(f"  - Health endpoints: {settings.health_endpoints or '(none)'}")


async def _serve(server: ProxyServer) -> None:
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn exits the interpreter when it cannot bind
        raise ProxyError(f"HTTP server failed to start (exit {e.code})") from e


async def run_proxy(
    settings: Settings,
    engine: Optional[BridgeEngine] = None,
    stdin: Optional[BinaryIO] = None,
) -> int:
    """
    Run the proxy until a signal, stdin closure or the engine ends it.

    Args:
        settings: Proxy settings
        engine: Engine to run, built from settings when omitted
        stdin: Stream watched for closure in the HTTP modes

    Returns:
        Process exit code
    """
    engine = engine or create_engine(settings)
    loop = asyncio.get_running_loop()
    exit_requested: asyncio.Future[int] = loop.create_future()

    def request_exit(exit_code: int, reason: str) -> None:
        if not exit_requested.done():
            logger.info(reason)
            exit_requested.set_result(exit_code)

    installed = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, request_exit, 0, f"Caught {sig.name}, exiting...")
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not available off the main thread or on this platform
            pass

    server: Optional[ProxyServer] = None
    serve_task: Optional[asyncio.Task[None]] = None
    background: Set[asyncio.Future] = set()
    try:
        log_startup(settings)
        try:
            await engine.start()
        except SpawnFailure as e:
            logger.error(f"Failed to start child process: {e}")
            return 1
        except (UpstreamNetworkError, UpstreamProtocolError) as e:
            logger.error(
                f"Failed to connect to {settings.sse or settings.ssetosse}: {e}",
                reason=getattr(e, "reason", "protocol"),
            )
            return 1

        engine_done = asyncio.ensure_future(engine.wait())
        background.add(engine_done)
        waiters = {exit_requested, engine_done}

        if isinstance(engine, SessionServingEngine):
            server = create_server(create_app(engine, settings), settings)
            serve_task = asyncio.create_task(_serve(server), name="http-server")
            background.add(serve_task)
            waiters.add(serve_task)
            if settings.exit_on_stdin_close and stdin_is_pipe(stdin):
                watcher = asyncio.create_task(
                    _watch_stdin(stdin, request_exit), name="stdin-watcher"
                )
                background.add(watcher)

        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

        if exit_requested.done():
            return exit_requested.result()
        if engine_done.done():
            return engine_done.result()
        assert serve_task is not None
        error = serve_task.exception()
        logger.error("HTTP server stopped", error=str(error) if error else None)
        return 1
    finally:
        await _shutdown(engine, server, serve_task, background)
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _watch_stdin(stdin: Optional[BinaryIO], request_exit) -> None:
    await wait_for_stdin_close(stdin)
    request_exit(0, "stdin closed, exiting...")


async def _shutdown(
    engine: BridgeEngine,
    server: Optional[ProxyServer],
    serve_task: Optional["asyncio.Task[None]"],
    background: Set[asyncio.Future],
) -> None:
    """Orderly teardown: no per-session drain, just stop and close."""
    if isinstance(engine, SessionServingEngine):
        engine.sessions.close_all(reason="shutdown")
    if server is not None and serve_task is not None and not serve_task.done():
        server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(serve_task), timeout=SERVER_SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("HTTP server did not stop in time, forcing exit")
            server.force_exit = True
        except Exception as e:
            logger.error("HTTP server failed during shutdown", error=str(e))

    try:
        await engine.close()
    except Exception as e:
        logger.error("Error closing bridge engine", error=str(e), exc_info=True)

    for task in background:
        if not task.done():
            task.cancel()
    for task in background:
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Background task ended with error", error=str(e))
