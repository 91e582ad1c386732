"""
Command Line Interface
======================

``mcp-superassistant-proxy`` entry point. Flags override ``MCP_PROXY_*``
environment variables and ``.env`` values; exactly one of ``--stdio``,
``--sse`` or ``--ssetosse`` selects the operating mode.
"""

from typing import Any, Dict, List, Optional
import argparse
import asyncio
import sys

from pydantic import ValidationError

from mcp_superassistant_proxy import __version__
from mcp_superassistant_proxy.config.logging import get_logger, setup_logging
from mcp_superassistant_proxy.config.settings import Settings
from mcp_superassistant_proxy.runner import run_proxy

logger = get_logger(__name__)

MODE_ERROR = "Error: Specify exactly one of --stdio, --sse, or --ssetosse"

# argparse dest -> Settings field
FLAG_FIELDS = {
    "stdio": "stdio",
    "sse": "sse",
    "ssetosse": "ssetosse",
    "port": "port",
    "host": "host",
    "baseUrl": "base_url",
    "ssePath": "sse_path",
    "messagePath": "message_path",
    "logLevel": "log_level",
    "logFormat": "log_format",
    "cors": "cors",
    "healthEndpoint": "health_endpoints",
    "timeout": "timeout",
    "maxReconnectAttempts": "max_reconnect_attempts",
    "requestTimeout": "request_timeout",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-superassistant-proxy",
        description="Bridge MCP servers between stdio and SSE transports.",
    )
    modes = parser.add_argument_group("mode (exactly one)")
    modes.add_argument("--stdio", help="Command that runs an MCP server over stdio")
    modes.add_argument("--sse", help="SSE URL to connect to")
    modes.add_argument("--ssetosse", help="SSE URL to relay to local SSE clients")

    parser.add_argument("--port", type=int, help="Port to listen on (default: 3007)")
    parser.add_argument("--host", help="Interface to listen on (default: 0.0.0.0)")
    parser.add_argument("--baseUrl", help="Base URL advertised to SSE clients")
    parser.add_argument("--ssePath", help="Path for SSE subscriptions (default: /sse)")
    parser.add_argument("--messagePath", help="Path for SSE messages (default: /message)")
    parser.add_argument(
        "--logLevel",
        choices=["debug", "info", "warning", "error", "none"],
        type=str.lower,
        help="Set logging level (default: info)",
    )
    parser.add_argument(
        "--logFormat", choices=["console", "json"], help="Log output format (default: console)"
    )
    parser.add_argument(
        "--cors",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable CORS (default: enabled)",
    )
    parser.add_argument(
        "--healthEndpoint",
        action="append",
        help="Endpoint that answers 'ok' (may be repeated)",
    )
    parser.add_argument(
        "--timeout", type=int, help="Upstream connect timeout in milliseconds (default: 30000)"
    )
    parser.add_argument(
        "--maxReconnectAttempts",
        type=int,
        help="Reconnect attempt ceiling in sse-to-sse mode (default: 10)",
    )
    parser.add_argument(
        "--requestTimeout",
        type=int,
        help="Upstream request timeout in milliseconds in sse mode (default: 60000)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """
    Build settings from parsed flags on top of the environment.

    Raises:
        ValidationError: If the resulting settings are invalid
    """
    overrides: Dict[str, Any] = {}
    for dest, field in FLAG_FIELDS.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[field] = value
    # A mode chosen on the command line replaces any mode from the environment
    if any(overrides.get(mode) for mode in ("stdio", "sse", "ssetosse")):
        for mode in ("stdio", "sse", "ssetosse"):
            overrides.setdefault(mode, None)
    return Settings(**overrides)


def _is_mode_error(error: ValidationError) -> bool:
    return any("exactly one of" in str(item.get("msg", "")) for item in error.errors())


def main(argv: Optional[List[str]] = None) -> None:
    """Parse flags, run the proxy and exit with its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        if _is_mode_error(e):
            print(MODE_ERROR, file=sys.stderr)
        else:
            print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)

    try:
        exit_code = asyncio.run(run_proxy(settings))
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
