"""
Logging Configuration
====================

Structured logging configuration for the proxy.
Uses structlog for structured logging with JSON output on request.

Every handler writes to stderr: in SSE → stdio mode stdout is the
protocol channel and carries nothing but framed JSON-RPC messages.
"""

import logging
import logging.config
import sys
from typing import Dict, Any, Optional, TYPE_CHECKING
import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from .settings import Settings


# Above CRITICAL, used for --logLevel none
SILENT = logging.CRITICAL + 10


def setup_logging(settings: "Settings") -> None:
    """Setup proxy logging configuration."""
    # Configure structlog
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.config.dictConfig(get_logging_config(settings))


def resolve_level(log_level: str) -> int:
    """Map a settings log level onto a stdlib level."""
    if log_level == "NONE":
        return SILENT
    return logging.getLevelName(log_level)


def get_logging_config(settings: "Settings", stream: Optional[Any] = None) -> Dict[str, Any]:
    """Get logging configuration dictionary."""
    level = resolve_level(settings.log_level)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "[%(name)s] %(message)s",
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if settings.log_format == "json" else "standard",
                "stream": stream or sys.stderr,
            },
        },
        "loggers": {
            "": {  # Root logger
                "level": level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": max(level, logging.INFO),
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": max(level, logging.WARNING),
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": max(level, logging.WARNING),
                "handlers": ["console"],
                "propagate": False,
            },
            "mcp": {
                "level": max(level, logging.WARNING),
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
