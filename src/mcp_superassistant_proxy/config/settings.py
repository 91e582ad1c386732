"""
Proxy Settings
==============

Proxy settings and mode selection using Pydantic Settings.
Values come from keyword arguments (the command line), then ``MCP_PROXY_*``
environment variables, then an optional ``.env`` file.
"""

from typing import Annotated, Optional, List, Union
import json

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


MODE_STDIO = "stdio"
MODE_SSE = "sse"
MODE_SSE_TO_SSE = "ssetosse"

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "NONE"}


class Settings(BaseSettings):
    """Proxy settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="mcp-superassistant-proxy", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")

    # Mode selection, exactly one must be set
    stdio: Optional[str] = Field(
        default=None, description="Command to run an MCP server over stdio (stdio → SSE)"
    )
    sse: Optional[str] = Field(default=None, description="SSE URL to connect to (SSE → stdio)")
    ssetosse: Optional[str] = Field(
        default=None, description="SSE URL to connect to for sse-to-sse mode"
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3007, description="Server port")
    base_url: str = Field(default="", description="Base URL advertised to SSE clients")
    sse_path: str = Field(default="/sse", description="Path for SSE subscriptions")
    message_path: str = Field(default="/message", description="Path for SSE messages")
    cors: bool = Field(default=True, description="Enable CORS")
    health_endpoints: Annotated[List[str], NoDecode] = Field(
        default=[], description="Endpoints that always answer 200 'ok'"
    )

    # Upstream Configuration
    timeout: int = Field(default=30000, description="Upstream connect timeout in milliseconds")
    max_reconnect_attempts: int = Field(default=10, description="Reconnect attempt ceiling")
    reconnect_delay: int = Field(default=2000, description="Base reconnect delay in milliseconds")
    reconnect_growth_factor: float = Field(default=1.5, description="Reconnect delay growth")
    reconnect_max_delay: int = Field(
        default=60000, description="Reconnect delay cap in milliseconds"
    )
    request_timeout: int = Field(
        default=60000, description="Upstream request timeout in milliseconds (SSE → stdio)"
    )
    sse_read_timeout: float = Field(
        default=300.0, description="Upstream SSE idle read timeout in seconds"
    )

    # SSE Configuration
    sse_heartbeat_interval: int = Field(
        default=30, description="SSE heartbeat interval in seconds, 0 disables"
    )
    session_queue_size: int = Field(
        default=100, description="Outbound message buffer size per SSE session"
    )

    # Process Configuration
    exit_on_stdin_close: bool = Field(
        default=True, description="Exit when a piped stdin is closed (HTTP modes)"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level, NONE disables")
    log_format: str = Field(default="console", description="Log format: console or json")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {LOG_LEVELS}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        allowed = {"console", "json"}
        if v.lower() not in allowed:
            raise ValueError(f"Log format must be one of: {allowed}")
        return v.lower()

    @field_validator("sse_path", "message_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Endpoint paths are absolute."""
        if not v.startswith("/"):
            raise ValueError(f"Path must start with '/': {v!r}")
        return v

    @field_validator("health_endpoints", mode="before")
    @classmethod
    def parse_health_endpoints(cls, v: Union[str, List[str], None]) -> List[str]:
        """Parse health endpoints from string or list."""
        if v is None:
            return []
        if isinstance(v, str):
            # Handle JSON-like string: ["/healthz"] or ["/healthz", "/readyz"]
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string: "/healthz,/readyz"
            return [path.strip() for path in v.split(",") if path.strip()]
        return [str(path) for path in v]

    @field_validator(
        "port",
        "timeout",
        "max_reconnect_attempts",
        "reconnect_delay",
        "reconnect_max_delay",
        "request_timeout",
        "session_queue_size",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate positive integer limits."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("reconnect_growth_factor")
    @classmethod
    def validate_growth_factor(cls, v: float) -> float:
        """Backoff delay must never shrink."""
        if v < 1.0:
            raise ValueError("Growth factor must be at least 1.0")
        return v

    @model_validator(mode="after")
    def validate_mode(self) -> "Settings":
        """Exactly one operating mode must be selected."""
        selected = [value for value in (self.stdio, self.sse, self.ssetosse) if value]
        if len(selected) != 1:
            raise ValueError("Specify exactly one of --stdio, --sse, or --ssetosse")
        return self

    @property
    def mode(self) -> str:
        """Selected operating mode."""
        if self.stdio:
            return MODE_STDIO
        if self.sse:
            return MODE_SSE
        return MODE_SSE_TO_SSE

    @property
    def endpoint_url(self) -> str:
        """Message endpoint advertised to SSE clients."""
        return f"{self.base_url}{self.message_path}"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="MCP_PROXY_"
    )

