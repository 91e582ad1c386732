"""
SSE Models
==========

Pydantic models for SSE session bookkeeping.
"""

from typing import Optional
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict


class SSESessionStatus(str, Enum):
    """SSE session status."""

    CONNECTED = "connected"
    CLOSED = "closed"


class SSESessionMetadata(BaseModel):
    """Metadata for one downstream SSE session."""

    session_id: str = Field(..., description="Unique session identifier")
    client_ip: str = Field(default="unknown", description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    status: SSESessionStatus = Field(
        default=SSESessionStatus.CONNECTED, description="Session status"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Session creation time"
    )
    closed_reason: Optional[str] = Field(None, description="Why the session was closed")
    messages_sent: int = Field(default=0, description="Messages queued for the client")

    model_config = ConfigDict(use_enum_values=True)
