"""
Data models for queue messages.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

from shortlink_app.utils import utc_now


class ClickObservation(BaseModel):
    """
    Raw facts about one redirect, published after the response is sent.

    Carries only what the request exposed; classification (browser, device,
    referrer host, country) happens in the ClickRecorder.
    """

    link_id: str = Field(..., description="Id of the link that was resolved")
    short_code: str = Field(..., description="The short code that was accessed")
    timestamp: datetime = Field(default_factory=utc_now, description="When the click occurred")

    # Request metadata
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="User agent string")
    referrer: Optional[str] = Field(None, description="HTTP Referer header value")
    country: Optional[str] = Field(None, description="Country code when already known")

    # Set by the queue on consume, used for ack/nack
    message_id: Optional[str] = Field(None, exclude=True)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "link_id": "6f1c0c1b8d6e4d3fa1f0c2e5b7a9d301",
                "short_code": "aZ3-k_9Q",
                "timestamp": "2025-10-29T10:30:00Z",
                "ip_address": "203.0.113.7",
                "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
                "referrer": "https://twitter.com/some/post",
            }
        }
    )
