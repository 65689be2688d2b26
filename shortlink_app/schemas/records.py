"""
Domain records exchanged with the storage layer.

Both storage backends return these instead of ORM rows, so services never
hold a session or depend on which backend is configured.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortlink_app.models.link import new_id
from shortlink_app.utils import utc_now, normalize_utc

UNKNOWN = "Unknown"
DIRECT = "Direct"


class LinkRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    original_url: str
    short_code: str
    custom_alias: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[str] = None
    is_active: bool = True
    qr_code_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at", "expires_at")
    @classmethod
    def _as_utc(cls, value):
        return normalize_utc(value)

    def is_resolvable(self, now: Optional[datetime] = None) -> bool:
        """Active and not past its expiry."""
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utc_now())


class ClickRecord(BaseModel):
    """A stored click. Frozen: events are never edited after the append."""

    id: str = Field(default_factory=new_id)
    link_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: str = DIRECT
    country: Optional[str] = None
    device: str = UNKNOWN
    browser: str = UNKNOWN
    os: str = UNKNOWN
    clicked_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator("clicked_at")
    @classmethod
    def _as_utc(cls, value):
        return normalize_utc(value)


class SnapshotRecord(BaseModel):
    link_id: str
    total_clicks: int = 0
    unique_clicks: int = 0
    clicks_by_country: Dict[str, int] = Field(default_factory=dict)
    clicks_by_device: Dict[str, int] = Field(default_factory=dict)
    clicks_by_browser: Dict[str, int] = Field(default_factory=dict)
    clicks_by_referrer: Dict[str, int] = Field(default_factory=dict)
    daily_clicks: Dict[str, int] = Field(default_factory=dict)
    last_click_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("last_click_at", "updated_at")
    @classmethod
    def _as_utc(cls, value):
        return normalize_utc(value)

    def derived_fields(self) -> dict:
        """Everything recomputed from the event log (excludes updated_at)."""
        return self.model_dump(exclude={"updated_at"})
