from pydantic import BaseModel, Field, computed_field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from datetime import datetime
from shortlink_app.config import settings


class CamelModel(BaseModel):
    """Base for API payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class URLCreate(CamelModel):
    # Plain str: URL validation happens in the service so it maps to a 400
    # and so one bad item cannot fail a whole bulk request.
    original_url: str = Field(..., description="The original URL to be shortened")
    custom_alias: Optional[str] = Field(None, description="Optional custom short code")
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    expires_at: Optional[datetime] = None


class BulkURLCreate(CamelModel):
    urls: List[URLCreate] = Field(..., min_length=1)


class URLUpdate(CamelModel):
    """Partial update; omitted fields are left untouched."""
    original_url: Optional[str] = None
    custom_alias: Optional[str] = None
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    expires_at: Optional[datetime] = None


class URLResponse(CamelModel):
    """Response schema built straight from a LinkRecord (from_attributes)."""
    id: str
    original_url: str
    short_code: str
    custom_alias: Optional[str] = None
    qr_code_url: Optional[str] = None
    created_at: datetime

    @computed_field(alias="shortUrl")
    @property
    def short_url(self) -> str:
        """Computed field - automatically generated from short_code"""
        return f"{settings.base_url.rstrip('/')}/{self.short_code}"


class URLDetail(URLResponse):
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class URLListItem(URLDetail):
    total_clicks: int = 0


class URLList(CamelModel):
    urls: List[URLListItem]
    page: int
    limit: int


class BulkError(CamelModel):
    original_url: str
    error: str


class BulkResponse(CamelModel):
    results: List[URLResponse]
    errors: List[BulkError]


class DeleteResponse(CamelModel):
    message: str


class SnapshotView(CamelModel):
    total_clicks: int
    unique_clicks: int
    clicks_by_country: Dict[str, int]
    clicks_by_device: Dict[str, int]
    clicks_by_browser: Dict[str, int]
    clicks_by_referrer: Dict[str, int]
    daily_clicks: Dict[str, int]
    last_click_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClickView(CamelModel):
    id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: str
    country: Optional[str] = None
    device: str
    browser: str
    os: str
    clicked_at: datetime


class AnalyticsResponse(CamelModel):
    url: URLDetail
    analytics: Optional[SnapshotView] = None
    recent_clicks: List[ClickView]
