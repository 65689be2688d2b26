from typing import List, Optional, Tuple

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from shortlink_app.config import settings
from shortlink_app.exceptions import ConflictError, ShortLinkError, ValidationError
from shortlink_app.logging_config import get_logger
from shortlink_app.schemas.records import ClickRecord, LinkRecord, SnapshotRecord
from shortlink_app.schemas.url import BulkError, URLCreate, URLUpdate
from shortlink_app.services.analytics_aggregator import AnalyticsAggregator, display_daily_series
from shortlink_app.services.identifier_allocator import IdentifierAllocator
from shortlink_app.services.link_directory import LinkDirectory
from shortlink_app.services.qr_codes import QRCodeProvider, TemplateQRCodeProvider
from shortlink_app.storage.strategies import StorageStrategy
from shortlink_app.utils import normalize_utc

logger = get_logger(__name__)

_http_url = TypeAdapter(HttpUrl)


def validate_target_url(url: str) -> str:
    """
    Check that ``url`` is an absolute http(s) URL.

    The caller's string is stored as given; validation never rewrites it.

    Raises:
        ValidationError: not a valid http(s) URL
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("URL is required")
    try:
        _http_url.validate_python(url.strip())
    except PydanticValidationError:
        raise ValidationError("Please enter a valid URL")
    return url.strip()


def short_url_for(code: str) -> str:
    return f"{settings.base_url.rstrip('/')}/{code}"


class URLService:
    """
    Link management on behalf of an owner.

    Composes the allocator (which code), the directory (persist and
    resolve), the QR provider and the analytics read side. Errors from the
    ShortLinkError taxonomy surface unchanged to the API layer.
    """

    def __init__(
        self,
        storage: StorageStrategy,
        directory: Optional[LinkDirectory] = None,
        allocator: Optional[IdentifierAllocator] = None,
        aggregator: Optional[AnalyticsAggregator] = None,
        qr_provider: Optional[QRCodeProvider] = None
    ):
        self.storage = storage
        self.directory = directory or LinkDirectory(storage)
        self.allocator = allocator or IdentifierAllocator(storage)
        self.aggregator = aggregator or AnalyticsAggregator(storage)
        self.qr_provider = qr_provider or TemplateQRCodeProvider()

    async def create_short_url(self, data: URLCreate, owner: Optional[str] = None) -> LinkRecord:
        """
        Create a link for ``data.original_url``.

        Always creates a new link even if the URL was shortened before, so
        different campaigns can be tracked separately.

        A generated code that loses a race at insert time is replaced by a
        fresh one, up to ``max_retries`` times. A custom alias is never
        replaced: its conflict goes back to the caller.

        Raises:
            ValidationError: bad URL or alias
            ConflictError: alias taken
            ResourceExhaustedError: no free generated code
        """
        target = validate_target_url(data.original_url)
        alias = data.custom_alias or None
        attempts = max(settings.max_retries, 1)

        for attempt in range(attempts):
            code = await self.allocator.allocate(alias)
            try:
                return await self.directory.create(
                    target,
                    code,
                    owner=owner,
                    custom_alias=alias,
                    title=data.title,
                    description=data.description,
                    expires_at=data.expires_at,
                    qr_code_url=self.qr_provider.image_url(short_url_for(code)),
                )
            except ConflictError:
                if alias is not None or attempt == attempts - 1:
                    raise
                logger.info(f"Short code {code} taken at insert, allocating another")

    async def create_bulk(
        self,
        items: List[URLCreate],
        owner: str
    ) -> Tuple[List[LinkRecord], List[BulkError]]:
        """
        Create each item independently.

        One failing item never aborts the batch. Results and errors each
        keep the order of the request.

        Raises:
            ValidationError: more than ``bulk_max_items`` items
        """
        if len(items) > settings.bulk_max_items:
            raise ValidationError(f"Maximum {settings.bulk_max_items} URLs allowed")

        results, errors = [], []
        for item in items:
            try:
                results.append(await self.create_short_url(item, owner=owner))
            except ShortLinkError as e:
                errors.append(BulkError(original_url=str(item.original_url), error=e.message))
        logger.info(f"Bulk create for {owner}: {len(results)} created, {len(errors)} failed")
        return results, errors

    async def list_urls(self, owner: str, page: int = 1, limit: int = None):
        """
        Active links of ``owner`` with their click totals.

        Returns:
            (links with total_clicks, page, limit) after clamping
        """
        page = max(page or 1, 1)
        limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
        links = await self.directory.list_for_owner(owner, page=page, limit=limit)
        snapshots = await self.storage.get_snapshots([link.id for link in links])

        items = []
        for link in links:
            snapshot = snapshots.get(link.id)
            items.append({
                **link.model_dump(),
                "total_clicks": snapshot.total_clicks if snapshot else 0,
            })
        return items, page, limit

    async def get_analytics(
        self,
        link_id: str,
        owner: str
    ) -> Tuple[LinkRecord, Optional[SnapshotRecord], List[ClickRecord]]:
        """
        Link, snapshot and most recent clicks for the owner.

        Retired links stay readable here; their history is kept.
        The daily series is cut to the display window.
        """
        link = await self.directory.get_owned(link_id, owner)
        snapshot = await self.aggregator.fetch_snapshot(link.id, window_days=settings.analytics_window_days)
        if snapshot is not None:
            snapshot = snapshot.model_copy(update={
                "daily_clicks": display_daily_series(
                    snapshot.daily_clicks, days=settings.daily_series_display_days
                )
            })
        recent = await self.storage.recent_clicks(link.id, limit=settings.recent_clicks_limit)
        return link, snapshot, recent

    async def update_url(self, link_id: str, owner: str, data: URLUpdate) -> LinkRecord:
        """
        Partial update of an owned link.

        A new alias becomes the short code: it is validated and checked like
        a creation alias. The old code stays reserved and stops resolving.

        Raises:
            NotFoundError: unknown or foreign link
            ValidationError: bad URL or alias
            ConflictError: alias taken
        """
        link = await self.directory.get_owned(link_id, owner)
        changes = data.model_dump(exclude_unset=True)

        if "original_url" in changes:
            if changes["original_url"] is None:
                raise ValidationError("URL is required")
            changes["original_url"] = validate_target_url(changes["original_url"])

        if changes.get("expires_at") is not None:
            changes["expires_at"] = normalize_utc(changes["expires_at"])

        alias = changes.get("custom_alias")
        if alias is not None and alias != link.short_code:
            changes["short_code"] = await self.allocator.allocate(alias)
            changes["qr_code_url"] = self.qr_provider.image_url(short_url_for(alias))
        elif "custom_alias" in changes:
            # Clearing or repeating the alias does not move the code
            changes.pop("custom_alias")

        return await self.directory.update(link, changes)

    async def delete_url(self, link_id: str, owner: str) -> None:
        """
        Retire an owned link. Its clicks and snapshot are kept.

        Raises:
            NotFoundError: unknown or foreign link
        """
        link = await self.directory.get_owned(link_id, owner)
        await self.directory.retire(link.id)
