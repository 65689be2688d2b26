"""
Link directory: owns short code -> link records.

resolve() is the redirect hot path and uses the Cache-Aside pattern:
1. Check cache first
2. On a miss, query storage for the active link
3. Populate cache for next time
Expiry is checked on every resolve, cached or not.
"""

import json
from datetime import datetime
from typing import Dict, List, Optional

from shortlink_app.cache.strategies import CacheStrategy, NullCache
from shortlink_app.config import settings
from shortlink_app.exceptions import NotFoundError
from shortlink_app.logging_config import get_logger
from shortlink_app.schemas.records import LinkRecord
from shortlink_app.storage.strategies import StorageStrategy
from shortlink_app.utils import utc_now

logger = get_logger(__name__)


def cache_key(code: str) -> str:
    return f"link:{code}"


class LinkDirectory:
    """Create, resolve, list, update and retire links."""

    def __init__(self, storage: StorageStrategy, cache: Optional[CacheStrategy] = None):
        self.storage = storage
        self.cache = cache or NullCache()

    async def create(
        self,
        target: str,
        code: str,
        owner: Optional[str] = None,
        **extra
    ) -> LinkRecord:
        """
        Persist a link under ``code``.

        Raises:
            ConflictError: the code was taken concurrently; generated codes
                should go back to the allocator
        """
        link = LinkRecord(
            original_url=target,
            short_code=code,
            owner_id=owner,
            **extra
        )
        created = await self.storage.add_link(link)
        logger.info(f"Created link {created.short_code} -> {created.original_url[:50]}")
        return created

    async def resolve(self, code: str) -> Optional[LinkRecord]:
        """Active, unexpired link for a code, or None."""
        now = utc_now()
        cached = await self.cache.get(cache_key(code))
        if cached:
            try:
                link = LinkRecord.model_validate_json(cached)
            except ValueError:
                logger.warning(f"Dropping unreadable cache entry for {code}")
                await self.cache.delete(cache_key(code))
            else:
                if link.is_resolvable(now):
                    return link
                await self.cache.delete(cache_key(code))
                return None

        link = await self.storage.get_active_link_by_code(code)
        if link is None or not link.is_resolvable(now):
            return None

        await self.cache.set(cache_key(code), link.model_dump_json(), ttl=self._cache_ttl(link, now))
        return link

    def _cache_ttl(self, link: LinkRecord, now: datetime) -> int:
        """Never cache past the link's expiry."""
        ttl = settings.cache_ttl
        if link.expires_at is not None:
            ttl = min(ttl, int((link.expires_at - now).total_seconds()))
        return max(ttl, 1)

    async def retire(self, link_id: str) -> None:
        """
        Soft delete. Idempotent: retiring a retired link is a no-op.

        Raises:
            NotFoundError: unknown link id
        """
        link = await self.storage.get_link(link_id)
        if link is None:
            raise NotFoundError("URL not found")
        await self.storage.deactivate_link(link_id)
        await self.cache.delete(cache_key(link.short_code))
        if link.is_active:
            logger.info(f"Retired link {link.short_code}")

    async def list_for_owner(self, owner: str, page: int = 1, limit: int = 50) -> List[LinkRecord]:
        """Active links of ``owner``, newest first; pages start at 1."""
        page = max(page, 1)
        limit = max(limit, 1)
        return await self.storage.list_links_for_owner(owner, limit=limit, offset=(page - 1) * limit)

    async def get_owned(self, link_id: str, owner: Optional[str]) -> LinkRecord:
        """
        Link by id, only if ``owner`` owns it.

        Missing and foreign-owned links raise the same NotFoundError so
        ownership does not leak.
        """
        link = await self.storage.get_link(link_id)
        if link is None or owner is None or link.owner_id != owner:
            raise NotFoundError("URL not found")
        return link

    async def update(self, link: LinkRecord, changes: Dict) -> LinkRecord:
        """
        Apply changes to an existing link.

        A changed short_code reserves the new code; the old one stays
        reserved and stops resolving.

        Raises:
            ConflictError: new code already taken
        """
        if not changes:
            return link
        updated = await self.storage.update_link(link.id, changes)
        if updated is None:
            raise NotFoundError("URL not found")
        await self.cache.delete(cache_key(link.short_code))
        if updated.short_code != link.short_code:
            await self.cache.delete(cache_key(updated.short_code))
            logger.info(f"Moved link {link.short_code} to {updated.short_code}")
        return updated
