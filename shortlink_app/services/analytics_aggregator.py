"""
Analytics aggregation.

Snapshots are rebuilt from the complete click log of a link instead of
bumping counters. Recomputing twice with no new events gives the same
snapshot, so it does not matter how clicks are batched, reordered or
retried: the next recompute after the last append is correct.

Flow:
1. ClickRecorder appends an event and marks the link dirty
2. AggregationScheduler coalesces dirty links
3. Every interval (or after each worker batch) it recomputes each dirty link once
"""

import asyncio
import weakref
from collections import Counter
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set

from shortlink_app.logging_config import get_logger
from shortlink_app.schemas.records import ClickRecord, DIRECT, SnapshotRecord, UNKNOWN
from shortlink_app.storage.strategies import StorageStrategy
from shortlink_app.utils import utc_now

logger = get_logger(__name__)


def count_by(clicks: Iterable[ClickRecord], field: str, fallback: str) -> Dict[str, int]:
    """Group clicks on one field; empty values are counted under ``fallback``."""
    counts = Counter((getattr(click, field) or fallback) for click in clicks)
    return dict(sorted(counts.items()))


def build_snapshot(link_id: str, clicks: List[ClickRecord]) -> SnapshotRecord:
    """
    Derive every snapshot field from a link's click events.

    Each dimension map sums to total_clicks because every click lands in
    exactly one key. Unique visitors are distinct IPs; clicks without an IP
    are not counted as visitors.
    """
    daily = Counter(click.clicked_at.date().isoformat() for click in clicks)
    return SnapshotRecord(
        link_id=link_id,
        total_clicks=len(clicks),
        unique_clicks=len({click.ip_address for click in clicks if click.ip_address}),
        clicks_by_country=count_by(clicks, "country", UNKNOWN),
        clicks_by_device=count_by(clicks, "device", UNKNOWN),
        clicks_by_browser=count_by(clicks, "browser", UNKNOWN),
        clicks_by_referrer=count_by(clicks, "referrer", DIRECT),
        daily_clicks=dict(sorted(daily.items())),
        last_click_at=max((click.clicked_at for click in clicks), default=None),
    )


def display_daily_series(daily_clicks: Dict[str, int], days: int = 14) -> Dict[str, int]:
    """Most recent ``days`` entries of a date-keyed series, oldest first."""
    if days <= 0:
        return {}
    recent = sorted(daily_clicks.items())[-days:]
    return dict(recent)


class AnalyticsAggregator:
    """
    Maintains one AnalyticsSnapshot per link.

    Recomputes for the same link are serialized with a per-link lock so
    two writers never interleave read-log / upsert within this process.
    Across processes the last writer wins, which is safe because each
    writer reads the full log.
    """

    def __init__(self, storage: StorageStrategy):
        self.storage = storage
        # Entries disappear once no recompute holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, link_id: str) -> asyncio.Lock:
        lock = self._locks.get(link_id)
        if lock is None:
            lock = self._locks[link_id] = asyncio.Lock()
        return lock

    async def recompute(self, link_id: str) -> SnapshotRecord:
        """Rebuild the snapshot from the click log and upsert it."""
        lock = self._lock_for(link_id)
        async with lock:
            clicks = await self.storage.list_clicks(link_id)
            snapshot = await asyncio.to_thread(build_snapshot, link_id, clicks)
            stored = await self.storage.upsert_snapshot(snapshot)
        logger.debug(f"Recomputed analytics for {link_id}: {stored.total_clicks} clicks")
        return stored

    async def fetch_snapshot(self, link_id: str, window_days: int = 30) -> Optional[SnapshotRecord]:
        """
        Stored snapshot with its daily series limited to the last ``window_days``.

        Totals and dimension maps are all-time and are not windowed.
        """
        snapshot = await self.storage.get_snapshot(link_id)
        if snapshot is None or window_days is None:
            return snapshot
        # Today counts as the first of the window_days calendar days
        cutoff = (utc_now() - timedelta(days=window_days - 1)).date().isoformat()
        daily = {day: count for day, count in snapshot.daily_clicks.items() if day >= cutoff}
        return snapshot.model_copy(update={"daily_clicks": daily})


class AggregationScheduler:
    """
    Coalesces recompute requests.

    Many clicks on the same link between two flushes cost one recompute.
    Every marked link is recomputed by the next flush; a failed recompute
    is marked again so a later flush retries it.
    """

    def __init__(self, aggregator: AnalyticsAggregator, interval: float = 1.0):
        self.aggregator = aggregator
        self.interval = interval
        self._dirty: Set[str] = set()
        self._running = False

    @property
    def pending(self) -> int:
        return len(self._dirty)

    def mark_dirty(self, link_id: str) -> None:
        self._dirty.add(link_id)

    async def flush(self) -> int:
        """Recompute every dirty link once. Returns how many succeeded."""
        if not self._dirty:
            return 0
        batch, self._dirty = self._dirty, set()
        done = 0
        for link_id in batch:
            try:
                await self.aggregator.recompute(link_id)
                done += 1
            except Exception as e:
                logger.error(f"Analytics recompute failed for {link_id}: {e}")
                self._dirty.add(link_id)
        return done

    async def run(self) -> None:
        """Flush every ``interval`` seconds until stopped."""
        self._running = True
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.flush()
            except asyncio.CancelledError:
                break
        logger.info("Aggregation scheduler stopped")

    def stop(self) -> None:
        self._running = False
