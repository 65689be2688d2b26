"""
Storage strategies using Strategy Pattern.

Every service depends on the abstract StorageStrategy, never on a
process-wide connection:
- SQLAlchemyStorage: relational database (SQLite in development, any
  SQLAlchemy URL in production)
- InMemoryStorage: dictionaries, for tests and throwaway runs
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shortlink_app.database.connection import Base
from shortlink_app.exceptions import ConflictError, StorageError
from shortlink_app.logging_config import get_logger
from shortlink_app.models import AnalyticsSnapshot, ClickEvent, CodeReservation, ShortLink
from shortlink_app.schemas.records import ClickRecord, LinkRecord, SnapshotRecord
from shortlink_app.utils import utc_now

logger = get_logger(__name__)

SNAPSHOT_FIELDS = (
    "total_clicks",
    "unique_clicks",
    "clicks_by_country",
    "clicks_by_device",
    "clicks_by_browser",
    "clicks_by_referrer",
    "daily_clicks",
    "last_click_at",
)


class StorageStrategy(ABC):
    """
    Abstract persistence capability for links, click events and snapshots.

    Implementations must enforce short code uniqueness themselves: a
    colliding add_link/update_link raises ConflictError, which is the only
    reliable answer when two requests race for the same code.
    All other persistence failures raise StorageError.
    """

    # Links

    @abstractmethod
    async def add_link(self, link: LinkRecord) -> LinkRecord:
        """
        Persist a new link, reserve its code and create its empty snapshot.

        Raises:
            ConflictError: if the code was ever reserved before
        """
        pass

    @abstractmethod
    async def get_link(self, link_id: str) -> Optional[LinkRecord]:
        """Get a link by id, active or not"""
        pass

    @abstractmethod
    async def get_active_link_by_code(self, code: str) -> Optional[LinkRecord]:
        """Get the active link holding a code (expiry is checked by the caller)"""
        pass

    @abstractmethod
    async def is_code_taken(self, code: str) -> bool:
        """True if the code was ever reserved"""
        pass

    @abstractmethod
    async def update_link(self, link_id: str, changes: Dict) -> Optional[LinkRecord]:
        """
        Apply field changes to a link.

        A new short_code is reserved in the same transaction.

        Returns:
            The updated link, or None if it does not exist
        """
        pass

    @abstractmethod
    async def deactivate_link(self, link_id: str) -> bool:
        """Soft delete. Returns False only if the link does not exist"""
        pass

    @abstractmethod
    async def list_links_for_owner(
        self,
        owner_id: str,
        limit: int,
        offset: int
    ) -> List[LinkRecord]:
        """Active links of an owner, newest first"""
        pass

    # Click events

    @abstractmethod
    async def append_click(self, click: ClickRecord) -> ClickRecord:
        """Append one immutable click event"""
        pass

    @abstractmethod
    async def list_clicks(self, link_id: str) -> List[ClickRecord]:
        """All click events of a link, oldest first"""
        pass

    @abstractmethod
    async def recent_clicks(self, link_id: str, limit: int = 100) -> List[ClickRecord]:
        """Most recent click events of a link, newest first"""
        pass

    @abstractmethod
    async def count_clicks(self, link_id: str) -> int:
        """Number of click events of a link"""
        pass

    # Snapshots

    @abstractmethod
    async def upsert_snapshot(self, snapshot: SnapshotRecord) -> SnapshotRecord:
        """Insert the snapshot or overwrite every derived field; bumps updated_at"""
        pass

    @abstractmethod
    async def get_snapshot(self, link_id: str) -> Optional[SnapshotRecord]:
        """Stored snapshot of a link"""
        pass

    @abstractmethod
    async def get_snapshots(self, link_ids: Iterable[str]) -> Dict[str, SnapshotRecord]:
        """Stored snapshots for several links, keyed by link id"""
        pass


class InMemoryStorage(StorageStrategy):
    """
    In-memory storage implementation using Python dicts.

    Pros:
    - Zero setup
    - Perfect for tests (fast, isolated per instance)

    Cons:
    - Lost on restart
    - Not shared between processes

    A single lock makes every operation atomic, which gives the same
    uniqueness guarantee as a database constraint within one process.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._links: Dict[str, LinkRecord] = {}
        self._codes: Dict[str, str] = {}  # code -> link id, never released
        self._clicks: Dict[str, List[ClickRecord]] = {}
        self._snapshots: Dict[str, SnapshotRecord] = {}

    async def add_link(self, link: LinkRecord) -> LinkRecord:
        with self._lock:
            if link.short_code in self._codes:
                raise ConflictError(f"Short code '{link.short_code}' is already taken")
            self._codes[link.short_code] = link.id
            self._links[link.id] = link.model_copy()
            self._clicks[link.id] = []
            self._snapshots[link.id] = SnapshotRecord(link_id=link.id, updated_at=utc_now())
            return link.model_copy()

    async def get_link(self, link_id: str) -> Optional[LinkRecord]:
        link = self._links.get(link_id)
        return link.model_copy() if link else None

    async def get_active_link_by_code(self, code: str) -> Optional[LinkRecord]:
        with self._lock:
            link_id = self._codes.get(code)
            link = self._links.get(link_id) if link_id else None
            if link is None or not link.is_active or link.short_code != code:
                return None
            return link.model_copy()

    async def is_code_taken(self, code: str) -> bool:
        return code in self._codes

    async def update_link(self, link_id: str, changes: Dict) -> Optional[LinkRecord]:
        with self._lock:
            link = self._links.get(link_id)
            if link is None:
                return None
            new_code = changes.get("short_code")
            if new_code and new_code != link.short_code:
                if new_code in self._codes:
                    raise ConflictError(f"Short code '{new_code}' is already taken")
                self._codes[new_code] = link_id
            updated = link.model_copy(update={**changes, "updated_at": utc_now()})
            self._links[link_id] = updated
            return updated.model_copy()

    async def deactivate_link(self, link_id: str) -> bool:
        with self._lock:
            link = self._links.get(link_id)
            if link is None:
                return False
            if link.is_active:
                self._links[link_id] = link.model_copy(
                    update={"is_active": False, "updated_at": utc_now()}
                )
            return True

    async def list_links_for_owner(
        self,
        owner_id: str,
        limit: int,
        offset: int
    ) -> List[LinkRecord]:
        with self._lock:
            owned = [
                link for link in self._links.values()
                if link.owner_id == owner_id and link.is_active
            ]
        owned.sort(key=lambda link: link.created_at, reverse=True)
        return [link.model_copy() for link in owned[offset:offset + limit]]

    async def append_click(self, click: ClickRecord) -> ClickRecord:
        with self._lock:
            if click.link_id not in self._links:
                raise StorageError(f"Cannot record click for unknown link {click.link_id}")
            self._clicks[click.link_id].append(click)
        return click

    async def list_clicks(self, link_id: str) -> List[ClickRecord]:
        with self._lock:
            clicks = list(self._clicks.get(link_id, []))
        return sorted(clicks, key=lambda click: click.clicked_at)

    async def recent_clicks(self, link_id: str, limit: int = 100) -> List[ClickRecord]:
        clicks = await self.list_clicks(link_id)
        return list(reversed(clicks))[:limit]

    async def count_clicks(self, link_id: str) -> int:
        return len(self._clicks.get(link_id, []))

    async def upsert_snapshot(self, snapshot: SnapshotRecord) -> SnapshotRecord:
        stored = snapshot.model_copy(update={"updated_at": utc_now()})
        with self._lock:
            self._snapshots[snapshot.link_id] = stored
        return stored.model_copy()

    async def get_snapshot(self, link_id: str) -> Optional[SnapshotRecord]:
        snapshot = self._snapshots.get(link_id)
        return snapshot.model_copy() if snapshot else None

    async def get_snapshots(self, link_ids: Iterable[str]) -> Dict[str, SnapshotRecord]:
        return {
            link_id: self._snapshots[link_id].model_copy()
            for link_id in link_ids
            if link_id in self._snapshots
        }


class SQLAlchemyStorage(StorageStrategy):
    """
    Relational implementation on top of SQLAlchemy.

    Uniqueness is enforced by the database: short_codes.code is the primary
    key of the reservation table, so two concurrent creations of the same
    code cannot both commit. IntegrityError is translated to ConflictError.

    One short-lived session per call; nothing is shared between requests
    except the engine's connection pool.

    Sessions are synchronous: every call runs on a worker thread via
    asyncio.to_thread, off the event loop, so a caller's timeout can give
    up on a slow query.
    """

    def __init__(self, engine, create_tables: bool = True):
        """
        Initialize SQLAlchemy storage.

        Args:
            engine: SQLAlchemy engine to bind sessions to
            create_tables: Create missing tables on startup
        """
        self.engine = engine
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        # A StaticPool hands every session the same connection: one session at a time
        self._connection_lock = threading.Lock() if isinstance(engine.pool, StaticPool) else None
        if create_tables:
            Base.metadata.create_all(bind=engine)

    def _session(self):
        return self.session_factory()

    async def _run(self, func, *args):
        """Run a blocking session body on a worker thread."""
        if self._connection_lock is None:
            return await asyncio.to_thread(func, *args)
        return await asyncio.to_thread(self._run_locked, func, *args)

    def _run_locked(self, func, *args):
        with self._connection_lock:
            return func(*args)

    async def add_link(self, link: LinkRecord) -> LinkRecord:
        return await self._run(self._add_link, link)

    def _add_link(self, link: LinkRecord) -> LinkRecord:
        db = self._session()
        try:
            row = ShortLink(**link.model_dump())
            db.add(row)
            # Flush the link first so the reservation's foreign key resolves
            db.flush()
            db.add(CodeReservation(code=link.short_code, link_id=link.id))
            db.add(AnalyticsSnapshot(link_id=link.id, updated_at=utc_now()))
            db.commit()
            db.refresh(row)
            return LinkRecord.model_validate(row)
        except IntegrityError:
            db.rollback()
            raise ConflictError(f"Short code '{link.short_code}' is already taken")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create link {link.short_code}: {e}")
            raise StorageError("Failed to create link")
        finally:
            db.close()

    async def get_link(self, link_id: str) -> Optional[LinkRecord]:
        return await self._run(self._get_link, link_id)

    def _get_link(self, link_id: str) -> Optional[LinkRecord]:
        db = self._session()
        try:
            row = db.get(ShortLink, link_id)
            return LinkRecord.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to load link {link_id}: {e}")
            raise StorageError("Failed to load link")
        finally:
            db.close()

    async def get_active_link_by_code(self, code: str) -> Optional[LinkRecord]:
        return await self._run(self._get_active_link_by_code, code)

    def _get_active_link_by_code(self, code: str) -> Optional[LinkRecord]:
        db = self._session()
        try:
            row = db.query(ShortLink).filter(
                ShortLink.short_code == code,
                ShortLink.is_active == True  # noqa: E712
            ).first()
            return LinkRecord.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to resolve code {code}: {e}")
            raise StorageError("Failed to resolve short code")
        finally:
            db.close()

    async def is_code_taken(self, code: str) -> bool:
        return await self._run(self._is_code_taken, code)

    def _is_code_taken(self, code: str) -> bool:
        db = self._session()
        try:
            return db.get(CodeReservation, code) is not None
        except SQLAlchemyError as e:
            logger.error(f"Failed to check code {code}: {e}")
            raise StorageError("Failed to check short code")
        finally:
            db.close()

    async def update_link(self, link_id: str, changes: Dict) -> Optional[LinkRecord]:
        return await self._run(self._update_link, link_id, changes)

    def _update_link(self, link_id: str, changes: Dict) -> Optional[LinkRecord]:
        db = self._session()
        try:
            row = db.get(ShortLink, link_id)
            if row is None:
                return None
            new_code = changes.get("short_code")
            if new_code and new_code != row.short_code:
                db.add(CodeReservation(code=new_code, link_id=link_id))
            for field, value in changes.items():
                setattr(row, field, value)
            row.updated_at = utc_now()
            db.commit()
            db.refresh(row)
            return LinkRecord.model_validate(row)
        except IntegrityError:
            db.rollback()
            raise ConflictError(f"Short code '{changes.get('short_code')}' is already taken")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to update link {link_id}: {e}")
            raise StorageError("Failed to update link")
        finally:
            db.close()

    async def deactivate_link(self, link_id: str) -> bool:
        return await self._run(self._deactivate_link, link_id)

    def _deactivate_link(self, link_id: str) -> bool:
        db = self._session()
        try:
            row = db.get(ShortLink, link_id)
            if row is None:
                return False
            if row.is_active:
                row.is_active = False
                row.updated_at = utc_now()
                db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to retire link {link_id}: {e}")
            raise StorageError("Failed to delete link")
        finally:
            db.close()

    async def list_links_for_owner(
        self,
        owner_id: str,
        limit: int,
        offset: int
    ) -> List[LinkRecord]:
        return await self._run(self._list_links_for_owner, owner_id, limit, offset)

    def _list_links_for_owner(self, owner_id: str, limit: int, offset: int) -> List[LinkRecord]:
        db = self._session()
        try:
            rows = db.query(ShortLink).filter(
                ShortLink.owner_id == owner_id,
                ShortLink.is_active == True  # noqa: E712
            ).order_by(
                ShortLink.created_at.desc()
            ).limit(limit).offset(offset).all()
            return [LinkRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list links for owner {owner_id}: {e}")
            raise StorageError("Failed to fetch links")
        finally:
            db.close()

    async def append_click(self, click: ClickRecord) -> ClickRecord:
        return await self._run(self._append_click, click)

    def _append_click(self, click: ClickRecord) -> ClickRecord:
        db = self._session()
        try:
            db.add(ClickEvent(**click.model_dump()))
            db.commit()
            return click
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to append click for link {click.link_id}: {e}")
            raise StorageError("Failed to record click")
        finally:
            db.close()

    async def list_clicks(self, link_id: str) -> List[ClickRecord]:
        return await self._run(self._list_clicks, link_id)

    def _list_clicks(self, link_id: str) -> List[ClickRecord]:
        db = self._session()
        try:
            rows = db.query(ClickEvent).filter(
                ClickEvent.link_id == link_id
            ).order_by(ClickEvent.clicked_at).all()
            return [ClickRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read clicks for link {link_id}: {e}")
            raise StorageError("Failed to read clicks")
        finally:
            db.close()

    async def recent_clicks(self, link_id: str, limit: int = 100) -> List[ClickRecord]:
        return await self._run(self._recent_clicks, link_id, limit)

    def _recent_clicks(self, link_id: str, limit: int) -> List[ClickRecord]:
        db = self._session()
        try:
            rows = db.query(ClickEvent).filter(
                ClickEvent.link_id == link_id
            ).order_by(ClickEvent.clicked_at.desc()).limit(limit).all()
            return [ClickRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read recent clicks for link {link_id}: {e}")
            raise StorageError("Failed to read clicks")
        finally:
            db.close()

    async def count_clicks(self, link_id: str) -> int:
        return await self._run(self._count_clicks, link_id)

    def _count_clicks(self, link_id: str) -> int:
        db = self._session()
        try:
            return db.query(ClickEvent).filter(ClickEvent.link_id == link_id).count()
        except SQLAlchemyError as e:
            logger.error(f"Failed to count clicks for link {link_id}: {e}")
            raise StorageError("Failed to count clicks")
        finally:
            db.close()

    async def upsert_snapshot(self, snapshot: SnapshotRecord) -> SnapshotRecord:
        return await self._run(self._upsert_snapshot, snapshot)

    def _upsert_snapshot(self, snapshot: SnapshotRecord) -> SnapshotRecord:
        values = {field: getattr(snapshot, field) for field in SNAPSHOT_FIELDS}
        # Two attempts: a concurrent insert of the same link_id turns the
        # second attempt into an update.
        for attempt in range(2):
            db = self._session()
            try:
                row = db.query(AnalyticsSnapshot).filter(
                    AnalyticsSnapshot.link_id == snapshot.link_id
                ).first()
                if row is None:
                    row = AnalyticsSnapshot(link_id=snapshot.link_id)
                    db.add(row)
                for field, value in values.items():
                    setattr(row, field, value)
                row.updated_at = utc_now()
                db.commit()
                db.refresh(row)
                return SnapshotRecord.model_validate(row)
            except IntegrityError:
                db.rollback()
                if attempt:
                    raise StorageError("Failed to store analytics snapshot")
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to store snapshot for link {snapshot.link_id}: {e}")
                raise StorageError("Failed to store analytics snapshot")
            finally:
                db.close()

    async def get_snapshot(self, link_id: str) -> Optional[SnapshotRecord]:
        return await self._run(self._get_snapshot, link_id)

    def _get_snapshot(self, link_id: str) -> Optional[SnapshotRecord]:
        db = self._session()
        try:
            row = db.query(AnalyticsSnapshot).filter(
                AnalyticsSnapshot.link_id == link_id
            ).first()
            return SnapshotRecord.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read snapshot for link {link_id}: {e}")
            raise StorageError("Failed to read analytics")
        finally:
            db.close()

    async def get_snapshots(self, link_ids: Iterable[str]) -> Dict[str, SnapshotRecord]:
        link_ids = list(link_ids)
        if not link_ids:
            return {}
        return await self._run(self._get_snapshots, link_ids)

    def _get_snapshots(self, link_ids: List[str]) -> Dict[str, SnapshotRecord]:
        db = self._session()
        try:
            rows = db.query(AnalyticsSnapshot).filter(
                AnalyticsSnapshot.link_id.in_(link_ids)
            ).all()
            return {row.link_id: SnapshotRecord.model_validate(row) for row in rows}
        except SQLAlchemyError as e:
            logger.error(f"Failed to read snapshots: {e}")
            raise StorageError("Failed to read analytics")
        finally:
            db.close()
