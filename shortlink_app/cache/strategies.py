"""
Cache strategies using Strategy Pattern.
Allows switching between different cache backends (Redis, In-Memory, Null).

Cache failures never break a lookup: they are logged and read as misses,
and the caller falls back to the database.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional, Tuple

from shortlink_app.logging_config import get_logger

logger = get_logger(__name__)


class CacheStrategy(ABC):
    """
    Abstract base class for cache strategies.

    All methods are async because cache operations involve I/O (network for Redis).
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        """
        Set value in cache with TTL (Time To Live).

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (default: 1 hour)
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache. True if it existed"""
        pass


class RedisCache(CacheStrategy):
    """
    Redis cache implementation.

    Shared by every API process, so a retire in one process invalidates
    the entry for all of them. Commands run on a worker thread.
    """

    def __init__(self, redis_client):
        """
        Args:
            redis_client: Redis client instance (redis.Redis)
        """
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await asyncio.to_thread(self.redis.get, key)
            return value.decode("utf-8") if value else None
        except Exception as e:
            logger.warning(f"Redis get error for {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        try:
            return bool(await asyncio.to_thread(self.redis.setex, key, ttl, value))
        except Exception as e:
            logger.warning(f"Redis set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(await asyncio.to_thread(self.redis.delete, key))
        except Exception as e:
            logger.warning(f"Redis delete error for {key}: {e}")
            return False


class InMemoryCache(CacheStrategy):
    """
    In-memory cache implementation using Python dict.

    Expired entries are dropped on read and by a periodic sweep on write.
    Past ``max_entries`` the oldest writes are evicted first.
    Not shared between processes.
    """

    def __init__(self, max_entries: int = 10000, sweep_interval: float = 60.0):
        self.max_entries = max_entries
        self.sweep_interval = sweep_interval
        self._cache: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._next_sweep = time.monotonic() + sweep_interval

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, expires = entry
            if expires <= time.monotonic():
                del self._cache[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        now = time.monotonic()
        with self._lock:
            self._cache.pop(key, None)
            self._cache[key] = (value, now + ttl)
            if now >= self._next_sweep:
                self._sweep(now)
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        return True

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._cache)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires) in self._cache.items() if expires <= now]
        for key in expired:
            del self._cache[key]
        self._next_sweep = now + self.sweep_interval


class NullCache(CacheStrategy):
    """
    Null Object Pattern - cache that does nothing.

    Every lookup goes to the database.
    """

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return True
