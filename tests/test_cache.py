"""
Tests for cache strategies and the cache factory.
"""
import asyncio

from shortlink_app.cache.factory import CacheBackend, CacheFactory
from shortlink_app.cache.strategies import InMemoryCache, NullCache


class TestInMemoryCache:
    def test_set_get_delete(self):
        cache = InMemoryCache()
        asyncio.run(cache.set("link:abc", "value", ttl=60))
        assert asyncio.run(cache.get("link:abc")) == "value"
        assert asyncio.run(cache.delete("link:abc")) is True
        assert asyncio.run(cache.get("link:abc")) is None

    def test_expired_entry_is_a_miss(self):
        cache = InMemoryCache()
        asyncio.run(cache.set("link:abc", "value", ttl=0))
        assert asyncio.run(cache.get("link:abc")) is None

    def test_oldest_entries_evicted_past_cap(self):
        cache = InMemoryCache(max_entries=2)
        for code in ("a", "b", "c"):
            asyncio.run(cache.set(f"link:{code}", code, ttl=60))

        assert len(cache) == 2
        assert asyncio.run(cache.get("link:a")) is None
        assert asyncio.run(cache.get("link:c")) == "c"

    def test_unread_expired_entries_are_swept_on_write(self):
        cache = InMemoryCache(sweep_interval=0)
        for code in ("a", "b", "c"):
            asyncio.run(cache.set(f"link:{code}", code, ttl=0))
        asyncio.run(cache.set("link:live", "live", ttl=60))

        assert len(cache) == 1


class TestNullCache:
    def test_always_misses(self):
        cache = NullCache()
        asyncio.run(cache.set("link:abc", "value"))
        assert asyncio.run(cache.get("link:abc")) is None


class TestCacheFactory:
    def setup_method(self):
        CacheFactory.clear_instance()

    def teardown_method(self):
        CacheFactory.clear_instance()

    def test_unreachable_redis_falls_back_to_memory(self, monkeypatch):
        monkeypatch.setattr("shortlink_app.cache.factory.settings.redis_url", "redis://127.0.0.1:1/0")
        assert isinstance(CacheFactory.create(CacheBackend.REDIS), InMemoryCache)

    def test_instance_is_cached(self):
        cache = CacheFactory.create(CacheBackend.NULL)
        assert CacheFactory.create(CacheBackend.MEMORY) is cache
