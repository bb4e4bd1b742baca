# tests/unit/cache/test_unit_redis_store.py — v1
"""Tests for cache/redis_store.py — in-memory fake Redis client."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import pytest

from gradecache.cache.models import CacheKey
from gradecache.core.errors import StoreUnavailable


class FakeRedis:
    """Just enough of redis.Redis (bytes in, bytes out) for the store."""

    def __init__(self):
        self.hashes: dict[str, dict[bytes, bytes]] = {}
        self.sets: dict[str, set[bytes]] = {}

    @staticmethod
    def _b(value) -> bytes:
        if isinstance(value, bytes):
            return value
        return str(value).encode("utf-8")

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def hget(self, name, field):
        return self.hashes.get(name, {}).get(self._b(field))

    def hmget(self, name, fields):
        h = self.hashes.get(name, {})
        return [h.get(self._b(f)) for f in fields]

    def hset(self, name, mapping):
        self.hashes.setdefault(name, {}).update(
            {self._b(k): self._b(v) for k, v in mapping.items()}
        )

    def smembers(self, name):
        return set(self.sets.get(name, set()))

    def sadd(self, name, value):
        self.sets.setdefault(name, set()).add(self._b(value))

    def srem(self, name, value):
        self.sets.get(name, set()).discard(self._b(value))

    def delete(self, name):
        self.hashes.pop(name, None)
        self.sets.pop(name, None)

    def pipeline(self, transaction=True):
        client = self
        ops = []

        class _Pipe:
            def __getattr__(self, attr):
                def _queue(*args, **kwargs):
                    ops.append((attr, args, kwargs))
                return _queue

            def execute(self):
                for attr, args, kwargs in ops:
                    getattr(client, attr)(*args, **kwargs)
                ops.clear()

        return _Pipe()

    def close(self):
        pass


@pytest.fixture
def fake():
    return FakeRedis()


@pytest.fixture
def store(fake):
    pytest.importorskip("redis")
    from gradecache.cache.redis_store import RedisCacheStore

    with patch("redis.Redis.from_url", return_value=fake):
        return RedisCacheStore(redis_url="redis://localhost:6379/0")


class TestRedisCacheStore:
    def test_import_error_without_redis(self):
        """Clear ImportError when redis is not available."""
        redis_mod = sys.modules.get("redis")
        sys.modules["redis"] = None  # type: ignore[assignment]
        try:
            from gradecache.cache.redis_store import RedisCacheStore
            with pytest.raises(ImportError, match="redis"):
                RedisCacheStore(redis_url="redis://localhost")
        finally:
            if redis_mod is not None:
                sys.modules["redis"] = redis_mod
            else:
                sys.modules.pop("redis", None)

    @pytest.mark.asyncio
    async def test_put_and_get(self, store, fake):
        key = CacheKey(owner_id="812", item_id="5")
        await store.put(key, "https://lms.test/files/5", b"%PDF\x00", "Essay")
        entry = await store.get(None, key)
        assert entry.blob == b"%PDF\x00"
        assert entry.owner_label == "Essay"
        assert fake.smembers("gradecache:owners") == {b"812"}
        assert fake.smembers("gradecache:owner:812") == {b"5"}

    @pytest.mark.asyncio
    async def test_label_kept_on_reput(self, store):
        key = CacheKey(owner_id="812", item_id="5")
        await store.put(key, "u", b"a", "Essay")
        await store.put(key, "u", b"b")
        assert (await store.get(None, key)).owner_label == "Essay"

    @pytest.mark.asyncio
    async def test_cached_at_kept_on_reput(self, store):
        key = CacheKey(owner_id="812", item_id="5")
        first = await store.put(key, "u", b"a", "Essay")
        await store.put(key, "u", b"bb")
        entry = await store.get(None, key)
        assert entry.blob == b"bb"
        assert entry.cached_at == first.cached_at

    @pytest.mark.asyncio
    async def test_locator_fallback(self, store):
        await store.put(CacheKey(owner_id="812", item_id="5"), "https://lms.test/files/5?v=1", b"a")
        entry = await store.get(
            "https://lms.test/files/5?v=2", CacheKey(owner_id="812", item_id="zzz")
        )
        assert entry is not None

    @pytest.mark.asyncio
    async def test_list_and_delete_owner(self, store):
        await store.put(CacheKey(owner_id="A", item_id="1"), "u", b"aa")
        await store.put(CacheKey(owner_id="A", item_id="2"), "u", b"aaa")
        await store.put(CacheKey(owner_id="B", item_id="1"), "u", b"b")
        assert [m.key.item_id for m in await store.list_by_owner("A")] == ["1", "2"]
        assert (await store.total_size()).bytes == 6
        assert await store.delete_owner("A") == 2
        assert await store.get(None, CacheKey(owner_id="A", item_id="1")) is None
        assert [o.owner_id for o in await store.list_owners()] == ["B"]

    @pytest.mark.asyncio
    async def test_delete_all(self, store):
        await store.put(CacheKey(owner_id="A", item_id="1"), "u", b"aa")
        await store.put(CacheKey(owner_id="B", item_id="1"), "u", b"b")
        assert await store.delete_all() == 2
        assert await store.list_owners() == []

    @pytest.mark.asyncio
    async def test_redis_error_wrapped(self):
        redis = pytest.importorskip("redis")
        from gradecache.cache.redis_store import RedisCacheStore

        client = MagicMock()
        client.hgetall.side_effect = redis.ConnectionError("refused")
        with patch("redis.Redis.from_url", return_value=client):
            store = RedisCacheStore(redis_url="redis://localhost")
        with pytest.raises(StoreUnavailable, match="redis"):
            await store.get(None, CacheKey(owner_id="A", item_id="1"))
