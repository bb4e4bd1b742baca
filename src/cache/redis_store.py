# src/cache/redis_store.py — v2
"""Redis-based cache store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable when several grading workstations share one cache.

Layout:
    gradecache:entry:<owner_id>:<item_id>   hash (metadata fields + blob)
    gradecache:owner:<owner_id>             set of item ids
    gradecache:owners                       set of owner ids
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from gradecache.cache.base_cache_store import BaseCacheStore
from gradecache.cache.locator import locators_match
from gradecache.cache.models import (
    CacheEntry,
    CacheKey,
    EntryMetadata,
    default_owner_label,
)
from gradecache.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_PREFIX = "gradecache:"
_OWNERS_KEY = f"{_PREFIX}owners"
_META_FIELDS = ("source_locator", "size_bytes", "cached_at", "owner_label")


def _entry_key(key: CacheKey) -> str:
    return f"{_PREFIX}entry:{key.owner_id}:{key.item_id}"


def _owner_key(owner_id: str) -> str:
    return f"{_PREFIX}owner:{owner_id}"


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisCacheStore(BaseCacheStore):
    """Redis-backed cache store for shared deployments."""

    backend_name = "redis"

    def __init__(self, redis_url: str) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._redis_error: type[Exception] = redis.RedisError
        self._client = redis.Redis.from_url(redis_url, decode_responses=False)

    async def get_by_key(self, key: CacheKey) -> CacheEntry | None:
        data = self._call(self._client.hgetall, _entry_key(key))
        if not data:
            return None
        fields = {_text(k): v for k, v in data.items()}
        try:
            return CacheEntry(
                **self._metadata_from_fields(key, fields).model_dump(),
                blob=bytes(fields["blob"]),
            )
        except (KeyError, ValueError) as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def find_by_locator(self, source_locator: str) -> CacheEntry | None:
        for meta in await self.list_metadata():
            if locators_match(meta.source_locator, source_locator):
                return await self.get_by_key(meta.key)
        return None

    async def put(
        self,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str | None = None,
    ) -> CacheEntry:
        old_label, old_cached_at = self._call(
            self._client.hmget, _entry_key(key), ["owner_label", "cached_at"]
        )
        label = owner_label or (
            _text(old_label) if old_label else default_owner_label(key.owner_id)
        )
        entry = CacheEntry.create(
            key, source_locator, bytes(blob), label,
            cached_at=(
                datetime.fromisoformat(_text(old_cached_at)) if old_cached_at else None
            ),
        )

        pipe = self._client.pipeline(transaction=True)
        pipe.delete(_entry_key(key))
        pipe.hset(
            _entry_key(key),
            mapping={
                "source_locator": entry.source_locator,
                "size_bytes": entry.size_bytes,
                "cached_at": entry.cached_at.isoformat(),
                "owner_label": entry.owner_label,
                "blob": entry.blob,
            },
        )
        pipe.sadd(_owner_key(key.owner_id), key.item_id)
        pipe.sadd(_OWNERS_KEY, key.owner_id)
        self._call(pipe.execute)
        return entry

    async def list_by_owner(self, owner_id: str) -> list[EntryMetadata]:
        item_ids = sorted(
            _text(i) for i in self._call(self._client.smembers, _owner_key(owner_id))
        )
        metas: list[EntryMetadata] = []
        for item_id in item_ids:
            key = CacheKey(owner_id=owner_id, item_id=item_id)
            values = self._call(self._client.hmget, _entry_key(key), list(_META_FIELDS))
            if all(v is None for v in values):
                continue
            fields = dict(zip(_META_FIELDS, values))
            try:
                metas.append(self._metadata_from_fields(key, fields))
            except (KeyError, ValueError) as e:
                logger.warning("Failed to deserialize cache metadata %s: %s", key, e)
        return metas

    async def list_metadata(self) -> list[EntryMetadata]:
        metas: list[EntryMetadata] = []
        for owner_id in sorted(
            _text(o) for o in self._call(self._client.smembers, _OWNERS_KEY)
        ):
            metas.extend(await self.list_by_owner(owner_id))
        return metas

    async def delete_owner(self, owner_id: str) -> int:
        item_ids = [
            _text(i) for i in self._call(self._client.smembers, _owner_key(owner_id))
        ]
        pipe = self._client.pipeline(transaction=True)
        for item_id in item_ids:
            pipe.delete(_entry_key(CacheKey(owner_id=owner_id, item_id=item_id)))
        pipe.delete(_owner_key(owner_id))
        pipe.srem(_OWNERS_KEY, owner_id)
        self._call(pipe.execute)
        return len(item_ids)

    async def delete_all(self) -> int:
        removed = 0
        for owner_id in [
            _text(o) for o in self._call(self._client.smembers, _OWNERS_KEY)
        ]:
            removed += await self.delete_owner(owner_id)
        return removed

    async def delete_older_than(
        self,
        cutoff: datetime,
        exclude_owners: Iterable[str] = (),
        owner_id: str | None = None,
    ) -> int:
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        excluded = set(exclude_owners)
        metas = (
            await self.list_metadata()
            if owner_id is None
            else await self.list_by_owner(owner_id)
        )
        doomed = [
            m.key
            for m in metas
            if m.key.owner_id not in excluded and m.cached_at < cutoff
        ]
        if not doomed:
            return 0
        pipe = self._client.pipeline(transaction=True)
        for key in doomed:
            pipe.delete(_entry_key(key))
            pipe.srem(_owner_key(key.owner_id), key.item_id)
        self._call(pipe.execute)
        return len(doomed)

    def close(self) -> None:
        self._client.close()

    # --- internals ---

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except self._redis_error as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e

    @staticmethod
    def _metadata_from_fields(key: CacheKey, fields: dict[str, Any]) -> EntryMetadata:
        return EntryMetadata(
            key=key,
            source_locator=_text(fields.get("source_locator") or b""),
            size_bytes=int(_text(fields["size_bytes"])),
            cached_at=datetime.fromisoformat(_text(fields["cached_at"])),
            owner_label=_text(fields["owner_label"]),
        )
