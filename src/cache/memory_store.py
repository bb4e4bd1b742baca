# src/cache/memory_store.py — v1
"""In-process cache store (CACHE_BACKEND=memory).

Nothing survives the process; used for ephemeral sessions and tests.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from gradecache.cache.base_cache_store import BaseCacheStore
from gradecache.cache.locator import locators_match
from gradecache.cache.models import (
    CacheEntry,
    CacheKey,
    EntryMetadata,
    default_owner_label,
)


class MemoryCacheStore(BaseCacheStore):
    """Dict-backed store. Every operation completes without suspending."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}

    async def get_by_key(self, key: CacheKey) -> CacheEntry | None:
        return self._entries.get(key)

    async def find_by_locator(self, source_locator: str) -> CacheEntry | None:
        for entry in self._entries.values():
            if locators_match(entry.source_locator, source_locator):
                return entry
        return None

    async def put(
        self,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str | None = None,
    ) -> CacheEntry:
        existing = self._entries.get(key)
        label = owner_label or (
            existing.owner_label if existing else default_owner_label(key.owner_id)
        )
        entry = CacheEntry.create(
            key, source_locator, bytes(blob), label,
            cached_at=existing.cached_at if existing else None,
        )
        self._entries[key] = entry
        return entry

    async def list_by_owner(self, owner_id: str) -> list[EntryMetadata]:
        return [
            e.metadata() for k, e in self._entries.items() if k.owner_id == owner_id
        ]

    async def list_metadata(self) -> list[EntryMetadata]:
        return [e.metadata() for e in self._entries.values()]

    async def delete_owner(self, owner_id: str) -> int:
        doomed = [k for k in self._entries if k.owner_id == owner_id]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    async def delete_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    async def delete_older_than(
        self,
        cutoff: datetime,
        exclude_owners: Iterable[str] = (),
        owner_id: str | None = None,
    ) -> int:
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        excluded = set(exclude_owners)
        doomed = [
            k
            for k, e in self._entries.items()
            if e.cached_at < cutoff
            and k.owner_id not in excluded
            and (owner_id is None or k.owner_id == owner_id)
        ]
        for k in doomed:
            del self._entries[k]
        return len(doomed)
