# src/cache/base_cache_store.py — v2
"""Abstract cache store interface.

Primary identity is ``CacheKey(owner_id, item_id)``; the source locator is
only a fallback signal for items whose key misses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from gradecache.cache.models import (
    CacheEntry,
    CacheKey,
    CacheSize,
    EntryMetadata,
    OwnerSummary,
    summarize_owners,
)


class BaseCacheStore(ABC):
    """Unified interface for blob cache backends.

    Implementations serialize writes per key and raise
    ``StoreUnavailable`` for backend failures.
    """

    backend_name: str = "base"

    async def get(
        self, source_locator: str | None, key: CacheKey | None
    ) -> CacheEntry | None:
        """Look up by key first, then fall back to the source locator."""
        if key is not None:
            entry = await self.get_by_key(key)
            if entry is not None:
                return entry
        if not source_locator:
            return None
        return await self.find_by_locator(source_locator)

    async def contains(self, key: CacheKey) -> bool:
        """Whether an entry exists for ``key`` (no locator fallback)."""
        return await self.get_by_key(key) is not None

    @abstractmethod
    async def get_by_key(self, key: CacheKey) -> CacheEntry | None:
        """Retrieve an entry by its composite key."""

    @abstractmethod
    async def find_by_locator(self, source_locator: str) -> CacheEntry | None:
        """Retrieve the first entry whose locator matches (see ``locator.py``)."""

    @abstractmethod
    async def put(
        self,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str | None = None,
    ) -> CacheEntry:
        """Store a blob, atomically replacing any entry for ``key``.

        Without ``owner_label`` the existing entry's label is kept, else the
        ``Assignment <id>`` placeholder is used.
        """

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[EntryMetadata]:
        """Metadata for every entry under ``owner_id``; blobs are not loaded."""

    @abstractmethod
    async def list_metadata(self) -> list[EntryMetadata]:
        """Metadata for every entry in the store."""

    @abstractmethod
    async def delete_owner(self, owner_id: str) -> int:
        """Delete all entries under ``owner_id``. Returns the number removed."""

    @abstractmethod
    async def delete_all(self) -> int:
        """Delete every entry. Returns the number removed."""

    @abstractmethod
    async def delete_older_than(
        self,
        cutoff: datetime,
        exclude_owners: Iterable[str] = (),
        owner_id: str | None = None,
    ) -> int:
        """Delete entries cached before ``cutoff``, skipping excluded owners.

        ``owner_id`` restricts the sweep to a single owner.
        """

    async def list_owners(self) -> list[OwnerSummary]:
        """One summary per cached owner."""
        return summarize_owners(await self.list_metadata())

    async def total_size(self) -> CacheSize:
        """Entry count and byte total (full scan)."""
        metas = await self.list_metadata()
        return CacheSize(count=len(metas), bytes=sum(m.size_bytes for m in metas))

    def close(self) -> None:
        """Release backend resources."""
