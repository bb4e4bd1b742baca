# src/api/facade.py — v2
"""Public API facade — single entry point for the offline submission cache.

Usage:
    from gradecache.api.facade import OfflineCache

    async with AiohttpTransfer() as transfer:
        cache = OfflineCache.from_settings(load_settings(), transfer)
        await cache.open()
        handle = await cache.start_batch(request)
        entry = await cache.wait_for(owner_id, item_id, source_locator)
        await cache.close()

The facade wires the cache store, sync engine and eviction policy together
and exposes the operations the grading UI needs: start or run a batch,
read entries, wait for one, observe progress, and manage the cache.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from gradecache.batch.models import BatchRequest
from gradecache.cache.cache_factory import create_cache_store
from gradecache.cache.models import CacheEntry, CacheKey, CacheSize, EntryMetadata, OwnerSummary
from gradecache.config.settings import Settings
from gradecache.eviction.completion import SubmissionState
from gradecache.eviction.policy import DEFAULT_MAX_AGE_DAYS, EvictionPolicy
from gradecache.fetch.retry import RetryPolicy
from gradecache.sync.engine import BatchHandle, SyncEngine
from gradecache.sync.waiter import DEFAULT_WAIT_TIMEOUT_S
from gradecache.tracking.progress import ProgressState

if TYPE_CHECKING:
    from gradecache.cache.base_cache_store import BaseCacheStore
    from gradecache.fetch.transfer import Transfer

logger = logging.getLogger(__name__)


class OfflineCache:
    """Cache store + sync engine + eviction policy behind one object."""

    def __init__(
        self,
        engine: SyncEngine,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        wait_timeout_s: float = DEFAULT_WAIT_TIMEOUT_S,
    ) -> None:
        self._engine = engine
        self._eviction = EvictionPolicy(engine, max_age_days=max_age_days)
        self._wait_timeout_s = wait_timeout_s

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None,
        transfer: Transfer,
        store: BaseCacheStore | None = None,
    ) -> OfflineCache:
        """Build the configured store and engine.

        Args:
            settings: Global settings. Loaded from .env if None.
            transfer: Callable performing one download.
            store: Pre-built store; overrides ``CACHE_BACKEND`` when given.
        """
        settings = settings or Settings()
        store = store or create_cache_store(settings)
        engine = SyncEngine(
            store,
            transfer,
            policy=RetryPolicy.from_settings(settings),
            concurrency_limit=settings.download_concurrency_limit,
            concurrency_ceiling=settings.download_concurrency_ceiling,
            transfer_timeout_s=settings.download_timeout_s,
            offline=settings.offline_mode,
        )
        logger.debug(
            "OfflineCache configured: backend=%s, concurrency=%d, offline=%s",
            store.backend_name, settings.download_concurrency_limit,
            settings.offline_mode,
        )
        return cls(
            engine,
            max_age_days=settings.cache_max_age_days,
            wait_timeout_s=settings.cache_wait_timeout_s,
        )

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def store(self) -> BaseCacheStore:
        return self._engine.store

    # --- lifecycle ---

    async def open(self) -> int:
        """Start a session; runs age-based eviction once.

        Returns:
            Number of expired entries removed.
        """
        removed = await self._eviction.evict_expired()
        logger.info("Offline cache opened (%s), %d expired entries removed",
                    self.store.backend_name, removed)
        return removed

    async def close(self) -> None:
        """Tear down running batches and release the store."""
        await self._engine.aclose()
        self.store.close()

    async def __aenter__(self) -> OfflineCache:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- batches ---

    async def start_batch(self, request: BatchRequest) -> BatchHandle:
        return await self._engine.start_batch(request)

    async def sync(self, request: BatchRequest) -> ProgressState:
        return await self._engine.sync(request)

    def progress(self, owner_id: Any) -> ProgressState | None:
        return self._engine.progress(str(owner_id))

    def cancel(self) -> None:
        self._engine.cancel()

    # --- reads ---

    async def lookup(
        self, source_locator: str | None, owner_id: Any, item_id: Any
    ) -> CacheEntry | None:
        return await self._engine.lookup(
            source_locator, CacheKey(owner_id=owner_id, item_id=item_id)
        )

    async def wait_for(
        self,
        owner_id: Any,
        item_id: Any,
        source_locator: str | None = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CacheEntry:
        """Return the entry once cached; see ``wait_for_cache`` for errors."""
        return await self._engine.wait_for_entry(
            CacheKey(owner_id=owner_id, item_id=item_id),
            source_locator=source_locator,
            timeout=self._wait_timeout_s if timeout is None else timeout,
            cancel_event=cancel_event,
        )

    async def open_document(
        self,
        owner_id: Any,
        item_id: Any,
        source_locator: str | None = None,
        auth: Any = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> bytes:
        """Document bytes for the viewer; offline mode never hits the source."""
        return await self._engine.open_document(
            CacheKey(owner_id=owner_id, item_id=item_id),
            source_locator=source_locator,
            auth=auth,
            timeout=self._wait_timeout_s if timeout is None else timeout,
            cancel_event=cancel_event,
        )

    async def list_by_owner(self, owner_id: Any) -> list[EntryMetadata]:
        return await self.store.list_by_owner(str(owner_id))

    async def list_owners(self) -> list[OwnerSummary]:
        return await self.store.list_owners()

    async def total_size(self) -> CacheSize:
        return await self.store.total_size()

    # --- management ---

    async def delete_owner(self, owner_id: Any) -> int:
        owner_id = str(owner_id)
        async with self._engine.owner_lock(owner_id):
            removed = await self.store.delete_owner(owner_id)
        logger.info("Deleted %d entries for owner %s", removed, owner_id)
        return removed

    async def delete_all(self) -> int:
        removed = await self.store.delete_all()
        logger.info("Cleared cache (%d entries)", removed)
        return removed

    async def evict_expired(self, now: datetime | None = None) -> int:
        return await self._eviction.evict_expired(now)

    async def evict_if_complete(
        self,
        owner_id: Any,
        submissions: Iterable[SubmissionState],
        staged_pending: int = 0,
    ) -> bool:
        return await self._eviction.evict_if_complete(
            str(owner_id), submissions, staged_pending
        )
