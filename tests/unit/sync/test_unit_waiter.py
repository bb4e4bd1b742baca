# tests/unit/sync/test_unit_waiter.py — v1
"""Tests for sync/waiter.py — the wait-for-cache protocol."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from gradecache.cache.memory_store import MemoryCacheStore
from gradecache.cache.models import CacheKey
from gradecache.core.errors import (
    NeverProducedError,
    StoreUnavailable,
    WaitCancelledError,
    WaitTimeoutError,
)
from gradecache.sync.waiter import wait_for_cache
from gradecache.tracking.progress import ProgressReporter

KEY = CacheKey(owner_id="812", item_id="1")
OTHER = CacheKey(owner_id="812", item_id="2")


class LaggingStore(MemoryCacheStore):
    """First key lookup reads a miss, then stalls until released."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self._lag = True

    async def get_by_key(self, key):
        entry = await super().get_by_key(key)
        if self._lag:
            self._lag = False
            await self.release.wait()
        return entry


@pytest.fixture
def reporter():
    return ProgressReporter("812", 1, total=2)


class TestWaitForCache:
    @pytest.mark.asyncio
    async def test_hit_returns_immediately(self, memory_store):
        await memory_store.put(KEY, "u", b"pdf")
        entry = await wait_for_cache(memory_store, None, KEY)
        assert entry.blob == b"pdf"

    @pytest.mark.asyncio
    async def test_locator_fallback_hit(self, memory_store):
        await memory_store.put(OTHER, "https://lms.test/files/9?v=1", b"pdf")
        entry = await wait_for_cache(
            memory_store, None, KEY, source_locator="https://lms.test/files/9?v=2"
        )
        assert entry.key == OTHER

    @pytest.mark.asyncio
    async def test_no_reporter_fails_fast(self, memory_store):
        with pytest.raises(NeverProducedError):
            await wait_for_cache(memory_store, None, KEY, timeout=60)

    @pytest.mark.asyncio
    async def test_finished_batch_fails_fast(self, memory_store):
        done = ProgressReporter.completed("812", 1, total=0)
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(NeverProducedError):
            await wait_for_cache(memory_store, done, KEY, timeout=60)
        assert loop.time() - started < 1

    @pytest.mark.asyncio
    async def test_batch_finishes_during_first_lookup(self):
        store = LaggingStore()
        reporter = ProgressReporter("812", 1, total=1)
        waiter = asyncio.create_task(wait_for_cache(store, reporter, KEY, timeout=5))
        await asyncio.sleep(0)

        await store.put(KEY, "u", b"pdf")
        reporter.record_success(KEY)
        reporter.finish()
        store.release.set()

        entry = await waiter
        assert entry.blob == b"pdf"

    @pytest.mark.asyncio
    async def test_entry_appears_during_batch(self, memory_store, reporter):
        waiter = asyncio.create_task(wait_for_cache(memory_store, reporter, KEY))
        await asyncio.sleep(0)
        await memory_store.put(OTHER, "u", b"other")
        reporter.record_success(OTHER)
        await asyncio.sleep(0)
        assert not waiter.done()

        await memory_store.put(KEY, "u", b"mine")
        reporter.record_success(KEY)
        entry = await asyncio.wait_for(waiter, 1)
        assert entry.blob == b"mine"
        assert reporter.listener_count == 0

    @pytest.mark.asyncio
    async def test_batch_ends_without_entry(self, memory_store, reporter):
        waiter = asyncio.create_task(wait_for_cache(memory_store, reporter, KEY))
        await asyncio.sleep(0)
        reporter.record_failure(KEY, "HTTP 404: Not Found")
        reporter.record_success(OTHER)
        reporter.finish()
        with pytest.raises(NeverProducedError):
            await asyncio.wait_for(waiter, 1)
        assert reporter.listener_count == 0

    @pytest.mark.asyncio
    async def test_cancel_event(self, memory_store, reporter):
        cancel = asyncio.Event()
        waiter = asyncio.create_task(
            wait_for_cache(memory_store, reporter, KEY, cancel_event=cancel)
        )
        await asyncio.sleep(0)
        cancel.set()
        with pytest.raises(WaitCancelledError):
            await asyncio.wait_for(waiter, 1)
        assert reporter.listener_count == 0

    @pytest.mark.asyncio
    async def test_already_cancelled(self, memory_store, reporter):
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(WaitCancelledError):
            await wait_for_cache(memory_store, reporter, KEY, cancel_event=cancel)
        assert reporter.listener_count == 0

    @pytest.mark.asyncio
    async def test_timeout(self, memory_store, reporter):
        with pytest.raises(WaitTimeoutError):
            await wait_for_cache(memory_store, reporter, KEY, timeout=0.05)
        assert reporter.listener_count == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, memory_store, reporter):
        waiter = asyncio.create_task(wait_for_cache(memory_store, reporter, KEY))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert reporter.listener_count == 0

    @pytest.mark.asyncio
    async def test_store_error_counts_as_miss(self, reporter):
        store = AsyncMock()
        store.get.side_effect = StoreUnavailable("sqlite", "disk I/O error")
        with pytest.raises(WaitTimeoutError):
            await wait_for_cache(store, reporter, KEY, timeout=0.05)
