# tests/unit/api/test_unit_facade.py — v1
"""Tests for api/facade.py — OfflineCache wiring."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from helpers import FakeTransfer, locator_for, make_request

from gradecache.api.facade import OfflineCache
from gradecache.cache.file_store import FileCacheStore
from gradecache.cache.models import CacheKey
from gradecache.config.settings import Settings
from gradecache.core.errors import NeverProducedError, OfflineMissError, WaitTimeoutError
from gradecache.eviction.completion import SubmissionState


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        cache_backend="file",
        cache_root=tmp_path,
        download_concurrency_limit=2,
        download_retry_base_delay_s=0.001,
        download_retry_max_delay_s=0.001,
        cache_wait_timeout_s=0.05,
    )


class TestFromSettings:
    def test_builds_configured_backend(self, settings):
        cache = OfflineCache.from_settings(settings, FakeTransfer())
        assert isinstance(cache.store, FileCacheStore)
        assert cache.engine.offline is False

    def test_explicit_store_wins(self, settings, memory_store):
        cache = OfflineCache.from_settings(settings, FakeTransfer(), store=memory_store)
        assert cache.store is memory_store

    @pytest.mark.asyncio
    async def test_concurrency_from_settings(self, settings):
        transfer = FakeTransfer(delay=0.01)
        cache = OfflineCache.from_settings(settings, transfer)
        await cache.sync(make_request("812", range(6)))
        assert transfer.peak == 2

    @pytest.mark.asyncio
    async def test_offline_mode(self, settings):
        settings = settings.model_copy(update={"offline_mode": True})
        transfer = FakeTransfer()
        cache = OfflineCache.from_settings(settings, transfer)
        assert cache.engine.offline is True

        state = await cache.sync(make_request("812", [1]))
        assert state.succeeded == 1
        assert await cache.open_document(812, 1) == f"%PDF-{locator_for(1)}".encode()
        with pytest.raises(OfflineMissError):
            await cache.open_document(812, 2, locator_for(2))
        assert transfer.call_count == 1

    @pytest.mark.asyncio
    async def test_online_open_document_fetches_miss(self, settings):
        transfer = FakeTransfer()
        cache = OfflineCache.from_settings(settings, transfer)
        blob = await cache.open_document(812, 7, locator_for(7), auth="tok")
        assert blob == f"%PDF-{locator_for(7)}".encode()
        assert transfer.auth_seen == ["tok"]


class TestOfflineCache:
    @pytest.mark.asyncio
    async def test_lookup_and_listing(self, settings):
        cache = OfflineCache.from_settings(settings, FakeTransfer())
        await cache.sync(make_request(812, [1, 2], owner_label="Essay 3"))
        assert (await cache.lookup(None, 812, 1)).key == CacheKey(owner_id="812", item_id="1")
        assert (await cache.lookup(locator_for(2), 812, "missing")) is not None
        assert len(await cache.list_by_owner(812)) == 2
        owners = await cache.list_owners()
        assert owners[0].owner_label == "Essay 3"
        assert (await cache.total_size()).count == 2
        assert cache.progress(812).succeeded == 2

    @pytest.mark.asyncio
    async def test_wait_for_uses_settings_timeout(self, settings):
        transfer = FakeTransfer()
        transfer.gate = asyncio.Event()
        cache = OfflineCache.from_settings(settings, transfer)
        handle = await cache.start_batch(make_request("812", [1]))
        with pytest.raises(WaitTimeoutError):
            await cache.wait_for("812", 1)
        transfer.gate.set()
        await handle.wait()
        assert (await cache.wait_for("812", 1)).blob

    @pytest.mark.asyncio
    async def test_wait_for_never_produced(self, settings):
        cache = OfflineCache.from_settings(settings, FakeTransfer())
        with pytest.raises(NeverProducedError):
            await cache.wait_for("812", 1)

    @pytest.mark.asyncio
    async def test_delete_all(self, settings):
        cache = OfflineCache.from_settings(settings, FakeTransfer())
        await cache.sync(make_request("A", [1]))
        await cache.sync(make_request("B", [1]))
        assert await cache.delete_all() == 2
        assert await cache.list_owners() == []

    @pytest.mark.asyncio
    async def test_open_runs_age_eviction(self, settings):
        cache = OfflineCache.from_settings(settings.model_copy(update={"cache_max_age_days": 0}), FakeTransfer())
        await cache.sync(make_request("A", [1]))
        await asyncio.sleep(0.01)
        assert await cache.open() == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_evict_expired_with_clock(self, settings):
        cache = OfflineCache.from_settings(settings, FakeTransfer())
        await cache.sync(make_request("A", [1]))
        assert await cache.evict_expired(datetime.now(timezone.utc) + timedelta(days=8)) == 1

    @pytest.mark.asyncio
    async def test_evict_if_complete(self, settings):
        cache = OfflineCache.from_settings(settings, FakeTransfer())
        await cache.sync(make_request("A", [1]))
        subs = [SubmissionState(submission_id=1, grade="10")]
        assert await cache.evict_if_complete("A", subs) is True
        assert await cache.lookup(None, "A", 1) is None

    @pytest.mark.asyncio
    async def test_context_manager_closes_batches(self, settings):
        transfer = FakeTransfer()
        transfer.gate = asyncio.Event()
        async with OfflineCache.from_settings(settings, transfer) as cache:
            handle = await cache.start_batch(make_request("A", [1, 2]))
            await asyncio.sleep(0)
        assert handle.done
        assert handle.reporter.state.cancelled == 2
