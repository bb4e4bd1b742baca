# src/sync/engine.py — v1
"""Sync engine — caches every document of one owner under a generation.

Flow of ``start_batch``:
  1. Issue a new Generation (supersedes whatever batch was running)
  2. Deduplicate candidates, reject items that cannot be keyed
  3. Count already-cached items as done (no transfer for them)
  4. Fan the rest out through the BoundedScheduler to the RetryableFetcher
  5. Write each successful blob only if the generation is still current
  6. Record every terminal outcome in the owner's ProgressReporter

Cancellation is advisory for transfers already on the wire and
authoritative for writes: results of a superseded generation are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from gradecache.batch.dedup import prepare_batch
from gradecache.batch.models import BatchItem, BatchRequest, DownloadTask
from gradecache.batch.scheduler import DEFAULT_CEILING, BoundedScheduler
from gradecache.cache.models import CacheEntry, CacheKey
from gradecache.core.errors import NeverProducedError, OfflineMissError, StoreUnavailable
from gradecache.fetch.retry import RetryableFetcher, RetryPolicy, Sleep
from gradecache.logging.context import item_context, set_batch_context
from gradecache.sync.generation import Generation, GenerationTracker
from gradecache.sync.waiter import DEFAULT_WAIT_TIMEOUT_S, wait_for_cache
from gradecache.tracking.progress import ProgressReporter, ProgressState

if TYPE_CHECKING:
    from gradecache.cache.base_cache_store import BaseCacheStore
    from gradecache.fetch.transfer import Transfer

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 3


@dataclass
class BatchHandle:
    """Running (or finished) batch for one owner."""

    owner_id: str
    generation: Generation
    reporter: ProgressReporter
    task: asyncio.Task | None = None

    @property
    def done(self) -> bool:
        return not self.reporter.in_flight

    async def wait(self) -> ProgressState:
        """Suspend until the batch is terminal; returns the final state."""
        if self.task is not None and not self.task.done():
            await asyncio.wait({self.task})
        return await self.reporter.wait_done()


class SyncEngine:
    """Owns the generation tracker, per-owner progress and batch tasks."""

    def __init__(
        self,
        store: BaseCacheStore,
        transfer: Transfer,
        tracker: GenerationTracker | None = None,
        policy: RetryPolicy | None = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        concurrency_ceiling: int = DEFAULT_CEILING,
        transfer_timeout_s: float | None = None,
        sleep: Sleep = asyncio.sleep,
        offline: bool = False,
    ) -> None:
        if concurrency_limit < 0:
            raise ValueError("concurrency_limit must be >= 0")
        self._store = store
        self._tracker = tracker or GenerationTracker()
        self._fetcher = RetryableFetcher(
            transfer,
            self._tracker,
            policy=policy,
            timeout_s=transfer_timeout_s,
            sleep=sleep,
        )
        # Viewer reads fetch under their own tracker so batch supersede
        # never cancels a document the grader is looking at.
        self._read_tracker = GenerationTracker()
        self._read_generation = self._read_tracker.new_generation(scope="reads")
        self._read_fetcher = RetryableFetcher(
            transfer,
            self._read_tracker,
            policy=policy,
            timeout_s=transfer_timeout_s,
            sleep=sleep,
        )
        self._default_limit = concurrency_limit
        self._ceiling = concurrency_ceiling
        self._reporters: dict[str, ProgressReporter] = {}
        self._tasks: set[asyncio.Task] = set()
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._last_scheduler: BoundedScheduler | None = None
        self._offline = offline

    # --- accessors ---

    @property
    def store(self) -> BaseCacheStore:
        return self._store

    @property
    def offline(self) -> bool:
        return self._offline

    @property
    def tracker(self) -> GenerationTracker:
        return self._tracker

    @property
    def last_scheduler(self) -> BoundedScheduler | None:
        """Scheduler of the most recently started download phase."""
        return self._last_scheduler

    def reporter_for(self, owner_id: str) -> ProgressReporter | None:
        """Progress of the latest batch started for ``owner_id``."""
        return self._reporters.get(str(owner_id))

    def progress(self, owner_id: str) -> ProgressState | None:
        reporter = self.reporter_for(owner_id)
        return reporter.state if reporter else None

    def is_in_flight(self, owner_id: str) -> bool:
        reporter = self.reporter_for(owner_id)
        return reporter is not None and reporter.in_flight

    def in_flight_owners(self) -> set[str]:
        return {o for o, r in self._reporters.items() if r.in_flight}

    def owner_lock(self, owner_id: str) -> asyncio.Lock:
        """Serializes batch start against eviction for one owner."""
        owner_id = str(owner_id)
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = self._owner_locks[owner_id] = asyncio.Lock()
        return lock

    # --- batches ---

    async def start_batch(self, request: BatchRequest) -> BatchHandle:
        """Begin caching ``request.items``; returns once progress is live.

        Already-cached and rejected items are accounted for before this
        returns, so a fully cached batch comes back terminal.
        """
        owner_id = request.owner_id
        generation = self._tracker.new_generation(scope=owner_id)

        async with self.owner_lock(owner_id):
            prepared = prepare_batch(owner_id, request.items)
            reporter = ProgressReporter(owner_id, generation.value, total=prepared.total)
            self._reporters[owner_id] = reporter

            for rejected in prepared.rejected:
                reporter.record_failure(
                    None, rejected.reason, item_ref=rejected.item.source_locator or ""
                )

            pending = await self._filter_cached(prepared.tasks, reporter)
            if not pending:
                reporter.finish()
                logger.info(
                    "Batch for %s: nothing to download (%d/%d already cached)",
                    owner_id, reporter.state.succeeded, prepared.total,
                )
                return BatchHandle(owner_id, generation, reporter)

            logger.info(
                "Batch for %s started: %d to download, %d of %d already cached",
                owner_id, len(pending), reporter.state.succeeded, prepared.total,
            )
            task = asyncio.create_task(
                self._run(request, generation, reporter, pending),
                name=f"gradecache-batch-{owner_id}-{generation.value}",
            )
            self._tasks.add(task)
            task.add_done_callback(
                lambda t, r=reporter: self._forget_task(owner_id, r, t)
            )
            return BatchHandle(owner_id, generation, reporter, task)

    async def sync(self, request: BatchRequest) -> ProgressState:
        """Run a batch to completion and return its final progress."""
        handle = await self.start_batch(request)
        return await handle.wait()

    def cancel(self) -> None:
        """Supersede every running batch without starting a new one."""
        self._tracker.invalidate()

    async def aclose(self) -> None:
        """Invalidate and tear down all running batch tasks."""
        self.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- reads ---

    async def lookup(
        self, source_locator: str | None, key: CacheKey
    ) -> CacheEntry | None:
        """Point lookup; store failures read as a miss."""
        try:
            return await self._store.get(source_locator, key)
        except StoreUnavailable as e:
            logger.warning("Cache lookup for %s failed, treating as miss: %s", key, e)
            return None

    async def wait_for_entry(
        self,
        key: CacheKey,
        source_locator: str | None = None,
        timeout: float = DEFAULT_WAIT_TIMEOUT_S,
        cancel_event: asyncio.Event | None = None,
    ) -> CacheEntry:
        return await wait_for_cache(
            self._store,
            self.reporter_for(key.owner_id),
            key,
            source_locator=source_locator,
            timeout=timeout,
            cancel_event=cancel_event,
        )

    async def open_document(
        self,
        key: CacheKey,
        source_locator: str | None = None,
        auth: Any = None,
        timeout: float = DEFAULT_WAIT_TIMEOUT_S,
        cancel_event: asyncio.Event | None = None,
    ) -> bytes:
        """Bytes of one document for display.

        The cache is always consulted first. On a miss, offline mode waits
        for the owner's running batch and never touches the source; online
        mode fetches from the source without caching the result.

        Raises:
            OfflineMissError: Offline, not cached, and no batch produced it.
            WaitTimeoutError / WaitCancelledError: As for ``wait_for_entry``.
            FetchError: Online fetch failed.
        """
        entry = await self.lookup(source_locator, key)
        if entry is not None:
            return entry.blob

        if self._offline:
            try:
                entry = await self.wait_for_entry(
                    key, source_locator, timeout=timeout, cancel_event=cancel_event
                )
            except NeverProducedError as e:
                raise OfflineMissError(
                    f"{key} is not cached and offline mode is enabled"
                ) from e
            return entry.blob

        if not source_locator:
            raise NeverProducedError(f"{key} is not cached and has no source locator")
        logger.debug("Cache miss for %s, fetching from source", key)
        outcome = await self._read_fetcher.fetch(
            source_locator, auth, self._read_generation
        )
        if outcome.status != "success" or outcome.blob is None:
            raise outcome.error or NeverProducedError(f"fetch of {key} was cancelled")
        return outcome.blob

    # --- internals ---

    async def _filter_cached(
        self, tasks: Sequence[DownloadTask], reporter: ProgressReporter
    ) -> list[DownloadTask]:
        pending: list[DownloadTask] = []
        for task in tasks:
            try:
                cached = await self._store.contains(task.key)
            except StoreUnavailable as e:
                logger.warning("Cache check for %s failed, downloading: %s", task.key, e)
                cached = False
            if cached:
                reporter.record_success(task.key)
            else:
                pending.append(task)
        return pending

    async def _run(
        self,
        request: BatchRequest,
        generation: Generation,
        reporter: ProgressReporter,
        tasks: list[DownloadTask],
    ) -> ProgressState:
        set_batch_context(request.owner_id, generation.value)
        limit = (
            request.concurrency_limit
            if request.concurrency_limit is not None
            else self._default_limit
        )
        scheduler = BoundedScheduler(limit, ceiling=self._ceiling)
        self._last_scheduler = scheduler

        def admit(task: DownloadTask) -> bool:
            if self._tracker.is_current(generation):
                return True
            reporter.record_cancelled(task.key)
            return False

        async def work(task: DownloadTask) -> str:
            with item_context(task.key.item_id):
                try:
                    return await self._download_one(
                        task, request, generation, reporter
                    )
                except Exception as exc:
                    reporter.record_failure(task.key, f"unexpected error: {exc}")
                    raise

        try:
            await scheduler.run(tasks, work, should_start=admit)
            reporter.finish()
        finally:
            if reporter.in_flight:
                # Task torn down mid-batch.
                reporter.abandon()

        state = reporter.state
        logger.info(
            "Batch for %s finished: %d/%d cached, %d failed, %d cancelled (peak concurrency %d)",
            request.owner_id, state.succeeded, state.total, state.failed,
            state.cancelled, scheduler.peak_in_flight,
        )
        return state

    async def _download_one(
        self,
        task: DownloadTask,
        request: BatchRequest,
        generation: Generation,
        reporter: ProgressReporter,
    ) -> str:
        outcome = await self._fetcher.fetch(
            task.source_locator, request.auth_capability, generation
        )

        if outcome.status == "cancelled":
            reporter.record_cancelled(task.key)
            return outcome.status

        if outcome.status == "failed":
            reporter.record_failure(task.key, outcome.reason)
            return outcome.status

        if not self._tracker.is_current(generation):
            logger.debug("Discarding %s: generation %s superseded", task.key, generation)
            reporter.record_cancelled(task.key)
            return "cancelled"

        try:
            await self._store.put(
                task.key, task.source_locator, outcome.blob or b"", request.owner_label
            )
        except StoreUnavailable as e:
            logger.error("Could not store %s: %s", task.key, e)
            reporter.record_failure(task.key, f"store unavailable: {e}")
            return "failed"

        reporter.record_success(task.key)
        return outcome.status

    def _forget_task(
        self, owner_id: str, reporter: ProgressReporter, task: asyncio.Task
    ) -> None:
        self._tasks.discard(task)
        if reporter.in_flight:
            # Cancelled before its first step ran.
            reporter.abandon()
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Batch task for %s crashed", owner_id, exc_info=task.exception()
            )


def build_request(
    owner_id: Any,
    items: Sequence[tuple[Any, str]],
    owner_label: str | None = None,
    concurrency_limit: int | None = None,
    auth_capability: Any = None,
) -> BatchRequest:
    """Convenience constructor from ``(item_id, source_locator)`` pairs."""
    return BatchRequest(
        owner_id=owner_id,
        owner_label=owner_label,
        items=[BatchItem(item_id=i, source_locator=loc) for i, loc in items],
        concurrency_limit=concurrency_limit,
        auth_capability=auth_capability,
    )
