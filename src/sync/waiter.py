# src/sync/waiter.py — v1
"""Wait-for-cache: block until a specific entry lands in the store.

A reader that needs an item now (the document viewer) calls
``wait_for_cache``. Instead of polling on a fixed interval it reacts to
progress notifications of the owner's active batch:

  1. entry already cached            -> return it
  2. no batch in flight              -> NeverProducedError, no timer started
  3. otherwise, on every progress change re-check the store and resolve on
     entry found / batch finished without it / caller cancelled / deadline

Subscriptions and helper tasks are released on every exit path.
"""

from __future__ import annotations

import asyncio
import logging

from gradecache.cache.base_cache_store import BaseCacheStore
from gradecache.cache.models import CacheEntry, CacheKey
from gradecache.core.errors import (
    NeverProducedError,
    StoreUnavailable,
    WaitCancelledError,
    WaitTimeoutError,
)
from gradecache.tracking.progress import ProgressReporter, ProgressState

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT_S = 60.0


async def _lookup(
    store: BaseCacheStore, key: CacheKey, source_locator: str | None
) -> CacheEntry | None:
    try:
        return await store.get(source_locator, key)
    except StoreUnavailable as e:
        logger.warning("Cache lookup for %s failed, treating as miss: %s", key, e)
        return None


async def wait_for_cache(
    store: BaseCacheStore,
    reporter: ProgressReporter | None,
    key: CacheKey,
    source_locator: str | None = None,
    timeout: float = DEFAULT_WAIT_TIMEOUT_S,
    cancel_event: asyncio.Event | None = None,
) -> CacheEntry:
    """Return the entry for ``key`` once it is cached.

    Raises:
        NeverProducedError: Not cached and no in-flight batch will produce it.
        WaitCancelledError: ``cancel_event`` was set.
        WaitTimeoutError: ``timeout`` seconds elapsed.
    """
    was_in_flight = reporter is not None and reporter.in_flight
    entry = await _lookup(store, key, source_locator)
    if entry is not None:
        return entry

    if reporter is None or not reporter.in_flight:
        if was_in_flight:
            # Batch finished while the lookup was suspended.
            entry = await _lookup(store, key, source_locator)
            if entry is not None:
                return entry
        raise NeverProducedError(f"{key} is not cached and no batch is producing it")

    if cancel_event is not None and cancel_event.is_set():
        raise WaitCancelledError(f"wait for {key} cancelled")

    changed = asyncio.Event()
    latest: list[ProgressState] = []

    def _on_change(state: ProgressState) -> None:
        latest.append(state)
        changed.set()

    unsubscribe = reporter.subscribe(_on_change)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    cancel_waiter = (
        asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
    )
    change_waiter: asyncio.Future | None = None
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise WaitTimeoutError(f"timed out after {timeout:.0f}s waiting for {key}")

            change_waiter = asyncio.ensure_future(changed.wait())
            pending = {change_waiter}
            if cancel_waiter is not None:
                pending.add(cancel_waiter)
            await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )

            if cancel_waiter is not None and cancel_waiter.done():
                raise WaitCancelledError(f"wait for {key} cancelled")
            if not change_waiter.done():
                continue  # deadline reached; loop raises the timeout

            changed.clear()
            in_flight = latest[-1].in_flight if latest else reporter.in_flight
            latest.clear()

            entry = await _lookup(store, key, source_locator)
            if entry is not None:
                return entry
            if not in_flight:
                raise NeverProducedError(
                    f"batch for owner {key.owner_id} finished without producing {key}"
                )
    finally:
        unsubscribe()
        for fut in (change_waiter, cancel_waiter):
            if fut is not None and not fut.done():
                fut.cancel()
