# src/eviction/policy.py — v1
"""Eviction policy — age-based and completion-based cache cleanup.

Both rules leave owners with an in-flight batch alone and are idempotent:
running them twice deletes nothing the second time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from gradecache.eviction.completion import SubmissionState, owner_is_complete

if TYPE_CHECKING:
    from gradecache.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 7


class EvictionPolicy:
    """Applies cleanup rules to the engine's store."""

    def __init__(self, engine: SyncEngine, max_age_days: int = DEFAULT_MAX_AGE_DAYS) -> None:
        if max_age_days < 0:
            raise ValueError(f"max_age_days must be >= 0, got {max_age_days}")
        self._engine = engine
        self._max_age = timedelta(days=max_age_days)

    @property
    def max_age(self) -> timedelta:
        return self._max_age

    async def evict_expired(self, now: datetime | None = None) -> int:
        """Delete entries older than the max age; returns the count removed."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._max_age
        store = self._engine.store
        current = self._engine.tracker.current
        epoch = current.value if current else 0
        removed = 0
        busy = 0
        for owner in await store.list_owners():
            if owner.cached_at >= cutoff:
                continue
            # Batches started after the sweep began already counted these
            # entries as cached.
            async with self._engine.owner_lock(owner.owner_id):
                reporter = self._engine.reporter_for(owner.owner_id)
                if reporter is not None and (
                    reporter.in_flight or reporter.generation > epoch
                ):
                    busy += 1
                    continue
                removed += await store.delete_older_than(
                    cutoff, owner_id=owner.owner_id
                )
        if removed:
            logger.info(
                "Evicted %d entries cached before %s (skipped %d busy owners)",
                removed, cutoff.isoformat(), busy,
            )
        else:
            logger.debug("No entries older than %s", cutoff.isoformat())
        return removed

    async def evict_if_complete(
        self,
        owner_id: str,
        submissions: Iterable[SubmissionState],
        staged_pending: int = 0,
    ) -> bool:
        """Drop the owner's cache once grading is done.

        Returns True when entries were deleted (or nothing was cached), False
        when the owner still has work or a batch is running.
        """
        owner_id = str(owner_id)
        submissions = list(submissions)
        async with self._engine.owner_lock(owner_id):
            if self._engine.is_in_flight(owner_id):
                logger.debug("Owner %s has a batch in flight; not evicting", owner_id)
                return False
            if not owner_is_complete(submissions, staged_pending):
                return False
            removed = await self._engine.store.delete_owner(owner_id)

        logger.info(
            "Owner %s fully graded (%d submissions); evicted %d entries",
            owner_id, len(submissions), removed,
        )
        return True
