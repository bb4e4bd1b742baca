# src/batch/dedup.py — v2
"""Batch preparation — id deduplication and rejection of unidentifiable items.

Decision flow per candidate:
  1. No item id        -> rejected ("missing item id"); it cannot be keyed,
                          so it is reported as a failure instead of being
                          silently downloaded or silently dropped.
  2. No source locator -> rejected ("missing source locator").
  3. Id already seen   -> dropped as a duplicate (first occurrence wins).
  4. Otherwise         -> queued as a DownloadTask.
"""

from __future__ import annotations

import logging

from gradecache.batch.models import BatchItem, DownloadTask, PreparedBatch, RejectedItem
from gradecache.cache.models import CacheKey

logger = logging.getLogger(__name__)

MISSING_ID_REASON = "missing item id"
MISSING_LOCATOR_REASON = "missing source locator"


def prepare_batch(owner_id: str, items: list[BatchItem]) -> PreparedBatch:
    """Turn caller candidates into unique download tasks."""
    prepared = PreparedBatch()
    seen: dict[str, str] = {}

    for item in items:
        if item.item_id is None:
            prepared.rejected.append(RejectedItem(item=item, reason=MISSING_ID_REASON))
            logger.warning(
                "Rejecting item without id (locator=%s)", item.source_locator or "-"
            )
            continue
        if not item.source_locator:
            prepared.rejected.append(
                RejectedItem(item=item, reason=MISSING_LOCATOR_REASON)
            )
            logger.warning("Rejecting item %s without source locator", item.item_id)
            continue

        previous = seen.get(item.item_id)
        if previous is not None:
            prepared.duplicates += 1
            if previous != item.source_locator:
                logger.warning(
                    "Duplicate item %s with a different locator; keeping the first",
                    item.item_id,
                )
            continue

        seen[item.item_id] = item.source_locator
        prepared.tasks.append(
            DownloadTask(
                key=CacheKey(owner_id=owner_id, item_id=item.item_id),
                source_locator=item.source_locator,
            )
        )

    if prepared.rejected or prepared.duplicates:
        logger.info(
            "Batch prepared: %d tasks, %d rejected, %d duplicates dropped",
            len(prepared.tasks), len(prepared.rejected), prepared.duplicates,
        )
    return prepared
