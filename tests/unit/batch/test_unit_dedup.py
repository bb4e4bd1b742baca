# tests/unit/batch/test_unit_dedup.py — v1
"""Tests for batch/dedup.py — keying, rejection and duplicate handling."""

from __future__ import annotations

from gradecache.batch.dedup import MISSING_ID_REASON, MISSING_LOCATOR_REASON, prepare_batch
from gradecache.batch.models import BatchItem
from gradecache.cache.models import CacheKey


def _item(item_id, locator="https://lms.test/files/1"):
    return BatchItem(item_id=item_id, source_locator=locator)


class TestPrepareBatch:
    def test_unique_items_become_tasks(self):
        prepared = prepare_batch("812", [_item(1, "u1"), _item(2, "u2")])
        assert [t.key for t in prepared.tasks] == [
            CacheKey(owner_id="812", item_id="1"),
            CacheKey(owner_id="812", item_id="2"),
        ]
        assert prepared.total == 2
        assert prepared.rejected == []

    def test_duplicates_keep_first(self):
        prepared = prepare_batch("812", [_item(1, "first"), _item(1, "second"), _item(2)])
        assert len(prepared.tasks) == 2
        assert prepared.tasks[0].source_locator == "first"
        assert prepared.duplicates == 1
        assert prepared.total == 2

    def test_missing_id_rejected_and_counted(self):
        prepared = prepare_batch("812", [_item(None, "orphan"), _item(1)])
        assert len(prepared.tasks) == 1
        assert prepared.rejected[0].reason == MISSING_ID_REASON
        assert prepared.rejected[0].item.source_locator == "orphan"
        assert prepared.total == 2

    def test_blank_id_treated_as_missing(self):
        prepared = prepare_batch("812", [_item("  ")])
        assert prepared.rejected[0].reason == MISSING_ID_REASON

    def test_missing_locator_rejected(self):
        prepared = prepare_batch("812", [_item(1, "")])
        assert prepared.tasks == []
        assert prepared.rejected[0].reason == MISSING_LOCATOR_REASON

    def test_empty(self):
        prepared = prepare_batch("812", [])
        assert prepared.total == 0
