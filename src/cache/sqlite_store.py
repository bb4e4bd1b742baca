# src/cache/sqlite_store.py — v2
"""SQLite-based cache store (CACHE_BACKEND=sqlite, the default).

Uses stdlib sqlite3 — no external dependency. One table keyed by
(owner_id, item_id) with secondary indexes on owner_id and cached_at.
Every statement runs synchronously on the event loop thread, so each
operation is atomic with respect to other coroutines.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gradecache.cache.base_cache_store import BaseCacheStore
from gradecache.cache.locator import locators_match
from gradecache.cache.models import (
    CacheEntry,
    CacheKey,
    CacheSize,
    EntryMetadata,
    default_owner_label,
)
from gradecache.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    owner_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    source_locator TEXT NOT NULL DEFAULT '',
    blob BLOB NOT NULL,
    size_bytes INTEGER NOT NULL,
    cached_at TEXT NOT NULL,
    owner_label TEXT NOT NULL,
    PRIMARY KEY (owner_id, item_id)
);
CREATE INDEX IF NOT EXISTS idx_owner_id ON cache_entries(owner_id);
CREATE INDEX IF NOT EXISTS idx_cached_at ON cache_entries(cached_at);
"""

_META_COLUMNS = "owner_id, item_id, source_locator, size_bytes, cached_at, owner_label"


def _to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed width so text comparison in SQL orders correctly.
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed blob cache."""

    backend_name = "sqlite"

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e

    async def get_by_key(self, key: CacheKey) -> CacheEntry | None:
        row = self._fetchone(
            f"SELECT {_META_COLUMNS}, blob FROM cache_entries "
            "WHERE owner_id = ? AND item_id = ?",
            (key.owner_id, key.item_id),
        )
        if row is None:
            return None
        return self._row_to_entry(row)

    async def find_by_locator(self, source_locator: str) -> CacheEntry | None:
        rows = self._fetchall(
            "SELECT owner_id, item_id, source_locator FROM cache_entries "
            "WHERE source_locator != ''"
        )
        for owner_id, item_id, cached_locator in rows:
            if locators_match(cached_locator, source_locator):
                return await self.get_by_key(
                    CacheKey(owner_id=owner_id, item_id=item_id)
                )
        return None

    async def put(
        self,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str | None = None,
    ) -> CacheEntry:
        try:
            with self._conn:
                row = self._conn.execute(
                    "SELECT owner_label, cached_at FROM cache_entries "
                    "WHERE owner_id = ? AND item_id = ?",
                    (key.owner_id, key.item_id),
                ).fetchone()
                label = owner_label or (
                    row[0] if row else default_owner_label(key.owner_id)
                )
                entry = CacheEntry.create(
                    key, source_locator, bytes(blob), label,
                    cached_at=datetime.fromisoformat(row[1]) if row else None,
                )
                self._conn.execute(
                    """INSERT OR REPLACE INTO cache_entries
                       (owner_id, item_id, source_locator, blob, size_bytes,
                        cached_at, owner_label)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        key.owner_id,
                        key.item_id,
                        entry.source_locator,
                        sqlite3.Binary(entry.blob),
                        entry.size_bytes,
                        _to_utc_iso(entry.cached_at),
                        entry.owner_label,
                    ),
                )
        except sqlite3.Error as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e
        return entry

    async def list_by_owner(self, owner_id: str) -> list[EntryMetadata]:
        rows = self._fetchall(
            f"SELECT {_META_COLUMNS} FROM cache_entries WHERE owner_id = ? "
            "ORDER BY item_id",
            (owner_id,),
        )
        return [self._row_to_metadata(r) for r in rows]

    async def list_metadata(self) -> list[EntryMetadata]:
        rows = self._fetchall(
            f"SELECT {_META_COLUMNS} FROM cache_entries ORDER BY owner_id, item_id"
        )
        return [self._row_to_metadata(r) for r in rows]

    async def delete_owner(self, owner_id: str) -> int:
        return self._execute_delete(
            "DELETE FROM cache_entries WHERE owner_id = ?", (owner_id,)
        )

    async def delete_all(self) -> int:
        return self._execute_delete("DELETE FROM cache_entries", ())

    async def delete_older_than(
        self,
        cutoff: datetime,
        exclude_owners: Iterable[str] = (),
        owner_id: str | None = None,
    ) -> int:
        excluded = sorted(set(exclude_owners))
        sql = "DELETE FROM cache_entries WHERE cached_at < ?"
        params: list[Any] = [_to_utc_iso(cutoff)]
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params.append(owner_id)
        if excluded:
            sql += f" AND owner_id NOT IN ({', '.join('?' for _ in excluded)})"
            params.extend(excluded)
        return self._execute_delete(sql, tuple(params))

    async def total_size(self) -> CacheSize:
        row = self._fetchone(
            "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM cache_entries"
        )
        count, total = row if row else (0, 0)
        return CacheSize(count=count, bytes=total)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- internals ---

    def _fetchone(self, sql: str, params: tuple = ()) -> tuple | None:
        try:
            return self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e

    def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e

    def _execute_delete(self, sql: str, params: tuple) -> int:
        try:
            with self._conn:
                cursor = self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e
        removed = cursor.rowcount
        logger.debug("Deleted %d cache entries", removed)
        return removed

    @staticmethod
    def _row_to_metadata(row: tuple) -> EntryMetadata:
        owner_id, item_id, source_locator, size_bytes, cached_at, owner_label = row[:6]
        return EntryMetadata(
            key=CacheKey(owner_id=owner_id, item_id=item_id),
            source_locator=source_locator,
            size_bytes=size_bytes,
            cached_at=datetime.fromisoformat(cached_at),
            owner_label=owner_label,
        )

    @classmethod
    def _row_to_entry(cls, row: tuple) -> CacheEntry:
        meta = cls._row_to_metadata(row)
        return CacheEntry(**meta.model_dump(), blob=bytes(row[6]))

