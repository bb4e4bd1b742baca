# src/cache/file_store.py — v1
"""Directory-based cache store (CACHE_BACKEND=file).

Layout under CACHE_ROOT:
    <owner_id>/<item_id>.blob   raw document bytes
    <owner_id>/<item_id>.json   EntryMetadata sidecar

Ids are percent-encoded into file names. Files are written to a temporary
name and moved into place with ``os.replace``; blob first, sidecar last, so
a sidecar always describes a complete blob. Disk I/O runs in worker
threads; reads and writes of one key are serialized by a per-key lock.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
import weakref
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from gradecache.cache.base_cache_store import BaseCacheStore
from gradecache.cache.locator import locators_match
from gradecache.cache.models import (
    CacheEntry,
    CacheKey,
    EntryMetadata,
    default_owner_label,
)
from gradecache.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_BLOB_SUFFIX = ".blob"
_META_SUFFIX = ".json"


def _safe_name(value: str) -> str:
    return quote(value, safe="")


def _atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp.write_bytes(data)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()


class FileCacheStore(BaseCacheStore):
    """File-system store: one directory per owner."""

    backend_name = "file"

    def __init__(self, cache_root: Path | str) -> None:
        self._root = Path(cache_root).expanduser()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e
        # Held locks stay alive through their holders; idle ones are dropped.
        self._locks: weakref.WeakValueDictionary[CacheKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # --- paths ---

    def _owner_dir(self, owner_id: str) -> Path:
        return self._root / _safe_name(owner_id)

    def _paths(self, key: CacheKey) -> tuple[Path, Path]:
        base = self._owner_dir(key.owner_id) / _safe_name(key.item_id)
        return (
            base.with_name(base.name + _BLOB_SUFFIX),
            base.with_name(base.name + _META_SUFFIX),
        )

    def _lock(self, key: CacheKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # --- reads ---

    async def get_by_key(self, key: CacheKey) -> CacheEntry | None:
        async with self._lock(key):
            return await self._run(self._read_entry, key)

    async def find_by_locator(self, source_locator: str) -> CacheEntry | None:
        for meta in await self.list_metadata():
            if locators_match(meta.source_locator, source_locator):
                return await self.get_by_key(meta.key)
        return None

    async def list_by_owner(self, owner_id: str) -> list[EntryMetadata]:
        return await self._run(self._scan, self._owner_dir(owner_id))

    async def list_metadata(self) -> list[EntryMetadata]:
        return await self._run(self._scan, None)

    # --- writes ---

    async def put(
        self,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str | None = None,
    ) -> CacheEntry:
        async with self._lock(key):
            return await self._run(
                self._write_entry, key, source_locator, bytes(blob), owner_label
            )

    async def delete_owner(self, owner_id: str) -> int:
        return await self._run(self._remove_owner_dir, self._owner_dir(owner_id))

    async def delete_all(self) -> int:
        owners = await self._run(
            lambda: [p for p in self._root.iterdir() if p.is_dir()]
        )
        removed = 0
        for owner_dir in owners:
            removed += await self._run(self._remove_owner_dir, owner_dir)
        return removed

    async def delete_older_than(
        self,
        cutoff: datetime,
        exclude_owners: Iterable[str] = (),
        owner_id: str | None = None,
    ) -> int:
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        excluded = set(exclude_owners)
        metas = (
            await self.list_metadata()
            if owner_id is None
            else await self.list_by_owner(owner_id)
        )
        removed = 0
        for meta in metas:
            if meta.key.owner_id in excluded or meta.cached_at >= cutoff:
                continue
            async with self._lock(meta.key):
                await self._run(self._remove_entry_files, meta.key)
            removed += 1
        return removed

    # --- thread-side helpers ---

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except OSError as e:
            raise StoreUnavailable(self.backend_name, str(e)) from e

    def _read_metadata(self, meta_path: Path) -> EntryMetadata | None:
        try:
            return EntryMetadata.model_validate_json(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError as e:
            logger.warning("Failed to read cache metadata %s: %s", meta_path, e)
            return None

    def _read_entry(self, key: CacheKey) -> CacheEntry | None:
        blob_path, meta_path = self._paths(key)
        meta = self._read_metadata(meta_path)
        if meta is None:
            return None
        try:
            blob = blob_path.read_bytes()
        except FileNotFoundError:
            logger.warning("Cache sidecar without blob for %s", key)
            return None
        return CacheEntry(**meta.model_dump(), blob=blob)

    def _write_entry(
        self,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str | None,
    ) -> CacheEntry:
        blob_path, meta_path = self._paths(key)
        blob_path.parent.mkdir(parents=True, exist_ok=True)
        existing = self._read_metadata(meta_path)
        label = owner_label or (
            existing.owner_label if existing else default_owner_label(key.owner_id)
        )
        entry = CacheEntry.create(
            key, source_locator, blob, label,
            cached_at=existing.cached_at if existing else None,
        )
        _atomic_write(blob_path, entry.blob)
        _atomic_write(meta_path, entry.metadata().model_dump_json().encode("utf-8"))
        return entry

    def _scan(self, owner_dir: Path | None) -> list[EntryMetadata]:
        if owner_dir is None:
            pattern_root, pattern = self._root, f"*/*{_META_SUFFIX}"
        else:
            if not owner_dir.is_dir():
                return []
            pattern_root, pattern = owner_dir, f"*{_META_SUFFIX}"
        metas: list[EntryMetadata] = []
        for meta_path in sorted(pattern_root.glob(pattern)):
            if meta_path.name.startswith("."):
                continue
            meta = self._read_metadata(meta_path)
            if meta is not None:
                metas.append(meta)
        return metas

    def _remove_entry_files(self, key: CacheKey) -> None:
        blob_path, meta_path = self._paths(key)
        # Sidecar first: an orphaned blob is invisible to readers.
        meta_path.unlink(missing_ok=True)
        blob_path.unlink(missing_ok=True)

    def _remove_owner_dir(self, owner_dir: Path) -> int:
        if not owner_dir.is_dir():
            return 0
        count = sum(
            1 for p in owner_dir.glob(f"*{_META_SUFFIX}") if not p.name.startswith(".")
        )
        shutil.rmtree(owner_dir)
        return count
