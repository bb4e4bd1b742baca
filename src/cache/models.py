# src/cache/models.py — v2
"""Cache domain models: CacheKey, CacheEntry, EntryMetadata, OwnerSummary, CacheSize.

An owner is the logical parent of cached items (an assignment); an item is
one cacheable document (a submission's PDF).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time used for ``cached_at`` stamps."""
    return datetime.now(timezone.utc)


def default_owner_label(owner_id: str) -> str:
    """Label used when no human-readable owner name is known."""
    return f"Assignment {owner_id}"


class CacheKey(BaseModel):
    """Composite identity of a cached item."""

    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)

    @field_validator("owner_id", "item_id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> Any:
        # Remote APIs hand out integer ids; the cache keys on strings.
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def composite(self) -> str:
        """Flat ``owner_item`` form used by key-value backends."""
        return f"{self.owner_id}_{self.item_id}"

    def __str__(self) -> str:
        return f"{self.owner_id}/{self.item_id}"


class EntryMetadata(BaseModel):
    """Everything about a cache entry except its bytes."""

    model_config = ConfigDict(frozen=True)

    key: CacheKey
    source_locator: str = ""
    size_bytes: int = Field(ge=0)
    cached_at: datetime
    owner_label: str


class CacheEntry(EntryMetadata):
    """A cached blob. Never mutated; re-downloads replace the whole entry
    but keep the first ``cached_at``, so the age horizon runs from first fetch.
    """

    blob: bytes

    @classmethod
    def create(
        cls,
        key: CacheKey,
        source_locator: str | None,
        blob: bytes,
        owner_label: str,
        cached_at: datetime | None = None,
    ) -> CacheEntry:
        return cls(
            key=key,
            source_locator=source_locator or "",
            blob=blob,
            size_bytes=len(blob),
            cached_at=cached_at or utcnow(),
            owner_label=owner_label,
        )

    def metadata(self) -> EntryMetadata:
        """Drop the blob."""
        return EntryMetadata(
            key=self.key,
            source_locator=self.source_locator,
            size_bytes=self.size_bytes,
            cached_at=self.cached_at,
            owner_label=self.owner_label,
        )


class OwnerSummary(BaseModel):
    """Per-owner rollup shown by cache management views."""

    owner_id: str
    owner_label: str
    item_count: int
    size_bytes: int
    cached_at: datetime


class CacheSize(BaseModel):
    """Total number of entries and bytes held by a store."""

    count: int = 0
    bytes: int = 0


def summarize_owners(entries: list[EntryMetadata]) -> list[OwnerSummary]:
    """Group entry metadata into one summary per owner.

    The earliest ``cached_at`` wins; a real label wins over the default
    ``Assignment <id>`` placeholder.
    """
    summaries: dict[str, OwnerSummary] = {}
    for meta in entries:
        owner_id = meta.key.owner_id
        current = summaries.get(owner_id)
        if current is None:
            summaries[owner_id] = OwnerSummary(
                owner_id=owner_id,
                owner_label=meta.owner_label or default_owner_label(owner_id),
                item_count=1,
                size_bytes=meta.size_bytes,
                cached_at=meta.cached_at,
            )
            continue
        current.item_count += 1
        current.size_bytes += meta.size_bytes
        if meta.cached_at < current.cached_at:
            current.cached_at = meta.cached_at
        if meta.owner_label and meta.owner_label != default_owner_label(owner_id):
            current.owner_label = meta.owner_label
    return sorted(summaries.values(), key=lambda s: s.owner_id)
