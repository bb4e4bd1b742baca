# src/batch/models.py — v2
"""Batch models: BatchItem, BatchRequest, DownloadTask, PreparedBatch."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gradecache.cache.models import CacheKey


class BatchItem(BaseModel):
    """One candidate document handed in by the caller."""

    item_id: str | None = None
    source_locator: str | None = None

    @field_validator("item_id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str) and not v.strip():
            return None
        return v


class BatchRequest(BaseModel):
    """Inbound request: cache every item of one owner."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    owner_id: str = Field(min_length=1)
    owner_label: str | None = None
    items: list[BatchItem] = Field(default_factory=list)
    concurrency_limit: int | None = Field(default=None, ge=0)
    auth_capability: Any = Field(default=None, repr=False)

    @field_validator("owner_id", mode="before")
    @classmethod
    def _coerce_owner(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class DownloadTask(BaseModel):
    """Ephemeral pairing of a key and where to fetch it from."""

    model_config = ConfigDict(frozen=True)

    key: CacheKey
    source_locator: str


class RejectedItem(BaseModel):
    """Candidate dropped before download, with the reason."""

    item: BatchItem
    reason: str


class PreparedBatch(BaseModel):
    """Deduplicated tasks plus the candidates that were rejected."""

    tasks: list[DownloadTask] = Field(default_factory=list)
    rejected: list[RejectedItem] = Field(default_factory=list)
    duplicates: int = 0

    @property
    def total(self) -> int:
        return len(self.tasks) + len(self.rejected)
