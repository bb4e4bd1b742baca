# src/api/models.py — v2
"""API-level models: SyncManifest (the JSON file consumed by ``gradecache sync``).

Example manifest:
    {
      "owner_id": 812,
      "owner_label": "Essay 3",
      "concurrency_limit": 2,
      "items": [
        {"item_id": 1, "source_locator": "https://lms.example/files/99/download"}
      ]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from gradecache.batch.models import BatchItem, BatchRequest


class SyncManifest(BaseModel):
    """Owner and document list to cache, as written by the grading UI."""

    owner_id: str = Field(min_length=1)
    owner_label: str | None = None
    concurrency_limit: int | None = Field(default=None, ge=0)
    items: list[BatchItem] = Field(default_factory=list)

    @field_validator("owner_id", mode="before")
    @classmethod
    def _coerce_owner(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def from_file(cls, path: Path) -> SyncManifest:
        return cls.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))

    def to_request(self, auth_capability: Any = None) -> BatchRequest:
        return BatchRequest(
            owner_id=self.owner_id,
            owner_label=self.owner_label,
            items=list(self.items),
            concurrency_limit=self.concurrency_limit,
            auth_capability=auth_capability,
        )
