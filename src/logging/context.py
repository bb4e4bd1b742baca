# src/logging/context.py — v2
"""Contextual logging support — attach owner_id, generation, item_id to log records.

Context variables are copied into every asyncio task at creation time, so a
batch sets the owner/generation once and each download task adds its item.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

_owner_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "owner_id", default=None
)
_generation: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "generation", default=None
)
_item_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "item_id", default=None
)


@dataclass(frozen=True)
class LogContext:
    """Immutable snapshot of current logging context."""

    owner_id: str | None = None
    generation: int | None = None
    item_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        owner_id=_owner_id.get(),
        generation=_generation.get(),
        item_id=_item_id.get(),
    )


def set_batch_context(owner_id: str, generation: int) -> None:
    """Set batch-level context (called once when a batch starts)."""
    _owner_id.set(owner_id)
    _generation.set(generation)


@contextmanager
def item_context(item_id: str) -> Iterator[None]:
    """Attach ``item_id`` for the duration of one download."""
    token = _item_id.set(item_id)
    try:
        yield
    finally:
        _item_id.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    _owner_id.set(None)
    _generation.set(None)
    _item_id.set(None)
