# src/sync/generation.py — v1
"""Generation tracker — the cancellation primitive of the sync engine.

Every batch runs under a Generation token. Issuing a new token immediately
makes the previous one stale; long-running work checks ``is_current`` at
its decision points (before starting, before each retry, before writing)
instead of holding cancellable handles.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class Generation:
    """Opaque, strictly increasing batch token."""

    value: int
    scope: str | None = field(default=None, compare=False)
    issued_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    def __str__(self) -> str:
        return f"gen-{self.value}" + (f"[{self.scope}]" if self.scope else "")


class GenerationTracker:
    """Issues generations; at most one is current at a time."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: Generation | None = None

    @property
    def current(self) -> Generation | None:
        return self._current

    def new_generation(self, scope: str | None = None) -> Generation:
        """Issue a token, superseding whatever was current."""
        previous = self._current
        self._current = Generation(value=next(self._counter), scope=scope)
        if previous is not None:
            logger.debug("Generation %s superseded by %s", previous, self._current)
        return self._current

    def is_current(self, token: Generation | None) -> bool:
        return token is not None and token == self._current

    def invalidate(self) -> None:
        """Make every outstanding token stale without starting a new batch."""
        if self._current is not None:
            logger.debug("Generation %s invalidated", self._current)
        self._current = Generation(value=next(self._counter), scope=None)
