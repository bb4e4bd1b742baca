# src/tracking/progress.py — v1
"""Batch progress: ProgressState snapshots and the observable ProgressReporter.

The active batch is the only writer; any number of observers poll
``reporter.state`` or subscribe to change notifications. Mutations and
notifications are synchronous, so observers never see a torn state.

Invariants:
  - attempted <= total
  - in_flight goes True -> False exactly once, and only when
    attempted == total
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pydantic import BaseModel, Field

from gradecache.cache.models import CacheKey

logger = logging.getLogger(__name__)


class FetchFailure(BaseModel):
    """One item that ended the batch without being cached."""

    key: CacheKey | None = None
    item_ref: str = ""
    reason: str


class ProgressState(BaseModel):
    """Snapshot of one batch's counters."""

    owner_id: str
    generation: int
    total: int = Field(ge=0)
    attempted: int = Field(default=0, ge=0)
    succeeded: int = 0
    cancelled: int = 0
    in_flight: bool = True
    failures: list[FetchFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def remaining(self) -> int:
        return self.total - self.attempted


Listener = Callable[[ProgressState], None]


class ProgressReporter:
    """Mutable, observable progress for a single batch."""

    def __init__(
        self, owner_id: str, generation: int, total: int, already_done: int = 0
    ) -> None:
        if not 0 <= already_done <= total:
            raise ValueError(
                f"already_done must be within [0, {total}], got {already_done}"
            )
        self._state = ProgressState(
            owner_id=owner_id,
            generation=generation,
            total=total,
            attempted=already_done,
            succeeded=already_done,
        )
        self._listeners: list[Listener] = []
        self._done = asyncio.Event()

    @classmethod
    def completed(cls, owner_id: str, generation: int, total: int) -> ProgressReporter:
        """Reporter for a batch with nothing left to download."""
        reporter = cls(owner_id, generation, total, already_done=total)
        reporter.finish()
        return reporter

    # --- reading ---

    @property
    def state(self) -> ProgressState:
        """Deep copy of the current counters."""
        return self._state.model_copy(deep=True)

    @property
    def in_flight(self) -> bool:
        return self._state.in_flight

    @property
    def owner_id(self) -> str:
        return self._state.owner_id

    @property
    def generation(self) -> int:
        return self._state.generation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns an idempotent unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def wait_done(self) -> ProgressState:
        """Suspend until ``in_flight`` turns False."""
        await self._done.wait()
        return self.state

    # --- writing (active batch only) ---

    def record_success(self, key: CacheKey) -> None:
        self._advance()
        self._state.succeeded += 1
        self._notify()

    def record_failure(
        self, key: CacheKey | None, reason: str, item_ref: str = ""
    ) -> None:
        self._advance()
        self._state.failures.append(
            FetchFailure(key=key, item_ref=item_ref or (str(key) if key else ""), reason=reason)
        )
        self._notify()

    def record_cancelled(self, key: CacheKey) -> None:
        self._advance()
        self._state.cancelled += 1
        self._notify()

    def finish(self) -> None:
        """Mark the batch terminal. Requires attempted == total."""
        if not self._state.in_flight:
            raise RuntimeError("batch already finished")
        if self._state.attempted != self._state.total:
            raise RuntimeError(
                f"cannot finish with {self._state.attempted}/{self._state.total} attempted"
            )
        self._state.in_flight = False
        self._done.set()
        self._notify()

    def abandon(self) -> None:
        """Count every unresolved item as cancelled and finish.

        Used when the batch task itself is torn down, so observers still see
        the single in_flight -> False transition.
        """
        if not self._state.in_flight:
            return
        remaining = self._state.total - self._state.attempted
        self._state.attempted += remaining
        self._state.cancelled += remaining
        self.finish()

    def _advance(self) -> None:
        if not self._state.in_flight:
            raise RuntimeError("batch already finished")
        if self._state.attempted >= self._state.total:
            raise RuntimeError("attempted would exceed total")
        self._state.attempted += 1

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Progress listener failed")
