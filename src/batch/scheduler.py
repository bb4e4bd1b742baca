# src/batch/scheduler.py — v1
"""Bounded scheduler — admits at most C concurrent workers from a task list.

Launching every download at once saturates slow links and cascades into
timeouts; running them serially wastes fast ones. The admission limit is
therefore an operator setting. A limit of 0 means "no limit" and is mapped
to an internal ceiling so one huge batch cannot exhaust sockets.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_CEILING = 20

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ScheduledResult(Generic[T, R]):
    """Terminal outcome of one scheduled task."""

    task: T
    value: R | None = None
    error: Exception | None = None
    skipped: bool = False


class BoundedScheduler:
    """Runs every task to a terminal outcome with bounded concurrency."""

    def __init__(self, limit: int, ceiling: int = DEFAULT_CEILING) -> None:
        if limit < 0:
            raise ValueError(f"concurrency limit must be >= 0, got {limit}")
        if ceiling < 1:
            raise ValueError(f"concurrency ceiling must be >= 1, got {ceiling}")
        self._limit = limit
        self._ceiling = ceiling
        self._active = 0
        self._peak = 0

    @property
    def effective_limit(self) -> int:
        """The admission bound actually applied."""
        if self._limit == 0:
            return self._ceiling
        return min(self._limit, self._ceiling)

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak_in_flight(self) -> int:
        """Highest number of simultaneously running workers observed."""
        return self._peak

    async def run(
        self,
        tasks: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        should_start: Callable[[T], bool] | None = None,
    ) -> list[ScheduledResult[T, R]]:
        """Run ``worker`` over ``tasks``; results come back in task order.

        ``should_start`` is consulted when a task is admitted; returning
        False resolves the task as skipped without running it. A worker
        exception is captured in its result and never aborts the others.
        """
        if not tasks:
            return []

        semaphore = asyncio.Semaphore(self.effective_limit)

        async def _guarded(task: T) -> ScheduledResult[T, R]:
            async with semaphore:
                if should_start is not None and not should_start(task):
                    return ScheduledResult(task=task, skipped=True)
                self._active += 1
                self._peak = max(self._peak, self._active)
                try:
                    return ScheduledResult(task=task, value=await worker(task))
                except Exception as exc:
                    logger.error("Scheduled task %s raised: %s", task, exc, exc_info=True)
                    return ScheduledResult(task=task, error=exc)
                finally:
                    self._active -= 1

        logger.debug(
            "Scheduling %d tasks with concurrency %d", len(tasks), self.effective_limit
        )
        return list(await asyncio.gather(*(_guarded(t) for t in tasks)))
