# src/fetch/retry.py — v1
"""Retryable fetcher: one logical download with classified retries.

Retryable failures (server errors, transport errors, empty bodies) are
retried with exponential backoff; not-found and other client errors abort
after one attempt. The generation is checked before every attempt, so a
superseded batch stops retrying and resolves as ``cancelled``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from gradecache.core.errors import FetchError
from gradecache.fetch.transfer import Transfer, check_payload, to_fetch_error

if TYPE_CHECKING:
    from gradecache.config.settings import Settings
    from gradecache.sync.generation import Generation, GenerationTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule: base * factor**n, capped at max_delay_s."""

    max_retries: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    max_delay_s: float = 10.0
    jitter: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.download_max_retries,
            base_delay_s=settings.download_retry_base_delay_s,
            backoff_factor=settings.download_retry_backoff_factor,
            max_delay_s=settings.download_retry_max_delay_s,
        )

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""
        delay = min(self.base_delay_s * (self.backoff_factor ** retry), self.max_delay_s)
        if self.jitter:
            delay *= 0.5 + random.random()  # noqa: S311
            delay = min(delay, self.max_delay_s)
        return delay


@dataclass(frozen=True)
class FetchOutcome:
    """Exactly one of success / failed / cancelled."""

    status: Literal["success", "failed", "cancelled"]
    attempts: int
    blob: bytes | None = None
    error: FetchError | None = None

    @property
    def reason(self) -> str:
        return self.error.reason if self.error else ""

    @classmethod
    def success(cls, blob: bytes, attempts: int) -> FetchOutcome:
        return cls(status="success", attempts=attempts, blob=blob)

    @classmethod
    def failed(cls, error: FetchError, attempts: int) -> FetchOutcome:
        return cls(status="failed", attempts=attempts, error=error)

    @classmethod
    def cancelled(cls, attempts: int) -> FetchOutcome:
        return cls(status="cancelled", attempts=attempts)


Sleep = Callable[[float], Awaitable[Any]]


class RetryableFetcher:
    """Wraps a transfer with retry, backoff and generation checks.

    Never touches the cache store; writing a successful blob is the
    caller's job.
    """

    def __init__(
        self,
        transfer: Transfer,
        tracker: GenerationTracker,
        policy: RetryPolicy | None = None,
        timeout_s: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transfer = transfer
        self._tracker = tracker
        self._policy = policy or RetryPolicy()
        self._timeout_s = timeout_s
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def fetch(
        self, source_locator: str, auth: Any, generation: Generation
    ) -> FetchOutcome:
        attempts = 0
        while True:
            if not self._tracker.is_current(generation):
                logger.debug(
                    "Fetch of %s cancelled before attempt %d", source_locator, attempts + 1
                )
                return FetchOutcome.cancelled(attempts)

            attempts += 1
            try:
                blob = check_payload(source_locator, await self._attempt(source_locator, auth))
                return FetchOutcome.success(blob, attempts)
            except Exception as exc:
                error = to_fetch_error(source_locator, exc)

            if not error.retryable:
                logger.warning(
                    "Fetch of %s failed permanently: %s", source_locator, error.reason
                )
                return FetchOutcome.failed(error, attempts)

            retry = attempts - 1
            if retry >= self._policy.max_retries:
                logger.warning(
                    "Fetch of %s failed after %d attempts: %s",
                    source_locator, attempts, error.reason,
                )
                return FetchOutcome.failed(error, attempts)

            delay = self._policy.delay_for(retry)
            logger.warning(
                "Fetch of %s: %s (attempt %d/%d), retrying in %.1fs",
                source_locator, error.reason, attempts,
                self._policy.max_retries + 1, delay,
            )
            await self._sleep(delay)

    async def _attempt(self, source_locator: str, auth: Any) -> bytes:
        if self._timeout_s is None:
            return await self._transfer(source_locator, auth)
        return await asyncio.wait_for(
            self._transfer(source_locator, auth), timeout=self._timeout_s
        )
