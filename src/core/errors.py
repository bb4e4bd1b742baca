# src/core/errors.py — v1
"""Exception hierarchy shared by the cache, fetch and sync layers.

Cancellation is not an exception: a superseded generation resolves work
with a ``cancelled`` outcome instead of raising.
"""

from __future__ import annotations


class GradeCacheError(Exception):
    """Base class for all gradecache errors."""


# === Store ===


class StoreUnavailable(GradeCacheError):
    """Cache backend is corrupt, unreachable or out of quota.

    Readers treat it as a cache miss; administrative callers see it.
    """

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"Cache store '{backend}' unavailable: {message}")


# === Fetch ===


class TransferError(GradeCacheError):
    """Raised by a transfer callable when a download fails.

    ``status_code`` is the HTTP-equivalent status, or ``None`` for
    transport-level failures (DNS, reset connection, timeout).
    """

    def __init__(self, status_code: int | None, message: str = "") -> None:
        self.status_code = status_code
        detail = message or "transfer failed"
        if status_code is not None:
            detail = f"HTTP {status_code}: {detail}"
        super().__init__(detail)


class FetchError(GradeCacheError):
    """A single logical download failed."""

    retryable: bool = False

    def __init__(self, source_locator: str, reason: str) -> None:
        self.source_locator = source_locator
        self.reason = reason
        super().__init__(f"{reason} ({source_locator})")


class TerminalFetchError(FetchError):
    """Non-retryable failure: aborts the fetch after one attempt."""


class NotFoundError(TerminalFetchError):
    """Remote reports the document does not exist."""


class ClientFetchError(TerminalFetchError):
    """Remote rejected the request (bad auth, permission, malformed)."""


class RetryableFetchError(FetchError):
    """Transient failure: server error, transport error or empty body."""

    retryable = True


class EmptyPayloadError(RetryableFetchError):
    """Transfer succeeded but returned no bytes."""

    def __init__(self, source_locator: str) -> None:
        super().__init__(source_locator, "empty body")


# === Wait-for-cache ===


class CacheWaitError(GradeCacheError):
    """Waiting for a cache entry ended without the entry."""


class NeverProducedError(CacheWaitError):
    """Entry is not cached and no active batch will produce it."""


class OfflineMissError(NeverProducedError):
    """Entry is not cached and offline mode forbids fetching it remotely."""


class WaitTimeoutError(CacheWaitError):
    """Entry did not appear within the maximum wait time."""


class WaitCancelledError(CacheWaitError):
    """Caller abandoned the wait."""
