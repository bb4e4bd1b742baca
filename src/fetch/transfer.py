# src/fetch/transfer.py — v1
"""Transfer contract and failure classification.

A transfer is any ``async (source_locator, auth_capability) -> bytes``
callable supplied by the API-client layer. The auth capability is opaque
here. Transfers report failures by raising ``TransferError``; any other
exception is treated as a transport failure.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from gradecache.core.errors import (
    ClientFetchError,
    EmptyPayloadError,
    FetchError,
    NotFoundError,
    RetryableFetchError,
    TransferError,
)

Transfer = Callable[[str, Any], Awaitable[bytes]]

ErrorClass = Literal["not_found", "client_error", "retryable"]

_NOT_FOUND_STATUSES = frozenset({404, 410})
# Client-range statuses that mean "try again later", not "you are wrong".
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


def classify_status(status_code: int | None) -> ErrorClass:
    """Classify an HTTP-equivalent status code."""
    if status_code is None:
        return "retryable"
    if status_code in _NOT_FOUND_STATUSES:
        return "not_found"
    if status_code in _RETRYABLE_CLIENT_STATUSES:
        return "retryable"
    if 400 <= status_code < 500:
        return "client_error"
    return "retryable"


def classify_transfer_error(error: BaseException) -> ErrorClass:
    """Classify an exception raised by a transfer."""
    if isinstance(error, FetchError):
        return "retryable" if error.retryable else (
            "not_found" if isinstance(error, NotFoundError) else "client_error"
        )
    if isinstance(error, TransferError):
        return classify_status(error.status_code)
    # Timeouts, resets, DNS failures and anything else from the transport.
    return "retryable"


def to_fetch_error(source_locator: str, error: BaseException) -> FetchError:
    """Wrap a transfer failure into the fetch error taxonomy."""
    if isinstance(error, FetchError):
        return error
    reason = str(error) or type(error).__name__
    if isinstance(error, asyncio.TimeoutError):
        reason = "timed out"
    kind = classify_transfer_error(error)
    if kind == "not_found":
        return NotFoundError(source_locator, reason)
    if kind == "client_error":
        return ClientFetchError(source_locator, reason)
    return RetryableFetchError(source_locator, reason)


def check_payload(source_locator: str, payload: bytes | None) -> bytes:
    """Reject empty bodies (retryable)."""
    if not payload:
        raise EmptyPayloadError(source_locator)
    return bytes(payload)
