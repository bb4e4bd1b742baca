# tests/helpers.py — v1
"""Test doubles shared by unit and integration tests.

Imported as ``helpers`` (``tests/`` is on the pytest pythonpath).
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Iterable

from gradecache.batch.models import BatchItem, BatchRequest
from gradecache.core.errors import TransferError


class FakeTransfer:
    """Scriptable transfer with per-locator responses and concurrency counters.

    ``script`` maps a locator to a list of steps consumed one per call: an
    ``int`` status raises ``TransferError(status)``, ``None`` raises a
    transport error, ``bytes`` is returned. The last step repeats once the
    list is exhausted. Unscripted locators return ``b"%PDF-<locator>"``.
    """

    def __init__(
        self,
        script: dict[str, list[int | bytes | None]] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.calls: list[str] = []
        self.calls_by_locator: dict[str, int] = defaultdict(int)
        self.auth_seen: list[object] = []
        self.active = 0
        self.peak = 0
        self.gate: asyncio.Event | None = None

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def __call__(self, source_locator: str, auth: object) -> bytes:
        self.calls.append(source_locator)
        self.calls_by_locator[source_locator] += 1
        self.auth_seen.append(auth)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            return self._next(source_locator)
        finally:
            self.active -= 1

    def _next(self, source_locator: str) -> bytes:
        steps = self.script.get(source_locator)
        if not steps:
            return f"%PDF-{source_locator}".encode()
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, bytes):
            return step
        if step is None:
            raise TransferError(None, "connection reset")
        raise TransferError(step, "scripted failure")


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_request(
    owner_id: str,
    item_ids: Iterable[object],
    concurrency_limit: int | None = None,
    owner_label: str | None = None,
) -> BatchRequest:
    """Request whose locators are ``https://lms.test/files/<item>/download``."""
    return BatchRequest(
        owner_id=owner_id,
        owner_label=owner_label,
        items=[
            BatchItem(
                item_id=i,
                source_locator=f"https://lms.test/files/{i}/download?verifier=x",
            )
            for i in item_ids
        ],
        concurrency_limit=concurrency_limit,
        auth_capability="token-abc",
    )


def locator_for(item_id: object) -> str:
    return f"https://lms.test/files/{item_id}/download?verifier=x"


