# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides an in-memory cache store, a generation tracker, a scriptable fake
transfer and a recording sleep so retry backoff never waits in real time.
No external dependencies: all network I/O is faked.
"""

from __future__ import annotations

import pytest
from helpers import FakeTransfer, SleepRecorder

from gradecache.cache.memory_store import MemoryCacheStore
from gradecache.cache.models import CacheKey
from gradecache.fetch.retry import RetryPolicy
from gradecache.sync.generation import GenerationTracker


@pytest.fixture
def memory_store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def tracker() -> GenerationTracker:
    return GenerationTracker()


@pytest.fixture
def fake_transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def default_policy() -> RetryPolicy:
    return RetryPolicy()


@pytest.fixture
def sample_key() -> CacheKey:
    return CacheKey(owner_id="812", item_id="1")
