"""Shared test fixtures for remotekv tests."""

from __future__ import annotations

import pytest

from remotekv import DocumentStore, RemoteKVConfig
from remotekv.backends.memory import InMemoryVersionedStore


def fast_config(**overrides: object) -> RemoteKVConfig:
    """Config with millisecond timings so lock and retry tests run quickly."""
    values: dict[str, object] = {
        "retry_delays_s": (0.0, 0.0, 0.0, 0.0, 0.0),
        "lock_poll_interval_s": 0.01,
        "lock_renew_interval_s": 0.05,
    }
    values.update(overrides)
    return RemoteKVConfig(**values)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def _reset_memory_registry():
    InMemoryVersionedStore.reset_registry()
    yield
    InMemoryVersionedStore.reset_registry()


@pytest.fixture
def backend() -> InMemoryVersionedStore:
    """An empty in-memory versioned store."""
    return InMemoryVersionedStore()


@pytest.fixture
def config() -> RemoteKVConfig:
    return fast_config()


@pytest.fixture
def store(backend, config) -> DocumentStore:
    """A document store over the in-memory backend."""
    return DocumentStore(backend, config=config)
