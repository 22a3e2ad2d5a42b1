"""In-process versioned store for tests, demos and local development.

Blobs live in a dict guarded by an ``asyncio.Lock`` so that compare-and-swap
writes behave like a remote object store for coroutines sharing one event
loop. Versions are a monotonically increasing counter, stringified. Nothing is
shared across processes.
"""

from __future__ import annotations

import asyncio
from typing import ClassVar

from remotekv.backends import AccessInfo, VersionedBlob
from remotekv.errors import NotFoundError, VersionConflictError


class InMemoryVersionedStore:
    """Dict-backed store with compare-and-swap semantics."""

    _registry: ClassVar[dict[str, InMemoryVersionedStore]] = {}

    def __init__(
        self,
        *,
        repository_id: str = "memory",
        ref: str | None = None,
        can_write: bool = True,
        refs: set[str] | None = None,
    ) -> None:
        self.repository_id = repository_id
        self.ref = ref
        self.can_write = can_write
        self.refs = refs if refs is not None else ({ref} if ref else set())
        self._blobs: dict[str, VersionedBlob] = {}
        self._counter = 0
        self._lock = asyncio.Lock()
        self.messages: list[tuple[str, str]] = []
        self.reads = 0
        self.writes = 0

    @classmethod
    def named(cls, name: str) -> InMemoryVersionedStore:
        """Return the process-wide store registered under ``name``."""
        store = cls._registry.get(name)
        if store is None:
            store = cls(repository_id=f"memory://{name}")
            cls._registry[name] = store
        return store

    @classmethod
    def reset_registry(cls) -> None:
        cls._registry.clear()

    async def read(self, name: str) -> VersionedBlob:
        async with self._lock:
            self.reads += 1
            blob = self._blobs.get(name)
            if blob is None:
                raise NotFoundError(name)
            return blob

    async def write_if_version(
        self,
        name: str,
        content: bytes,
        expected_version: str | None,
        *,
        message: str,
    ) -> str:
        async with self._lock:
            current = self._blobs.get(name)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                raise VersionConflictError(
                    name, expected_version, f"current version is {current_version}"
                )
            self._counter += 1
            version = str(self._counter)
            self._blobs[name] = VersionedBlob(content=bytes(content), version=version)
            self.messages.append((name, message))
            self.writes += 1
            return version

    async def check_access(self) -> AccessInfo:
        return AccessInfo(can_write=self.can_write)

    async def check_ref(self) -> bool:
        return self.ref is None or self.ref in self.refs

    async def close(self) -> None:
        return None

    def peek(self, name: str) -> VersionedBlob | None:
        """Return the stored blob without counting a read."""
        return self._blobs.get(name)
