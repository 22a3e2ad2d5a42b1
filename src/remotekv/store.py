"""Process-wide registry of document references over one backend."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from remotekv.backends import VersionedStore, open_backend
from remotekv.config import RemoteKVConfig
from remotekv.document import DocumentReference
from remotekv.errors import BackendError, StorePermissionError

if TYPE_CHECKING:
    from remotekv.lock import ResourceLock


class DocumentStore:
    """Hands out one memoized ``DocumentReference`` per key.

    With ``verify_access`` enabled (the default) the first operation on any
    document checks once that the backend is reachable, that the configured
    ref exists and, unless ``read_only`` is set, that the caller may write.
    The outcome, success or failure, is remembered for the store's lifetime.
    """

    def __init__(
        self,
        backend: VersionedStore,
        *,
        read_only: bool = False,
        verify_access: bool = True,
        config: RemoteKVConfig | None = None,
    ) -> None:
        self.backend = backend
        self.read_only = read_only
        self.verify_access = verify_access
        self.config = config or RemoteKVConfig()
        self._docs: dict[str, DocumentReference[Any]] = {}
        self._connectivity: asyncio.Future[None] | None = None

    @classmethod
    def from_uri(
        cls,
        store_uri: str,
        *,
        token: str | None = None,
        read_only: bool = False,
        verify_access: bool = True,
        config: RemoteKVConfig | None = None,
    ) -> DocumentStore:
        config = config or RemoteKVConfig()
        backend = open_backend(store_uri, token=token, config=config)
        return cls(backend, read_only=read_only, verify_access=verify_access, config=config)

    def doc(self, key: str) -> DocumentReference[Any]:
        """Return the document reference for ``key``."""
        if not key or key.startswith("/") or key.endswith("/"):
            raise ValueError(f"Invalid document key {key!r}")
        doc = self._docs.get(key)
        if doc is None:
            doc = DocumentReference(self, key)
            self._docs[key] = doc
        return doc

    def lock(self, key: str) -> ResourceLock:
        """Return a resource lock over the document ``key``."""
        from remotekv.lock import ResourceLock

        return ResourceLock(self.doc(key))

    def ensure_writable(self) -> None:
        if self.read_only:
            raise StorePermissionError(
                f"The store for '{self.backend.repository_id}' was opened read-only"
            )

    async def _check_connectivity(self) -> None:
        backend = self.backend
        access = await backend.check_access()
        if not access.can_write and not self.read_only:
            raise StorePermissionError(
                f"You don't have permission to write to '{backend.repository_id}' "
                "and the store was not opened read-only."
            )
        if backend.ref is not None and not await backend.check_ref():
            raise BackendError(
                "check_ref",
                f"Ref '{backend.ref}' does not exist in '{backend.repository_id}'",
            )

    async def ensure_connectivity(self) -> None:
        """Run the access preflight once; later calls reuse its outcome."""
        if not self.verify_access:
            return
        if self._connectivity is None:
            self._connectivity = asyncio.ensure_future(self._check_connectivity())
        try:
            await asyncio.shield(self._connectivity)
        except BackendError as e:
            raise BackendError("ensure_connectivity", str(e)) from e

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> DocumentStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
