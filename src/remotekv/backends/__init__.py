"""Versioned blob backends and store URI resolution."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

from remotekv.config import RemoteKVConfig
from remotekv.errors import InvalidStoreURIError


@dataclass(frozen=True)
class VersionedBlob:
    """Blob content together with the version token it was read at."""

    content: bytes
    version: str


@dataclass(frozen=True)
class AccessInfo:
    """Result of a backend access check."""

    can_write: bool


@runtime_checkable
class VersionedStore(Protocol):
    """Remote store of named blobs with compare-and-swap writes.

    ``read`` raises ``NotFoundError`` for a missing blob. ``write_if_version``
    raises ``VersionConflictError`` when ``expected_version`` does not match the
    current version; ``None`` means the blob must not exist yet. Any other
    failure surfaces as ``BackendError``.
    """

    repository_id: str
    ref: str | None

    async def read(self, name: str) -> VersionedBlob: ...

    async def write_if_version(
        self,
        name: str,
        content: bytes,
        expected_version: str | None,
        *,
        message: str,
    ) -> str: ...

    async def check_access(self) -> AccessInfo: ...

    async def check_ref(self) -> bool: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class StoreTarget:
    """Resolved backend selection for a store URI."""

    backend: str
    uri: str
    name: str | None = None
    bucket: str | None = None
    prefix: str = ""
    owner: str | None = None
    repo: str | None = None
    branch: str | None = None


def parse_store_target(store_uri: str) -> StoreTarget:
    """Resolve a ``memory://``, ``s3://`` or ``github://`` URI."""
    parsed = urlparse(store_uri)

    if parsed.scheme == "memory":
        name = (parsed.netloc + parsed.path).strip("/") or "default"
        return StoreTarget(backend="memory", uri=store_uri, name=name)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        if not bucket:
            raise InvalidStoreURIError(store_uri, "Missing bucket in s3 URI")
        prefix = parsed.path.lstrip("/").rstrip("/")
        return StoreTarget(backend="s3", uri=store_uri, bucket=bucket, prefix=prefix)

    if parsed.scheme == "github":
        path = parsed.path.strip("/")
        branch: str | None = None
        if "@" in path:
            path, branch = path.split("@", 1)
            if not branch:
                raise InvalidStoreURIError(store_uri, "Empty branch after '@'")
        owner = parsed.netloc
        if not owner or not path or "/" in path:
            raise InvalidStoreURIError(store_uri, "Expected github://<owner>/<repo>[@<branch>]")
        return StoreTarget(backend="github", uri=store_uri, owner=owner, repo=path, branch=branch)

    raise InvalidStoreURIError(store_uri, f"Unsupported store URI scheme '{parsed.scheme}'")


def open_backend(
    store_uri: str,
    *,
    token: str | None = None,
    config: RemoteKVConfig | None = None,
) -> VersionedStore:
    """Construct the backend selected by ``store_uri``."""
    config = config or RemoteKVConfig()
    target = parse_store_target(store_uri)

    if target.backend == "memory":
        from remotekv.backends.memory import InMemoryVersionedStore

        assert target.name is not None
        return InMemoryVersionedStore.named(target.name)

    if target.backend == "s3":
        from remotekv.backends.s3 import S3VersionedStore

        assert target.bucket is not None
        return S3VersionedStore(bucket=target.bucket, prefix=target.prefix, config=config)

    from remotekv.backends.github import GitHubVersionedStore

    assert target.owner is not None and target.repo is not None
    return GitHubVersionedStore(
        owner=target.owner,
        repo=target.repo,
        branch=target.branch,
        token=token or os.getenv("GITHUB_TOKEN"),
        config=config,
    )


__all__ = [
    "AccessInfo",
    "StoreTarget",
    "VersionedBlob",
    "VersionedStore",
    "open_backend",
    "parse_store_target",
]
