"""Optimistic-concurrency document references over a versioned store."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from remotekv.errors import (
    BackendError,
    ConflictExceededError,
    NotFoundError,
    VersionConflictError,
)

if TYPE_CHECKING:
    from remotekv.store import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_json_time(moment: datetime | None = None) -> str:
    """Format a UTC timestamp like JavaScript's ``Date#toJSON``."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def serialize_document(value: Any) -> bytes:
    return json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8")


def parse_document(raw: bytes | None, *, name: str = "") -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise BackendError("parse_document", f"'{name}' is not valid JSON: {e}") from e


@dataclass(frozen=True)
class CacheEntry:
    """Last known state of one document; ``version is None`` means absent."""

    version: str | None
    raw: bytes | None
    expires_at: float
    stamp: int = 0

    @property
    def exists(self) -> bool:
        return self.version is not None

    def expired(self, now: float | None = None) -> bool:
        return (time.monotonic() if now is None else now) >= self.expires_at


class DocumentReference(Generic[T]):
    """Get, set and update one document with compare-and-swap retries.

    Obtain instances through ``DocumentStore.doc``; the store memoizes one
    reference per key so the cache and in-flight fetches are shared by every
    caller in the process.
    """

    def __init__(self, store: DocumentStore, key: str) -> None:
        self.key = key
        self.name = key + store.config.blob_suffix
        self._store = store
        self._cache: CacheEntry | None = None
        self._inflight: asyncio.Future[CacheEntry] | None = None
        self._inflight_stamp = 0
        # Bumped when a fetch starts or a write is confirmed.
        self._clock = 0

    def __repr__(self) -> str:
        return f"DocumentReference({self.key!r})"

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def cache(self) -> CacheEntry | None:
        return self._cache

    # --- Cache ---

    def _tick(self) -> int:
        self._clock += 1
        return self._clock

    async def _fetch(self, stamp: int) -> CacheEntry:
        expires_at = time.monotonic() + self._store.config.cache_ttl_s
        try:
            blob = await self._store.backend.read(self.name)
        except NotFoundError:
            entry = CacheEntry(version=None, raw=None, expires_at=expires_at, stamp=stamp)
        else:
            entry = CacheEntry(
                version=blob.version, raw=blob.content, expires_at=expires_at, stamp=stamp
            )
        # A write confirmed while this read was in flight is at least as recent.
        if self._cache is None or self._cache.stamp < stamp:
            self._cache = entry
        return entry

    def _clear_inflight(self, future: asyncio.Future[CacheEntry]) -> None:
        if self._inflight is future:
            self._inflight = None
        if not future.cancelled():
            # Mark the exception retrieved; awaiting callers receive it themselves.
            future.exception()

    async def _ensure_cache(self, *, renew: bool = False, since: int | None = None) -> CacheEntry:
        """Return cached state, fetching when it is missing, expired or ``renew`` is set.

        A renewing caller only joins an in-flight fetch that started after
        ``since`` (default: now), so it never receives state older than the
        moment it asked.
        """
        cache = self._cache
        if cache is not None and not renew and not cache.expired():
            return cache
        mark = self._clock if since is None else since
        if self._inflight is None or (renew and self._inflight_stamp <= mark):
            stamp = self._tick()
            future = asyncio.ensure_future(self._fetch(stamp))
            future.add_done_callback(self._clear_inflight)
            self._inflight = future
            self._inflight_stamp = stamp
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop the cached state so the next operation refetches."""
        self._cache = None

    # --- Update loop ---

    async def _update(self, updater: Callable[[T | None], T], message: str) -> T:
        config = self._store.config
        delays = config.retry_delays_s
        attempt = 0
        conflict_mark: int | None = None
        while True:
            cache = await self._ensure_cache(renew=attempt > 0, since=conflict_mark)
            new_value = updater(parse_document(cache.raw, name=self.name))
            new_raw = serialize_document(new_value)
            if cache.raw is not None and new_raw.strip() == cache.raw.strip():
                return new_value

            try:
                version = await self._store.backend.write_if_version(
                    self.name, new_raw, cache.version, message=message
                )
            except VersionConflictError as e:
                conflict_mark = self._clock
                if attempt >= config.max_retries:
                    raise ConflictExceededError(self.key, attempt + 1) from e
                delay = delays[min(attempt, len(delays) - 1)] if delays else 0.0
                attempt += 1
                logger.debug(
                    "Conflict updating %s (attempt %d); retrying in %.1fs", self.key, attempt, delay
                )
                await asyncio.sleep(delay)
                continue

            self._cache = CacheEntry(
                version=version,
                raw=new_raw,
                expires_at=time.monotonic() + config.cache_ttl_s,
                stamp=self._tick(),
            )
            return new_value

    # --- Public API ---

    async def get(self) -> T | None:
        """Read the current value, bypassing the cache; ``None`` when absent."""
        operation = f"get({self.key})"
        asked_at = self._clock
        await self._store.ensure_connectivity()
        try:
            cache = await self._ensure_cache(renew=True, since=asked_at)
            return parse_document(cache.raw, name=self.name)
        except BackendError as e:
            raise BackendError(operation, str(e)) from e

    async def set(self, value: T, *, message: str | None = None) -> T:
        """Overwrite the document with ``value`` (last write wins)."""
        operation = f"set({self.key})"
        message = message or f"{operation} @ {to_json_time()}"
        self._store.ensure_writable()
        await self._store.ensure_connectivity()
        try:
            return await self._update(lambda _current: value, message)
        except BackendError as e:
            raise BackendError(operation, str(e)) from e

    async def update(
        self,
        updater: Callable[[T | None], T],
        *,
        message: str | None = None,
    ) -> T:
        """Apply ``updater`` to the current value and publish the result.

        The updater may run several times when concurrent writers win the
        compare-and-swap race, so it must not have side effects. Returns the
        written value; an unchanged value is returned without a write.
        """
        operation = f"update({self.key})"
        message = message or f"{operation} @ {to_json_time()}"
        self._store.ensure_writable()
        await self._store.ensure_connectivity()
        try:
            return await self._update(updater, message)
        except BackendError as e:
            raise BackendError(operation, str(e)) from e
