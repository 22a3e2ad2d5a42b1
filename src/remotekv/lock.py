"""Fair, lease-based resource lock built on one document.

The lock document holds the current holder and a FIFO queue of waiters::

    {"active": {"owner": "...", "expiresAt": "2024-01-01T00:05:00.000Z"},
     "queue": [{"owner": "..."}]}

Every state change goes through ``DocumentReference.update`` so concurrent
acquirers in other processes are serialized by the store's compare-and-swap.
There is no notification primitive: waiters poll, holders renew their lease
periodically, and an expired lease is reclaimed by the next waiter to poll.

A holder whose renewals keep failing can lose its lease to the next waiter
without being told; callers must treat long stalls as possible lease loss.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections.abc import AsyncIterator, Callable, MutableMapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from remotekv.config import RemoteKVConfig
from remotekv.document import DocumentReference, to_json_time
from remotekv.errors import BackendError, LockTimeoutError

logger = logging.getLogger(__name__)


class LockHolder(BaseModel):
    """The owner currently using the resource and when its lease runs out."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    owner: str
    # Kept as written; anything that is not an ISO timestamp string counts as expired.
    expires_at: Any = Field(default=None, alias="expiresAt")


class QueueEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    owner: str


class LockDocument(BaseModel):
    """Parsed lock document; absent fields stay absent when dumped."""

    model_config = ConfigDict(extra="allow")

    active: LockHolder | None = None
    queue: list[QueueEntry] | None = None

    _source: Any = PrivateAttr(default=None)

    @classmethod
    def load(cls, data: Any) -> LockDocument:
        if data is None:
            return cls()
        try:
            doc = cls.model_validate(data)
        except ValidationError as e:
            raise BackendError("parse_lock_document", str(e)) from e
        doc._source = data
        return doc

    def dump(self) -> dict[str, Any]:
        """Plain dict in the key order it was loaded with; empty slots are omitted."""
        data = self.model_dump(by_alias=True)
        for key in ("active", "queue"):
            if data.get(key) is None:
                data.pop(key, None)
        active = data.get("active")
        source_active = self._source.get("active") if isinstance(self._source, dict) else None
        if active is not None and active.get("expiresAt") is None:
            if not isinstance(source_active, dict) or "expiresAt" not in source_active:
                active.pop("expiresAt", None)
        return _keep_key_order(data, self._source)

    def position_of(self, owner: str) -> int:
        """1-based queue position of ``owner``; 0 when not queued."""
        for index, entry in enumerate(self.queue or []):
            if entry.owner == owner:
                return index + 1
        return 0


def _keep_key_order(value: Any, original: Any) -> Any:
    if not isinstance(value, dict) or not isinstance(original, dict):
        return value
    ordered = {k: _keep_key_order(value[k], original[k]) for k in original if k in value}
    ordered.update((k, v) for k, v in value.items() if k not in ordered)
    return ordered


def new_owner_id(label: str = "") -> str:
    """Unique owner id: time-ordered hex prefix, random part, optional label."""
    owner = f"{int(time.time()):08x}{uuid.uuid4().hex[:16]}"
    return f"{owner}-{label}" if label else owner


def _parse_json_time(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def lease_expired(holder: LockHolder, now: datetime) -> bool:
    if not isinstance(holder.expires_at, str):
        return True
    try:
        return now >= _parse_json_time(holder.expires_at)
    except ValueError:
        return True


def _lease(owner: str, now: datetime, seconds: float) -> LockHolder:
    return LockHolder(owner=owner, expires_at=to_json_time(now + timedelta(seconds=seconds)))


def _promote_head(doc: LockDocument, now: datetime, provisional_lease_s: float) -> None:
    if doc.active is None and doc.queue:
        head = doc.queue.pop(0)
        doc.active = _lease(head.owner, now, provisional_lease_s)


# --- Transitions ---


def request_usage(
    data: Any,
    owner: str,
    *,
    now: datetime,
    lease_s: float,
    provisional_lease_s: float,
) -> dict[str, Any]:
    """Waiting-phase transition: reclaim, promote, take over or enqueue."""
    doc = LockDocument.load(data)

    if doc.active is not None and lease_expired(doc.active, now):
        doc.active = None

    if doc.active is not None and doc.active.owner == owner:
        return doc.dump()

    _promote_head(doc, now, provisional_lease_s)

    if doc.active is None:
        doc.active = _lease(owner, now, lease_s)

    if doc.active.owner != owner:
        if doc.queue is None:
            doc.queue = []
        if not doc.position_of(owner):
            doc.queue.append(QueueEntry(owner=owner))

    return doc.dump()


def extend_lease(data: Any, owner: str, *, now: datetime, lease_s: float) -> dict[str, Any]:
    """Running-phase transition: push the lease out if ``owner`` still holds it."""
    doc = LockDocument.load(data)
    if doc.active is not None and doc.active.owner == owner:
        doc.active.expires_at = to_json_time(now + timedelta(seconds=lease_s))
    return doc.dump()


def finish_usage(
    data: Any,
    owner: str,
    *,
    now: datetime,
    provisional_lease_s: float,
) -> dict[str, Any]:
    """Release transition: step down and hand the resource to the queue head."""
    doc = LockDocument.load(data)
    if doc.active is not None and doc.active.owner == owner:
        doc.active = None
    _promote_head(doc, now, provisional_lease_s)
    return doc.dump()


def withdraw(
    data: Any,
    owner: str,
    *,
    now: datetime,
    provisional_lease_s: float,
) -> dict[str, Any]:
    """Abandon an acquisition attempt: leave the queue, then release."""
    doc = LockDocument.load(data)
    if doc.queue is not None:
        doc.queue = [entry for entry in doc.queue if entry.owner != owner]
    return finish_usage(doc.dump(), owner, now=now, provisional_lease_s=provisional_lease_s)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _OwnerLogger(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[{extra['resource']}] [{extra['owner']}] {msg}", kwargs


@dataclass(frozen=True)
class WaitingStatus:
    """Where an acquisition attempt stands while it waits."""

    resource: str
    owner: str
    holder: str | None
    position: int
    waited_s: float

    def describe(self) -> str:
        minutes = int(self.waited_s // 60)
        if self.position == 1:
            place = " We are next."
        else:
            place = f" We are in position {self.position} inside the queue."
        waited = "1 minute." if minutes == 1 else f"{minutes} minutes."
        return (
            f'The resource is currently being used by "{self.holder}".'
            f"{place} Been waiting for {waited}"
        )


class AcquiredLock:
    """Handle for a held lock; keeps the lease alive until released."""

    def __init__(self, lock: ResourceLock, owner_id: str, log: logging.LoggerAdapter) -> None:
        self.lock = lock
        self.owner_id = owner_id
        self._log = log
        self._released = False
        self._stopped = asyncio.Event()
        self._renewal = asyncio.create_task(
            self._renew_loop(), name=f"remotekv-renew-{lock.resource}-{owner_id}"
        )

    @property
    def released(self) -> bool:
        return self._released

    async def _renew_loop(self) -> None:
        lock = self.lock
        config = lock.config
        while not self._stopped.is_set():
            try:
                await lock.doc.update(
                    lambda data: extend_lease(
                        data, self.owner_id, now=_utcnow(), lease_s=config.lock_lease_s
                    ),
                    message=f"Extend usage lease of {lock.resource} by {self.owner_id}",
                )
            except Exception:
                self._log.warning("Running phase: Error updating", exc_info=True)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=config.lock_renew_interval_s)
            except asyncio.TimeoutError:
                pass

    async def release(self) -> None:
        """Stop renewing and give the resource to the next waiter."""
        if self._released:
            return
        self._released = True
        self._stopped.set()
        self._renewal.cancel()
        await asyncio.gather(self._renewal, return_exceptions=True)

        lock = self.lock
        self._log.info("Finishing phase: Entered")
        await lock.doc.update(
            lambda data: finish_usage(
                data,
                self.owner_id,
                now=_utcnow(),
                provisional_lease_s=lock.config.lock_provisional_lease_s,
            ),
            message=f"Finish usage of {lock.resource} by {self.owner_id}",
        )
        self._log.info("Finishing phase: Finished")

    async def _release_after_error(self) -> None:
        # The caller's exception takes precedence over a failed release.
        try:
            await self.release()
        except Exception:
            self._log.warning("Finishing phase: Error releasing", exc_info=True)

    async def __aenter__(self) -> AcquiredLock:
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, *exc_info: object) -> None:
        if exc_type is None:
            await self.release()
        else:
            await self._release_after_error()


class ResourceLock:
    """Exclusive, FIFO-fair access to a named resource across processes."""

    def __init__(self, doc: DocumentReference[Any], *, config: RemoteKVConfig | None = None) -> None:
        self.doc = doc
        self.resource = doc.key
        self.config = config or doc.store.config

    def __repr__(self) -> str:
        return f"ResourceLock({self.resource!r})"

    async def status(self) -> LockDocument:
        """Fresh read of the lock document."""
        return LockDocument.load(await self.doc.get())

    async def _withdraw(self, owner: str) -> None:
        await self.doc.update(
            lambda data: withdraw(
                data,
                owner,
                now=_utcnow(),
                provisional_lease_s=self.config.lock_provisional_lease_s,
            ),
            message=f"Withdraw usage request of {self.resource} by {owner}",
        )

    async def acquire(
        self,
        label: str = "",
        *,
        timeout: float | None = None,
        on_waiting: Callable[[WaitingStatus], None] | None = None,
    ) -> AcquiredLock:
        """Wait until this attempt holds the resource.

        Args:
            label: Suffix appended to the generated owner id for diagnostics
            timeout: Seconds to wait before giving up; waits forever when None
            on_waiting: Called with the current ``WaitingStatus`` after every queued poll

        Returns:
            An ``AcquiredLock`` whose lease is renewed in the background.
        """
        config = self.config
        owner = new_owner_id(label)
        log = _OwnerLogger(logger, {"resource": self.resource, "owner": owner})
        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None
        waiting_message = ""

        log.info("Waiting phase: Entered")
        while True:
            if deadline is not None and time.monotonic() >= deadline:
                await self._withdraw(owner)
                log.info("Waiting phase: Timed out")
                raise LockTimeoutError(self.resource, timeout or 0.0)

            data = await self.doc.update(
                lambda data: request_usage(
                    data,
                    owner,
                    now=_utcnow(),
                    lease_s=config.lock_lease_s,
                    provisional_lease_s=config.lock_provisional_lease_s,
                ),
                message=f"Request usage of {self.resource} by {owner}",
            )
            state = LockDocument.load(data)
            if state.active is not None and state.active.owner == owner:
                log.info("Waiting phase: Ready")
                break

            status = WaitingStatus(
                resource=self.resource,
                owner=owner,
                holder=state.active.owner if state.active is not None else None,
                position=state.position_of(owner),
                waited_s=time.monotonic() - start,
            )
            message = status.describe()
            if message != waiting_message:
                waiting_message = message
                log.info("Waiting phase: Queued -- %s", message)
            if on_waiting is not None:
                on_waiting(status)

            delay = config.lock_poll_interval_s
            if config.lock_poll_jitter_s > 0:
                delay += random.uniform(0.0, config.lock_poll_jitter_s)
            if deadline is not None:
                delay = max(0.0, min(delay, deadline - time.monotonic()))
            await asyncio.sleep(delay)

        log.info("Running phase: Entered")
        return AcquiredLock(self, owner, log)

    @asynccontextmanager
    async def hold(
        self,
        label: str = "",
        *,
        timeout: float | None = None,
        on_waiting: Callable[[WaitingStatus], None] | None = None,
    ) -> AsyncIterator[AcquiredLock]:
        """Acquire the resource for the duration of an ``async with`` block."""
        acquired = await self.acquire(label, timeout=timeout, on_waiting=on_waiting)
        try:
            yield acquired
        except BaseException:
            await acquired._release_after_error()
            raise
        await acquired.release()
