"""Unit tests for the S3 backend that do not require a live S3 endpoint."""

from __future__ import annotations

import asyncio
import hashlib
import io
import threading
from typing import Any
from urllib.parse import unquote

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ParamValidationError

from remotekv import BackendError, DocumentStore, NotFoundError, VersionConflictError
from remotekv.backends.s3 import S3VersionedStore
from tests.conftest import fast_config


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3:
    """Minimal in-process S3 client honouring IfMatch / IfNoneMatch."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str, dict[str, str]]] = {}
        self.put_calls: list[dict[str, Any]] = []
        self.head_error: str | None = None
        self.closed = False
        self._lock = threading.Lock()

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        body, etag, _ = self.objects[Key]
        return {"Body": io.BytesIO(body), "ETag": etag}

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            return self._put(kwargs)

    def _put(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        self.put_calls.append(kwargs)
        key = kwargs["Key"]
        current = self.objects.get(key)
        if kwargs.get("IfNoneMatch") == "*" and current is not None:
            raise _client_error("PreconditionFailed", "PutObject")
        if "IfMatch" in kwargs and (current is None or current[1] != kwargs["IfMatch"]):
            raise _client_error("PreconditionFailed", "PutObject")
        etag = '"' + hashlib.md5(kwargs["Body"]).hexdigest() + '"'
        self.objects[key] = (kwargs["Body"], etag, kwargs.get("Metadata", {}))
        return {"ETag": etag}

    def head_bucket(self, *, Bucket: str) -> dict[str, Any]:
        if self.head_error is not None:
            raise _client_error(self.head_error, "HeadBucket")
        return {}

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def s3_store(fake_s3) -> S3VersionedStore:
    return S3VersionedStore(bucket="bucket", prefix="/kv/", client=fake_s3)


def test_repository_id_and_prefix(s3_store) -> None:
    assert s3_store.repository_id == "s3://bucket/kv"
    assert s3_store.ref is None
    assert S3VersionedStore(bucket="b", client=FakeS3()).repository_id == "s3://b"


def test_read_missing_object_is_not_found(s3_store) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(s3_store.read("missing.json"))


def test_create_uses_if_none_match_and_update_uses_if_match(s3_store, fake_s3) -> None:
    async def main():
        first = await s3_store.write_if_version("a.json", b"{}", None, message="create")
        second = await s3_store.write_if_version("a.json", b"[]", first, message="update")
        return first, second, await s3_store.read("a.json")

    first, second, blob = asyncio.run(main())
    create, update = fake_s3.put_calls
    assert create["Key"] == "kv/a.json"
    assert create["IfNoneMatch"] == "*"
    assert "IfMatch" not in create
    assert update["IfMatch"] == first
    assert blob.content == b"[]"
    assert blob.version == second


def test_stale_etag_is_version_conflict(s3_store) -> None:
    async def main():
        await s3_store.write_if_version("a.json", b"1", None, message="m")
        await s3_store.write_if_version("a.json", b"2", '"stale"', message="m")

    with pytest.raises(VersionConflictError):
        asyncio.run(main())


def test_create_over_existing_object_is_version_conflict(s3_store) -> None:
    async def main():
        await s3_store.write_if_version("a.json", b"1", None, message="m")
        await s3_store.write_if_version("a.json", b"2", None, message="m")

    with pytest.raises(VersionConflictError):
        asyncio.run(main())


def test_message_is_stored_as_quoted_metadata(s3_store, fake_s3) -> None:
    asyncio.run(s3_store.write_if_version("a.json", b"1", None, message="Request usage of ü"))
    metadata = fake_s3.put_calls[0]["Metadata"]
    assert metadata["remotekv-message"].isascii()
    assert unquote(metadata["remotekv-message"]) == "Request usage of ü"


def test_missing_precondition_support_is_backend_error(s3_store, fake_s3) -> None:
    def reject(**_kwargs: Any) -> dict[str, Any]:
        raise ParamValidationError(report="Unknown parameter in input: IfMatch")

    fake_s3.put_object = reject  # type: ignore[method-assign]
    with pytest.raises(BackendError, match="conditional write"):
        asyncio.run(s3_store.write_if_version("a.json", b"1", None, message="m"))


def test_transport_failure_is_backend_error(s3_store, fake_s3) -> None:
    def offline(**_kwargs: Any) -> dict[str, Any]:
        raise EndpointConnectionError(endpoint_url="http://127.0.0.1:9")

    fake_s3.get_object = offline  # type: ignore[method-assign]
    with pytest.raises(BackendError) as exc_info:
        asyncio.run(s3_store.read("a.json"))
    assert exc_info.value.operation == "get_object"


def test_access_denied_bucket_is_not_writable(s3_store, fake_s3) -> None:
    assert asyncio.run(s3_store.check_access()).can_write is True
    fake_s3.head_error = "403"
    assert asyncio.run(s3_store.check_access()).can_write is False
    fake_s3.head_error = "NoSuchBucket"
    with pytest.raises(BackendError, match="head_bucket"):
        asyncio.run(s3_store.check_access())


def test_close_closes_client(s3_store, fake_s3) -> None:
    asyncio.run(s3_store.close())
    assert fake_s3.closed


def test_document_store_counter_over_s3(s3_store, fake_s3) -> None:
    stores = [DocumentStore(s3_store, config=fast_config()) for _ in range(3)]

    def increment(item):
        item = item or {}
        return {**item, "count": int(item.get("count") or 0) + 1}

    async def main():
        await asyncio.gather(*(s.doc("examples/counter").update(increment) for s in stores))
        return await stores[0].doc("examples/counter").get()

    assert asyncio.run(main()) == {"count": 3}
    assert "kv/examples/counter.json" in fake_s3.objects
