"""S3 versioned store using ETag conditional writes."""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from remotekv.backends import AccessInfo, VersionedBlob
from remotekv.config import RemoteKVConfig
from remotekv.errors import BackendError, NotFoundError, VersionConflictError

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_CONFLICT_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
_FORBIDDEN_CODES = {"AccessDenied", "403", "Forbidden"}


def _error_code(err: Exception) -> str:
    if isinstance(err, ClientError):
        return str(err.response.get("Error", {}).get("Code", ""))
    return ""


class S3VersionedStore:
    """Blobs stored as objects under ``s3://<bucket>/<prefix>/``."""

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        config: RemoteKVConfig | None = None,
        client: Any = None,
    ) -> None:
        config = config or RemoteKVConfig()
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.repository_id = f"s3://{bucket}/{self.prefix}" if self.prefix else f"s3://{bucket}"
        # S3 has no branches; the prefix already namespaces the documents.
        self.ref: str | None = None
        if client is None:
            session = boto3.Session(region_name=config.s3_region)
            client = session.client(
                "s3",
                region_name=config.s3_region,
                endpoint_url=config.s3_endpoint_url,
                config=BotoConfig(
                    connect_timeout=config.s3_request_timeout_s,
                    read_timeout=config.s3_request_timeout_s,
                    retries={"max_attempts": 5, "mode": "standard"},
                ),
            )
        self._s3 = client

    def _k(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def _get_object(self, name: str) -> VersionedBlob:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._k(name))
            body = resp["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(name) from e
            raise BackendError("get_object", str(e)) from e
        except BotoCoreError as e:
            raise BackendError("get_object", str(e)) from e
        etag = resp.get("ETag")
        if not isinstance(etag, str) or not etag:
            raise BackendError("get_object", f"Missing ETag for '{self._k(name)}'")
        return VersionedBlob(content=body, version=etag)

    def _put_object(
        self,
        name: str,
        content: bytes,
        expected_version: str | None,
        message: str,
    ) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._k(name),
            "Body": content,
            "ContentType": "application/json",
            "Metadata": {"remotekv-message": quote(message, safe="")},
        }
        if expected_version is None:
            kwargs["IfNoneMatch"] = "*"
        else:
            kwargs["IfMatch"] = expected_version

        try:
            resp = self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            raise BackendError(
                "put_object",
                "S3 endpoint does not support conditional write preconditions",
            ) from e
        except ClientError as e:
            if _error_code(e) in _CONFLICT_CODES:
                raise VersionConflictError(name, expected_version) from e
            raise BackendError("put_object", str(e)) from e
        except BotoCoreError as e:
            raise BackendError("put_object", str(e)) from e
        etag = resp.get("ETag")
        if not isinstance(etag, str) or not etag:
            raise BackendError("put_object", f"Missing ETag after writing '{self._k(name)}'")
        return etag

    def _head_bucket(self) -> AccessInfo:
        try:
            self._s3.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if _error_code(e) in _FORBIDDEN_CODES:
                return AccessInfo(can_write=False)
            raise BackendError("head_bucket", str(e)) from e
        except BotoCoreError as e:
            raise BackendError("head_bucket", str(e)) from e
        # S3 cannot report write permission without writing; reachable counts as writable.
        return AccessInfo(can_write=True)

    async def read(self, name: str) -> VersionedBlob:
        return await asyncio.to_thread(self._get_object, name)

    async def write_if_version(
        self,
        name: str,
        content: bytes,
        expected_version: str | None,
        *,
        message: str,
    ) -> str:
        return await asyncio.to_thread(
            self._put_object, name, content, expected_version, message
        )

    async def check_access(self) -> AccessInfo:
        return await asyncio.to_thread(self._head_bucket)

    async def check_ref(self) -> bool:
        return True

    async def close(self) -> None:
        close = getattr(self._s3, "close", None)
        if close is not None:
            close()
