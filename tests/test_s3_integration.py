"""S3 backend integration tests (MinIO-compatible)."""

from __future__ import annotations

import asyncio
import json
import os
import uuid

import boto3
import pytest
from typer.testing import CliRunner

from remotekv import DocumentStore, RemoteKVConfig
from remotekv.cli import app

pytestmark = pytest.mark.s3


@pytest.fixture
def s3_backend() -> dict[str, str]:
    if os.getenv("REMOTEKV_S3_TEST") != "1":
        pytest.skip("S3 integration tests disabled (set REMOTEKV_S3_TEST=1)")

    endpoint = os.getenv("REMOTEKV_S3_ENDPOINT", "http://127.0.0.1:9000")
    bucket = os.getenv("REMOTEKV_S3_BUCKET", "remotekv-test")
    region = os.getenv("REMOTEKV_S3_REGION", "us-east-1")

    s3 = boto3.client("s3", endpoint_url=endpoint, region_name=region)
    existing = {b["Name"] for b in s3.list_buckets().get("Buckets", [])}
    if bucket not in existing:
        s3.create_bucket(Bucket=bucket)

    prefix = f"it/{uuid.uuid4().hex}"
    return {
        "store_uri": f"s3://{bucket}/{prefix}",
        "endpoint": endpoint,
        "region": region,
        "bucket": bucket,
        "prefix": prefix,
    }


def _config(s3_backend: dict[str, str], **overrides: object) -> RemoteKVConfig:
    values: dict[str, object] = {
        "s3_region": s3_backend["region"],
        "s3_endpoint_url": s3_backend["endpoint"],
        "retry_delays_s": (0.0, 0.1, 0.2, 0.5, 1.0),
        "lock_poll_interval_s": 0.1,
        "lock_renew_interval_s": 0.5,
    }
    values.update(overrides)
    return RemoteKVConfig(**values)  # type: ignore[arg-type]


def test_s3_concurrent_counter(s3_backend: dict[str, str]) -> None:
    def increment(item):
        item = item or {}
        return {**item, "count": int(item.get("count") or 0) + 1}

    async def main():
        stores = [
            DocumentStore.from_uri(s3_backend["store_uri"], config=_config(s3_backend))
            for _ in range(3)
        ]
        try:
            await asyncio.gather(
                *(s.doc("examples/counter").update(increment) for s in stores)
            )
            return await stores[0].doc("examples/counter").get()
        finally:
            for s in stores:
                await s.close()

    assert asyncio.run(main()) == {"count": 3}

    s3 = boto3.client(
        "s3", endpoint_url=s3_backend["endpoint"], region_name=s3_backend["region"]
    )
    obj = s3.get_object(
        Bucket=s3_backend["bucket"], Key=f"{s3_backend['prefix']}/examples/counter.json"
    )
    assert json.loads(obj["Body"].read()) == {"count": 3}


def test_s3_lock_is_exclusive(s3_backend: dict[str, str]) -> None:
    events: list[str] = []

    async def worker(name: str) -> None:
        async with DocumentStore.from_uri(
            s3_backend["store_uri"], config=_config(s3_backend)
        ) as store:
            async with store.lock("examples/lock").hold(name):
                events.append(f"enter {name}")
                await asyncio.sleep(0.2)
                events.append(f"exit {name}")

    async def main():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(main())
    assert events[0].startswith("enter")
    assert events[1] == events[0].replace("enter", "exit")
    assert events[2].startswith("enter")


def test_s3_cli_set_get(s3_backend: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REMOTEKV_S3_ENDPOINT_URL", s3_backend["endpoint"])
    monkeypatch.setenv("REMOTEKV_S3_REGION", s3_backend["region"])
    runner = CliRunner()
    base = ["--store-uri", s3_backend["store_uri"]]

    result = runner.invoke(app, [*base, "set", "examples/hello", '{"ok": true}'])
    assert result.exit_code == 0, result.output
    result = runner.invoke(app, [*base, "get", "examples/hello"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"ok": True}
