"""CLI helpers for store construction and error reporting."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer

from remotekv.cli import _exitcodes as ec
from remotekv.cli._output import print_error
from remotekv.config import RemoteKVConfig
from remotekv.errors import (
    LockTimeoutError,
    RemoteKVError,
    StorePermissionError,
)
from remotekv.store import DocumentStore

T = TypeVar("T")


def _config_from_env() -> RemoteKVConfig:
    """Build config from CLI environment defaults."""
    return RemoteKVConfig(
        s3_region=os.getenv("REMOTEKV_S3_REGION"),
        s3_endpoint_url=os.getenv("REMOTEKV_S3_ENDPOINT_URL"),
    )


def open_store() -> DocumentStore:
    """Open a document store using the global CLI options."""
    from remotekv.cli import state

    if not state.store_uri:
        print_error("No store configured; pass --store-uri or set REMOTEKV_STORE_URI")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        return DocumentStore.from_uri(
            state.store_uri,
            token=state.token,
            read_only=state.read_only,
            config=_config_from_env(),
        )
    except RemoteKVError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)


def run_with_store(fn: Callable[[DocumentStore], Awaitable[T]]) -> T:
    """Run ``fn`` against a freshly opened store, mapping errors to exit codes."""
    store = open_store()

    async def _main() -> T:
        async with store:
            return await fn(store)

    try:
        return asyncio.run(_main())
    except StorePermissionError as e:
        print_error(str(e))
        raise typer.Exit(ec.PERMISSION_ERROR)
    except LockTimeoutError as e:
        print_error(str(e))
        raise typer.Exit(ec.LOCK_TIMEOUT)
    except RemoteKVError as e:
        print_error(str(e))
        raise typer.Exit(ec.BACKEND_ERROR)
