"""rkv get / set / counter — read and write documents."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import typer

from remotekv.cli import _exitcodes as ec
from remotekv.cli._output import print_error, print_json
from remotekv.cli._store import run_with_store
from remotekv.store import DocumentStore


def get_cmd(key: str = typer.Argument(..., help="Document key")) -> None:
    """Print a document as JSON (null when absent)."""

    async def _get(store: DocumentStore) -> Any:
        return await store.doc(key).get()

    print_json(run_with_store(_get))


def set_cmd(
    key: str = typer.Argument(..., help="Document key"),
    value: str = typer.Argument(..., help="JSON value to store"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Audit message"),
) -> None:
    """Overwrite a document with a JSON value."""
    try:
        parsed = json.loads(value)
    except ValueError as e:
        print_error(f"VALUE is not valid JSON: {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    async def _set(store: DocumentStore) -> Any:
        return await store.doc(key).set(parsed, message=message)

    print_json(run_with_store(_set))


def _increment(item: Any) -> dict[str, Any]:
    item = dict(item) if isinstance(item, dict) else {}
    try:
        count = int(item.get("count") or 0)
    except (TypeError, ValueError):
        count = 0
    return {**item, "count": count + 1}


def counter_cmd(
    key: str = typer.Argument("examples/counter", help="Counter document key"),
    concurrency: int = typer.Option(1, "--concurrency", "-n", min=1, help="Concurrent increments"),
) -> None:
    """Increment the ``count`` field of a shared counter document."""

    async def _count(store: DocumentStore) -> list[Any]:
        doc = store.doc(key)
        return list(await asyncio.gather(*(doc.update(_increment) for _ in range(concurrency))))

    results = run_with_store(_count)
    print_json(results[0] if concurrency == 1 else results)
