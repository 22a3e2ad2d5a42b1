"""rkv lock — inspect resource locks and run commands while holding one."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import typer

from remotekv.cli import _exitcodes as ec
from remotekv.cli._output import print_error, print_object
from remotekv.cli._store import run_with_store
from remotekv.lock import WaitingStatus
from remotekv.store import DocumentStore

app = typer.Typer(no_args_is_help=True)

logger = logging.getLogger(__name__)


@app.command("status")
def status_cmd(resource: str = typer.Argument(..., help="Lock document key")) -> None:
    """Show the current holder and waiting queue of a lock."""
    from remotekv.cli import state

    async def _status(store: DocumentStore) -> dict[str, Any]:
        doc = await store.lock(resource).status()
        return {
            "resource": resource,
            "owner": doc.active.owner if doc.active else None,
            "expires_at": doc.active.expires_at if doc.active else None,
            "queue": [entry.owner for entry in doc.queue or []],
        }

    print_object(run_with_store(_status), json_mode=state.json_output)


@app.command(
    "run",
    context_settings={"allow_interspersed_args": False},
)
def run_cmd(
    resource: str = typer.Argument(..., help="Lock document key"),
    command: list[str] = typer.Argument(..., help="Command to run while holding the lock"),
    label: str = typer.Option("", "--label", "-l", help="Suffix for the owner id"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after this many seconds"),
) -> None:
    """Acquire RESOURCE, run COMMAND, release, and exit with its status."""

    def _report(status: WaitingStatus) -> None:
        logger.debug("Still waiting for %s: %s", status.resource, status.describe())

    async def _run(store: DocumentStore) -> int:
        async with store.lock(resource).hold(label, timeout=timeout, on_waiting=_report):
            try:
                proc = await asyncio.create_subprocess_exec(*command)
            except OSError as e:
                print_error(f"Could not run {command[0]!r}: {e.strerror or e}")
                return ec.USAGE_ERROR
            return await proc.wait()

    returncode = run_with_store(_run)
    raise typer.Exit(returncode)
