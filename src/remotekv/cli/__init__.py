"""rkv: command-line access to remotekv documents and locks."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from remotekv.cli import documents, locks

app = typer.Typer(
    name="rkv",
    help="rkv — read and write remote documents and coordinate through resource locks.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    store_uri: str | None = None
    token: str | None = None
    read_only: bool = False
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("remotekv")
        except Exception:
            v = "unknown"
        print(f"rkv {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    store_uri: Optional[str] = typer.Option(
        None,
        "--store-uri",
        envvar="REMOTEKV_STORE_URI",
        help="Store URI (memory://name, s3://bucket/prefix or github://owner/repo@branch)",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        envvar=["REMOTEKV_TOKEN", "GITHUB_TOKEN"],
        help="Access token for the GitHub backend",
        show_default=False,
    ),
    read_only: bool = typer.Option(False, "--read-only", help="Open the store read-only"),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logging"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all rkv commands."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="[%(asctime)s] [%(name)s] %(message)s")

    state.store_uri = store_uri
    state.token = token
    state.read_only = read_only
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(locks.app, name="lock", help="Inspect and hold resource locks")

app.command(name="get")(documents.get_cmd)
app.command(name="set")(documents.set_cmd)
app.command(name="counter")(documents.counter_cmd)


def main() -> None:
    """Entry point for the rkv CLI."""
    app()
