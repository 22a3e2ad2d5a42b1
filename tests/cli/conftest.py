"""Shared fixtures for CLI tests."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from remotekv.cli import app

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def store_uri() -> str:
    """A fresh named in-memory store shared by every invocation in one test."""
    return f"memory://cli-{uuid.uuid4().hex[:8]}"


def invoke(runner: CliRunner, args: list[str], store_uri: str | None = None) -> "Result":
    """Invoke CLI with the store selected before the subcommand."""
    if store_uri:
        args = ["--store-uri", store_uri] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
