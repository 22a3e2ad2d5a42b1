"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any


def print_json(data: Any) -> None:
    """Print a document value as pretty JSON."""
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def print_object(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """Print a flat mapping as JSON or key-value lines."""
    if json_mode:
        print_json(data)
        return
    for k, v in data.items():
        if isinstance(v, list):
            print(f"{k}:")
            for item in v:
                print(f"  {item}")
        else:
            print(f"{k}: {v if v is not None else '(none)'}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
