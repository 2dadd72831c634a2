"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

_MAX_DATA_WIDTH = 100


def print_json(data: Any) -> None:
    """Print a JSON document for --json mode."""
    print(json.dumps(data, indent=2, default=str))


def print_entities(rows: list[dict[str, Any]]) -> None:
    """Print entity rows (as produced by ``entity_to_json``) as a key/data table.

    Data is shown as compact JSON and cut at a fixed width; use --json for
    the full document.
    """
    if not rows:
        return

    cells = [(str(r["key"]["path"]), _compact(r["data"])) for r in rows]
    key_width = max(len("key"), *(len(k) for k, _ in cells))
    data_width = max(len("data"), *(len(d) for _, d in cells))

    print(f"{'key'.ljust(key_width)}  data")
    print(f"{'-' * key_width}  {'-' * data_width}")
    for key, data in cells:
        print(f"{key.ljust(key_width)}  {data}")


def _compact(data: dict[str, Any]) -> str:
    text = json.dumps(data, default=str, separators=(",", ":"))
    if len(text) > _MAX_DATA_WIDTH:
        text = text[: _MAX_DATA_WIDTH - 3] + "..."
    return text


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
