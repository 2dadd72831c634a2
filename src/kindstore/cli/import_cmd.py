"""kindstore import — upsert entities from JSONL export files."""

from __future__ import annotations

import json
import os
from typing import Any

import typer

from kindstore.cli import _exitcodes as ec
from kindstore.cli._client import command_errors, run_with_client
from kindstore.cli._convert import entity_from_json
from kindstore.cli._output import print_error, print_json
from kindstore.client import Client
from kindstore.entity import Entity


def import_cmd(
    input_path: str = typer.Argument(..., help="JSONL file or directory of .jsonl files"),
    batch_size: int = typer.Option(500, "--batch-size", help="Entities per commit"),
) -> None:
    """Upsert every row of the given JSONL export."""
    from kindstore.cli import state

    if batch_size < 1:
        print_error("--batch-size must be at least 1")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        records = _load_jsonl(input_path)
    except (OSError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    if not records:
        print("No records to import.")
        return

    with command_errors():
        entities = [entity_from_json(r, state.namespace) for r in records]

        async def _import(client: Client) -> int:
            commits = 0
            for start in range(0, len(entities), batch_size):
                batch: list[Entity] = entities[start : start + batch_size]
                response = await client.upsert(batch)
                response.raise_for_conflicts()
                commits += 1
            return commits

        commits = run_with_client(_import)

    if state.json_output:
        print_json({"imported": len(entities), "commits": commits})
    else:
        print(f"Imported {len(entities)} entities in {commits} commit(s)")


def _load_jsonl(path: str) -> list[dict[str, Any]]:
    """Load JSONL records from a file or directory."""
    records: list[dict[str, Any]] = []

    if os.path.isdir(path):
        for fname in sorted(os.listdir(path)):
            if fname.endswith(".jsonl"):
                records.extend(_read_jsonl_file(os.path.join(path, fname)))
    elif os.path.isfile(path):
        records = _read_jsonl_file(path)
    else:
        raise FileNotFoundError(f"Input path not found: {path}")

    return records


def _read_jsonl_file(filepath: str) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    with open(filepath) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ValueError(f"{filepath}:{line_num}: invalid JSON: {e.msg}") from e
    return records
