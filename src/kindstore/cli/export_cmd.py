"""kindstore export — export entities as JSONL, one file per kind."""

from __future__ import annotations

import json
import os
from typing import Optional

import typer

from kindstore.cli import _exitcodes as ec
from kindstore.cli._client import command_errors, run_with_client
from kindstore.cli._convert import entity_to_json
from kindstore.cli._output import print_error, print_json
from kindstore.client import Client
from kindstore.emulator import EmulatorTransport


def export_cmd(
    output: str = typer.Option(..., "--output", help="Output directory path"),
    kinds: Optional[list[str]] = typer.Option(
        None, "--kind", help="Export only this kind (repeatable)"
    ),
) -> None:
    """Export the entities of each kind to ``<output>/<kind>.jsonl``."""
    from kindstore.cli import state

    try:
        os.makedirs(output, exist_ok=True)
    except OSError as e:
        print_error(f"Cannot create output directory: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    async def _export(client: Client) -> dict[str, int]:
        selected = list(kinds or [])
        if not selected:
            transport = client.transport
            if not isinstance(transport, EmulatorTransport):
                raise typer.BadParameter("--kind is required for remote endpoints")
            selected = list(transport.list_kinds(client.namespace or ""))
        counts: dict[str, int] = {}
        for kind in selected:
            count = 0
            with open(os.path.join(output, f"{kind}.jsonl"), "w") as f:
                async with client.create_query(kind).run_stream() as stream:
                    async for entity in stream:
                        f.write(json.dumps(entity_to_json(entity)) + "\n")
                        count += 1
            counts[kind] = count
        return counts

    with command_errors():
        counts = run_with_client(_export)

    if state.json_output:
        print_json({"output": output, "counts": counts})
        return
    for kind, count in counts.items():
        print(f"  {kind}: {count} entities")
    print(f"Exported {sum(counts.values())} entities to {output}")
