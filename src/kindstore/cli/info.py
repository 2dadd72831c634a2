"""kindstore info — show emulator status and live entity counts."""

from __future__ import annotations

import os
from typing import Any

import typer

from kindstore.cli import _exitcodes as ec
from kindstore.cli._client import command_errors, resolve_endpoint, run_with_client
from kindstore.cli._output import print_error, print_json
from kindstore.client import Client
from kindstore.emulator import EmulatorTransport
from kindstore.transport import parse_endpoint


def info_cmd(
    stats: bool = typer.Option(False, "--stats", help="Show live entity counts per kind"),
) -> None:
    """Show emulator status and high-level metadata."""
    from kindstore.cli import state

    json_mode = state.json_output
    with command_errors():
        target = parse_endpoint(resolve_endpoint())
    if target.db_path is None:
        print_error(f"info needs the bundled emulator; '{target.uri}' is a remote endpoint")
        raise typer.Exit(ec.USAGE_ERROR)
    if target.db_path != ":memory:" and not os.path.exists(target.db_path):
        print_error(f"Database not found: {target.db_path}")
        raise typer.Exit(ec.STORE_ERROR)

    async def _info(client: Client) -> dict[str, Any]:
        transport = client.transport
        assert isinstance(transport, EmulatorTransport)
        namespace = client.namespace or ""
        data: dict[str, Any] = transport.storage_info()
        data["namespace"] = namespace
        data["namespaces"] = transport.list_namespaces()
        if stats:
            data["kind_counts"] = transport.list_kinds(namespace)
        return data

    with command_errors():
        data = run_with_client(_info)
    if target.db_path != ":memory:":
        data["file_size_bytes"] = os.path.getsize(target.db_path)

    if json_mode:
        print_json(data)
        return
    print(f"Backend: {data['backend']}")
    print(f"Database: {data['db_path']}")
    if "file_size_bytes" in data:
        print(f"File size: {int(data['file_size_bytes']):,} bytes")
    print(f"Head commit: {data['head_commit_id'] or '(none)'}")
    print(f"Namespaces: {', '.join(repr(n) for n in data['namespaces']) or '(none)'}")
    if stats:
        print(f"\nEntity counts ({data['namespace'] or 'default namespace'}):")
        for kind, count in data["kind_counts"].items():
            print(f"  {kind}: {count}")
