"""kindstore allocate — reserve ids for an incomplete key."""

from __future__ import annotations

import typer

from kindstore.cli._client import command_errors, run_with_client
from kindstore.cli._convert import key_to_json, parse_key
from kindstore.cli._output import print_json
from kindstore.client import Client
from kindstore.key import Key


def allocate_cmd(
    key: str = typer.Argument(..., help="Incomplete key path as JSON, e.g. '[\"Task\"]'"),
    count: int = typer.Option(1, "--count", "-c", help="Number of ids to allocate"),
) -> None:
    """Allocate ids and print the completed keys."""
    from kindstore.cli import state

    with command_errors():
        incomplete = parse_key(key, state.namespace)

        async def _allocate(client: Client) -> list[Key]:
            return await client.allocate_ids(incomplete, count)

        keys = run_with_client(_allocate)

    if state.json_output:
        print_json([key_to_json(k) for k in keys])
    else:
        for k in keys:
            print(k.path())
