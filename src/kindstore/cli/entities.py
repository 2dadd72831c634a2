"""kindstore get / put / delete — read and write entities by key."""

from __future__ import annotations

from typing import Any, Optional

import typer

from kindstore.cli import _exitcodes as ec
from kindstore.cli._client import command_errors, run_with_client
from kindstore.cli._convert import (
    entity_to_json,
    key_to_json,
    load_json,
    parse_key,
    properties_from_json,
)
from kindstore.cli._output import print_entities, print_error, print_json
from kindstore.client import Client
from kindstore.entity import WRITE_METHODS


def get_cmd(
    keys: list[str] = typer.Argument(..., help="Key paths as JSON, e.g. '[\"Company\", \"acme\"]'"),
) -> None:
    """Look up entities by key. Missing keys are listed separately."""
    from kindstore.cli import state

    with command_errors():
        parsed = [parse_key(k, state.namespace) for k in keys]

        async def _get(client: Client) -> Any:
            return await client.get(parsed)

        found = run_with_client(_get)

    found_keys = {e.key for e in found}
    missing = [key_to_json(k) for k in dict.fromkeys(parsed) if k not in found_keys]
    rows = [entity_to_json(e) for e in found]

    if state.json_output:
        print_json({"found": rows, "missing": missing})
        return
    print_entities(rows)
    for key in missing:
        print(f"missing: {key['path']}")


def put_cmd(
    key: str = typer.Argument(..., help="Key path as JSON; an odd-length path gets an id"),
    data: str = typer.Argument("{}", help="Properties as a JSON object"),
    exclude: Optional[list[str]] = typer.Option(
        None, "--exclude", help="Property to leave out of indexes (repeatable)"
    ),
    method: str = typer.Option("upsert", "--method", help="insert, update or upsert"),
) -> None:
    """Write one entity and print its (possibly allocated) key."""
    from kindstore.cli import state

    if method not in WRITE_METHODS:
        print_error(f"Unknown method '{method}'. Valid methods: {', '.join(WRITE_METHODS)}")
        raise typer.Exit(ec.USAGE_ERROR)

    with command_errors():
        payload = {
            "key": parse_key(key, state.namespace),
            "data": properties_from_json(load_json(data, "data"), state.namespace),
            "exclude_from_indexes": exclude or [],
            "method": method,
        }

        async def _put(client: Client) -> Any:
            response = await client.save(payload)
            response.raise_for_conflicts()
            return response

        response = run_with_client(_put)

    result = response.mutation_results[0]
    out = {"key": key_to_json(result.key), "version": result.version}
    if state.json_output:
        print_json(out)
    else:
        print(f"{method}: {out['key']['path']} (version {result.version})")


def delete_cmd(
    keys: list[str] = typer.Argument(..., help="Key paths as JSON"),
) -> None:
    """Delete entities by key. Deleting a missing key is not an error."""
    from kindstore.cli import state

    with command_errors():
        parsed = [parse_key(k, state.namespace) for k in keys]

        async def _delete(client: Client) -> Any:
            return await client.delete(parsed)

        response = run_with_client(_delete)

    if state.json_output:
        print_json(
            {"deleted": [key_to_json(k) for k in parsed], "index_updates": response.index_updates}
        )
    else:
        print(f"Deleted {len(parsed)} key(s)")
