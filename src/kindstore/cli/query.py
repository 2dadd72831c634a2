"""kindstore query — run a query against one kind."""

from __future__ import annotations

from typing import Any, Optional

import typer

from kindstore.cli._client import command_errors, run_with_client
from kindstore.cli._convert import entity_to_json, parse_key
from kindstore.cli._filters import apply_cli_filters, group_filter_args
from kindstore.cli._output import print_entities, print_json
from kindstore.client import Client
from kindstore.query import QueryResult


def query_cmd(
    kind: str = typer.Argument(..., help="Entity kind"),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="PROPERTY OP VALUE_JSON (repeatable)"
    ),
    order: Optional[list[str]] = typer.Option(
        None, "--order", help="Sort property; prefix with '-' for descending (repeatable)"
    ),
    ancestor: Optional[str] = typer.Option(None, "--ancestor", help="Ancestor key as JSON"),
    select: Optional[list[str]] = typer.Option(
        None, "--select", help="Projected property; '__key__' for keys only (repeatable)"
    ),
    group_by: Optional[list[str]] = typer.Option(
        None, "--group-by", help="Distinct-on property (repeatable)"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max results"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Skip first N results"),
    start: Optional[str] = typer.Option(None, "--start", help="Start cursor"),
    max_api_calls: Optional[int] = typer.Option(
        None, "--max-api-calls", help="Stop after this many RunQuery calls"
    ),
) -> None:
    """Query entities of a kind and print them with the end cursor."""
    from kindstore.cli import state

    with command_errors():
        triples = group_filter_args(filter_args)

        async def _query(client: Client) -> QueryResult:
            q = apply_cli_filters(client.create_query(kind), triples, state.namespace)
            for name in order or []:
                q = q.order(name)
            if ancestor is not None:
                q = q.has_ancestor(parse_key(ancestor, state.namespace))
            if select:
                q = q.select(select)
            if group_by:
                q = q.group_by(group_by)
            if limit is not None:
                q = q.limit(limit)
            if offset is not None:
                q = q.offset(offset)
            if start:
                q = q.start(start)
            return await client.run_query(q, max_api_calls=max_api_calls)

        result = run_with_client(_query)

    rows = [entity_to_json(e) for e in result.entities]
    info: dict[str, Any] = {
        "end_cursor": result.info.end_cursor,
        "more_results": result.info.more_results.value,
    }
    if state.json_output:
        print_json({"entities": rows, "info": info})
        return
    print_entities(rows)
    print(f"\n{len(rows)} result(s); {info['more_results']}")
    if info["end_cursor"]:
        print(f"end cursor: {info['end_cursor']}")
