"""CLI filter token parser: converts --filter triples into query filters."""

from __future__ import annotations

from typing import Any

from kindstore.cli._convert import load_json, value_from_json
from kindstore.errors import InvalidQueryError
from kindstore.query import Query

# Map CLI operator tokens to query operators
_OP_MAP: dict[str, str] = {
    "eq": "=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "=": "=",
    ">": ">",
    ">=": ">=",
    "<": "<",
    "<=": "<=",
}


def group_filter_args(filter_args: list[str] | None) -> list[tuple[str, str, str]]:
    """Group --filter values into (PROPERTY, OP, VALUE_JSON) triples.

    Each --filter is either one space-separated ``"PROP OP VALUE_JSON"`` string,
    or the three tokens arrive as consecutive --filter values.
    """
    if not filter_args:
        return []
    if all(len(arg.split(None, 2)) == 3 for arg in filter_args):
        return [tuple(arg.split(None, 2)) for arg in filter_args]  # type: ignore[misc]
    if len(filter_args) % 3 != 0:
        bad = next(arg for arg in filter_args if len(arg.split(None, 2)) != 3)
        raise InvalidQueryError(f"Invalid filter (expected 'PROPERTY OP VALUE_JSON'): {bad}")
    return [
        (filter_args[i], filter_args[i + 1], filter_args[i + 2])
        for i in range(0, len(filter_args), 3)
    ]


def apply_cli_filters(
    query: Query, triples: list[tuple[str, str, str]], namespace: str | None = None
) -> Query:
    """Add each triple to ``query`` as a property filter (filters are AND-combined)."""
    for name, op_token, value_json in triples:
        op = _OP_MAP.get(op_token)
        if op is None:
            raise InvalidQueryError(
                f"Unknown filter operator '{op_token}'. "
                f"Valid operators: {', '.join(sorted(_OP_MAP.keys()))}"
            )
        value: Any = value_from_json(load_json(value_json, f"filter on '{name}'"), namespace)
        query = query.filter(name, op, value)
    return query
