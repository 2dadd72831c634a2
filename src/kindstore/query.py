"""Immutable query builder and query result types."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple

from kindstore.codec import encode_value, key_to_wire
from kindstore.errors import InvalidEntityValueError, InvalidQueryError, KindstoreError
from kindstore.key import Key

if TYPE_CHECKING:
    from kindstore.entity import Entity

KEY_PROPERTY = "__key__"

OPERATORS = {
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    "=": "EQUAL",
    ">=": "GREATER_THAN_OR_EQUAL",
    ">": "GREATER_THAN",
}

_MISSING = object()


class MoreResults(str, Enum):
    """Status the store reports after each query batch."""

    MORE_RESULTS_AFTER_CURSOR = "MORE_RESULTS_AFTER_CURSOR"
    MORE_RESULTS_AFTER_LIMIT = "MORE_RESULTS_AFTER_LIMIT"
    NO_MORE_RESULTS = "NO_MORE_RESULTS"
    NOT_FINISHED = "NOT_FINISHED"


@dataclass(frozen=True)
class QueryInfo:
    end_cursor: str | None
    more_results: MoreResults


class QueryResult(NamedTuple):
    entities: list[Entity]
    info: QueryInfo


@dataclass(frozen=True)
class PropertyFilter:
    name: str
    op: str
    value: Any

    def to_wire(self, project_id: str | None = None) -> dict[str, Any]:
        return {
            "propertyFilter": {
                "property": {"name": self.name},
                "op": OPERATORS[self.op],
                "value": encode_value(self.value, project_id=project_id),
            }
        }


@dataclass(frozen=True)
class PropertyOrder:
    name: str
    descending: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {
            "property": {"name": self.name},
            "direction": "DESCENDING" if self.descending else "ASCENDING",
        }


def _names(names: tuple[Any, ...]) -> tuple[str, ...]:
    if len(names) == 1 and isinstance(names[0], (list, tuple)):
        names = tuple(names[0])
    for name in names:
        if not isinstance(name, str) or not name:
            raise InvalidQueryError(f"Property names must be non-empty strings, got {name!r}")
    return tuple(names)


def check_ancestor_namespace(ancestor: Key, namespace: str | None) -> None:
    """Ancestor queries only match within the ancestor's own namespace."""
    if ancestor.namespace != (namespace or ""):
        raise InvalidQueryError(
            f"Ancestor namespace {ancestor.namespace!r} does not match "
            f"query namespace {namespace or ''!r}"
        )


@dataclass(frozen=True)
class Query:
    """A query specification. Every builder call returns a new Query.

    Building never touches the store; ``run`` and ``run_stream`` hand the query
    to the client or transaction that created it.
    """

    kind: str | None = None
    namespace: str | None = None
    filters: tuple[PropertyFilter, ...] = ()
    orders: tuple[PropertyOrder, ...] = ()
    ancestor: Key | None = None
    projection: tuple[str, ...] = ()
    distinct_on: tuple[str, ...] = ()
    start_cursor: str | None = None
    end_cursor: str | None = None
    limit_value: int | None = None
    offset_value: int = 0
    scope: Any = field(default=None, compare=False, repr=False)

    def filter(self, name: str, op_or_value: Any, value: Any = _MISSING) -> Query:
        """Add a property filter. ``filter(name, value)`` means equality."""
        if value is _MISSING:
            op, value = "=", op_or_value
        else:
            op = op_or_value.strip() if isinstance(op_or_value, str) else op_or_value
        if not isinstance(name, str) or not name:
            raise InvalidQueryError(f"Filter property must be a non-empty string, got {name!r}")
        if op not in OPERATORS:
            raise InvalidQueryError(
                f"Unsupported filter operator {op!r}; expected one of {', '.join(OPERATORS)}"
            )
        if name == KEY_PROPERTY and not isinstance(value, Key):
            raise InvalidQueryError(f"Filters on {KEY_PROPERTY} require a Key value")
        if isinstance(value, (list, tuple)):
            raise InvalidQueryError(f"Filter value for '{name}' cannot be an array")
        try:
            encode_value(value, name=name)
        except InvalidEntityValueError as e:
            raise InvalidQueryError(str(e)) from e
        return replace(self, filters=self.filters + (PropertyFilter(name, op, value),))

    def has_ancestor(self, key: Key) -> Query:
        if not isinstance(key, Key) or not key.is_complete:
            raise InvalidQueryError(f"Ancestor must be a complete Key, got {key!r}")
        if self.namespace is not None:
            check_ancestor_namespace(key, self.namespace)
        return replace(self, ancestor=key)

    def order(self, name: str, descending: bool = False) -> Query:
        """Sort by ``name``; ``"-name"`` sorts descending. Re-ordering a property replaces it."""
        if isinstance(name, str) and name.startswith("-"):
            name, descending = name[1:], True
        if not isinstance(name, str) or not name:
            raise InvalidQueryError(f"Order property must be a non-empty string, got {name!r}")
        entry = PropertyOrder(name, descending)
        orders = list(self.orders)
        for i, existing in enumerate(orders):
            if existing.name == name:
                orders[i] = entry
                break
        else:
            orders.append(entry)
        return replace(self, orders=tuple(orders))

    def group_by(self, *names: Any) -> Query:
        return replace(self, distinct_on=_names(names))

    def select(self, *names: Any) -> Query:
        """Project the given properties; ``select("__key__")`` makes a keys-only query."""
        return replace(self, projection=_names(names))

    def start(self, cursor: str) -> Query:
        if not isinstance(cursor, str) or not cursor:
            raise InvalidQueryError("Start cursor must be a non-empty string")
        return replace(self, start_cursor=cursor)

    def end(self, cursor: str) -> Query:
        if not isinstance(cursor, str) or not cursor:
            raise InvalidQueryError("End cursor must be a non-empty string")
        return replace(self, end_cursor=cursor)

    def limit(self, n: int | None) -> Query:
        """Cap the total result count; ``None`` or ``-1`` removes the cap."""
        if n is None or n == -1:
            return replace(self, limit_value=None)
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise InvalidQueryError(f"Limit must be a non-negative integer, got {n!r}")
        return replace(self, limit_value=n)

    def offset(self, n: int) -> Query:
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise InvalidQueryError(f"Offset must be a non-negative integer, got {n!r}")
        return replace(self, offset_value=n)

    @property
    def keys_only(self) -> bool:
        return self.projection == (KEY_PROPERTY,)

    def to_wire(self, project_id: str | None = None) -> dict[str, Any]:
        """Render the store's query shape. Limit and offset are left to the caller."""
        wire: dict[str, Any] = {}
        if self.kind:
            wire["kind"] = [{"name": self.kind}]
        filters = [f.to_wire(project_id) for f in self.filters]
        if self.ancestor is not None:
            filters.append(
                {
                    "propertyFilter": {
                        "property": {"name": KEY_PROPERTY},
                        "op": "HAS_ANCESTOR",
                        "value": {"keyValue": key_to_wire(self.ancestor, project_id=project_id)},
                    }
                }
            )
        if len(filters) == 1:
            wire["filter"] = filters[0]
        elif filters:
            wire["filter"] = {"compositeFilter": {"op": "AND", "filters": filters}}
        if self.orders:
            wire["order"] = [o.to_wire() for o in self.orders]
        if self.projection:
            wire["projection"] = [{"property": {"name": n}} for n in self.projection]
        if self.distinct_on:
            wire["distinctOn"] = [{"name": n} for n in self.distinct_on]
        if self.start_cursor:
            wire["startCursor"] = self.start_cursor
        if self.end_cursor:
            wire["endCursor"] = self.end_cursor
        return wire

    def run(self, **options: Any) -> Any:
        return self._require_scope().run_query(self, **options)

    def run_stream(self, **options: Any) -> Any:
        return self._require_scope().run_query_stream(self, **options)

    def _require_scope(self) -> Any:
        if self.scope is None:
            raise KindstoreError(
                "Query has no client or transaction to run against; "
                "create it with client.create_query() or pass it to run_query()"
            )
        return self.scope
