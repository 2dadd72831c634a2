"""Local SQLite-backed store emulator implementing the transport RPCs.

Entities are kept in an append-only history table keyed by commit id, the
same way a versioned repository keeps entity history: the live value of a key
is its newest row, a deletion is a row with no entity, and a transaction
reads the newest rows at or below the commit it started from.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import json
import logging
import math
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from kindstore.codec import is_excluded, key_from_wire, key_to_wire
from kindstore.config import KindstoreConfig
from kindstore.errors import TransportError, ValidationError
from kindstore.key import Key

logger = logging.getLogger(__name__)

KEY_PROPERTY = "__key__"

# Cross-type sort order of indexed values.
_TYPE_RANK = {
    "nullValue": 0,
    "integerValue": 1,
    "timestampValue": 1,
    "booleanValue": 2,
    "blobValue": 3,
    "stringValue": 4,
    "doubleValue": 5,
    "geoPointValue": 6,
    "keyValue": 7,
}

_OPS = {
    "LESS_THAN": lambda c: c < 0,
    "LESS_THAN_OR_EQUAL": lambda c: c <= 0,
    "EQUAL": lambda c: c == 0,
    "GREATER_THAN_OR_EQUAL": lambda c: c >= 0,
    "GREATER_THAN": lambda c: c > 0,
}


def _path_json(key: Key) -> str:
    return json.dumps([list(pair) for pair in key.pairs()], separators=(",", ":"))


def _timestamp_micros(text: str) -> int:
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    delta = parsed - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


def _index_value(wire: dict[str, Any]) -> tuple[int, str, Any] | None:
    """(rank, tag, comparable) for an indexable value, None for embedded entities."""
    for tag, rank in _TYPE_RANK.items():
        if tag not in wire:
            continue
        raw = wire[tag]
        if tag == "nullValue":
            comparable: Any = 0
        elif tag == "integerValue":
            comparable = int(raw)
        elif tag == "timestampValue":
            comparable = _timestamp_micros(raw)
        elif tag == "booleanValue":
            comparable = bool(raw)
        elif tag == "blobValue":
            comparable = base64.b64decode(raw)
        elif tag == "doubleValue":
            number = float(raw)
            # NaN sorts before every other double.
            comparable = (0, 0.0) if math.isnan(number) else (1, number)
        elif tag == "geoPointValue":
            comparable = (raw["latitude"], raw["longitude"])
        elif tag == "keyValue":
            comparable = key_from_wire(raw).sort_key()
        else:
            comparable = raw
        return rank, tag, comparable
    return None


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _indexed_values(entity: dict[str, Any], name: str) -> list[tuple[int, str, Any]] | None:
    """Indexed values of a property, or None when it is absent from the index."""
    wire = (entity.get("properties") or {}).get(name)
    if wire is None or is_excluded(wire):
        return None
    if "arrayValue" in wire:
        elements = (wire["arrayValue"] or {}).get("values") or []
    else:
        elements = [wire]
    values = [v for v in (_index_value(e) for e in elements) if v is not None]
    return values or None


def _flatten_filter(wire_filter: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not wire_filter:
        return []
    if "propertyFilter" in wire_filter:
        return [wire_filter["propertyFilter"]]
    composite = wire_filter.get("compositeFilter")
    if composite is not None:
        if composite.get("op", "AND") != "AND":
            raise TransportError("runQuery", "Only AND composite filters are supported",
                                 code="INVALID_ARGUMENT")
        flat: list[dict[str, Any]] = []
        for child in composite.get("filters") or []:
            flat.extend(_flatten_filter(child))
        return flat
    raise TransportError("runQuery", f"Unknown filter shape {sorted(wire_filter)}",
                         code="INVALID_ARGUMENT")


def _encode_cursor(position: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"p": position}).encode()).decode("ascii")


def _decode_cursor(cursor: str) -> int:
    try:
        return int(json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))["p"])
    except (ValueError, KeyError, TypeError) as e:
        raise TransportError("runQuery", f"Invalid cursor {cursor!r}", code="INVALID_ARGUMENT") from e


def _index_entries(entity: dict[str, Any] | None) -> int:
    if entity is None:
        return 0
    count = 1
    for name in (entity.get("properties") or {}):
        values = _indexed_values(entity, name)
        count += len(values) if values else 0
    return count


@dataclass
class _EmulatorTransaction:
    handle: str
    snapshot: int
    read_only: bool
    touched: set[tuple[str, str]] = field(default_factory=set)


class EmulatorTransport:
    """SQLite-backed implementation of the store RPCs."""

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        project_id: str | None = None,
        config: KindstoreConfig | None = None,
    ) -> None:
        self.db_path = db_path
        self.project_id = project_id
        self._config = config or KindstoreConfig()
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._transactions: dict[str, _EmulatorTransaction] = {}
        self._handlers = {
            "allocateIds": self._allocate_ids,
            "lookup": self._lookup,
            "runQuery": self._run_query,
            "commit": self._commit,
            "beginTransaction": self._begin_transaction,
            "rollback": self._rollback,
        }
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS commits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                transactional INTEGER NOT NULL DEFAULT 0,
                mutation_count INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS entity_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                kind TEXT NOT NULL,
                path_json TEXT NOT NULL,
                entity_json TEXT,
                commit_id INTEGER NOT NULL,
                FOREIGN KEY (commit_id) REFERENCES commits(id)
            );

            CREATE INDEX IF NOT EXISTS idx_entity_history_lookup
                ON entity_history(namespace, path_json, commit_id DESC);

            CREATE INDEX IF NOT EXISTS idx_entity_history_kind
                ON entity_history(namespace, kind, commit_id DESC);

            CREATE TABLE IF NOT EXISTS id_sequence (
                namespace TEXT NOT NULL,
                kind TEXT NOT NULL,
                next_id INTEGER NOT NULL,
                PRIMARY KEY (namespace, kind)
            );
        """)
        self._conn.commit()

    # --- Transport protocol ---

    async def send(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(method)
        if handler is None:
            raise TransportError(method, f"Unknown method '{method}'", code="UNIMPLEMENTED")
        # Let other tasks run between RPCs, as a network round trip would.
        await asyncio.sleep(0)
        try:
            return handler(request)
        except ValidationError as e:
            raise TransportError(method, str(e), code="INVALID_ARGUMENT") from e
        except sqlite3.Error as e:
            raise TransportError(method, f"SQLite error: {e}", code="INTERNAL") from e

    async def close(self) -> None:
        self._conn.close()

    # --- Reads ---

    def get_head_commit_id(self) -> int:
        row = self._conn.execute("SELECT MAX(id) FROM commits").fetchone()
        return row[0] if row and row[0] is not None else 0

    def _latest(
        self, namespace: str, path_json: str, as_of: int | None = None
    ) -> tuple[str | None, int] | None:
        sql = (
            "SELECT entity_json, commit_id FROM entity_history "
            "WHERE namespace = ? AND path_json = ?"
        )
        params: list[Any] = [namespace, path_json]
        if as_of is not None:
            sql += " AND commit_id <= ?"
            params.append(as_of)
        sql += " ORDER BY commit_id DESC, id DESC LIMIT 1"
        row = self._conn.execute(sql, params).fetchone()
        if row is None:
            return None
        return row[0], row[1]

    def _scan(self, namespace: str, kind: str | None, as_of: int | None) -> list[dict[str, Any]]:
        """Live entities of a kind (all kinds when None) at a snapshot."""
        inner_where = "namespace = ?"
        params: list[Any] = [namespace]
        if kind is not None:
            inner_where += " AND kind = ?"
            params.append(kind)
        if as_of is not None:
            inner_where += " AND commit_id <= ?"
            params.append(as_of)
        sql = (
            "SELECT eh.entity_json FROM entity_history eh "
            "INNER JOIN ("
            "  SELECT path_json, MAX(id) AS max_id "
            "  FROM entity_history "
            f"  WHERE {inner_where} "
            "  GROUP BY path_json"
            ") latest ON eh.id = latest.max_id "
            "WHERE eh.entity_json IS NOT NULL"
        )
        rows = self._conn.execute(sql, params).fetchall()
        entities = [json.loads(r[0]) for r in rows]
        if kind is None:
            entities = [e for e in entities if not e["key"]["path"][-1]["kind"].startswith("__")]
        return entities

    def _read_snapshot(
        self, method: str, request: dict[str, Any]
    ) -> tuple[int | None, _EmulatorTransaction | None]:
        options = request.get("readOptions") or {}
        handle = options.get("transaction")
        if handle is None:
            return None, None
        txn = self._transactions.get(handle)
        if txn is None:
            raise TransportError(method, f"Unknown transaction '{handle}'", code="INVALID_ARGUMENT")
        return txn.snapshot, txn

    @staticmethod
    def _namespace(request: dict[str, Any]) -> str:
        return (request.get("partitionId") or {}).get("namespaceId") or ""

    def _lookup(self, request: dict[str, Any]) -> dict[str, Any]:
        as_of, txn = self._read_snapshot("lookup", request)
        found: list[dict[str, Any]] = []
        missing: list[dict[str, Any]] = []
        deferred: list[dict[str, Any]] = []
        version = as_of if as_of is not None else self.get_head_commit_id()
        for i, wire_key in enumerate(request.get("keys") or []):
            if i >= self._config.emulator_max_lookup:
                deferred.append(wire_key)
                continue
            key = key_from_wire(wire_key)
            if not key.is_complete:
                raise TransportError("lookup", f"Cannot look up incomplete key {key!r}",
                                     code="INVALID_ARGUMENT")
            path_json = _path_json(key)
            if txn is not None:
                txn.touched.add((key.namespace, path_json))
            row = self._latest(key.namespace, path_json, as_of)
            if row is None or row[0] is None:
                missing.append({"entity": {"key": wire_key}, "version": str(version)})
            else:
                found.append({"entity": json.loads(row[0]), "version": str(row[1])})
        logger.debug(
            "lookup: %d found, %d missing, %d deferred", len(found), len(missing), len(deferred)
        )
        return {"found": found, "missing": missing, "deferred": deferred}

    def _run_query(self, request: dict[str, Any]) -> dict[str, Any]:
        as_of, _ = self._read_snapshot("runQuery", request)
        query = request.get("query") or {}
        namespace = self._namespace(request)
        kinds = query.get("kind") or []
        if len(kinds) > 1:
            raise TransportError("runQuery", "At most one kind per query", code="INVALID_ARGUMENT")
        kind = kinds[0]["name"] if kinds else None

        results = self._scan(namespace, kind, as_of)
        filters = _flatten_filter(query.get("filter"))
        results = [e for e in results if all(self._matches(e, f) for f in filters)]
        results = self._order(results, query.get("order") or [])

        distinct_on = [d["name"] for d in query.get("distinctOn") or []]
        if distinct_on:
            results = self._distinct(results, distinct_on)

        projection = [p["property"]["name"] for p in query.get("projection") or []]
        result_type = "FULL"
        if projection == [KEY_PROPERTY]:
            result_type = "KEY_ONLY"
            results = [{"key": e["key"]} for e in results]
        elif projection:
            result_type = "PROJECTION"
            results = self._project(results, projection)

        return {"batch": self._page(results, query, result_type)}

    def _matches(self, entity: dict[str, Any], prop_filter: dict[str, Any]) -> bool:
        name = prop_filter["property"]["name"]
        op = prop_filter["op"]
        value = prop_filter.get("value") or {}
        if name == KEY_PROPERTY:
            key = key_from_wire(entity["key"])
            other = key_from_wire(value["keyValue"])
            if op == "HAS_ANCESTOR":
                return other.is_ancestor_of(key)
            check = _OPS.get(op)
            if check is None:
                raise TransportError("runQuery", f"Unsupported operator {op}", code="INVALID_ARGUMENT")
            return check(_cmp(key.sort_key(), other.sort_key()))

        check = _OPS.get(op)
        if check is None:
            raise TransportError("runQuery", f"Unsupported operator {op}", code="INVALID_ARGUMENT")
        target = _index_value(value)
        values = _indexed_values(entity, name)
        if target is None or values is None:
            return False
        # Filters compare only values of the same type; arrays match on any element.
        return any(
            tag == target[1] and check(_cmp(comparable, target[2]))
            for _, tag, comparable in values
        )

    def _order(
        self, entities: list[dict[str, Any]], orders: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        names = [(o["property"]["name"], o.get("direction") == "DESCENDING") for o in orders]
        keyed: list[tuple[dict[str, Any], list[Any], Any]] = []
        for entity in entities:
            sort_values: list[Any] = []
            indexed = True
            for name, descending in names:
                if name == KEY_PROPERTY:
                    sort_values.append(key_from_wire(entity["key"]).sort_key())
                    continue
                values = _indexed_values(entity, name)
                if values is None:
                    indexed = False
                    break
                pairs = [(rank, comparable) for rank, _, comparable in values]
                sort_values.append(max(pairs) if descending else min(pairs))
            # Entities missing an ordered property are not in that index.
            if indexed:
                keyed.append((entity, sort_values, key_from_wire(entity["key"]).sort_key()))

        def compare(a: tuple[Any, list[Any], Any], b: tuple[Any, list[Any], Any]) -> int:
            for (_, descending), left, right in zip(names, a[1], b[1]):
                c = _cmp(left, right)
                if c:
                    return -c if descending else c
            return _cmp(a[2], b[2])

        keyed.sort(key=functools.cmp_to_key(compare))
        return [entity for entity, _, _ in keyed]

    @staticmethod
    def _distinct(entities: list[dict[str, Any]], names: list[str]) -> list[dict[str, Any]]:
        seen: set[str] = set()
        kept: list[dict[str, Any]] = []
        for entity in entities:
            props = entity.get("properties") or {}
            if any(_indexed_values(entity, n) is None for n in names):
                continue
            marker = json.dumps([props[n] for n in names], sort_keys=True)
            if marker in seen:
                continue
            seen.add(marker)
            kept.append(entity)
        return kept

    @staticmethod
    def _project(entities: list[dict[str, Any]], names: list[str]) -> list[dict[str, Any]]:
        projected: list[dict[str, Any]] = []
        for entity in entities:
            if any(_indexed_values(entity, n) is None for n in names):
                continue
            props = entity.get("properties") or {}
            projected.append(
                {"key": entity["key"], "properties": {n: props[n] for n in names}}
            )
        return projected

    def _page(
        self, results: list[dict[str, Any]], query: dict[str, Any], result_type: str
    ) -> dict[str, Any]:
        total = len(results)
        start = _decode_cursor(query["startCursor"]) if query.get("startCursor") else 0
        if query.get("endCursor"):
            total = min(total, _decode_cursor(query["endCursor"]))
        start = min(start, total)
        page_size = self._config.emulator_page_size

        offset = int(query.get("offset") or 0)
        skipped = min(offset, total - start, page_size)
        position = start + skipped

        limit = query.get("limit")
        take = 0
        if skipped == offset:
            take = page_size if limit is None else min(int(limit), page_size)
        page = results[position : min(position + take, total)]
        end = position + len(page)

        if end >= total:
            more = "NO_MORE_RESULTS"
        elif limit is not None and skipped == offset and len(page) == int(limit):
            more = "MORE_RESULTS_AFTER_LIMIT"
        else:
            more = "MORE_RESULTS_AFTER_CURSOR"

        entity_results = []
        for i, entity in enumerate(page):
            entity_results.append({"entity": entity, "cursor": _encode_cursor(position + i + 1)})
        logger.debug(
            "runQuery: %d results, %d skipped, %s", len(page), skipped, more
        )
        return {
            "entityResultType": result_type,
            "entityResults": entity_results,
            "endCursor": _encode_cursor(end),
            "moreResults": more,
            "skippedResults": skipped,
        }

    # --- Writes ---

    def _next_id(self, namespace: str, kind: str) -> int:
        self._conn.execute(
            "INSERT INTO id_sequence (namespace, kind, next_id) VALUES (?, ?, 1) "
            "ON CONFLICT (namespace, kind) DO NOTHING",
            (namespace, kind),
        )
        row = self._conn.execute(
            "SELECT next_id FROM id_sequence WHERE namespace = ? AND kind = ?",
            (namespace, kind),
        ).fetchone()
        self._conn.execute(
            "UPDATE id_sequence SET next_id = next_id + 1 WHERE namespace = ? AND kind = ?",
            (namespace, kind),
        )
        return int(row[0])

    def _observe_id(self, namespace: str, kind: str, ident: int) -> None:
        """Keep allocation ahead of ids written explicitly by clients."""
        self._conn.execute(
            "INSERT INTO id_sequence (namespace, kind, next_id) VALUES (?, ?, ?) "
            "ON CONFLICT (namespace, kind) DO UPDATE SET "
            "next_id = MAX(next_id, excluded.next_id)",
            (namespace, kind, ident + 1),
        )

    def _complete(self, key: Key) -> Key:
        return key.complete_with(self._next_id(key.namespace, key.kind))

    def _allocate_ids(self, request: dict[str, Any]) -> dict[str, Any]:
        completed = []
        try:
            for wire_key in request.get("keys") or []:
                key = key_from_wire(wire_key)
                if key.is_complete:
                    raise TransportError(
                        "allocateIds", f"Key {key!r} is already complete", code="INVALID_ARGUMENT"
                    )
                completed.append(key_to_wire(self._complete(key), project_id=key.project))
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        return {"keys": completed}

    def _begin_transaction(self, request: dict[str, Any]) -> dict[str, Any]:
        options = request.get("transactionOptions") or {}
        handle = uuid.uuid4().hex
        txn = _EmulatorTransaction(
            handle=handle,
            snapshot=self.get_head_commit_id(),
            read_only="readOnly" in options,
        )
        self._transactions[handle] = txn
        logger.debug("beginTransaction %s at commit %d", handle, txn.snapshot)
        return {"transaction": handle}

    def _rollback(self, request: dict[str, Any]) -> dict[str, Any]:
        handle = request.get("transaction")
        if self._transactions.pop(handle, None) is None:
            raise TransportError("rollback", f"Unknown transaction '{handle}'", code="INVALID_ARGUMENT")
        logger.debug("rollback %s", handle)
        return {}

    def _commit(self, request: dict[str, Any]) -> dict[str, Any]:
        mutations = request.get("mutations") or []
        if len(mutations) > self._config.emulator_max_mutations:
            raise TransportError(
                "commit",
                f"Too many mutations: {len(mutations)} > {self._config.emulator_max_mutations}",
                code="INVALID_ARGUMENT",
            )
        parsed = [self._parse_mutation(m) for m in mutations]
        transactional = request.get("mode", "NON_TRANSACTIONAL") == "TRANSACTIONAL"
        txn: _EmulatorTransaction | None = None
        if transactional:
            handle = request.get("transaction")
            txn = self._transactions.get(handle)
            if txn is None:
                raise TransportError("commit", f"Unknown transaction '{handle}'", code="INVALID_ARGUMENT")
            if txn.read_only and mutations:
                raise TransportError(
                    "commit", "Read-only transactions cannot write", code="INVALID_ARGUMENT"
                )
            # From here on the handle is spent, whether the commit lands or not.
            del self._transactions[handle]
            self._check_concurrency(txn, parsed)
        elif request.get("transaction"):
            raise TransportError(
                "commit", "NON_TRANSACTIONAL commits cannot name a transaction",
                code="INVALID_ARGUMENT",
            )

        self._conn.execute("BEGIN IMMEDIATE")
        try:
            commit_id = self._conn.execute(
                "INSERT INTO commits (created_at, transactional, mutation_count) VALUES (?, ?, ?)",
                (datetime.now(timezone.utc).isoformat(), int(transactional), len(parsed)),
            ).lastrowid
            results: list[dict[str, Any]] = []
            index_updates = 0
            conflicts = 0
            for op, key, entity in parsed:
                result, updates = self._apply(op, key, entity, commit_id)
                if result.get("conflictDetected"):
                    conflicts += 1
                index_updates += updates
                results.append(result)
            if transactional and conflicts:
                # All or nothing: report what failed, apply none of it.
                self._conn.rollback()
                for result in results:
                    result.pop("version", None)
                logger.debug("commit rejected: %d precondition conflicts", conflicts)
                return {"mutationResults": results, "indexUpdates": 0}
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        logger.debug(
            "commit %d: %d mutations, %d conflicts, %d index updates",
            commit_id, len(parsed), conflicts, index_updates,
        )
        return {"mutationResults": results, "indexUpdates": index_updates}

    def _parse_mutation(
        self, mutation: dict[str, Any]
    ) -> tuple[str, Key, dict[str, Any] | None]:
        ops = [op for op in ("insert", "update", "upsert", "delete") if op in mutation]
        if len(ops) != 1:
            raise TransportError(
                "commit", f"Mutation must name exactly one operation, got {sorted(mutation)}",
                code="INVALID_ARGUMENT",
            )
        op = ops[0]
        if op == "delete":
            key = key_from_wire(mutation["delete"])
            entity = None
        else:
            entity = mutation[op]
            key = key_from_wire(entity.get("key") or {})
        if not key.is_complete and op in ("update", "delete"):
            raise TransportError(
                "commit", f"{op} requires a complete key, got {key!r}", code="INVALID_ARGUMENT"
            )
        return op, key, entity

    def _check_concurrency(
        self, txn: _EmulatorTransaction, parsed: list[tuple[str, Key, Any]]
    ) -> None:
        watched = set(txn.touched)
        watched.update(
            (key.namespace, _path_json(key)) for _, key, _ in parsed if key.is_complete
        )
        for namespace, path_json in watched:
            row = self._latest(namespace, path_json)
            if row is not None and row[1] > txn.snapshot:
                logger.debug("transaction %s aborted: %s changed", txn.handle, path_json)
                raise TransportError(
                    "commit",
                    "Transaction aborted: an entity it read or writes was modified concurrently",
                    code="ABORTED",
                )

    def _apply(
        self, op: str, key: Key, entity: dict[str, Any] | None, commit_id: int
    ) -> tuple[dict[str, Any], int]:
        allocated = False
        if not key.is_complete:
            key = self._complete(key)
            allocated = True
        elif key.id is not None:
            self._observe_id(key.namespace, key.kind, key.id)

        path_json = _path_json(key)
        current = self._latest(key.namespace, path_json)
        exists = current is not None and current[0] is not None
        wire_key = key_to_wire(key, project_id=key.project or self.project_id)

        if op == "insert" and exists:
            return self._conflict(wire_key, "ALREADY_EXISTS", f"Entity {key!r} already exists"), 0
        if op == "update" and not exists:
            return self._conflict(wire_key, "NOT_FOUND", f"Entity {key!r} does not exist"), 0

        old = json.loads(current[0]) if exists and current is not None else None
        if op == "delete":
            if not exists:
                return {"version": str(commit_id)}, 0
            stored = None
        else:
            assert entity is not None
            stored = {"key": wire_key, "properties": entity.get("properties") or {}}

        self._conn.execute(
            "INSERT INTO entity_history (namespace, kind, path_json, entity_json, commit_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                key.namespace,
                key.kind,
                path_json,
                json.dumps(stored) if stored is not None else None,
                commit_id,
            ),
        )
        result: dict[str, Any] = {"version": str(commit_id)}
        if allocated:
            result["key"] = wire_key
        return result, _index_entries(old) + _index_entries(stored)

    @staticmethod
    def _conflict(wire_key: dict[str, Any], code: str, message: str) -> dict[str, Any]:
        return {
            "key": wire_key,
            "conflictDetected": True,
            "error": {"code": code, "message": message},
        }

    # --- Operator helpers ---

    def list_namespaces(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT namespace FROM entity_history ORDER BY namespace"
        ).fetchall()
        return [r[0] for r in rows]

    def list_kinds(self, namespace: str = "") -> dict[str, int]:
        """Live entity count per kind in a namespace."""
        counts: dict[str, int] = {}
        for entity in self._scan(namespace, None, None):
            kind = entity["key"]["path"][-1]["kind"]
            counts[kind] = counts.get(kind, 0) + 1
        return dict(sorted(counts.items()))

    def storage_info(self) -> dict[str, Any]:
        """Return backend info for operator commands."""
        return {
            "backend": "emulator",
            "db_path": self.db_path,
            "head_commit_id": self.get_head_commit_id(),
            "open_transactions": len(self._transactions),
        }


__all__ = ["EmulatorTransport"]
