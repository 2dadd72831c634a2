"""Request layer shared by the client and transactions.

RequestCore turns keys, entities and queries into transport requests, and
transport responses back into entities, keys and results. It owns batching:
lookups are de-duplicated and re-issued for deferred keys, writes of a call go
out as one commit, and query pages are followed until the result is complete.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncGenerator, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from kindstore._adapters import store_operation
from kindstore.codec import decode_entity, encode_entity, key_from_wire, key_to_wire
from kindstore.entity import Entity, normalize_write
from kindstore.errors import (
    InvalidKeyPathError,
    KindstoreError,
    MutationConflictError,
    TransactionAbortedError,
    TransportError,
    ValidationError,
)
from kindstore.key import Key, require_complete
from kindstore.query import MoreResults, Query, QueryInfo, QueryResult, check_ancestor_namespace
from kindstore.transport import Transport
from kindstore.wire import (
    AllocateIdsResponse,
    BeginTransactionResponse,
    CommitWireResponse,
    LookupResponse,
    RollbackResponse,
    RunQueryResponse,
    parse_response,
)

logger = logging.getLogger(__name__)

CONSISTENCY_LEVELS = ("STRONG", "EVENTUAL")

_CONTINUE = (MoreResults.MORE_RESULTS_AFTER_CURSOR, MoreResults.NOT_FINISHED)


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one mutation of a commit, in request order."""

    key: Key | None
    version: str | None
    conflict_detected: bool = False
    error: MutationConflictError | None = None


@dataclass(frozen=True)
class CommitResponse:
    mutation_results: list[MutationResult]
    index_updates: int = 0

    @property
    def conflicts(self) -> list[MutationResult]:
        return [r for r in self.mutation_results if r.conflict_detected]

    def raise_for_conflicts(self) -> None:
        """Raise the first per-mutation conflict, if any."""
        for result in self.mutation_results:
            if result.error is not None:
                raise result.error


@dataclass(frozen=True)
class PreparedMutation:
    op: str
    key: Key
    wire: dict[str, Any]
    source: Entity | None = None


class ResultStream:
    """Async iterator over results that arrive in pages.

    The next page is requested only once the current one has been consumed;
    closing the stream stops any further requests. ``info`` holds the most
    recent page's QueryInfo (None for lookups).
    """

    def __init__(self, pages: AsyncGenerator[tuple[list[Any], QueryInfo | None], None]) -> None:
        self._pages = pages
        self._buffer: deque[Any] = deque()
        self._done = False
        self.info: QueryInfo | None = None

    def __aiter__(self) -> ResultStream:
        return self

    async def __anext__(self) -> Any:
        while not self._buffer:
            if self._done:
                raise StopAsyncIteration
            try:
                items, self.info = await self._pages.__anext__()
            except StopAsyncIteration:
                self._done = True
                raise
            self._buffer.extend(items)
        return self._buffer.popleft()

    async def aclose(self) -> None:
        self._done = True
        self._buffer.clear()
        await self._pages.aclose()

    async def __aenter__(self) -> ResultStream:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


def _as_list(items: Any) -> list[Any]:
    if isinstance(items, (list, tuple)):
        return list(items)
    return [items]


def _unique(keys: Sequence[Key]) -> list[Key]:
    return list(dict.fromkeys(keys))


class RequestCore:
    """Builds requests, calls the transport and decodes responses."""

    def __init__(
        self,
        transport: Transport,
        *,
        project_id: str | None = None,
        namespace: str | None = None,
        wrap_numbers: bool = False,
        max_api_calls: int | None = None,
    ) -> None:
        self.transport = transport
        self.project_id = project_id
        self.namespace = namespace
        self.wrap_numbers = wrap_numbers
        self.max_api_calls = max_api_calls

    async def rpc(self, method: str, request: dict[str, Any]) -> dict[str, Any]:
        logger.debug("rpc %s", method)
        try:
            return await self.transport.send(method, request)
        except TransportError as e:
            if e.code == "ABORTED" and not isinstance(e, TransactionAbortedError):
                raise TransactionAbortedError(e.operation, e.detail) from e
            raise
        except KindstoreError:
            raise
        except Exception as e:
            raise TransportError(method, f"{type(e).__name__}: {e}") from e

    # --- Validation (synchronous) ---

    @staticmethod
    def read_options(
        *, transaction: str | None = None, consistency: str | None = None
    ) -> dict[str, Any]:
        """readOptions for a read; a transaction handle takes precedence over consistency."""
        if consistency is not None:
            level = str(consistency).upper()
            if level not in CONSISTENCY_LEVELS:
                raise ValidationError(
                    f"consistency must be one of {', '.join(c.lower() for c in CONSISTENCY_LEVELS)}, "
                    f"got {consistency!r}"
                )
        if transaction is not None:
            return {"transaction": transaction}
        if consistency is not None:
            return {"readConsistency": str(consistency).upper()}
        return {}

    @staticmethod
    def prepare_keys(keys: Any, operation: str) -> list[Key]:
        key_list = _as_list(keys)
        for key in key_list:
            require_complete(key, operation)
        return key_list

    def prepare_writes(self, items: Any, method: str | None) -> list[PreparedMutation]:
        """Normalize save payloads; ``method=None`` takes each item's own method (default upsert)."""
        prepared: list[PreparedMutation] = []
        for item in _as_list(items):
            write = normalize_write(item)
            op = method or write.method or "upsert"
            if op == "update":
                require_complete(write.key, "update")
            wire = encode_entity(
                write.key,
                write.properties,
                write.exclude_from_indexes,
                project_id=self.project_id,
            )
            prepared.append(PreparedMutation(op, write.key, {op: wire}, write.source))
        return prepared

    def prepare_deletes(self, keys: Any) -> list[PreparedMutation]:
        return [
            PreparedMutation("delete", key, {"delete": key_to_wire(key, project_id=self.project_id)})
            for key in self.prepare_keys(keys, "delete")
        ]

    @staticmethod
    def prepare_allocation(key: Any, n: Any) -> tuple[Key, int]:
        if not isinstance(key, Key):
            raise InvalidKeyPathError(f"allocate_ids requires a Key, got {type(key).__name__}")
        if key.is_complete:
            raise InvalidKeyPathError(
                f"allocate_ids requires an incomplete key, got {key!r}", path=key.path()
            )
        if isinstance(n, bool) or not isinstance(n, int) or n < 1:
            raise ValidationError(f"allocate_ids count must be a positive integer, got {n!r}")
        return key, n

    # --- Lookup ---

    async def lookup_pages(
        self,
        keys: Sequence[Key],
        read_options: dict[str, Any],
        *,
        wrap_numbers: bool | None = None,
    ) -> AsyncGenerator[tuple[list[Entity], None], None]:
        """Yield found entities per lookup response, re-requesting deferred keys."""
        wrap = self.wrap_numbers if wrap_numbers is None else wrap_numbers
        pending = _unique(keys)
        while pending:
            request: dict[str, Any] = {
                "keys": [key_to_wire(k, project_id=self.project_id) for k in pending]
            }
            if read_options:
                request["readOptions"] = read_options
            response = parse_response(LookupResponse, "lookup", await self.rpc("lookup", request))
            found = [decode_entity(r.entity, wrap_numbers=wrap) for r in response.found]
            deferred = [key_from_wire(k) for k in response.deferred]
            if deferred and len(deferred) >= len(pending) and not found and not response.missing:
                raise TransportError("lookup", "Store deferred every key without progress")
            if deferred:
                logger.debug("lookup: re-requesting %d deferred keys", len(deferred))
            yield found, None
            pending = deferred

    async def lookup(
        self,
        keys: Sequence[Key],
        read_options: dict[str, Any],
        *,
        wrap_numbers: bool | None = None,
    ) -> list[Entity]:
        """Found entities in input order; missing keys are left out."""
        by_key: dict[Key, Entity] = {}
        async for found, _ in self.lookup_pages(keys, read_options, wrap_numbers=wrap_numbers):
            for entity in found:
                assert entity.key is not None
                by_key[entity.key] = entity
        return [by_key[k] for k in _unique(keys) if k in by_key]

    # --- Commit ---

    async def commit(
        self, mutations: Sequence[PreparedMutation], *, transaction: str | None = None
    ) -> CommitResponse:
        if not mutations and transaction is None:
            return CommitResponse([], 0)
        request: dict[str, Any] = {
            "mode": "TRANSACTIONAL" if transaction else "NON_TRANSACTIONAL",
            "mutations": [m.wire for m in mutations],
        }
        if transaction:
            request["transaction"] = transaction
        response = parse_response(CommitWireResponse, "commit", await self.rpc("commit", request))
        if len(response.mutation_results) != len(mutations):
            raise TransportError(
                "commit",
                f"Expected {len(mutations)} mutation results, got {len(response.mutation_results)}",
            )

        results: list[MutationResult] = []
        for mutation, wire_result in zip(mutations, response.mutation_results):
            key = key_from_wire(wire_result.key) if wire_result.key else mutation.key
            if wire_result.conflict_detected or wire_result.error:
                error = wire_result.error or {}
                reason = error.get("message") or "conflict detected"
                if error.get("code"):
                    reason = f"{error['code']}: {reason}"
                conflict = MutationConflictError(key, mutation.op, reason)
                results.append(MutationResult(key, wire_result.version, True, conflict))
            else:
                results.append(MutationResult(key, wire_result.version))
        commit_response = CommitResponse(results, response.index_updates)

        applied = not (transaction and commit_response.conflicts)
        if applied:
            for mutation, result in zip(mutations, results):
                if mutation.source is not None and not mutation.key.is_complete:
                    if not result.conflict_detected and result.key is not None:
                        mutation.source.key = result.key
        logger.debug(
            "commit: %d mutations, %d conflicts",
            len(results),
            len(commit_response.conflicts),
        )
        return commit_response

    # --- Queries ---

    def _partition(self, namespace: str | None) -> dict[str, str]:
        partition: dict[str, str] = {}
        if self.project_id:
            partition["projectId"] = self.project_id
        if namespace:
            partition["namespaceId"] = namespace
        return partition

    async def query_pages(
        self,
        query: Query,
        read_options: dict[str, Any],
        *,
        max_api_calls: int | None = None,
        wrap_numbers: bool | None = None,
    ) -> AsyncGenerator[tuple[list[Entity], QueryInfo], None]:
        """Yield (entities, info) per RunQuery call until the result is complete.

        Follow-up calls resume from the previous end cursor while the store
        reports more results after it, the call budget lasts and the query's
        limit is not yet met. Each follow-up asks only for the remaining limit
        and the remaining offset.
        """
        wrap = self.wrap_numbers if wrap_numbers is None else wrap_numbers
        budget = self.max_api_calls if max_api_calls is None else max_api_calls
        namespace = query.namespace if query.namespace is not None else self.namespace
        limit = query.limit_value
        offset = query.offset_value
        cursor = query.start_cursor
        calls = 0
        returned = 0
        while True:
            wire_query = query.to_wire(self.project_id)
            if cursor:
                wire_query["startCursor"] = cursor
            if offset:
                wire_query["offset"] = offset
            if limit is not None:
                wire_query["limit"] = limit - returned
            request: dict[str, Any] = {
                "partitionId": self._partition(namespace),
                "query": wire_query,
            }
            if read_options:
                request["readOptions"] = read_options

            calls += 1
            response = parse_response(
                RunQueryResponse, "runQuery", await self.rpc("runQuery", request)
            )
            batch = response.batch
            entities = [decode_entity(r.entity, wrap_numbers=wrap) for r in batch.entity_results]
            returned += len(entities)
            offset = max(0, offset - batch.skipped_results)
            info = QueryInfo(end_cursor=batch.end_cursor, more_results=batch.more_results)
            yield entities, info

            if batch.more_results not in _CONTINUE:
                return
            if budget is not None and calls >= budget:
                logger.debug("runQuery: call budget of %d spent", budget)
                return
            if limit is not None and returned >= limit:
                return
            if not batch.end_cursor:
                raise TransportError("runQuery", "Store reported more results without a cursor")
            cursor = batch.end_cursor
            logger.debug("runQuery: follow-up call %d from end cursor", calls + 1)

    async def run_query(
        self,
        query: Query,
        read_options: dict[str, Any],
        *,
        max_api_calls: int | None = None,
        wrap_numbers: bool | None = None,
    ) -> QueryResult:
        entities: list[Entity] = []
        info = QueryInfo(end_cursor=None, more_results=MoreResults.NO_MORE_RESULTS)
        async for page, info in self.query_pages(
            query, read_options, max_api_calls=max_api_calls, wrap_numbers=wrap_numbers
        ):
            entities.extend(page)
        return QueryResult(entities, info)

    # --- Ids and transactions ---

    async def allocate_ids(self, key: Key, n: int) -> list[Key]:
        request = {"keys": [key_to_wire(key, project_id=self.project_id)] * n}
        response = parse_response(
            AllocateIdsResponse, "allocateIds", await self.rpc("allocateIds", request)
        )
        keys = [key_from_wire(k) for k in response.keys]
        if len(keys) != n or not all(k.is_complete for k in keys):
            raise TransportError("allocateIds", f"Expected {n} complete keys, got {len(keys)}")
        return keys

    async def begin_transaction(self, *, read_only: bool = False) -> BeginTransactionResponse:
        options: dict[str, Any] = {"readOnly": {}} if read_only else {"readWrite": {}}
        request: dict[str, Any] = {"transactionOptions": options}
        if self.project_id:
            request["projectId"] = self.project_id
        return parse_response(
            BeginTransactionResponse,
            "beginTransaction",
            await self.rpc("beginTransaction", request),
        )

    async def rollback(self, transaction: str) -> RollbackResponse:
        payload = await self.rpc("rollback", {"transaction": transaction})
        return parse_response(RollbackResponse, "rollback", payload)


def _check_budget(max_api_calls: Any) -> int | None:
    if max_api_calls is None:
        return None
    if isinstance(max_api_calls, bool) or not isinstance(max_api_calls, int) or max_api_calls < 1:
        raise ValidationError(f"max_api_calls must be a positive integer, got {max_api_calls!r}")
    return max_api_calls


class ReadOperations:
    """Reads shared by the client and transactions.

    Both hold one of these and delegate to it. ``scope`` is the owner that
    queries created here run against. ``guard(operation)`` raises when the
    owner cannot read right now; ``transaction()`` returns the handle reads
    run under, or None for plain reads.
    """

    def __init__(
        self,
        core: RequestCore,
        scope: Any,
        *,
        guard: Callable[[str], None] | None = None,
        transaction: Callable[[], str | None] | None = None,
    ) -> None:
        self._core = core
        self._scope = scope
        self._guard = guard
        self._transaction = transaction

    def _check_readable(self, operation: str) -> None:
        if self._guard is not None:
            self._guard(operation)

    def _read_options(self, consistency: str | None) -> dict[str, Any]:
        handle = self._transaction() if self._transaction is not None else None
        return self._core.read_options(transaction=handle, consistency=consistency)

    def create_query(self, kind: str | None = None, *, namespace: str | None = None) -> Query:
        if kind is not None and (not isinstance(kind, str) or not kind):
            raise ValidationError(f"Query kind must be a non-empty string, got {kind!r}")
        return Query(
            kind=kind,
            namespace=namespace if namespace is not None else self._core.namespace,
            scope=self._scope,
        )

    @store_operation
    def get(
        self,
        keys: Key | Sequence[Key],
        *,
        consistency: str | None = None,
        wrap_numbers: bool | None = None,
    ) -> Any:
        self._check_readable("get")
        options = self._read_options(consistency)
        key_list = self._core.prepare_keys(keys, "get")
        if isinstance(keys, Key):
            return self._get_one(key_list[0], options, wrap_numbers)
        return self._core.lookup(key_list, options, wrap_numbers=wrap_numbers)

    async def _get_one(
        self, key: Key, options: dict[str, Any], wrap_numbers: bool | None
    ) -> Entity | None:
        found = await self._core.lookup([key], options, wrap_numbers=wrap_numbers)
        return found[0] if found else None

    def create_read_stream(
        self,
        keys: Key | Sequence[Key],
        *,
        consistency: str | None = None,
        wrap_numbers: bool | None = None,
    ) -> ResultStream:
        self._check_readable("create_read_stream")
        options = self._read_options(consistency)
        key_list = self._core.prepare_keys(keys, "create_read_stream")
        return ResultStream(self._core.lookup_pages(key_list, options, wrap_numbers=wrap_numbers))

    def _prepare_query(self, query: Any, operation: str) -> Query:
        self._check_readable(operation)
        if not isinstance(query, Query):
            raise ValidationError(f"{operation} requires a Query, got {type(query).__name__}")
        if query.ancestor is not None:
            namespace = query.namespace if query.namespace is not None else self._core.namespace
            check_ancestor_namespace(query.ancestor, namespace)
        return query

    @store_operation
    def run_query(
        self,
        query: Query,
        *,
        consistency: str | None = None,
        max_api_calls: int | None = None,
        wrap_numbers: bool | None = None,
    ) -> Any:
        query = self._prepare_query(query, "run_query")
        options = self._read_options(consistency)
        return self._core.run_query(
            query,
            options,
            max_api_calls=_check_budget(max_api_calls),
            wrap_numbers=wrap_numbers,
        )

    def run_query_stream(
        self,
        query: Query,
        *,
        consistency: str | None = None,
        max_api_calls: int | None = None,
        wrap_numbers: bool | None = None,
    ) -> ResultStream:
        query = self._prepare_query(query, "run_query_stream")
        options = self._read_options(consistency)
        return ResultStream(
            self._core.query_pages(
                query,
                options,
                max_api_calls=_check_budget(max_api_calls),
                wrap_numbers=wrap_numbers,
            )
        )

    @store_operation
    def allocate_ids(self, incomplete_key: Key, n: int) -> Any:
        self._check_readable("allocate_ids")
        key, count = self._core.prepare_allocation(incomplete_key, n)
        return self._core.allocate_ids(key, count)
