"""Transactions: snapshot reads, locally staged writes, one atomic commit."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from kindstore._adapters import store_operation
from kindstore.errors import (
    InvalidTransactionStateError,
    MutationConflictError,
    TransactionAbortedError,
)
from kindstore.key import Key
from kindstore.query import Query
from kindstore.request import (
    CommitResponse,
    PreparedMutation,
    ReadOperations,
    RequestCore,
    ResultStream,
)
from kindstore.wire import BeginTransactionResponse, RollbackResponse

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


class Transaction:
    """A unit of work against the store.

    ``run()`` begins it. While ACTIVE, reads go to the store at the
    transaction's snapshot and writes are only staged; ``commit()`` sends all
    staged writes at once and ``rollback()`` discards them. Both end the
    transaction. ``async with`` runs on entry, commits on a clean exit and
    rolls back when the block raises.

    State checks happen when an operation is called and again when its
    coroutine starts; nothing changes until the coroutine actually runs, so
    a call that is never awaited or is cancelled early leaves the
    transaction as it was.
    """

    def __init__(self, core: RequestCore, *, read_only: bool = False) -> None:
        self._core = core
        self.read_only = read_only
        self.id: str | None = None
        self.state = TransactionState.NOT_STARTED
        self._mutations: list[PreparedMutation] = []
        self._in_flight: str | None = None
        self._reads = ReadOperations(
            core,
            self,
            guard=lambda operation: self._require(operation, TransactionState.ACTIVE),
            transaction=lambda: self.id,
        )

    @property
    def namespace(self) -> str | None:
        return self._core.namespace

    @property
    def staged(self) -> int:
        return len(self._mutations)

    def _require(self, operation: str, allowed: TransactionState) -> None:
        if self._in_flight is not None:
            raise InvalidTransactionStateError(
                operation,
                f"{self.state.value} ({self._in_flight} in progress)",
                f"{allowed.value} with no other call in progress",
            )
        if self.state is not allowed:
            raise InvalidTransactionStateError(operation, self.state.value, allowed.value)

    def _finish(self, state: TransactionState) -> None:
        self._mutations.clear()
        self.state = state
        logger.debug("transaction %s -> %s", self.id, state.value)

    # --- Reads ---

    def create_query(self, kind: str | None = None, *, namespace: str | None = None) -> Query:
        return self._reads.create_query(kind, namespace=namespace)

    def get(self, keys: Any, **options: Any) -> Any:
        """Snapshot lookup; same forms as ``Client.get``."""
        return self._reads.get(keys, **options)

    def create_read_stream(self, keys: Any, **options: Any) -> ResultStream:
        return self._reads.create_read_stream(keys, **options)

    def run_query(self, query: Query, **options: Any) -> Any:
        return self._reads.run_query(query, **options)

    def run_query_stream(self, query: Query, **options: Any) -> ResultStream:
        return self._reads.run_query_stream(query, **options)

    def allocate_ids(self, incomplete_key: Key, n: int, **options: Any) -> Any:
        return self._reads.allocate_ids(incomplete_key, n, **options)

    # --- Lifecycle ---

    @store_operation
    def run(self, *, read_only: bool | None = None) -> Any:
        """Begin the transaction; resolves to ``(transaction, BeginTransactionResponse)``."""
        self._require("run", TransactionState.NOT_STARTED)
        return self._run(read_only)

    async def _run(self, read_only: bool | None) -> tuple[Transaction, BeginTransactionResponse]:
        self._require("run", TransactionState.NOT_STARTED)
        if read_only is not None:
            self.read_only = read_only
        self._in_flight = "run"
        try:
            response = await self._core.begin_transaction(read_only=self.read_only)
        finally:
            self._in_flight = None
        self.id = response.transaction
        self.state = TransactionState.ACTIVE
        logger.debug("transaction %s -> ACTIVE (read_only=%s)", self.id, self.read_only)
        return self, response

    @store_operation
    def commit(self) -> Any:
        """Send every staged mutation in one commit; resolves to a CommitResponse."""
        self._require("commit", TransactionState.ACTIVE)
        return self._commit()

    async def _commit(self) -> CommitResponse:
        self._require("commit", TransactionState.ACTIVE)
        self._in_flight = "commit"
        try:
            response = await self._core.commit(list(self._mutations), transaction=self.id)
        except TransactionAbortedError:
            self._finish(TransactionState.ROLLED_BACK)
            raise
        finally:
            self._in_flight = None
        if response.conflicts:
            self._finish(TransactionState.ROLLED_BACK)
            first = response.conflicts[0].error
            assert first is not None
            raise MutationConflictError(first.key, first.mutation, first.reason, response=response)
        self._finish(TransactionState.COMMITTED)
        return response

    @store_operation
    def rollback(self) -> Any:
        """Discard staged mutations and release the transaction; never commits."""
        self._require("rollback", TransactionState.ACTIVE)
        return self._rollback()

    async def _rollback(self) -> RollbackResponse:
        self._require("rollback", TransactionState.ACTIVE)
        assert self.id is not None
        self._in_flight = "rollback"
        self._mutations.clear()
        try:
            return await self._core.rollback(self.id)
        finally:
            self._in_flight = None
            self._finish(TransactionState.ROLLED_BACK)

    async def __aenter__(self) -> Transaction:
        if self.state is TransactionState.NOT_STARTED:
            await self.run()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: Any,
    ) -> None:
        if self.state is not TransactionState.ACTIVE:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    # --- Staged writes ---

    def _stage(self, operation: str, mutations: list[PreparedMutation]) -> None:
        self._require(operation, TransactionState.ACTIVE)
        if self.read_only:
            raise InvalidTransactionStateError(
                operation, "ACTIVE (read-only)", "a read-write ACTIVE transaction"
            )
        self._mutations.extend(mutations)

    def save(self, entities: Any) -> None:
        self._require("save", TransactionState.ACTIVE)
        self._stage("save", self._core.prepare_writes(entities, None))

    def insert(self, entities: Any) -> None:
        self._require("insert", TransactionState.ACTIVE)
        self._stage("insert", self._core.prepare_writes(entities, "insert"))

    def update(self, entities: Any) -> None:
        self._require("update", TransactionState.ACTIVE)
        self._stage("update", self._core.prepare_writes(entities, "update"))

    def upsert(self, entities: Any) -> None:
        self._require("upsert", TransactionState.ACTIVE)
        self._stage("upsert", self._core.prepare_writes(entities, "upsert"))

    def delete(self, keys: Any) -> None:
        self._require("delete", TransactionState.ACTIVE)
        self._stage("delete", self._core.prepare_deletes(keys))

    def __repr__(self) -> str:
        return f"Transaction(id={self.id!r}, state={self.state.value}, staged={self.staged})"
